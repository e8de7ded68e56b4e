"""Migrant model: core identity record read by the indicator engine."""

import uuid
from datetime import datetime

from sqlalchemy import Column, String, Date, DateTime, Boolean
from sqlalchemy.orm import relationship

from sysmobembo.core.database import Base


class Migrant(Base):
    __tablename__ = "migrants"

    uuid = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    nom = Column(String(255), nullable=True)
    prenom = Column(String(255), nullable=True)
    sexe = Column(String(1), nullable=True)                 # M | F
    date_naissance = Column(Date, nullable=True)
    lieu_naissance = Column(String(255), nullable=True)
    nationalite = Column(String(100), nullable=True)

    pays_origine = Column(String(100), nullable=True)
    pays_actuel = Column(String(100), nullable=True)
    ville_actuelle = Column(String(255), nullable=True, index=True)
    statut_migratoire = Column(String(30), nullable=True)   # regulier, irregulier, demandeur_asile, refugie

    actif = Column(Boolean, default=True, nullable=False)

    motifs = relationship("MotifDeplacement", back_populates="migrant")
    geolocalisations = relationship("Geolocalisation", back_populates="migrant")
    alertes = relationship("Alert", back_populates="migrant")

    def __repr__(self):
        return f"<Migrant(uuid={self.uuid}, ville={self.ville_actuelle})>"
