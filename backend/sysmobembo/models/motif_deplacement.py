"""Displacement motive: why a migrant moved."""

import uuid
from datetime import datetime

from sqlalchemy import Column, String, Text, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from sysmobembo.core.database import Base


class MotifDeplacement(Base):
    __tablename__ = "motif_deplacements"

    uuid = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)

    migrant_uuid = Column(String(255), ForeignKey("migrants.uuid", ondelete="CASCADE"), nullable=False)

    type_motif = Column(String(50), nullable=True, index=True)
    motif_principal = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)

    caractere_volontaire = Column(Boolean, default=True)
    urgence = Column(String(20), nullable=True)             # faible, moyenne, elevee, critique

    # External factor flags (not used for categorisation, see indicator_builders)
    conflit_arme = Column(Boolean, default=False)
    catastrophe_naturelle = Column(Boolean, default=False)
    persecution = Column(Boolean, default=False)
    violence_generalisee = Column(Boolean, default=False)

    migrant = relationship("Migrant", back_populates="motifs")
