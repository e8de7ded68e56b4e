from datetime import datetime
import uuid

from sqlalchemy import Column, String, Float, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from sysmobembo.core.database import Base


class Geolocalisation(Base):
    """A recorded position / movement of a migrant."""
    __tablename__ = "geolocalisations"

    uuid = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)

    migrant_uuid = Column(String(255), ForeignKey("migrants.uuid", ondelete="CASCADE"), nullable=False)

    ville = Column(String(255), nullable=True, index=True)
    pays = Column(String(100), nullable=True)
    type_mouvement = Column(String(50), nullable=True)      # transit, residence_temporaire, residence_permanente, ...
    type_hebergement = Column(String(50), nullable=True)    # site_officiel, famille_accueil, informel, ...
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    migrant = relationship("Migrant", back_populates="geolocalisations")

    def __repr__(self):
        return f"<Geolocalisation({self.ville}, {self.type_mouvement})>"
