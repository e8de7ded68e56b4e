"""Alert model: alerts raised against a migrant record."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from sysmobembo.core.database import Base


# ── Enums ────────────────────────────────────────────────────────────────

class AlertSeverity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    DANGER = "danger"
    CRITICAL = "critical"


class AlertStatus(str, enum.Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"
    EXPIRED = "expired"


# ── Alert ────────────────────────────────────────────────────────────────

class Alert(Base):
    """An alert on a migrant (security, health, legal, administrative, humanitarian)."""
    __tablename__ = "alertes"

    uuid = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)

    migrant_uuid = Column(String(255), ForeignKey("migrants.uuid", ondelete="CASCADE"), nullable=False)

    type_alerte = Column(String(50), nullable=False)        # securite, sante, juridique, ...
    niveau_gravite = Column(String(20), nullable=False)     # AlertSeverity values
    titre = Column(String(300), nullable=True)
    description = Column(Text, nullable=True)
    statut = Column(String(20), default=AlertStatus.ACTIVE.value, nullable=False)

    migrant = relationship("Migrant", back_populates="alertes")

    def __repr__(self):
        return f"<Alert({self.type_alerte}, {self.niveau_gravite}, statut={self.statut})>"
