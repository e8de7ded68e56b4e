"""
Database initialization and table creation script.
Run this once to set up the schema read by the indicator engine.
"""
import logging

from sysmobembo.core.database import engine, Base
from sysmobembo.models.migrant import Migrant  # noqa: F401
from sysmobembo.models.motif_deplacement import MotifDeplacement  # noqa: F401
from sysmobembo.models.geolocalisation import Geolocalisation  # noqa: F401
from sysmobembo.models.alert import Alert  # noqa: F401

logger = logging.getLogger(__name__)


def init_db(bind=None):
    """Create all tables."""
    Base.metadata.create_all(bind=bind or engine)
    logger.info("All tables created successfully")


def drop_all(bind=None):
    """Drop all tables (use with caution)."""
    Base.metadata.drop_all(bind=bind or engine)
    logger.info("All tables dropped")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
    print("Database initialized successfully!")
