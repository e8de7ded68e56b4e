from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from sysmobembo.core.config import settings


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
    }


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_session_factory() -> sessionmaker:
    """Session factory handed to the indicator assembler (one session per builder)."""
    return SessionLocal
