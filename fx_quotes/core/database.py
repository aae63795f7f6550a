"""
Database engine and session management for FX Quote Aggregator Service.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings
from .logging_config import create_logger

logger = create_logger(__name__)


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.
    SQLite URLs get thread-safe connection arguments since store calls
    run in worker threads; in-memory SQLite shares a single connection.
    """
    if database_url.startswith("sqlite"):
        engine_kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **engine_kwargs)

    return create_engine(
        database_url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=300
    )


# Create SQLAlchemy engine
engine = build_engine(settings.get_database_url(), echo=settings.db_echo)

# Create SessionLocal class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create Base class for models
Base = declarative_base()


def init_db(bind: Engine = engine) -> None:
    """
    Initialize database tables.
    Creates all tables defined in models.
    """
    from . import models  # noqa: F401  registers the tables on Base

    Base.metadata.create_all(bind=bind)
    logger.info("Database tables ready", extra={"tables": sorted(Base.metadata.tables)})

