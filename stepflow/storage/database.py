"""Database connection and session management."""

from typing import Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..core.logging import get_logger

logger = get_logger(__name__)

# Global engine instance
_engine: Optional[Engine] = None

# Base class for all database models
Base = declarative_base()

# Session factory, bound to the engine when it is created
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


def get_database_engine(database_url: Optional[str] = None,
                        echo: bool = False,
                        connect_args: Optional[dict] = None) -> Engine:
    """Get or create the database engine."""
    global _engine

    if _engine is None:
        if database_url is None:
            from ..config import get_config
            config = get_config()
            database_url = config.database_url
            echo = echo or config.database_echo

        if connect_args is None:
            if database_url.startswith("sqlite"):
                connect_args = {"check_same_thread": False}
            else:
                connect_args = {}

        if database_url.startswith("sqlite"):
            _engine = create_engine(
                database_url,
                connect_args=connect_args,
                poolclass=StaticPool,
                echo=echo
            )
        else:
            _engine = create_engine(
                database_url,
                echo=echo,
                connect_args=connect_args
            )

        SessionLocal.configure(bind=_engine)
        logger.debug(f"Database engine created for {_engine.url.render_as_string(hide_password=True)}")

    return _engine


def configure_database(database_url: str, echo: bool = False) -> Engine:
    """Replace the global engine with one for ``database_url``."""
    reset_database_engine()
    return get_database_engine(database_url, echo=echo)


def reset_database_engine():
    """Reset the global database engine (mainly for testing)."""
    global _engine
    if _engine:
        _engine.dispose()
    _engine = None


def create_tables():
    """Create all database tables."""
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=get_database_engine())


def drop_tables():
    """Drop all database tables."""
    from . import models  # noqa: F401
    Base.metadata.drop_all(bind=get_database_engine())
