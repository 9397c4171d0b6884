"""
Database Engine & Session Management
SQLAlchemy setup for the durable payment-session audit store.
"""
import os
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from paygate.config import get_settings

Base = declarative_base()


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; ensures the SQLite data directory exists."""
    connect_args = {}
    if database_url.startswith("sqlite:///"):
        os.makedirs(os.path.dirname(database_url.replace("sqlite:///", "")) or ".", exist_ok=True)
        connect_args["check_same_thread"] = False  # Writes come from worker threads

    return create_engine(database_url, connect_args=connect_args, echo=echo)


@lru_cache()
def get_engine() -> Engine:
    settings = get_settings()
    return create_db_engine(settings.DATABASE_URL, echo=settings.DEBUG)


@lru_cache()
def get_session_factory() -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def init_db(engine: Engine | None = None):
    """Create all tables. Called once at application startup."""
    from paygate.models import session as _session_model   # noqa: F401
    from paygate.models import audit as _audit_model       # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
