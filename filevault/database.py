#!/usr/bin/env python3

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from filevault.config import settings

Base = declarative_base()

_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, connect_args=_connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    """Call this once (e.g. on startup) to create tables if they don't exist."""
    # Models must be imported so they register on Base.metadata
    from filevault import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def dispose_db():
    """Close pooled connections on shutdown."""
    engine.dispose()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
