"""Engine and session factory."""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from procurement.db.base import Base


def make_engine(database_url: Optional[str] = None, **kwargs) -> Engine:
    """Create an engine for ``database_url`` (defaults to the configured URL)."""
    if database_url is None:
        from procurement.core.config import get_settings

        database_url = get_settings().database_url
    return create_engine(database_url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def create_schema(engine: Engine) -> None:
    """Create all tables. Imports the models so they register with the metadata."""
    import procurement.db.models  # noqa: F401

    Base.metadata.create_all(engine)
