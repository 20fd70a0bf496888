from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker

from nevermiss.config import SETTINGS

# Repositories also run on worker threads through the async storage adapter.
_connect_args = {"check_same_thread": False} if SETTINGS.database_url.startswith("sqlite") else {}

engine = create_engine(SETTINGS.database_url, pool_pre_ping=True, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()


def init_db() -> None:
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))


def create_schema() -> None:
    """Create missing tables straight from the models."""
    from . import models  # noqa: F401

    Base.metadata.create_all(engine)
