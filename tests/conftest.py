from __future__ import annotations

import os
import tempfile
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="nevermiss-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP / 'nevermiss.db'}")
os.environ.setdefault("LOG_DIR", str(_TMP / "logs"))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nevermiss.infra import models  # noqa: F401
from nevermiss.infra.db import Base


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    yield factory
    engine.dispose()
