"""Pytest configuration: in-memory SQLite engine, sessions and a test client."""
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

# Must be set before experiment_engine.core.settings is imported.
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from experiment_engine.core.db import get_db
from experiment_engine.main import app
from experiment_engine.models.orm.base import Base
from experiment_engine.models.schemas.experiment import ExperimentCreateModel
from experiment_engine.services.experiment_service import ExperimentService


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_experiment(db):
    """Factory for STOPPED experiments with a window that contains now."""

    def _make(**overrides):
        now = datetime.utcnow()
        data = {
            "name": "Pricing Test A",
            "category": "pricing",
            "variant_a": {"discount": 0},
            "variant_b": {"discount": 0.10},
            "metric": "revenue_per_booking",
            "start_at": now - timedelta(days=1),
            "end_at": now + timedelta(days=30),
        }
        data.update(overrides)
        return ExperimentService(db).create_experiment(ExperimentCreateModel(**data))

    return _make
