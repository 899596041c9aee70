"""Shared test fixtures for Relevx backend tests."""

import os
import sys

import pytest

# Ensure backend (and this directory, for the fakes module) are on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.dirname(__file__))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from relevx.db.database import create_db_and_tables
from relevx.db.store import ResearchStore
from relevx.models.project import ResearchProject, ResearchUser


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def store(engine):
    return ResearchStore(engine)


@pytest.fixture
def make_project(store):
    """Factory: persist a project (and its owner) with overridable fields."""

    def _make(**overrides) -> ResearchProject:
        fields = {
            "user_id": "user-1",
            "title": "Solid-state batteries",
            "description": "Track commercial progress on solid-state EV batteries",
            "frequency": "daily",
            "delivery_time": "09:00",
            "timezone": "UTC",
            "status": "active",
            "min_results": 1,
            "max_results": 3,
            "relevancy_threshold": 60,
        }
        fields.update(overrides)
        if store.get_user(fields["user_id"]) is None:
            store.save_user(ResearchUser(id=fields["user_id"], email="owner@example.com"))
        return store.save_project(ResearchProject(**fields))

    return _make
