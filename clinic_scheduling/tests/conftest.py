from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clinic_scheduling.app import auth, create_app
from clinic_scheduling.app.auth import create_access_token
from clinic_scheduling.app.dependencies import get_scheduling_engine
from clinic_scheduling.app.locks import InProcessTimelineLocks
from clinic_scheduling.app.models import Base
from clinic_scheduling.app.permissions import Caller
from clinic_scheduling.app.scheduling import SchedulingEngine

DOCTOR = Caller("doc-1", "doctor")
OTHER_DOCTOR = Caller("doc-2", "doctor")
PATIENT = Caller("pat-1", "patient")
OTHER_PATIENT = Caller("pat-2", "patient")
ADMIN = Caller("admin-1", "admin")

TEST_SECRET_KEY = "test-secret-key"


def at(hour, minute=0, second=0, day=15):
    return datetime(2030, 1, day, hour, minute, second)


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setattr(auth, "SECRET_KEY", TEST_SECRET_KEY)
    return TEST_SECRET_KEY


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def locks():
    return InProcessTimelineLocks(wait_seconds=0.2)


@pytest.fixture
def scheduler(session_factory, locks):
    return SchedulingEngine(session_factory, locks)


@pytest.fixture
def client(scheduler):
    app = create_app()
    app.dependency_overrides[get_scheduling_engine] = lambda: scheduler
    return TestClient(app)


def auth_header(caller):
    return {"Authorization": f"Bearer {create_access_token(caller.id, caller.role.value)}"}
