import os
os.environ["TESTING"] = "1"
# the eager report worker opens its own sessions through rpma.database.SessionLocal
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["CELERY_BROKER_URL"] = "memory://"
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path

import uuid
from datetime import datetime, timedelta, timezone

sys.path.append(str(Path(__file__).resolve().parents[2]))

from rpma.main import app
from rpma.database import Base, get_db
from rpma import models
from rpma.auth import issue_session_token
from rpma.statuses import UserRole

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def create_user(role: UserRole = UserRole.TECHNICIAN, *, is_active: bool = True) -> uuid.UUID:
    session = TestingSessionLocal()
    try:
        user = models.User(
            email=f"{role.value}-{uuid.uuid4()}@example.com",
            full_name=f"Test {role.value}",
            role=role,
            is_active=is_active,
        )
        session.add(user)
        session.commit()
        return user.id
    finally:
        session.close()


def auth_headers(role: UserRole = UserRole.TECHNICIAN, *, is_active: bool = True):
    """
    purpose: provision a user with a live session token for API tests
    outputs: tuple(headers dict, user id)
    """

    user_id = create_user(role, is_active=True)
    session = TestingSessionLocal()
    try:
        user = session.get(models.User, user_id)
        token = issue_session_token(session, user)
        if not is_active:
            user.is_active = False
            session.commit()
    finally:
        session.close()
    return {"Authorization": f"Bearer {token}"}, user_id


def simple_steps(count: int = 3, **overrides):
    """Step definitions without dwell time so API tests can complete them immediately."""

    steps = []
    for index in range(1, count + 1):
        definition = {
            "step_name": f"Step {index}",
            "step_type": "inspection",
            "is_mandatory": True,
            "requires_photos": False,
            "min_photos_required": 0,
            "max_photos_allowed": 0,
            "quality_checkpoints": [],
        }
        definition.update(overrides)
        steps.append(definition)
    return steps


def backdate_step(step_id, seconds: int) -> None:
    """Move a step's start time into the past to satisfy or probe its dwell time."""

    session = TestingSessionLocal()
    try:
        step = session.get(models.InterventionStep, uuid.UUID(str(step_id)))
        step.started_at = datetime.now(timezone.utc) - timedelta(seconds=seconds)
        session.commit()
    finally:
        session.close()
