"""
Global test configuration and fixtures.

Services run against an in-memory SQLite database (one connection shared
through ``StaticPool``); Supabase is always mocked; uploaded files go to a
per-test temporary directory.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")

import uuid
from typing import Generator, Sequence, Union
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stepwise.api.fastapi.middlewares.auth import get_current_user
from stepwise.core.database import Base, get_db
from stepwise.models.db.users import User
from stepwise.models.enums import UserRole
from stepwise.models.schemas.workflows import WorkflowCreate, WorkflowStepCreate
from stepwise.services.attachments.storage import LocalFileStorage, get_file_storage
from stepwise.services.executions.execution_service import ExecutionService
from stepwise.services.executions.helpers import utcnow
from stepwise.services.workflows.workflow_service import WorkflowService


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """Fresh schema per test on a single shared in-memory connection."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_user(db_session):
    def _make(email: str = "owner@example.com", role: UserRole = UserRole.USER, is_active: bool = True) -> User:
        now = utcnow()
        user = User(
            email=email,
            supabase_user_id=str(uuid.uuid4()),
            first_name="Test",
            last_name="User",
            role=role.value,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def user(make_user) -> User:
    return make_user()


@pytest.fixture
def other_user(make_user) -> User:
    return make_user(email="stranger@example.com")


@pytest.fixture
def storage(tmp_path) -> LocalFileStorage:
    return LocalFileStorage(str(tmp_path / "uploads"))


@pytest.fixture
def observer() -> MagicMock:
    return MagicMock()


@pytest.fixture
def make_workflow(db_session):
    """Create a workflow through the service.

    ``steps`` takes ``(name, is_required)`` pairs numbered from 1, or
    ready-made ``WorkflowStepCreate`` payloads when dependencies matter.
    """

    def _make(
        owner: User,
        steps: Sequence[Union[tuple, WorkflowStepCreate]] = (("Prepare", True), ("Ship", True)),
        name: str = "Release checklist",
        is_active: bool = True,
    ):
        payload_steps = [
            step if isinstance(step, WorkflowStepCreate)
            else WorkflowStepCreate(name=step[0], order=index, is_required=step[1])
            for index, step in enumerate(steps, start=1)
        ]
        payload = WorkflowCreate(name=name, is_active=is_active, steps=payload_steps)
        return WorkflowService(db=db_session).create_workflow(owner, payload)

    return _make


@pytest.fixture
def execution_service(db_session, storage, observer) -> ExecutionService:
    return ExecutionService(db=db_session, storage=storage, observer=observer)


@pytest.fixture
def client(db_session, user, storage) -> Generator[TestClient, None, None]:
    """API client authenticated as ``user``; lifespan (table creation) is not run."""
    from stepwise.main import app

    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[get_file_storage] = lambda: storage
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()
