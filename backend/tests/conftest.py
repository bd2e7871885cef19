"""
Test configuration and fixtures for task manager tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database dependency override
- Authentication helpers (JWT token generation)
- Common fixtures for users, teams, projects, and tasks
"""

import os
import sys
import logging
from datetime import timedelta
from typing import Callable, Generator, Dict, Optional

# The app engine is created at import time; keep it off disk
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from main import app
import models
from auth.security import hash_password, create_access_token

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    logger.debug("Creating test database")

    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def client(test_db: Session) -> TestClient:
    """
    Create FastAPI test client with database dependency override.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _create_user(db: Session, name: str, email: str, password: str) -> models.User:
    user = models.User(name=name, email=email, password_hash=hash_password(password))
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created user {email} with ID: {user.id}")
    return user


@pytest.fixture(scope="function")
def owner(test_db: Session) -> models.User:
    """
    Create the user that owns the default team, project and tasks.
    """
    return _create_user(test_db, "Owner User", "owner@test.com", "owner123")


@pytest.fixture(scope="function")
def another_user(test_db: Session) -> models.User:
    """
    Create another user for testing owner isolation.
    """
    return _create_user(test_db, "Another User", "another@test.com", "another123")


def create_auth_token(user: models.User, expires_delta: timedelta = None) -> str:
    """
    Helper to create JWT access token for a user.

    Args:
        user: User to create token for
        expires_delta: Optional expiration time override

    Returns:
        JWT access token string
    """
    logger.debug(f"Creating auth token for user {user.id}")
    token_data = {
        "sub": str(user.id),
        "email": user.email
    }
    return create_access_token(token_data, expires_delta)


@pytest.fixture(scope="function")
def auth_headers(owner: models.User) -> Dict[str, str]:
    """
    Create authorization headers for the owner.
    """
    return {"Authorization": f"Bearer {create_auth_token(owner)}"}


@pytest.fixture(scope="function")
def another_user_auth_headers(another_user: models.User) -> Dict[str, str]:
    """
    Create authorization headers for another user.
    """
    return {"Authorization": f"Bearer {create_auth_token(another_user)}"}


def build_team(db: Session, owner: models.User, name: str, members) -> models.Team:
    """
    Persist a team from (name, role, capacity) tuples, keeping their order.
    """
    team = models.Team(name=name, owner_id=owner.id)
    team.members = [
        models.TeamMember(name=member_name, role=role, capacity=capacity, position=position)
        for position, (member_name, role, capacity) in enumerate(members)
    ]
    db.add(team)
    db.commit()
    db.refresh(team)
    logger.info(f"Created team {name} with ID: {team.id}")
    return team


@pytest.fixture(scope="function")
def team(test_db: Session, owner: models.User) -> models.Team:
    """
    Create a three-member team: Alice (cap 2), Bob (cap 3), Carol (cap 1).
    """
    return build_team(test_db, owner, "Core Team", [
        ("Alice", "Developer", 2),
        ("Bob", "Developer", 3),
        ("Carol", "QA", 1),
    ])


@pytest.fixture(scope="function")
def other_team(test_db: Session, owner: models.User) -> models.Team:
    """
    Create a second team owned by the same user.
    """
    return build_team(test_db, owner, "Platform Team", [
        ("Dave", "SRE", 2),
        ("Erin", "SRE", 2),
    ])


@pytest.fixture(scope="function")
def project(test_db: Session, owner: models.User, team: models.Team) -> models.Project:
    """
    Create a project backed by the core team.
    """
    logger.debug("Creating test project")
    project = models.Project(
        name="Website Redesign",
        description="Refresh the public site",
        team_id=team.id,
        owner_id=owner.id
    )
    test_db.add(project)
    test_db.commit()
    test_db.refresh(project)
    logger.info(f"Created project with ID: {project.id}")
    return project


def member_named(team: models.Team, name: str) -> models.TeamMember:
    return next(member for member in team.members if member.name == name)


@pytest.fixture(scope="function")
def make_task(test_db: Session, owner: models.User, project: models.Project) -> Callable[..., models.Task]:
    """
    Factory creating tasks in the default project.

    Example:
        >>> task = make_task("Fix login", member=alice, priority=models.TaskPriority.high)
    """
    def _make_task(
        title: str,
        member: Optional[models.TeamMember] = None,
        priority: models.TaskPriority = models.TaskPriority.medium,
        status: models.TaskStatus = models.TaskStatus.pending,
        project_id: Optional[int] = None,
    ) -> models.Task:
        task = models.Task(
            title=title,
            project_id=project_id or project.id,
            assigned_member_id=member.id if member else None,
            priority=priority,
            status=status,
            owner_id=owner.id
        )
        test_db.add(task)
        test_db.commit()
        test_db.refresh(task)
        return task

    return _make_task
