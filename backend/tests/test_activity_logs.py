"""
Tests for activity log endpoints (/api/activity-logs).
"""

import logging
from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import models
import workload
from tests.conftest import member_named
from time_utils import utc_now

logger = logging.getLogger(__name__)


def _log(db: Session, owner_id: int, project_id: int, title: str, minutes_ago: int) -> models.ActivityLog:
    entry = models.ActivityLog(
        task_id=1,
        project_id=project_id,
        task_title=title,
        from_member="Alice",
        to_member="Bob",
        owner_id=owner_id,
        timestamp=utc_now() - timedelta(minutes=minutes_ago)
    )
    db.add(entry)
    db.commit()
    return entry


# ============== Listing Tests (4 tests) ==============


def test_logs_newest_first_with_default_limit(client: TestClient, test_db: Session, owner, project, auth_headers):
    """Ten entries by default, newest first."""
    for n in range(12):
        _log(test_db, owner.id, project.id, f"Task {n}", minutes_ago=n)

    response = client.get("/api/activity-logs", headers=auth_headers)

    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    titles = [entry["task_title"] for entry in response.json()]
    assert titles == [f"Task {n}" for n in range(10)]
    logger.info("✓ Default limit and order applied")


def test_logs_custom_limit(client: TestClient, test_db: Session, owner, project, auth_headers):
    """The limit parameter caps the result."""
    for n in range(5):
        _log(test_db, owner.id, project.id, f"Task {n}", minutes_ago=n)

    response = client.get("/api/activity-logs?limit=2", headers=auth_headers)

    assert [entry["task_title"] for entry in response.json()] == ["Task 0", "Task 1"]
    logger.info("✓ Custom limit applied")


def test_logs_filtered_by_project(client: TestClient, test_db: Session, owner, team, project, auth_headers):
    """The project variant only returns that project's entries."""
    other = models.Project(name="Other", team_id=team.id, owner_id=owner.id)
    test_db.add(other)
    test_db.commit()
    _log(test_db, owner.id, project.id, "Mine", minutes_ago=1)
    _log(test_db, owner.id, other.id, "Theirs", minutes_ago=0)

    response = client.get(f"/api/activity-logs/project/{project.id}", headers=auth_headers)

    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    assert [entry["task_title"] for entry in response.json()] == ["Mine"]
    logger.info("✓ Project filter applied")


def test_logs_scoped_to_owner(
    client: TestClient, test_db: Session, owner, project, another_user_auth_headers
):
    """Other users see neither the entries nor the project."""
    _log(test_db, owner.id, project.id, "Private", minutes_ago=0)

    listing = client.get("/api/activity-logs", headers=another_user_auth_headers)
    by_project = client.get(f"/api/activity-logs/project/{project.id}", headers=another_user_auth_headers)

    assert listing.json() == []
    assert by_project.status_code == 404
    logger.info("✓ Logs scoped to owner")


# ============== Nested Task Tests (1 test) ==============


def test_logs_embed_task_until_deleted(
    client: TestClient, test_db: Session, owner, team, project, make_task, auth_headers
):
    """Entries carry the current task while it exists and null once it is deleted."""
    alice = member_named(team, "Alice")
    for n in range(3):
        make_task(f"Alice {n}", member=alice, priority=models.TaskPriority.low)
    moves = workload.reassign_project_tasks(test_db, project.id, owner.id)
    moved_id = moves[0].task_id

    before = client.get("/api/activity-logs", headers=auth_headers).json()
    assert before[0]["task"]["id"] == moved_id
    assert before[0]["task"]["assigned_member_id"] == member_named(team, "Bob").id

    client.delete(f"/api/tasks/{moved_id}", headers=auth_headers)
    after = client.get("/api/activity-logs", headers=auth_headers).json()

    assert after[0]["task_id"] == moved_id
    assert after[0]["task"] is None
    logger.info("✓ Task embedded until deleted")
