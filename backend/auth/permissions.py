"""
Owner-scoped access helpers.

Teams, projects and tasks belong to exactly one owner. Lookups for another
owner's records report 404 rather than 403 so that their existence is not
revealed.
"""

import logging

from sqlalchemy.orm import Session
from fastapi import HTTPException, status

from models import User, Team, Project, Task

logger = logging.getLogger(__name__)


def get_owned_team(user: User, team_id: int, db: Session) -> Team:
    """
    Return a team owned by the user, or raise 404.

    Example:
        >>> team = get_owned_team(current_user, team_id, db)
    """
    team = db.query(Team).filter(Team.id == team_id, Team.owner_id == user.id).first()
    if team is None:
        logger.info(f"Team {team_id} not found for user {user.id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
    return team


def get_owned_project(user: User, project_id: int, db: Session) -> Project:
    """Return a project owned by the user, or raise 404."""
    project = db.query(Project).filter(
        Project.id == project_id, Project.owner_id == user.id
    ).first()
    if project is None:
        logger.info(f"Project {project_id} not found for user {user.id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project


def get_owned_task(user: User, task_id: int, db: Session) -> Task:
    """Return a task owned by the user, or raise 404."""
    task = db.query(Task).filter(Task.id == task_id, Task.owner_id == user.id).first()
    if task is None:
        logger.info(f"Task {task_id} not found for user {user.id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return task


def is_owned_team(user: User, team_id: int, db: Session) -> bool:
    """
    Check whether a team exists and belongs to the user.

    Used where a foreign team reference is a validation error (400) rather
    than a missing resource.
    """
    return db.query(Team.id).filter(Team.id == team_id, Team.owner_id == user.id).first() is not None
