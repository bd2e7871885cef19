"""
Workload balancing for project teams.

This module provides:
- Workload calculation: per-member count of open (non-Done) tasks and overload flag
- Auto-assignment: pick the least-loaded member for a single task
- Reassignment: a greedy single pass that moves Low/Medium tasks away from
  overloaded members and records every move in the activity log

The calculation and selection helpers are pure. The service functions at the
bottom load state through a SQLAlchemy session, always scoped to one owner.
"""

import logging
import math
import threading
import weakref
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

import models

logger = logging.getLogger(__name__)


# ============== Errors ==============

class WorkloadError(Exception):
    """Base class for workload operation failures."""


class NotFoundError(WorkloadError):
    """Project, team or task is absent or belongs to another owner."""

    def __init__(self, entity: str):
        self.entity = entity
        super().__init__(f"{entity} not found")


class NoMembersAvailableError(WorkloadError):
    """No team member can receive a task."""


class ReassignmentInterrupted(WorkloadError):
    """
    A persistence failure stopped a reassignment pass.

    Moves committed before the failure are kept and listed in ``completed``.
    """

    def __init__(self, completed: List["Move"], cause: Exception):
        self.completed = completed
        self.cause = cause
        super().__init__(f"Reassignment stopped after {len(completed)} move(s): {cause}")


# ============== Value types ==============

@dataclass
class MemberWorkload:
    member_id: int
    name: str
    role: str
    capacity: int
    current_tasks: int

    @property
    def is_overloaded(self) -> bool:
        return self.current_tasks > self.capacity


@dataclass
class Move:
    task_id: int
    task_title: str
    from_member: str
    to_member: str


@dataclass
class TaskRef:
    task_id: int
    title: str
    priority: models.TaskPriority


@dataclass
class MemberSlot:
    """
    One member's open tasks, threaded through a reassignment pass.

    Holds plain values read before the first commit; commits expire ORM
    instances and rows may vanish under a concurrent edit.
    """
    member_id: int
    name: str
    capacity: int
    tasks: List[TaskRef] = field(default_factory=list)


# ============== Pure helpers ==============

def is_open(task: models.Task) -> bool:
    return task.status != models.TaskStatus.done


def load_ratio(task_count: int, capacity: int) -> float:
    """
    Load of a member as tasks per unit of capacity.

    A zero-capacity member is treated as infinitely loaded, including when it
    holds no tasks, so it is never picked to receive work.
    """
    if capacity <= 0:
        return math.inf
    return task_count / capacity


def compute_workload(
    members: Sequence[models.TeamMember], tasks: Iterable[models.Task]
) -> List[MemberWorkload]:
    """
    Count open tasks per member.

    Every member is reported, in team order, including members with no tasks.
    Done tasks and tasks assigned outside the team are ignored.
    """
    counts = Counter(
        task.assigned_member_id
        for task in tasks
        if task.assigned_member_id is not None and is_open(task)
    )
    return [
        MemberWorkload(
            member_id=member.id,
            name=member.name,
            role=member.role,
            capacity=member.capacity,
            current_tasks=counts.get(member.id, 0),
        )
        for member in members
    ]


def pick_least_loaded(workload: Sequence[MemberWorkload]) -> MemberWorkload:
    """
    Return the member with the lowest load ratio.

    Ties go to the first member found in team order.

    Raises:
        NoMembersAvailableError: team is empty or every member has zero capacity
    """
    if not workload:
        raise NoMembersAvailableError("No team members available")

    selected = None
    min_load = math.inf
    for entry in workload:
        load = load_ratio(entry.current_tasks, entry.capacity)
        if load < min_load:
            min_load = load
            selected = entry

    if selected is None:
        raise NoMembersAvailableError("No team member has capacity for new tasks")
    return selected


def build_slots(
    members: Sequence[models.TeamMember], tasks: Iterable[models.Task]
) -> List[MemberSlot]:
    """Group open tasks under their assigned member, keeping team and task order."""
    slots = [
        MemberSlot(member_id=member.id, name=member.name, capacity=member.capacity)
        for member in members
    ]
    by_member_id: Dict[int, MemberSlot] = {slot.member_id: slot for slot in slots}
    for task in tasks:
        if task.assigned_member_id is None or not is_open(task):
            continue
        slot = by_member_id.get(task.assigned_member_id)
        if slot is not None:
            slot.tasks.append(TaskRef(task_id=task.id, title=task.title, priority=task.priority))
    return slots


def find_destination(slots: Sequence[MemberSlot], source: MemberSlot) -> Optional[MemberSlot]:
    """
    Pick the other member strictly under capacity with the lowest load ratio.

    Ties go to the first member found. Returns None when nobody has room.
    """
    target = None
    min_load = math.inf
    for slot in slots:
        if slot is source or len(slot.tasks) >= slot.capacity:
            continue
        load = load_ratio(len(slot.tasks), slot.capacity)
        if load < min_load:
            min_load = load
            target = slot
    return target


# ============== Reassignment engine ==============

def rebalance(db: Session, slots: List[MemberSlot], project_id: int, owner_id: int) -> List[Move]:
    """
    Move excess Low/Medium tasks off overloaded members in one greedy pass.

    Members are visited in team order. Each committed move updates ``slots``
    immediately, so later choices see the new load. High-priority tasks never
    move, and a task with no destination stays where it is.

    Every move is its own unit of work: the task update and its activity log
    entry are committed together. The update only applies while the task is
    still held by the source member.

    Raises:
        ReassignmentInterrupted: a move failed to persist, or its task was
            deleted or reassigned concurrently; earlier moves stay committed
    """
    moves: List[Move] = []

    for source in slots:
        if len(source.tasks) <= source.capacity:
            continue

        excess = len(source.tasks) - source.capacity
        candidates = [
            task for task in source.tasks if task.priority != models.TaskPriority.high
        ][:excess]
        logger.debug(
            f"Member {source.member_id} ({source.name}) overloaded by {excess}, "
            f"{len(candidates)} movable task(s)"
        )

        for task in candidates:
            target = find_destination(slots, source)
            if target is None:
                logger.debug(f"No destination with spare capacity for task {task.task_id}")
                continue

            move = Move(
                task_id=task.task_id,
                task_title=task.title,
                from_member=source.name,
                to_member=target.name,
            )

            try:
                updated = (
                    db.query(models.Task)
                    .filter(
                        models.Task.id == task.task_id,
                        models.Task.assigned_member_id == source.member_id
                    )
                    .update({models.Task.assigned_member_id: target.member_id}, synchronize_session=False)
                )
                if updated != 1:
                    raise StaleDataError(f"Task {task.task_id} was deleted or reassigned during the pass")
                db.add(models.ActivityLog(
                    task_id=move.task_id,
                    project_id=project_id,
                    task_title=move.task_title,
                    from_member=move.from_member,
                    to_member=move.to_member,
                    owner_id=owner_id,
                ))
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to move task {move.task_id} in project {project_id}: {e}")
                raise ReassignmentInterrupted(moves, e) from e

            source.tasks.remove(task)
            target.tasks.append(task)
            moves.append(move)
            logger.info(
                f"Task {move.task_id} moved from '{move.from_member}' to '{move.to_member}' "
                f"(project {project_id})"
            )

    return moves


# ============== Per-project serialization ==============

# Entries drop out once no pass holds or waits on the lock
_project_locks: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()
_project_locks_guard = threading.Lock()


@contextmanager
def project_lock(project_id: int):
    """Serialize assignment-changing passes on one project within this process."""
    with _project_locks_guard:
        lock = _project_locks.setdefault(project_id, threading.Lock())
    with lock:
        yield


# ============== Service operations ==============

def get_project_and_team(db: Session, project_id: int, owner_id: int):
    """
    Load an owned project and its team.

    Raises:
        NotFoundError: project or team missing, or owned by someone else
    """
    project = db.query(models.Project).filter(
        models.Project.id == project_id,
        models.Project.owner_id == owner_id
    ).first()
    if project is None:
        raise NotFoundError("Project")

    team = None
    if project.team_id is not None:
        team = db.query(models.Team).filter(
            models.Team.id == project.team_id,
            models.Team.owner_id == owner_id
        ).first()
    if team is None:
        raise NotFoundError("Team")

    return project, team


def get_open_tasks(db: Session, project_id: int, owner_id: int) -> List[models.Task]:
    """Non-Done tasks of a project in creation order."""
    return (
        db.query(models.Task)
        .filter(
            models.Task.project_id == project_id,
            models.Task.owner_id == owner_id,
            models.Task.status != models.TaskStatus.done
        )
        .order_by(models.Task.id)
        .all()
    )


def compute_project_workload(db: Session, project_id: int, owner_id: int) -> List[MemberWorkload]:
    project, team = get_project_and_team(db, project_id, owner_id)
    workload = compute_workload(team.members, get_open_tasks(db, project.id, owner_id))
    logger.debug(f"Computed workload for {len(workload)} member(s) of project {project_id}")
    return workload


def auto_assign_task(db: Session, project_id: int, task_id: int, owner_id: int) -> models.Task:
    """
    Assign a task to the least-loaded member of its project's team.

    No activity log entry is written; only reassignment passes are logged.

    Raises:
        NotFoundError: task (in this project), project or team not found
        NoMembersAvailableError: no member can take the task
    """
    with project_lock(project_id):
        task = db.query(models.Task).filter(
            models.Task.id == task_id,
            models.Task.owner_id == owner_id
        ).first()
        if task is None:
            raise NotFoundError("Task")

        project, team = get_project_and_team(db, project_id, owner_id)
        if task.project_id != project.id:
            raise NotFoundError("Task")

        workload = compute_workload(team.members, get_open_tasks(db, project.id, owner_id))
        selected = pick_least_loaded(workload)

        task.assigned_member_id = selected.member_id
        db.commit()
        db.refresh(task)

    logger.info(f"Task {task_id} auto-assigned to member {selected.member_id} ({selected.name})")
    return task


def reassign_project_tasks(db: Session, project_id: int, owner_id: int) -> List[Move]:
    """
    Run one reassignment pass over a project.

    Raises:
        NotFoundError: project or team not found
        ReassignmentInterrupted: a move failed to persist
    """
    with project_lock(project_id):
        project, team = get_project_and_team(db, project_id, owner_id)
        slots = build_slots(team.members, get_open_tasks(db, project.id, owner_id))
        moves = rebalance(db, slots, project.id, owner_id)

    logger.info(f"Reassignment pass on project {project_id} moved {len(moves)} task(s)")
    return moves
