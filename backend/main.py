from fastapi import FastAPI, HTTPException, Depends, Query, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session, joinedload
from typing import List, Optional
import logging
import os

from database import get_db, engine, Base
import models
import schemas
import workload
from auth.routes import router as auth_router
from auth.dependencies import get_current_user
from auth.permissions import (
    get_owned_team,
    get_owned_project,
    get_owned_task,
    is_owned_team,
)

# Configure logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Smart Task Manager API",
    description="Teams, projects and tasks with capacity-aware workload balancing",
    version="1.0.0"
)

# CORS middleware for frontend
CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get(
        "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
    ).split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register authentication router
app.include_router(auth_router)


# ============== Startup ==============

@app.on_event("startup")
def create_tables():
    """Create database tables if they do not exist yet."""
    Base.metadata.create_all(bind=engine)
    logger.info(f"Database ready ({engine.dialect.name})")


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============== Helper Functions ==============

def apply_team_members(team: models.Team, members_in: List[schemas.TeamMemberIn]) -> None:
    """
    Replace a team's ordered member list.

    Entries carrying an id update that member in place so task assignments
    survive the edit. Entries without an id become new members. Members left
    out are removed, and their tasks become unassigned.
    """
    existing = {member.id: member for member in team.members}
    seen_ids = set()
    new_members = []

    for position, data in enumerate(members_in):
        if data.id is not None:
            if data.id in seen_ids:
                raise HTTPException(status_code=400, detail=f"Member {data.id} listed more than once")
            member = existing.get(data.id)
            if member is None:
                raise HTTPException(status_code=400, detail=f"Member {data.id} does not belong to this team")
            seen_ids.add(data.id)
            member.name = data.name
            member.role = data.role
            member.capacity = data.capacity
            member.position = position
        else:
            member = models.TeamMember(
                name=data.name,
                role=data.role,
                capacity=data.capacity,
                position=position
            )
        new_members.append(member)

    removed = [member_id for member_id in existing if member_id not in seen_ids]
    if removed:
        logger.info(f"Removing {len(removed)} member(s) from team {team.id}: {removed}")

    team.members = new_members


def validate_assigned_member(db: Session, project: models.Project, member_id: Optional[int]) -> None:
    """Reject an assignment to someone outside the project's team."""
    if member_id is None:
        return

    member = db.query(models.TeamMember).filter(models.TeamMember.id == member_id).first()
    if member is None or project.team_id is None or member.team_id != project.team_id:
        logger.info(f"Member {member_id} is not part of team {project.team_id} (project {project.id})")
        raise HTTPException(
            status_code=400,
            detail="Assigned member must belong to the project's team"
        )


def load_task(db: Session, task_id: int) -> models.Task:
    return (
        db.query(models.Task)
        .options(joinedload(models.Task.assigned_member), joinedload(models.Task.project))
        .filter(models.Task.id == task_id)
        .first()
    )


# ============== Teams ==============

@app.get("/api/teams", response_model=List[schemas.Team])
def list_teams(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List all teams owned by the current user."""
    logger.debug(f"User {current_user.id} listing teams")

    teams = (
        db.query(models.Team)
        .options(joinedload(models.Team.members))
        .filter(models.Team.owner_id == current_user.id)
        .order_by(models.Team.id)
        .all()
    )

    logger.info(f"User {current_user.id} retrieved {len(teams)} teams")
    return teams


@app.get("/api/teams/{team_id}", response_model=schemas.Team)
def get_team(
    team_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get a team with its ordered members."""
    logger.debug(f"User {current_user.id} requesting team {team_id}")
    return get_owned_team(current_user, team_id, db)


@app.post("/api/teams", response_model=schemas.Team, status_code=status.HTTP_201_CREATED)
def create_team(
    team: schemas.TeamCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a new team with an ordered member list."""
    logger.debug(f"User {current_user.id} creating team: {team.name}")

    if any(member.id is not None for member in team.members):
        raise HTTPException(status_code=400, detail="New team members cannot carry an id")

    db_team = models.Team(name=team.name, owner_id=current_user.id)
    apply_team_members(db_team, team.members)
    db.add(db_team)
    db.commit()
    db.refresh(db_team)

    logger.info(f"Team created: {db_team.name} (ID: {db_team.id}) with {len(db_team.members)} members")
    return db_team


@app.put("/api/teams/{team_id}", response_model=schemas.Team)
def update_team(
    team_id: int,
    team_update: schemas.TeamUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update team name and/or replace its member list."""
    logger.debug(f"User {current_user.id} updating team {team_id}")

    team = get_owned_team(current_user, team_id, db)

    update_data = team_update.model_dump(exclude_unset=True)
    if "name" in update_data:
        if team_update.name is None:
            raise HTTPException(status_code=400, detail="Team name cannot be empty")
        team.name = team_update.name
    if "members" in update_data:
        if team_update.members is None:
            raise HTTPException(status_code=400, detail="Members must be a list")
        apply_team_members(team, team_update.members)

    db.commit()
    db.refresh(team)

    logger.info(f"Team updated: {team.name} (ID: {team_id})")
    return team


@app.delete("/api/teams/{team_id}")
def delete_team(
    team_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a team. Its projects are kept and detached from the team."""
    logger.debug(f"User {current_user.id} deleting team {team_id}")

    team = get_owned_team(current_user, team_id, db)
    detached = len(team.projects)

    # Projects get team_id = NULL; members are deleted and their tasks unassigned
    db.delete(team)
    db.commit()

    logger.info(f"Team deleted: {team_id}. Detached {detached} project(s).")
    return {"message": "Team deleted successfully", "detached_projects": detached}


# ============== Projects ==============

@app.get("/api/projects", response_model=List[schemas.Project])
def list_projects(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List all projects owned by the current user."""
    logger.debug(f"User {current_user.id} listing projects")

    projects = (
        db.query(models.Project)
        .options(joinedload(models.Project.team).joinedload(models.Team.members))
        .filter(models.Project.owner_id == current_user.id)
        .order_by(models.Project.id)
        .all()
    )

    logger.info(f"User {current_user.id} retrieved {len(projects)} projects")
    return projects


@app.get("/api/projects/{project_id}", response_model=schemas.Project)
def get_project(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get a project with its team."""
    logger.debug(f"User {current_user.id} requesting project {project_id}")
    return get_owned_project(current_user, project_id, db)


@app.post("/api/projects", response_model=schemas.Project, status_code=status.HTTP_201_CREATED)
def create_project(
    project: schemas.ProjectCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a project under one of the user's teams."""
    logger.debug(f"User {current_user.id} creating project: {project.name}")

    if not is_owned_team(current_user, project.team_id, db):
        logger.info(f"Team {project.team_id} is not owned by user {current_user.id}")
        raise HTTPException(status_code=400, detail="Invalid team")

    db_project = models.Project(**project.model_dump(), owner_id=current_user.id)
    db.add(db_project)
    db.commit()
    db.refresh(db_project)

    logger.info(f"Project created: {db_project.name} (ID: {db_project.id}) by user {current_user.id}")
    return db_project


@app.put("/api/projects/{project_id}", response_model=schemas.Project)
def update_project(
    project_id: int,
    project_update: schemas.ProjectUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Update a project.

    Moving the project to another team unassigns tasks whose member is not in
    the new team.
    """
    logger.debug(f"User {current_user.id} updating project {project_id}")

    project = get_owned_project(current_user, project_id, db)
    update_data = project_update.model_dump(exclude_unset=True)

    if "name" in update_data and update_data["name"] is None:
        raise HTTPException(status_code=400, detail="Project name cannot be empty")
    if "description" in update_data and update_data["description"] is None:
        update_data["description"] = ""

    if "team_id" in update_data:
        new_team_id = update_data["team_id"]
        if new_team_id is None:
            raise HTTPException(status_code=400, detail="Team cannot be empty")
        if not is_owned_team(current_user, new_team_id, db):
            raise HTTPException(status_code=400, detail="Invalid team")

        if new_team_id != project.team_id:
            member_ids = {
                row.id for row in
                db.query(models.TeamMember.id)
                .filter(models.TeamMember.team_id == new_team_id)
                .all()
            }
            stranded = (
                db.query(models.Task)
                .filter(
                    models.Task.project_id == project_id,
                    models.Task.assigned_member_id.isnot(None)
                )
                .all()
            )
            unassigned = 0
            for task in stranded:
                if task.assigned_member_id not in member_ids:
                    task.assigned_member_id = None
                    unassigned += 1
            if unassigned:
                logger.info(
                    f"Auto-unassigned {unassigned} task(s) moving project {project_id} "
                    f"from team {project.team_id} to team {new_team_id}"
                )

    for key, value in update_data.items():
        setattr(project, key, value)

    db.commit()
    db.refresh(project)

    logger.info(f"Project updated: {project.name} (ID: {project_id})")
    return project


@app.delete("/api/projects/{project_id}")
def delete_project(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a project and its tasks. Activity logs are kept."""
    logger.debug(f"User {current_user.id} deleting project {project_id}")

    project = get_owned_project(current_user, project_id, db)
    db.delete(project)
    db.commit()

    logger.info(f"Project {project_id} deleted by user {current_user.id}")
    return {"message": "Project deleted successfully"}


# ============== Tasks ==============

@app.get("/api/tasks", response_model=List[schemas.Task])
def list_tasks(
    current_user: models.User = Depends(get_current_user),
    project_id: Optional[int] = Query(None),
    member: Optional[str] = Query(None, description="Member id, or 'unassigned'"),
    status: Optional[schemas.TaskStatus] = Query(None),
    db: Session = Depends(get_db)
):
    """List the user's tasks, newest first."""
    logger.debug(f"User {current_user.id} listing tasks: project={project_id}, member={member}, status={status}")

    query = (
        db.query(models.Task)
        .options(joinedload(models.Task.assigned_member), joinedload(models.Task.project))
        .filter(models.Task.owner_id == current_user.id)
    )

    if project_id is not None:
        query = query.filter(models.Task.project_id == project_id)
    if status is not None:
        query = query.filter(models.Task.status == models.TaskStatus(status.value))
    if member is not None:
        if member == "unassigned":
            query = query.filter(models.Task.assigned_member_id.is_(None))
        else:
            try:
                member_id = int(member)
            except ValueError:
                raise HTTPException(status_code=400, detail="member must be an id or 'unassigned'")
            query = query.filter(models.Task.assigned_member_id == member_id)

    tasks = query.order_by(models.Task.created_at.desc(), models.Task.id.desc()).all()

    logger.info(f"User {current_user.id} retrieved {len(tasks)} tasks")
    return tasks


@app.get("/api/tasks/workload/{project_id}", response_model=List[schemas.MemberWorkload])
def get_project_workload(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Current open-task load and overload flag for every member of the project's team."""
    logger.debug(f"User {current_user.id} requesting workload for project {project_id}")

    try:
        entries = workload.compute_project_workload(db, project_id, current_user.id)
    except workload.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return [schemas.MemberWorkload.model_validate(entry) for entry in entries]


@app.get("/api/tasks/{task_id}", response_model=schemas.Task)
def get_task(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get a single task."""
    logger.debug(f"User {current_user.id} requesting task {task_id}")
    return get_owned_task(current_user, task_id, db)


@app.post("/api/tasks", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def create_task(
    task: schemas.TaskCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a task in one of the user's projects."""
    logger.info(f"User {current_user.id} creating task: {task.title} in project {task.project_id}")

    project = db.query(models.Project).filter(
        models.Project.id == task.project_id,
        models.Project.owner_id == current_user.id
    ).first()
    if project is None:
        logger.info(f"Project {task.project_id} is not owned by user {current_user.id}")
        raise HTTPException(status_code=400, detail="Invalid project")

    validate_assigned_member(db, project, task.assigned_member_id)

    task_data = task.model_dump()
    task_data["priority"] = models.TaskPriority(task.priority.value)
    task_data["status"] = models.TaskStatus(task.status.value)

    db_task = models.Task(**task_data, owner_id=current_user.id)
    db.add(db_task)
    db.commit()

    logger.info(f"Task created successfully: id={db_task.id}")
    return load_task(db, db_task.id)


@app.put("/api/tasks/{task_id}", response_model=schemas.Task)
def update_task(
    task_id: int,
    task_update: schemas.TaskUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update a task. An explicit null assigned_member_id unassigns it."""
    logger.info(f"User {current_user.id} updating task {task_id}")

    task = get_owned_task(current_user, task_id, db)
    update_data = task_update.model_dump(exclude_unset=True)

    for field_name in ("title", "priority", "status"):
        if field_name in update_data and update_data[field_name] is None:
            raise HTTPException(status_code=400, detail=f"{field_name} cannot be null")

    if update_data.get("assigned_member_id") is not None:
        validate_assigned_member(db, task.project, update_data["assigned_member_id"])

    if "priority" in update_data:
        update_data["priority"] = models.TaskPriority(update_data["priority"].value)
    if "status" in update_data:
        update_data["status"] = models.TaskStatus(update_data["status"].value)
    if "description" in update_data and update_data["description"] is None:
        update_data["description"] = ""

    for key, value in update_data.items():
        setattr(task, key, value)

    db.commit()

    logger.info(f"Task {task_id} updated successfully")
    return load_task(db, task_id)


@app.delete("/api/tasks/{task_id}")
def delete_task(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a task. Its activity log entries are kept."""
    logger.debug(f"User {current_user.id} deleting task {task_id}")

    task = get_owned_task(current_user, task_id, db)
    db.delete(task)
    db.commit()

    logger.info(f"Task {task_id} deleted by user {current_user.id}")
    return {"message": "Task deleted successfully"}


# ============== Assignment ==============

@app.post("/api/tasks/auto-assign/{project_id}", response_model=schemas.Task)
def auto_assign_task(
    project_id: int,
    request: schemas.AutoAssignRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Assign a task to the least-loaded member of the project's team."""
    logger.info(f"User {current_user.id} auto-assigning task {request.task_id} in project {project_id}")

    try:
        task = workload.auto_assign_task(db, project_id, request.task_id, current_user.id)
    except workload.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except workload.NoMembersAvailableError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return load_task(db, task.id)


@app.post("/api/tasks/reassign/{project_id}", response_model=schemas.ReassignmentResult)
def reassign_tasks(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Move Low/Medium tasks off overloaded members onto members with spare capacity.

    Each move is committed and logged on its own. If a move fails to persist,
    the moves already committed are returned in the 500 error detail.
    """
    logger.info(f"User {current_user.id} reassigning tasks in project {project_id}")

    try:
        moves = workload.reassign_project_tasks(db, project_id, current_user.id)
    except workload.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except workload.ReassignmentInterrupted as e:
        completed = [to_record(move).model_dump(by_alias=True) for move in e.completed]
        raise HTTPException(
            status_code=500,
            detail={
                "message": f"Reassignment failed after {len(completed)} task(s) were moved",
                "moved_count": len(completed),
                "reassignments": completed,
            }
        )

    return schemas.ReassignmentResult(
        message=f"{len(moves)} task(s) reassigned successfully",
        moved_count=len(moves),
        reassignments=[to_record(move) for move in moves],
    )


def to_record(move: workload.Move) -> schemas.ReassignmentRecord:
    return schemas.ReassignmentRecord(
        task_id=move.task_id,
        task_title=move.task_title,
        from_member=move.from_member,
        to_member=move.to_member,
    )


# ============== Activity Logs ==============

@app.get("/api/activity-logs", response_model=List[schemas.ActivityLog])
def list_activity_logs(
    current_user: models.User = Depends(get_current_user),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """Most recent reassignment log entries of the user."""
    logger.debug(f"User {current_user.id} listing activity logs (limit={limit})")

    return (
        db.query(models.ActivityLog)
        .options(joinedload(models.ActivityLog.task))
        .filter(models.ActivityLog.owner_id == current_user.id)
        .order_by(models.ActivityLog.timestamp.desc(), models.ActivityLog.id.desc())
        .limit(limit)
        .all()
    )


@app.get("/api/activity-logs/project/{project_id}", response_model=List[schemas.ActivityLog])
def list_project_activity_logs(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """Most recent reassignment log entries of one project."""
    logger.debug(f"User {current_user.id} listing activity logs for project {project_id} (limit={limit})")

    get_owned_project(current_user, project_id, db)

    return (
        db.query(models.ActivityLog)
        .options(joinedload(models.ActivityLog.task))
        .filter(
            models.ActivityLog.owner_id == current_user.id,
            models.ActivityLog.project_id == project_id
        )
        .order_by(models.ActivityLog.timestamp.desc(), models.ActivityLog.id.desc())
        .limit(limit)
        .all()
    )


# ============== Dashboard Stats ==============

@app.get("/api/dashboard/stats", response_model=schemas.DashboardStats)
def get_dashboard_stats(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Totals, per-member load across all of the user's teams, and recent reassignments."""
    logger.debug(f"User {current_user.id} requesting dashboard stats")

    total_projects = db.query(models.Project).filter(models.Project.owner_id == current_user.id).count()
    total_tasks = db.query(models.Task).filter(models.Task.owner_id == current_user.id).count()

    teams = (
        db.query(models.Team)
        .options(joinedload(models.Team.members))
        .filter(models.Team.owner_id == current_user.id)
        .order_by(models.Team.id)
        .all()
    )
    open_tasks = (
        db.query(models.Task)
        .filter(
            models.Task.owner_id == current_user.id,
            models.Task.status != models.TaskStatus.done
        )
        .all()
    )

    team_summary = [
        schemas.TeamSummaryEntry(
            team_id=team.id,
            team_name=team.name,
            member_id=entry.member_id,
            member_name=entry.name,
            role=entry.role,
            capacity=entry.capacity,
            current_tasks=entry.current_tasks,
            is_overloaded=entry.is_overloaded,
        )
        for team in teams
        for entry in workload.compute_workload(team.members, open_tasks)
    ]

    recent_logs = (
        db.query(models.ActivityLog)
        .options(joinedload(models.ActivityLog.task))
        .filter(models.ActivityLog.owner_id == current_user.id)
        .order_by(models.ActivityLog.timestamp.desc(), models.ActivityLog.id.desc())
        .limit(5)
        .all()
    )

    return schemas.DashboardStats(
        total_projects=total_projects,
        total_tasks=total_tasks,
        team_summary=team_summary,
        recent_reassignments=[schemas.ActivityLog.model_validate(log) for log in recent_logs],
    )
