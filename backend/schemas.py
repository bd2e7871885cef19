from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional, List
from enum import Enum


class TaskPriority(str, Enum):
    low = "Low"
    medium = "Medium"
    high = "High"


class TaskStatus(str, Enum):
    pending = "Pending"
    in_progress = "In Progress"
    done = "Done"


# User schemas
class User(BaseModel):
    id: int
    name: str
    email: EmailStr
    created_at: datetime

    class Config:
        from_attributes = True


# Team member schemas
class TeamMemberBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    role: str = Field(..., min_length=1, max_length=255)
    capacity: int = Field(3, ge=0, le=5, description="Max concurrent non-Done tasks (0-5)")

    class Config:
        str_strip_whitespace = True


class TeamMemberIn(TeamMemberBase):
    # Existing member id; omit to add a new member
    id: Optional[int] = None


class TeamMember(TeamMemberBase):
    id: int

    class Config:
        from_attributes = True


# Team schemas
class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    members: List[TeamMemberIn] = Field(default_factory=list)

    class Config:
        str_strip_whitespace = True


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    members: Optional[List[TeamMemberIn]] = None

    class Config:
        str_strip_whitespace = True


class Team(BaseModel):
    id: int
    name: str
    owner_id: int
    members: List[TeamMember] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Project schemas
class ProjectBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""

    class Config:
        str_strip_whitespace = True


class ProjectCreate(ProjectBase):
    team_id: int


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    team_id: Optional[int] = None

    class Config:
        str_strip_whitespace = True


class Project(ProjectBase):
    id: int
    team_id: Optional[int]
    team: Optional[Team] = None
    owner_id: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Task schemas
class TaskBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    priority: TaskPriority = TaskPriority.medium
    status: TaskStatus = TaskStatus.pending

    class Config:
        str_strip_whitespace = True


class TaskCreate(TaskBase):
    project_id: int
    assigned_member_id: Optional[int] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    assigned_member_id: Optional[int] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None

    class Config:
        str_strip_whitespace = True


class ProjectSummary(BaseModel):
    id: int
    name: str
    team_id: Optional[int] = None

    class Config:
        from_attributes = True


class Task(TaskBase):
    id: int
    project_id: int
    project: Optional[ProjectSummary] = None
    assigned_member_id: Optional[int] = None
    assigned_member: Optional[TeamMember] = None
    owner_id: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Workload schemas
class MemberWorkload(BaseModel):
    member_id: int
    name: str
    role: str
    capacity: int
    current_tasks: int
    is_overloaded: bool

    class Config:
        from_attributes = True


class AutoAssignRequest(BaseModel):
    task_id: int


class ReassignmentRecord(BaseModel):
    task_id: int
    task_title: str
    from_member: str = Field(..., alias="from")
    to_member: str = Field(..., alias="to")

    class Config:
        from_attributes = True
        populate_by_name = True


class ReassignmentResult(BaseModel):
    message: str
    moved_count: int
    reassignments: List[ReassignmentRecord] = Field(default_factory=list)


# Activity log schemas
class TaskSummary(BaseModel):
    id: int
    title: str
    priority: TaskPriority
    status: TaskStatus
    assigned_member_id: Optional[int] = None

    class Config:
        from_attributes = True


class ActivityLog(BaseModel):
    id: int
    task_id: int
    # None when the task has since been deleted
    task: Optional[TaskSummary] = None
    project_id: int
    task_title: str
    from_member: str
    to_member: str
    owner_id: int
    timestamp: datetime

    class Config:
        from_attributes = True


# Dashboard schemas
class TeamSummaryEntry(BaseModel):
    team_id: int
    team_name: str
    member_id: int
    member_name: str
    role: str
    capacity: int
    current_tasks: int
    is_overloaded: bool


class DashboardStats(BaseModel):
    total_projects: int
    total_tasks: int
    team_summary: List[TeamSummaryEntry] = Field(default_factory=list)
    recent_reassignments: List[ActivityLog] = Field(default_factory=list)
