from typing import Optional, List
from uuid import UUID
from datetime import datetime, date
from sqlmodel import SQLModel, Field
from sqlalchemy import JSON, Column
from pydantic import field_validator
from uuid6 import uuid7

from app.models.enums import GoalStatus, GoalPriority

# Goal Models

class GoalBase(SQLModel):
    title: str
    description: Optional[str] = None
    category: str = Field(default="general", index=True)
    priority: GoalPriority = Field(default=GoalPriority.MEDIUM)
    startDate: date = Field(sa_column_kwargs={"name": "start_date"})
    dueDate: date = Field(index=True, sa_column_kwargs={"name": "due_date"})

class Goal(GoalBase, table=True):
    __tablename__ = "goals"
    id: UUID = Field(default_factory=uuid7, primary_key=True)
    volunteerId: UUID = Field(foreign_key="users.id", index=True, sa_column_kwargs={"name": "volunteer_id"})

    # Progress & Status
    status: GoalStatus = Field(default=GoalStatus.PENDING, index=True)
    progress: int = Field(default=0) # 0-100

    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    # Appended to, never rewritten; reassign the list so the JSON column is flagged dirty
    notes: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    # Weak reference, lookup only
    templateId: Optional[UUID] = Field(default=None, foreign_key="goal_templates.id", sa_column_kwargs={"name": "template_id"})

    # Timestamps
    createdAt: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"name": "created_at"})
    updatedAt: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"name": "updated_at"})

class GoalCreate(GoalBase):
    volunteerId: Optional[UUID] = None # Defaults to the caller
    progress: int = Field(default=0, ge=0, le=100)
    tags: List[str] = []
    notes: List[str] = []
    templateId: Optional[UUID] = None

class GoalUpdate(SQLModel):
    # No progress field: progress only changes through the /progress endpoint
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[GoalPriority] = None
    startDate: Optional[date] = None
    dueDate: Optional[date] = None
    tags: Optional[List[str]] = None
    status: Optional[GoalStatus] = None

class GoalStatusUpdate(SQLModel):
    status: GoalStatus

class GoalProgressUpdate(SQLModel):
    # Range is enforced by the lifecycle rules so the rejection is a domain error (400)
    progress: int
    notes: Optional[str] = None

class GoalBulkUpdate(SQLModel):
    goalIds: List[UUID]
    status: Optional[GoalStatus] = None
    priority: Optional[GoalPriority] = None

    @field_validator("goalIds")
    @classmethod
    def require_ids(cls, v: List[UUID]) -> List[UUID]:
        if not v:
            raise ValueError("goalIds must not be empty")
        return v

class GoalRead(GoalBase):
    id: UUID
    volunteerId: UUID
    status: GoalStatus
    progress: int
    tags: List[str] = []
    notes: List[str] = []
    templateId: Optional[UUID] = None
    createdAt: datetime
    updatedAt: datetime
    volunteerName: Optional[str] = None
    isOverdue: bool = False
    daysUntilDue: int = 0

class GoalListResponse(SQLModel):
    goals: List[GoalRead]
    total: int
    page: int
    limit: int
    totalPages: int
