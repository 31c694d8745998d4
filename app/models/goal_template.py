from typing import Optional, List
from uuid import UUID
from datetime import datetime, date
from sqlmodel import SQLModel, Field
from sqlalchemy import JSON, Column
from uuid6 import uuid7

from app.models.enums import GoalPriority, TemplateStatus

class GoalTemplateBase(SQLModel):
    name: str = Field(max_length=255, index=True)
    description: str
    category: str = Field(max_length=100, index=True)
    priority: GoalPriority = Field(default=GoalPriority.MEDIUM)
    defaultDuration: int = Field(default=7, ge=1, sa_column_kwargs={"name": "default_duration"}) # days
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    notes: Optional[str] = None

class GoalTemplate(GoalTemplateBase, table=True):
    __tablename__ = "goal_templates"
    id: UUID = Field(default_factory=uuid7, primary_key=True)
    status: TemplateStatus = Field(default=TemplateStatus.ACTIVE)
    usageCount: int = Field(default=0, sa_column_kwargs={"name": "usage_count"})
    createdById: UUID = Field(foreign_key="users.id", sa_column_kwargs={"name": "created_by_id"})
    createdAt: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"name": "created_at"})
    updatedAt: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"name": "updated_at"})

class GoalTemplateCreate(GoalTemplateBase):
    tags: List[str] = []
    status: TemplateStatus = TemplateStatus.ACTIVE

class GoalTemplateUpdate(SQLModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[GoalPriority] = None
    defaultDuration: Optional[int] = Field(default=None, ge=1)
    tags: Optional[List[str]] = None
    notes: Optional[str] = None
    status: Optional[TemplateStatus] = None

class UseTemplateRequest(SQLModel):
    templateId: UUID
    title: str
    description: Optional[str] = None
    dueDate: Optional[date] = None # Defaults to today + defaultDuration
    volunteerId: Optional[UUID] = None
    customNotes: Optional[str] = None

class GoalTemplateRead(GoalTemplateBase):
    id: UUID
    status: TemplateStatus
    usageCount: int
    createdById: UUID
    createdAt: datetime
    updatedAt: datetime
