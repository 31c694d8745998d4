from typing import Optional
from uuid import UUID
from datetime import datetime
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from uuid6 import uuid7

from app.models.enums import GoalStatus

# Weekly snapshot of one goal; written by the weekly processor, never updated

class ProgressHistoryBase(SQLModel):
    goalId: UUID = Field(foreign_key="goals.id", index=True, sa_column_kwargs={"name": "goal_id"})
    volunteerId: UUID = Field(foreign_key="users.id", index=True, sa_column_kwargs={"name": "volunteer_id"})
    title: str
    progress: int = Field(ge=0, le=100)
    status: GoalStatus = Field(default=GoalStatus.IN_PROGRESS)
    notes: Optional[str] = None
    weekStart: datetime = Field(index=True, sa_column_kwargs={"name": "week_start"})
    weekEnd: datetime = Field(sa_column_kwargs={"name": "week_end"})

class ProgressHistory(ProgressHistoryBase, table=True):
    __tablename__ = "progress_history"
    __table_args__ = (UniqueConstraint("goal_id", "week_start", name="uq_progress_history_goal_week"),)
    id: UUID = Field(default_factory=uuid7, primary_key=True)
    createdAt: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"name": "created_at"})

class ProgressHistoryCreate(ProgressHistoryBase):
    pass

class ProgressHistoryRead(ProgressHistoryBase):
    id: UUID
    createdAt: datetime
    goalTitle: Optional[str] = None
    volunteerName: Optional[str] = None
    category: Optional[str] = None
