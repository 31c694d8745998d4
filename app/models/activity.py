from typing import Optional, Any
from uuid import UUID
from datetime import datetime
from sqlmodel import SQLModel, Field, JSON
from sqlalchemy import Column
from uuid6 import uuid7

from app.models.enums import ActorType

class ActivityLog(SQLModel, table=True):
    __tablename__ = "activity_logs"
    id: UUID = Field(default_factory=uuid7, primary_key=True)
    actorType: ActorType = Field(default=ActorType.USER, sa_column_kwargs={"name": "actor_type"})
    # NULL for system-originated entries
    userId: Optional[UUID] = Field(default=None, foreign_key="users.id", index=True, sa_column_kwargs={"name": "user_id"})
    action: str = Field(index=True)
    resource: str
    resourceId: Optional[str] = Field(default=None, sa_column_kwargs={"name": "resource_id"})
    details: Optional[Any] = Field(default=None, sa_column=Column("details", JSON))
    createdAt: datetime = Field(default_factory=datetime.utcnow, index=True, sa_column_kwargs={"name": "created_at"})

class ActivityLogRead(SQLModel):
    id: UUID
    actorType: ActorType
    userId: Optional[UUID] = None
    action: str
    resource: str
    resourceId: Optional[str] = None
    details: Optional[Any] = None
    createdAt: datetime
