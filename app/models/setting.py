from typing import Optional, List
from uuid import UUID
from datetime import datetime
from sqlmodel import SQLModel, Field
from sqlalchemy import JSON, Column
from uuid6 import uuid7

from app.models.enums import SettingScope, SettingType

class SettingBase(SQLModel):
    key: str = Field(max_length=100, index=True)
    value: str
    type: SettingType = Field(default=SettingType.STRING)
    scope: SettingScope = Field(default=SettingScope.SYSTEM)
    description: Optional[str] = None
    editable: bool = Field(default=True)
    sensitive: bool = Field(default=False)
    allowedValues: Optional[List[str]] = Field(default=None, sa_column=Column("allowed_values", JSON))
    userId: Optional[UUID] = Field(default=None, foreign_key="users.id", sa_column_kwargs={"name": "user_id"})

class Setting(SettingBase, table=True):
    __tablename__ = "settings"
    id: UUID = Field(default_factory=uuid7, primary_key=True)
    updatedById: Optional[UUID] = Field(default=None, foreign_key="users.id", sa_column_kwargs={"name": "updated_by_id"})
    createdAt: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"name": "created_at"})
    updatedAt: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"name": "updated_at"})

class SettingCreate(SettingBase):
    pass

class SettingUpdate(SQLModel):
    value: Optional[str] = None
    type: Optional[SettingType] = None
    description: Optional[str] = None
    editable: Optional[bool] = None
    sensitive: Optional[bool] = None
    allowedValues: Optional[List[str]] = None

class SettingValueUpdate(SQLModel):
    key: str
    value: str

class SettingBulkUpdate(SQLModel):
    settings: List[SettingValueUpdate]

class SettingRead(SettingBase):
    id: UUID
    updatedById: Optional[UUID] = None
    createdAt: datetime
    updatedAt: datetime
