from typing import Optional, List, Any
from uuid import UUID
from sqlmodel import SQLModel, Field
from sqlalchemy import JSON, Column
from uuid6 import uuid7
from datetime import datetime

from app.models.enums import UserRole, UserStatus, Performance

class UserBase(SQLModel):
    firstName: str = Field(sa_column_kwargs={"name": "first_name"})
    lastName: str = Field(sa_column_kwargs={"name": "last_name"})
    email: str = Field(unique=True, index=True)
    phoneNumber: Optional[str] = Field(default=None, unique=True, sa_column_kwargs={"name": "phone_number"})
    address: Optional[str] = None
    position: Optional[str] = None
    skills: List[str] = Field(default_factory=list, sa_column=Column(JSON))

class User(UserBase, table=True):
    __tablename__ = "users"
    id: UUID = Field(default_factory=uuid7, primary_key=True)
    password: str
    role: UserRole = Field(default=UserRole.VOLUNTEER)
    status: UserStatus = Field(default=UserStatus.ACTIVE)
    performance: Performance = Field(default=Performance.AVERAGE)
    preferences: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    # Rollup cache, refreshed by app.services.rollup_service after goal mutations
    goalsCount: int = Field(default=0, sa_column_kwargs={"name": "goals_count"})
    completionRate: int = Field(default=0, sa_column_kwargs={"name": "completion_rate"})

    joinedAt: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"name": "joined_at"})
    lastLogin: Optional[datetime] = Field(default=None, sa_column_kwargs={"name": "last_login"})
    createdAt: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"name": "created_at"})
    updatedAt: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"name": "updated_at"})

    @property
    def fullName(self) -> str:
        return f"{self.firstName} {self.lastName}".strip()

class UserCreate(UserBase):
    password: str = Field(min_length=6)
    role: UserRole = UserRole.VOLUNTEER
    status: UserStatus = UserStatus.ACTIVE

class UserUpdate(SQLModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    address: Optional[str] = None
    position: Optional[str] = None
    skills: Optional[List[str]] = None
    password: Optional[str] = Field(default=None, min_length=6)

class UserStatusUpdate(SQLModel):
    status: UserStatus

class UserRead(UserBase):
    id: UUID
    role: UserRole
    status: UserStatus
    performance: Performance
    goalsCount: int
    completionRate: int
    joinedAt: datetime
    lastLogin: Optional[datetime] = None
    createdAt: datetime
    updatedAt: datetime
    preferences: Optional[Any] = None

class PasswordChange(SQLModel):
    currentPassword: str
    newPassword: str = Field(min_length=6)

class AdminProfileUpdate(SQLModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    title: Optional[str] = None

class AdminPreferencesUpdate(SQLModel):
    weeklyReports: Optional[bool] = None
    systemAlerts: Optional[bool] = None
    theme: Optional[str] = None
    timezone: Optional[str] = None

class UserBulkStatusUpdate(SQLModel):
    userIds: List[UUID]
    status: UserStatus
