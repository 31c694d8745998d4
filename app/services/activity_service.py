"""
Append-only audit trail.

Every mutating service call records an ActivityLog row in the same unit of
work as the change it describes. The actor is either a real user or the
system (batch jobs); detail payloads are a closed set of shapes keyed by the
action name so readers can rely on the fields being there.
"""
from typing import Annotated, Any, List, Literal, Optional, Union
from uuid import UUID
from datetime import date, datetime

from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.activity import ActivityLog
from app.models.enums import ActorType, GoalPriority, GoalStatus


# --- Actors ---

class UserActor(BaseModel):
    kind: Literal["user"] = "user"
    userId: UUID

class SystemActor(BaseModel):
    kind: Literal["system"] = "system"

Actor = Union[UserActor, SystemActor]

SYSTEM = SystemActor()


def actor_for(user_id: UUID) -> UserActor:
    return UserActor(userId=user_id)


# --- Detail payloads ---

class CreateGoalDetails(BaseModel):
    action: Literal["CREATE_GOAL"] = "CREATE_GOAL"
    goalTitle: str
    volunteerId: UUID
    templateId: Optional[UUID] = None

class UpdateGoalDetails(BaseModel):
    action: Literal["UPDATE_GOAL"] = "UPDATE_GOAL"
    goalTitle: str
    updatedFields: List[str]

class UpdateGoalStatusDetails(BaseModel):
    action: Literal["UPDATE_GOAL_STATUS"] = "UPDATE_GOAL_STATUS"
    goalTitle: str
    previousStatus: GoalStatus
    newStatus: GoalStatus

class UpdateGoalProgressDetails(BaseModel):
    action: Literal["UPDATE_GOAL_PROGRESS"] = "UPDATE_GOAL_PROGRESS"
    goalTitle: str
    previousProgress: int
    newProgress: int

class DeleteGoalDetails(BaseModel):
    action: Literal["DELETE_GOAL"] = "DELETE_GOAL"
    goalTitle: str
    volunteerId: UUID

class BulkUpdateGoalsDetails(BaseModel):
    action: Literal["BULK_UPDATE_GOALS"] = "BULK_UPDATE_GOALS"
    goalIds: List[UUID]
    status: Optional[GoalStatus] = None
    priority: Optional[GoalPriority] = None

class MarkGoalOverdueDetails(BaseModel):
    action: Literal["MARK_GOAL_OVERDUE"] = "MARK_GOAL_OVERDUE"
    goalTitle: str
    originalDueDate: date

class ProgressHistoryDetails(BaseModel):
    action: Literal["CREATE_PROGRESS_HISTORY", "DELETE_PROGRESS_HISTORY"]
    title: str
    volunteerId: UUID

class UserDetails(BaseModel):
    action: Literal["CREATE_USER", "UPDATE_USER", "UPDATE_USER_STATUS", "DELETE_USER", "CHANGE_PASSWORD", "LOGIN"]
    email: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None
    updatedFields: List[str] = []

class AdminDetails(BaseModel):
    action: Literal["UPDATE_ADMIN_PROFILE", "UPDATE_ADMIN_PREFERENCES", "RUN_WEEKLY_PROCESSING", "RUN_OVERDUE_SWEEP"]
    changes: dict = {}

class SettingDetails(BaseModel):
    action: Literal["CREATE_SETTING", "UPDATE_SETTING", "DELETE_SETTING"]
    key: str
    scope: str
    changes: dict = {}

class TemplateDetails(BaseModel):
    action: Literal["CREATE_TEMPLATE", "UPDATE_TEMPLATE", "ARCHIVE_TEMPLATE", "DUPLICATE_TEMPLATE", "USE_TEMPLATE"]
    name: str
    goalId: Optional[UUID] = None

ActivityDetails = Annotated[
    Union[
        CreateGoalDetails,
        UpdateGoalDetails,
        UpdateGoalStatusDetails,
        UpdateGoalProgressDetails,
        DeleteGoalDetails,
        BulkUpdateGoalsDetails,
        MarkGoalOverdueDetails,
        ProgressHistoryDetails,
        UserDetails,
        AdminDetails,
        SettingDetails,
        TemplateDetails,
    ],
    Field(discriminator="action"),
]

_details_adapter = TypeAdapter(ActivityDetails)


def parse_details(log: ActivityLog) -> Optional[Any]:
    """Return the typed payload of a log entry, or None for rows that predate the schema."""
    if not log.details:
        return None
    try:
        return _details_adapter.validate_python(log.details)
    except ValidationError:
        return None


def log_activity(
    db: AsyncSession,
    actor: Actor,
    resource: str,
    resource_id: Optional[Union[UUID, str]],
    details: BaseModel,
    created_at: Optional[datetime] = None,
) -> ActivityLog:
    """
    Stage an ActivityLog row on the session.

    The caller commits it together with the primary change.
    """
    entry = ActivityLog(
        actorType=ActorType.SYSTEM if isinstance(actor, SystemActor) else ActorType.USER,
        userId=actor.userId if isinstance(actor, UserActor) else None,
        action=details.action,
        resource=resource,
        resourceId=str(resource_id) if resource_id is not None else None,
        details=details.model_dump(mode="json"),
    )
    if created_at is not None:
        entry.createdAt = created_at
    db.add(entry)
    return entry
