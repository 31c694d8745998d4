from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    VOLUNTEER = "volunteer"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Performance(str, Enum):
    HIGH = "high"
    AVERAGE = "average"
    LOW = "low"


class GoalStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    OVERDUE = "overdue"


class GoalPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TemplateStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class SettingScope(str, Enum):
    SYSTEM = "system"
    ORGANIZATION = "organization"
    USER = "user"


class SettingType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"
    ARRAY = "array"


class ActorType(str, Enum):
    USER = "user"
    SYSTEM = "system"
