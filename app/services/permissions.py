from uuid import UUID

from app.core.exceptions import ForbiddenError
from app.models.enums import UserRole
from app.models.user import User


def is_admin(user: User) -> bool:
    return user.role == UserRole.ADMIN


def ensure_admin(user: User, detail: str = "Admin access required") -> None:
    if not is_admin(user):
        raise ForbiddenError(detail)


def ensure_self_or_admin(user_id: UUID, current_user: User, detail: str = "You can only access your own data") -> None:
    if not is_admin(current_user) and current_user.id != user_id:
        raise ForbiddenError(detail)
