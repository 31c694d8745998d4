import logging
from datetime import datetime
from typing import Any
from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.api import deps
from app.core import security
from app.core.config import settings
from app.core.exceptions import UnauthorizedError
from app.database import get_db
from app.models.enums import UserRole, UserStatus
from app.models.user import PasswordChange, User, UserCreate, UserRead
from app.services.activity_service import UserDetails, actor_for, log_activity
from app.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter()

class LoginRequest(BaseModel):
    email: str
    password: str

class AuthResponse(BaseModel):
    message: str
    accessToken: str
    user: UserRead

def _issue_token(response: Response, user: User) -> str:
    access_token = security.create_access_token(subject=user.id, role=user.role.value)
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        expires=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        samesite="lax",
        secure=False # Set to True in production
    )
    return access_token

@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    response: Response,
    user_in: UserCreate,
    db: AsyncSession = Depends(get_db)
) -> Any:
    # Self-registration always yields an active volunteer
    user_in = user_in.model_copy(update={"role": UserRole.VOLUNTEER, "status": UserStatus.ACTIVE})
    user = await UserService(db).create(user_in)
    return {
        "message": "User registered successfully",
        "accessToken": _issue_token(response, user),
        "user": user
    }

@router.post("/login", response_model=AuthResponse)
async def login(
    response: Response,
    login_data: LoginRequest,
    db: AsyncSession = Depends(get_db)
) -> Any:
    result = await db.execute(select(User).where(User.email == login_data.email))
    user = result.scalars().first()

    if not user or not security.verify_password(login_data.password, user.password):
        logger.warning(f"Failed login attempt for {login_data.email}")
        raise UnauthorizedError("Invalid credentials")
    if user.status != UserStatus.ACTIVE:
        raise UnauthorizedError("Account is inactive")

    user.lastLogin = datetime.utcnow()
    db.add(user)
    log_activity(db, actor_for(user.id), "user", user.id, UserDetails(action="LOGIN", email=user.email))
    await db.commit()

    return {
        "message": "Login successful",
        "accessToken": _issue_token(response, user),
        "user": user
    }

@router.get("/me", response_model=UserRead)
@router.get("/profile", response_model=UserRead, include_in_schema=False)
async def read_users_me(
    current_user: User = Depends(deps.get_current_user)
) -> Any:
    return current_user

@router.post("/refresh-token", response_model=AuthResponse)
async def refresh_token(
    response: Response,
    current_user: User = Depends(deps.get_current_user)
) -> Any:
    return {
        "message": "Token refreshed",
        "accessToken": _issue_token(response, current_user),
        "user": current_user
    }

@router.post("/logout")
async def logout(response: Response) -> Any:
    response.delete_cookie(key="access_token")
    return {"message": "Logged out successfully"}

@router.patch("/change-password")
async def change_password(
    payload: PasswordChange,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    await UserService(db).change_password(current_user, payload)
    return {"message": "Password updated successfully"}
