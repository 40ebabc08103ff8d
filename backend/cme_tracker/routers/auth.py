"""
CME Tracker - Authentication Router
Login, session verification, self-service profile and password change.
"""
from datetime import date, datetime
from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import UserDB, normalize_status
from ..auth import create_access_token, get_current_user
from ..services.accounts import (
    AccountService, AuthenticationError, AccountLockedError, AccountDisabledError, PasswordChangeError,
)
from ..services.context import AppContext, get_app_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class LoginRequest(BaseModel):
    username: str
    password: str

    @field_validator('username')
    @classmethod
    def strip_username(cls, v):
        return v.strip()


class UserResponse(BaseModel):
    """Account as shown to its owner and to administrators."""
    id: str
    username: str
    name: str
    role: str
    status: str
    failed_login_attempts: int = 0
    department_id: Optional[str] = None
    department_name: Optional[str] = None
    title_id: Optional[str] = None
    title_name: Optional[str] = None
    position: Optional[str] = None
    practice_certificate_number: Optional[str] = None
    practice_certificate_issue_date: Optional[date] = None
    date_of_birth: Optional[date] = None
    created_at: Optional[datetime] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class MessageResponse(BaseModel):
    message: str


class ProfileUpdateRequest(BaseModel):
    """Fields a user may change on their own profile."""
    department_id: Optional[str] = None
    title_id: Optional[str] = None
    position: Optional[str] = None
    practice_certificate_number: Optional[str] = None
    practice_certificate_issue_date: Optional[date] = None
    date_of_birth: Optional[date] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


def user_response(user: UserDB, department_names: Optional[dict] = None,
                  title_names: Optional[dict] = None) -> UserResponse:
    department_names = department_names or {}
    title_names = title_names or {}
    return UserResponse(
        id=user.id,
        username=user.username,
        name=user.name,
        role=user.role,
        status=normalize_status(user.status),
        failed_login_attempts=user.failed_login_attempts or 0,
        department_id=user.department_id,
        department_name=department_names.get(user.department_id),
        title_id=user.title_id,
        title_name=title_names.get(user.title_id),
        position=user.position,
        practice_certificate_number=user.practice_certificate_number,
        practice_certificate_issue_date=user.practice_certificate_issue_date,
        date_of_birth=user.date_of_birth,
        created_at=user.created_at,
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Authenticate by username and return a JWT.
    Wrong passwords count towards the lockout threshold.
    """
    try:
        user = AccountService(db).authenticate(request.username, request.password)
    except (AccountLockedError, AccountDisabledError) as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(user.id, user.username, user.role)
    return TokenResponse(access_token=access_token, user=user_response(user))


@router.get("/me", response_model=UserResponse)
async def get_me(ctx: AppContext = Depends(get_app_context)):
    """Current principal with category names resolved."""
    return user_response(ctx.principal, ctx.department_names, ctx.title_names)


@router.get("/profile", response_model=UserResponse)
async def get_profile(ctx: AppContext = Depends(get_app_context)):
    return user_response(ctx.principal, ctx.department_names, ctx.title_names)


@router.put("/profile", response_model=UserResponse)
async def update_profile(
    request: ProfileUpdateRequest,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update self-editable profile fields. Only fields sent are changed."""
    changes = request.model_dump(exclude_unset=True)
    user = AccountService(db).update_profile(current_user, changes)
    return user_response(user)


@router.put("/password", response_model=MessageResponse)
async def change_password(
    request: ChangePasswordRequest,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        AccountService(db).change_password(
            current_user, request.current_password, request.new_password, request.confirm_password
        )
    except PasswordChangeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return MessageResponse(message="Đổi mật khẩu thành công.")
