"""
CME Tracker - Authentication Utilities
Password hashing, JWT tokens, failed-login lockout policy and auth dependencies
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .database import get_db
from .models.db_models import UserDB, UserRole, UserStatus, PRIVILEGED_ROLES, normalize_status

# Configuration
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "cme-tracker-secret-key-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "24"))
MAX_FAILED_LOGIN_ATTEMPTS = int(os.getenv("MAX_FAILED_LOGIN_ATTEMPTS", "5"))

# Bearer token security
security = HTTPBearer()


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password_bytes, salt).decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    if not hashed_password:
        return False
    password_bytes = plain_password.encode('utf-8')
    hashed_bytes = hashed_password.encode('utf-8')
    try:
        return bcrypt.checkpw(password_bytes, hashed_bytes)
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


class LockoutPolicy:
    """
    Failed-login counting.

    Each wrong password increments the user's counter; reaching
    max_attempts moves the account to LOCKED until an admin resets it.
    """

    def __init__(self, max_attempts: int = MAX_FAILED_LOGIN_ATTEMPTS):
        self.max_attempts = max_attempts

    def record_failure(self, user: UserDB) -> int:
        """Register a failed attempt. Returns attempts left (0 means locked)."""
        attempts = (user.failed_login_attempts or 0) + 1
        user.failed_login_attempts = attempts
        if attempts >= self.max_attempts:
            user.status = UserStatus.LOCKED.value
            return 0
        return self.max_attempts - attempts

    def record_success(self, user: UserDB) -> None:
        if user.failed_login_attempts:
            user.failed_login_attempts = 0

    def reset(self, user: UserDB) -> None:
        """Admin unlock."""
        user.failed_login_attempts = 0
        user.status = UserStatus.ACTIVE.value


lockout_policy = LockoutPolicy()


def create_access_token(user_id: str, username: str, role: str = UserRole.USER.value) -> str:
    """Create a JWT access token with role claim."""
    expire = datetime.now(timezone.utc) + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
    to_encode = {
        "sub": user_id,
        "username": username,
        "role": role,
        "exp": expire
    }
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token (signature and expiry)."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except JWTError:
        return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> UserDB:
    """
    Dependency to get the current authenticated user.
    Validates JWT token, fetches user from database and rejects
    accounts that were locked or disabled after the token was issued.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Phiên đăng nhập không hợp lệ hoặc đã hết hạn.",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise credentials_exception

    user_id: str = payload.get("sub")
    if user_id is None:
        raise credentials_exception

    user = db.query(UserDB).filter(UserDB.id == user_id).first()
    if user is None:
        raise credentials_exception

    if normalize_status(user.status) != UserStatus.ACTIVE.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Tài khoản đã bị khóa hoặc vô hiệu hóa. Vui lòng liên hệ quản trị viên."
        )

    return user


async def require_admin(current_user: UserDB = Depends(get_current_user)) -> UserDB:
    """
    Dependency to require admin role.
    Use this on admin-only routes.
    """
    if current_user.role != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Chỉ quản trị viên mới có quyền thực hiện thao tác này."
        )
    return current_user


async def require_reporter(current_user: UserDB = Depends(get_current_user)) -> UserDB:
    """Dependency for reporting routes: admin, reporter or reporter_user."""
    if current_user.role not in PRIVILEGED_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Bạn không có quyền xem báo cáo."
        )
    return current_user
