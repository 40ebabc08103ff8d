"""
CME Tracker - Account Service
Login with lockout, password change, self-service profile edits and
administrator user management.
"""
import logging
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ..auth import LockoutPolicy, lockout_policy, hash_password, verify_password
from ..models.db_models import UserDB, UserRole, UserStatus, normalize_status
from .audit_log import AuditAction, AuditLogger
from .integrations.drive_bridge import DriveBridgeClient
from .repositories import UserRepository

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

# Fields a principal may change on their own profile
PROFILE_FIELDS = (
    "department_id", "title_id", "position",
    "practice_certificate_number", "practice_certificate_issue_date", "date_of_birth",
)

# Administrators may additionally change these
ADMIN_FIELDS = PROFILE_FIELDS + ("name", "role", "status")


# =============================================================================
# ERRORS
# =============================================================================

class AuthenticationError(Exception):
    """Unknown user or wrong password."""

    def __init__(self, message: str, remaining_attempts: Optional[int] = None):
        self.remaining_attempts = remaining_attempts
        super().__init__(message)


class AccountLockedError(AuthenticationError):
    pass


class AccountDisabledError(AuthenticationError):
    pass


class PasswordChangeError(ValueError):
    pass


class UserValidationError(ValueError):
    pass


# =============================================================================
# SERVICE
# =============================================================================

class AccountService:
    """All account mutations go through here so they are audited."""

    def __init__(self, db: Session, policy: LockoutPolicy = lockout_policy,
                 audit: Optional[AuditLogger] = None):
        self.db = db
        self.users = UserRepository(db)
        self.policy = policy
        self.audit = audit or AuditLogger(db)

    # =========================================================================
    # LOGIN
    # =========================================================================

    def authenticate(self, username: str, password: str) -> UserDB:
        """
        Check credentials. Order: unknown user, locked, disabled, password.
        A wrong password counts towards the lockout threshold.
        """
        username = (username or "").strip()
        user = self.users.by_username(username) if username else None
        if user is None:
            logger.info(f"Login failed: unknown username {username!r}")
            raise AuthenticationError("Tên đăng nhập hoặc mật khẩu không chính xác.")

        status = normalize_status(user.status)
        if status != user.status:
            # Persist the normalized legacy value
            user.status = status
            self.db.commit()

        if status == UserStatus.LOCKED.value:
            raise AccountLockedError("Tài khoản của bạn đã bị khóa. Vui lòng liên hệ quản trị viên.")
        if status == UserStatus.DISABLED.value:
            raise AccountDisabledError("Tài khoản của bạn đã bị vô hiệu hóa. Vui lòng liên hệ quản trị viên.")

        if not verify_password(password or "", user.password_hash):
            remaining = self.policy.record_failure(user)
            self.db.commit()
            if remaining == 0:
                logger.warning(f"Account {user.username} locked after {self.policy.max_attempts} failed logins")
                raise AccountLockedError(
                    "Tài khoản của bạn đã bị khóa do nhập sai mật khẩu quá nhiều lần. "
                    "Vui lòng liên hệ quản trị viên.",
                    remaining_attempts=0,
                )
            logger.info(f"Login failed for {user.username}: {remaining} attempts left")
            raise AuthenticationError(
                f"Tên đăng nhập hoặc mật khẩu không chính xác. Bạn còn {remaining} lần thử.",
                remaining_attempts=remaining,
            )

        self.policy.record_success(user)
        self.db.commit()
        logger.info(f"User {user.username} logged in")
        return user

    # =========================================================================
    # SELF SERVICE
    # =========================================================================

    def change_password(self, user: UserDB, current: str, new: str, confirm: str) -> None:
        if new != confirm:
            raise PasswordChangeError("Mật khẩu mới không khớp. Vui lòng nhập lại.")
        if len(new or "") < MIN_PASSWORD_LENGTH:
            raise PasswordChangeError(f"Mật khẩu mới phải có ít nhất {MIN_PASSWORD_LENGTH} ký tự.")
        if not verify_password(current or "", user.password_hash):
            raise PasswordChangeError("Mật khẩu hiện tại không chính xác.")
        if verify_password(new, user.password_hash):
            raise PasswordChangeError("Mật khẩu mới phải khác mật khẩu cũ.")

        self.users.apply_changes(user, {"password_hash": hash_password(new)})
        logger.info(f"User {user.username} changed password")
        self.audit.log(user, AuditAction.USER_PASSWORD_CHANGE, "user", user.id, user.name)

    def update_profile(self, user: UserDB, changes: Dict) -> UserDB:
        """Self-service edit limited to PROFILE_FIELDS."""
        allowed = {k: _blank_to_none(v) for k, v in changes.items() if k in PROFILE_FIELDS}
        user = self.users.apply_changes(user, allowed)
        logger.info(f"User {user.username} updated profile fields {sorted(allowed)}")
        self.audit.log(user, AuditAction.PROFILE_UPDATE, "user", user.id, user.name,
                       {"fields": sorted(allowed)})
        return user

    # =========================================================================
    # ADMINISTRATION
    # =========================================================================

    def list_users(self, search: Optional[str] = None) -> List[UserDB]:
        return self.users.search(search)

    def create_user(self, actor: UserDB, username: str, name: str, password: str,
                    role: str = UserRole.USER.value, status: str = UserStatus.ACTIVE.value,
                    **profile) -> UserDB:
        username = (username or "").strip()
        name = (name or "").strip()
        if not username or not name or not password:
            raise UserValidationError("Vui lòng điền đầy đủ các trường bắt buộc.")
        if self.users.by_username(username):
            raise UserValidationError(f"Tên đăng nhập '{username}' đã tồn tại.")

        user = UserDB(
            id=str(uuid4()),
            username=username,
            name=name,
            password_hash=hash_password(password),
            role=UserRole(role).value,
            status=UserStatus(normalize_status(status)).value,
            failed_login_attempts=0,
            **{k: _blank_to_none(v) for k, v in profile.items() if k in PROFILE_FIELDS},
        )
        user = self.users.add(user)
        logger.info(f"User {user.username} created by {actor.username}")
        self.audit.log(actor, AuditAction.USER_CREATE, "user", user.id, user.name, {"role": user.role})
        return user

    def update_user(self, actor: UserDB, user: UserDB, changes: Dict) -> UserDB:
        """
        Administrator edit. A locked account stays locked when the form
        asks for "active"; unlocking goes through reset_lock.
        """
        allowed = {k: _blank_to_none(v) for k, v in changes.items() if k in ADMIN_FIELDS}
        if "role" in allowed:
            allowed["role"] = UserRole(allowed["role"]).value
        if "status" in allowed:
            requested = UserStatus(normalize_status(allowed["status"])).value
            if normalize_status(user.status) == UserStatus.LOCKED.value and requested == UserStatus.ACTIVE.value:
                requested = UserStatus.LOCKED.value
            allowed["status"] = requested
        if "name" in allowed and not allowed["name"]:
            raise UserValidationError("Họ tên không được để trống.")

        user = self.users.apply_changes(user, allowed)
        logger.info(f"User {user.username} updated by {actor.username}")
        self.audit.log(actor, AuditAction.USER_UPDATE, "user", user.id, user.name, {"fields": sorted(allowed)})
        return user

    def reset_lock(self, actor: UserDB, user: UserDB) -> UserDB:
        self.policy.reset(user)
        self.db.commit()
        logger.info(f"User {user.username} unlocked by {actor.username}")
        self.audit.log(actor, AuditAction.USER_UNLOCK, "user", user.id, user.name)
        return user

    async def delete_user(self, actor: UserDB, user: UserDB, drive: DriveBridgeClient) -> int:
        """
        Delete a user and (by cascade) their certificates. Stored images are
        removed best-effort first. Returns the number of certificates removed.
        """
        if user.id == actor.id:
            raise UserValidationError("Không thể xóa tài khoản đang đăng nhập.")

        certificates = list(user.certificates)
        if drive.configured:
            for cert in certificates:
                if cert.image_url and not await drive.delete_by_url(cert.image_url):
                    logger.warning(f"Image of certificate {cert.id} was not removed while deleting {user.username}")

        user_id, user_name, username = user.id, user.name, user.username
        self.users.delete(user)
        logger.info(f"User {username} deleted by {actor.username} ({len(certificates)} certificates)")
        self.audit.log(actor, AuditAction.USER_DELETE, "user", user_id, user_name,
                       {"certificates_deleted": len(certificates)})
        return len(certificates)


def _blank_to_none(value):
    """Forms send "" for cleared optional fields."""
    if isinstance(value, str) and not value.strip():
        return None
    return value
