"""
CME Tracker - SQLAlchemy ORM Models
One table per logical collection: users, certificates, categories,
settings, AI keys, shared report snapshots and the audit log.
"""
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import Column, String, Integer, Float, DateTime, Date, Text, JSON, ForeignKey, func
from sqlalchemy.orm import relationship
from ..database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    """Closed set of account roles."""
    ADMIN = "admin"
    USER = "user"                    # staff
    REPORTER = "reporter"
    REPORTER_USER = "reporter_user"  # staff + reporter


class UserStatus(str, Enum):
    """Account lifecycle status."""
    ACTIVE = "active"
    DISABLED = "disabled"
    LOCKED = "locked"


# Roles whose certificates count towards compliance reporting
STAFF_ROLES = (UserRole.USER.value, UserRole.REPORTER_USER.value)

# Roles allowed to see every principal's records and run reports
PRIVILEGED_ROLES = (UserRole.ADMIN.value, UserRole.REPORTER.value, UserRole.REPORTER_USER.value)


def normalize_status(value) -> str:
    """
    Normalize legacy status values.
    Older records stored a boolean flag instead of the status enum.
    """
    if isinstance(value, bool):
        return UserStatus.ACTIVE.value if value else UserStatus.DISABLED.value
    if not value:
        return UserStatus.ACTIVE.value
    return str(value)


# =============================================================================
# ORGANIZATIONAL CATEGORIES
# =============================================================================

class DepartmentDB(Base):
    """Department (Khoa/Phòng) lookup entity."""
    __tablename__ = "departments"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow)


class TitleDB(Base):
    """Professional title (Chức danh); also selects the compliance target."""
    __tablename__ = "titles"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow)


# =============================================================================
# PRINCIPALS & CERTIFICATES
# =============================================================================

class UserDB(Base):
    """Account with role, lifecycle status and organizational attributes."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    username = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.USER.value)
    status = Column(String(20), nullable=False, default=UserStatus.ACTIVE.value)
    failed_login_attempts = Column(Integer, nullable=False, default=0)

    department_id = Column(String(36), ForeignKey("departments.id", ondelete="SET NULL"), nullable=True)
    title_id = Column(String(36), ForeignKey("titles.id", ondelete="SET NULL"), nullable=True)
    position = Column(String(255), nullable=True)
    practice_certificate_number = Column(String(100), nullable=True)
    practice_certificate_issue_date = Column(Date, nullable=True)
    date_of_birth = Column(Date, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    certificates = relationship("CertificateDB", back_populates="user", cascade="all, delete-orphan")


class CertificateDB(Base):
    """CME certificate owned by exactly one user."""
    __tablename__ = "certificates"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(500), nullable=False)
    credits = Column(Float, nullable=False)
    issued_at = Column(DateTime, nullable=False, index=True)  # UTC midnight of the issue date
    image_url = Column(String(1000), nullable=False, default="")

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("UserDB", back_populates="certificates")


# =============================================================================
# CONFIGURATION
# =============================================================================

class SettingsDB(Base):
    """Singleton compliance-cycle configuration."""
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True)
    compliance_start_year = Column(Integer, nullable=False)
    compliance_end_year = Column(Integer, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class GeminiKeyDB(Base):
    """Generative AI API key; the oldest key is the active one."""
    __tablename__ = "gemini_keys"

    id = Column(String(36), primary_key=True)
    key = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)


# =============================================================================
# SHARED REPORT SNAPSHOTS
# =============================================================================

class SharedReportDB(Base):
    """
    Immutable, time-limited copy of a materialized report.
    Headers and rows are stored as opaque JSON text, not queryable columns.
    """
    __tablename__ = "shared_reports"

    id = Column(String(36), primary_key=True)
    report_title = Column(String(500), nullable=False)
    report_type = Column(String(50), nullable=False)
    report_headers = Column(Text, nullable=False)
    report_data = Column(Text, nullable=False)

    created_by = Column(String(255), nullable=False)  # creator display name
    created_by_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    access_token = Column(String(128), nullable=True)  # NULL for legacy tokenless snapshots


# =============================================================================
# AUDIT LOG
# =============================================================================

class AuditLogDB(Base):
    """Append-only record of who did what to which entity."""
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True)
    timestamp = Column(DateTime, default=utcnow, server_default=func.now(), nullable=False, index=True)
    actor_id = Column(String(36), nullable=False, index=True)
    actor_name = Column(String(255), nullable=False)
    action = Column(String(100), nullable=False, index=True)
    target_type = Column(String(50), nullable=False)
    target_id = Column(String(36), nullable=False)
    target_name = Column(String(500), nullable=False, default="")
    details = Column(JSON, nullable=True, default=dict)
