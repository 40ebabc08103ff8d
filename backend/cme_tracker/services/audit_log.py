"""
CME Tracker - Audit Log
Append-only record of administrative and account actions.
Writing never raises: a failed audit write is logged and dropped.
"""
import logging
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ..models.db_models import AuditLogDB, UserDB

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 500


class AuditAction(str, Enum):
    USER_CREATE = "USER_CREATE"
    USER_UPDATE = "USER_UPDATE"
    USER_DELETE = "USER_DELETE"
    USER_UNLOCK = "USER_UNLOCK"
    USER_PASSWORD_CHANGE = "USER_PASSWORD_CHANGE"
    PROFILE_UPDATE = "PROFILE_UPDATE"
    CERTIFICATE_CREATE = "CERTIFICATE_CREATE"
    CERTIFICATE_UPDATE = "CERTIFICATE_UPDATE"
    CERTIFICATE_DELETE = "CERTIFICATE_DELETE"
    DEPARTMENT_CREATE = "DEPARTMENT_CREATE"
    DEPARTMENT_UPDATE = "DEPARTMENT_UPDATE"
    DEPARTMENT_DELETE = "DEPARTMENT_DELETE"
    TITLE_CREATE = "TITLE_CREATE"
    TITLE_UPDATE = "TITLE_UPDATE"
    TITLE_DELETE = "TITLE_DELETE"
    SETTINGS_UPDATE = "SETTINGS_UPDATE"
    AI_KEY_ADD = "AI_KEY_ADD"
    AI_KEY_DELETE = "AI_KEY_DELETE"
    REPORT_SHARE = "REPORT_SHARE"
    SHARED_REPORT_EXPIRY_UPDATE = "SHARED_REPORT_EXPIRY_UPDATE"
    SHARED_REPORT_DELETE = "SHARED_REPORT_DELETE"


class AuditLogger:
    """Write and query audit entries."""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        actor: UserDB,
        action: str,
        target_type: str,
        target_id: str,
        target_name: str = "",
        details: Optional[dict] = None,
    ) -> Optional[AuditLogDB]:
        """Record one action. Returns None (and logs) when the write fails."""
        if actor is None or not actor.id or not actor.name:
            logger.error(f"Audit log skipped: invalid actor for {action}")
            return None

        entry = AuditLogDB(
            id=str(uuid4()),
            actor_id=actor.id,
            actor_name=actor.name,
            action=action.value if isinstance(action, AuditAction) else str(action),
            target_type=target_type,
            target_id=str(target_id),
            target_name=target_name or "",
            details=details or {},
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to write audit log {entry.action} for {target_type}:{target_id}: {e}")
            return None
        return entry

    def query(
        self,
        action: Optional[str] = None,
        actor_id: Optional[str] = None,
        target_type: Optional[str] = None,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> List[AuditLogDB]:
        """Newest first, bounded."""
        q = self.db.query(AuditLogDB)
        if action:
            q = q.filter(AuditLogDB.action == action)
        if actor_id:
            q = q.filter(AuditLogDB.actor_id == actor_id)
        if target_type:
            q = q.filter(AuditLogDB.target_type == target_type)
        limit = max(1, min(limit, MAX_QUERY_LIMIT))
        return q.order_by(AuditLogDB.timestamp.desc(), AuditLogDB.id.desc()).limit(limit).all()
