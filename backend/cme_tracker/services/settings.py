"""
CME Tracker - Settings Service
Compliance cycle (singleton) and generative-AI key management.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ..models.db_models import GeminiKeyDB, UserDB
from ..models.reporting import ComplianceCycle
from .audit_log import AuditAction, AuditLogger
from .integrations.gemini import mask_api_key
from .repositories import SettingsRepository, GeminiKeyRepository

logger = logging.getLogger(__name__)

MIN_CYCLE_YEAR = 2000
MAX_CYCLE_YEAR = 2100
DEFAULT_CYCLE_LENGTH = 5  # current year .. current year + 4


class SettingsValidationError(ValueError):
    pass


@dataclass
class MaskedKey:
    id: str
    masked: str
    is_active: bool
    created_at: Optional[datetime]


def default_cycle(today: Optional[datetime] = None) -> ComplianceCycle:
    year = (today or datetime.now(timezone.utc)).year
    return ComplianceCycle(start_year=year, end_year=year + DEFAULT_CYCLE_LENGTH - 1)


def validate_cycle(start_year: int, end_year: int) -> ComplianceCycle:
    for year in (start_year, end_year):
        if not isinstance(year, int) or not (MIN_CYCLE_YEAR <= year <= MAX_CYCLE_YEAR):
            raise SettingsValidationError(
                f"Năm phải là một số hợp lệ trong khoảng {MIN_CYCLE_YEAR} - {MAX_CYCLE_YEAR}."
            )
    if end_year < start_year:
        raise SettingsValidationError("Năm kết thúc phải lớn hơn hoặc bằng năm bắt đầu.")
    return ComplianceCycle(start_year=start_year, end_year=end_year)


class SettingsService:
    """Read and update process-wide configuration."""

    def __init__(self, db: Session, audit: Optional[AuditLogger] = None):
        self.db = db
        self.settings = SettingsRepository(db)
        self.keys = GeminiKeyRepository(db)
        self.audit = audit or AuditLogger(db)

    # =========================================================================
    # COMPLIANCE CYCLE
    # =========================================================================

    def get_cycle(self) -> ComplianceCycle:
        """Stored cycle, or the default five-year window when none was saved."""
        row = self.settings.get()
        if row is None:
            return default_cycle()
        return ComplianceCycle(start_year=row.compliance_start_year, end_year=row.compliance_end_year)

    def update_cycle(self, actor: UserDB, start_year: int, end_year: int) -> ComplianceCycle:
        cycle = validate_cycle(start_year, end_year)
        previous = self.get_cycle()
        self.settings.save_cycle(cycle.start_year, cycle.end_year)
        logger.info(f"Compliance cycle set to {cycle.label} by {actor.username}")
        self.audit.log(actor, AuditAction.SETTINGS_UPDATE, "settings", "compliance_cycle", "Chu kỳ tuân thủ",
                       {"from": previous.label, "to": cycle.label})
        return cycle

    # =========================================================================
    # AI KEYS
    # =========================================================================

    def active_key(self) -> Optional[str]:
        return self.keys.active_key()

    def list_keys(self) -> List[MaskedKey]:
        keys = self.keys.list()
        return [
            MaskedKey(id=k.id, masked=mask_api_key(k.key), is_active=(i == 0), created_at=k.created_at)
            for i, k in enumerate(keys)
        ]

    def add_key(self, actor: UserDB, key: str) -> GeminiKeyDB:
        key = (key or "").strip()
        if not key:
            raise SettingsValidationError("Khóa API không được để trống.")
        row = self.keys.add(GeminiKeyDB(id=str(uuid4()), key=key))
        logger.info(f"AI key {row.id} added by {actor.username}")
        self.audit.log(actor, AuditAction.AI_KEY_ADD, "ai_key", row.id, mask_api_key(key))
        return row

    def delete_key(self, actor: UserDB, key_id: str) -> bool:
        row = self.keys.get(key_id)
        if row is None:
            return False
        masked = mask_api_key(row.key)
        self.keys.delete(row)
        logger.info(f"AI key {key_id} deleted by {actor.username}")
        self.audit.log(actor, AuditAction.AI_KEY_DELETE, "ai_key", key_id, masked)
        return True
