"""
CME Tracker - Snapshot Publisher

Freezes a materialized report into an independent, time-limited,
token-gated record that can be viewed without an account.

Snapshot lifecycle:
    ACTIVE (now < expires_at) -> EXPIRED (time passes, no explicit call)
    either state -> DELETED (revoke)
    EXPIRED -> ACTIVE only via update_expiry moving the bound past now
"""
import hmac
import json
import logging
import os
import secrets
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import SharedReportDB, utcnow
from ...models.reporting import MaterializedReport, ReportKind, rows_from_dicts

logger = logging.getLogger(__name__)

SNAPSHOT_TTL_DAYS = int(os.getenv("SNAPSHOT_TTL_DAYS", "7"))
TOKEN_BYTES = 24


# =============================================================================
# ERRORS
# =============================================================================

class SnapshotAccessError(Exception):
    """Access to a snapshot is denied. `reason` is logged; `message` is shown."""
    reason = "denied"
    message = "Không thể truy cập báo cáo."

    def __init__(self, snapshot_id: str):
        self.snapshot_id = snapshot_id
        super().__init__(self.message)


class SnapshotNotFound(SnapshotAccessError):
    reason = "not_found"
    message = "Báo cáo không tồn tại hoặc đã bị xóa."


class SnapshotExpired(SnapshotAccessError):
    reason = "expired"
    message = "Liên kết báo cáo này đã hết hạn."


class SnapshotTokenMismatch(SnapshotAccessError):
    reason = "token_mismatch"
    message = "Liên kết báo cáo không hợp lệ."


class SnapshotFormatError(Exception):
    """Stored headers/rows could not be decoded."""
    pass


class ExpiryValidationError(ValueError):
    """Rejected expiry update (backdating)."""
    pass


# =============================================================================
# VALUES
# =============================================================================

@dataclass
class PublishedSnapshot:
    id: str
    token: str
    expires_at: datetime


@dataclass
class SnapshotView:
    """A resolved snapshot: the frozen headers and rows plus metadata."""
    id: str
    title: str
    kind: str
    headers: Dict[str, str]
    rows: List[dict]
    created_by: str
    created_at: datetime
    expires_at: datetime

    def to_report(self) -> MaterializedReport:
        """Typed report for the exporters; raises SnapshotFormatError on legacy shapes."""
        try:
            kind = ReportKind(self.kind)
            rows = rows_from_dicts(kind, self.rows)
        except (ValueError, TypeError, KeyError) as e:
            raise SnapshotFormatError(f"Snapshot {self.id} has an unreadable layout: {e}") from e
        return MaterializedReport(kind=kind, title=self.title, headers=dict(self.headers), rows=rows)


@dataclass
class SnapshotSummary:
    """Admin listing entry; never carries headers, rows or the token."""
    id: str
    title: str
    kind: str
    created_by: str
    created_at: datetime
    expires_at: datetime
    is_expired: bool = field(default=False)


def end_of_day(day: date) -> datetime:
    """Last representable instant of a UTC calendar day."""
    return datetime.combine(day, time.max)


# =============================================================================
# SERVICE
# =============================================================================

class SnapshotService:
    """Publish, resolve, extend and revoke shared report snapshots."""

    def __init__(self, db: Session, ttl_days: int = SNAPSHOT_TTL_DAYS, clock=utcnow):
        self.db = db
        self.ttl = timedelta(days=ttl_days)
        self.clock = clock

    def publish(self, report: MaterializedReport, created_by: str,
                created_by_id: Optional[str] = None) -> PublishedSnapshot:
        """Store an immutable copy of the report's headers and rows."""
        now = self.clock()
        snapshot = SharedReportDB(
            id=str(uuid4()),
            report_title=report.title,
            report_type=ReportKind(report.kind).value,
            report_headers=json.dumps(report.headers, ensure_ascii=False),
            report_data=json.dumps(report.row_dicts(), ensure_ascii=False),
            created_by=created_by,
            created_by_id=created_by_id,
            created_at=now,
            expires_at=now + self.ttl,
            access_token=secrets.token_urlsafe(TOKEN_BYTES),
        )
        try:
            self.db.add(snapshot)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(f"Failed to publish snapshot of {report.kind} report")
            raise

        logger.info(f"Published snapshot {snapshot.id} ({snapshot.report_type}) by {created_by}, "
                    f"expires {snapshot.expires_at.isoformat()}")
        return PublishedSnapshot(id=snapshot.id, token=snapshot.access_token, expires_at=snapshot.expires_at)

    def resolve(self, snapshot_id: str, token: Optional[str]) -> SnapshotView:
        """
        Return the frozen report or raise a SnapshotAccessError subclass.
        Expiry is checked before the token, so an expired link reports
        Expired whatever token is supplied.
        """
        snapshot = self.db.query(SharedReportDB).filter(SharedReportDB.id == snapshot_id).first()
        try:
            if snapshot is None:
                raise SnapshotNotFound(snapshot_id)
            if self.clock() >= snapshot.expires_at:
                raise SnapshotExpired(snapshot_id)
            # Legacy snapshots were published without a token
            if snapshot.access_token and not hmac.compare_digest(
                (token or "").encode("utf-8"), snapshot.access_token.encode("utf-8")
            ):
                raise SnapshotTokenMismatch(snapshot_id)
        except SnapshotAccessError as e:
            logger.warning(f"Snapshot access denied: id={snapshot_id} reason={e.reason}")
            raise

        try:
            headers = json.loads(snapshot.report_headers)
            rows = json.loads(snapshot.report_data)
        except (TypeError, ValueError) as e:
            logger.error(f"Snapshot {snapshot_id} has corrupt payload: {e}")
            raise SnapshotFormatError(f"Snapshot {snapshot_id} payload is not valid JSON") from e

        return SnapshotView(
            id=snapshot.id,
            title=snapshot.report_title,
            kind=snapshot.report_type,
            headers=headers,
            rows=rows,
            created_by=snapshot.created_by,
            created_at=snapshot.created_at,
            expires_at=snapshot.expires_at,
        )

    def update_expiry(self, snapshot_id: str, new_date: date) -> datetime:
        """
        Move the expiry to the end of new_date (UTC).
        Dates strictly before today are rejected.
        """
        today = self.clock().date()
        if new_date < today:
            raise ExpiryValidationError("Ngày hết hạn không được là một ngày trong quá khứ.")

        snapshot = self.db.query(SharedReportDB).filter(SharedReportDB.id == snapshot_id).first()
        if snapshot is None:
            raise SnapshotNotFound(snapshot_id)

        snapshot.expires_at = end_of_day(new_date)
        self.db.commit()
        logger.info(f"Snapshot {snapshot_id} expiry moved to {snapshot.expires_at.isoformat()}")
        return snapshot.expires_at

    def revoke(self, snapshot_id: str) -> bool:
        """Delete a snapshot. Idempotent; returns whether anything was deleted."""
        deleted = self.db.query(SharedReportDB).filter(SharedReportDB.id == snapshot_id).delete(
            synchronize_session=False
        )
        self.db.commit()
        if deleted:
            logger.info(f"Revoked snapshot {snapshot_id}")
        return bool(deleted)

    def revoke_many(self, snapshot_ids: Iterable[str]) -> int:
        ids = list(set(snapshot_ids))
        if not ids:
            return 0
        deleted = self.db.query(SharedReportDB).filter(SharedReportDB.id.in_(ids)).delete(
            synchronize_session=False
        )
        self.db.commit()
        logger.info(f"Revoked {deleted} snapshots in bulk")
        return deleted

    def list(self) -> List[SnapshotSummary]:
        """All snapshots, newest first."""
        now = self.clock()
        snapshots = self.db.query(SharedReportDB).order_by(SharedReportDB.created_at.desc()).all()
        return [
            SnapshotSummary(
                id=s.id,
                title=s.report_title,
                kind=s.report_type,
                created_by=s.created_by,
                created_at=s.created_at,
                expires_at=s.expires_at,
                is_expired=now >= s.expires_at,
            )
            for s in snapshots
        ]
