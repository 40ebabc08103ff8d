"""
CME Tracker - Certificate Service
Entry validation, owner/admin CRUD, and the stored-image side effects
of replacing or deleting a certificate.
"""
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Tuple, Union
from uuid import uuid4

from sqlalchemy.orm import Session

from ..models.db_models import CertificateDB, UserDB, UserRole
from .audit_log import AuditAction, AuditLogger
from .integrations.drive_bridge import DriveBridgeClient, extract_file_id_from_url
from .reporting.collation import normalize_text
from .repositories import CertificateRepository

logger = logging.getLogger(__name__)

EARLIEST_ISSUE_DATE = date(2021, 1, 1)
MAX_IMAGE_SIZE_MB = 10
MAX_IMAGE_BYTES = MAX_IMAGE_SIZE_MB * 1024 * 1024


class CertificateValidationError(ValueError):
    """Entry rejected; `errors` maps field name -> message."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))


class CertificatePermissionError(PermissionError):
    pass


@dataclass
class CertificateInput:
    name: Optional[str] = None
    credits: Union[float, str, None] = None
    issued_on: Union[date, str, None] = None
    image_url: Optional[str] = None


@dataclass
class ValidCertificate:
    name: str
    credits: float
    issued_on: date
    image_url: str

    @property
    def issued_at(self) -> datetime:
        """Stored as UTC midnight of the issue date."""
        return datetime(self.issued_on.year, self.issued_on.month, self.issued_on.day)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _parse_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def validate_certificate(data: CertificateInput, today: Optional[date] = None) -> ValidCertificate:
    """Check every field, collecting all messages before raising."""
    today = today or utc_today()
    errors: Dict[str, str] = {}

    name = (data.name or "").strip()
    if not name:
        errors["name"] = "Tên chứng chỉ không được để trống."

    credits = None
    try:
        credits = float(data.credits) if data.credits not in (None, "") else None
    except (TypeError, ValueError):
        credits = None
    if credits is None or not math.isfinite(credits) or credits <= 0:
        errors["credits"] = "Số tiết phải là một số lớn hơn 0."

    issued_on = _parse_date(data.issued_on)
    if issued_on is None:
        errors["date"] = "Ngày cấp không được để trống."
    elif issued_on < EARLIEST_ISSUE_DATE:
        errors["date"] = "Ngày cấp không được trước ngày 01/01/2021."
    elif issued_on > today:
        errors["date"] = "Ngày cấp không được là một ngày trong tương lai."

    image_url = (data.image_url or "").strip()
    if not image_url:
        errors["image_url"] = "Vui lòng chọn hoặc chụp ảnh chứng chỉ."

    if errors:
        raise CertificateValidationError(errors)
    return ValidCertificate(name=name, credits=credits, issued_on=issued_on, image_url=image_url)


def validate_upload(size: int, mime_type: Optional[str]) -> None:
    """Image uploads: image MIME types only, at most MAX_IMAGE_SIZE_MB."""
    if not mime_type or not mime_type.startswith("image/"):
        raise CertificateValidationError({"image_url": "Chỉ chấp nhận tệp hình ảnh."})
    if size > MAX_IMAGE_BYTES:
        raise CertificateValidationError(
            {"image_url": f"Lỗi: Kích thước tệp quá lớn (tối đa {MAX_IMAGE_SIZE_MB}MB)."}
        )


def can_manage(actor: UserDB, owner_id: str) -> bool:
    return actor.role == UserRole.ADMIN.value or actor.id == owner_id


class CertificateService:
    """Certificate CRUD on behalf of an acting principal."""

    def __init__(self, db: Session, drive: DriveBridgeClient, audit: Optional[AuditLogger] = None):
        self.db = db
        self.repo = CertificateRepository(db)
        self.drive = drive
        self.audit = audit or AuditLogger(db)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def list_for_user(self, user_id: str, year: Optional[int] = None,
                      search: Optional[str] = None) -> Tuple[List[CertificateDB], float]:
        """Owner's certificates (newest first) with the listing's credit total."""
        certs = self.repo.for_user(user_id)
        if year is not None:
            certs = [c for c in certs if c.issued_at.year == year]
        needle = normalize_text(search or "").strip()
        if needle:
            certs = [c for c in certs if needle in normalize_text(c.name)]
        total = sum(c.credits or 0 for c in certs)
        return certs, total

    def credits_by_year(self, user_id: str) -> Dict[int, float]:
        totals: Dict[int, float] = {}
        for cert in self.repo.for_user(user_id):
            year = cert.issued_at.year
            totals[year] = totals.get(year, 0) + (cert.credits or 0)
        return dict(sorted(totals.items()))

    def get_for(self, actor: UserDB, certificate_id: str) -> Optional[CertificateDB]:
        """Certificate if it exists and the actor may manage it."""
        cert = self.repo.get(certificate_id)
        if cert is None:
            return None
        if not can_manage(actor, cert.user_id):
            raise CertificatePermissionError("Bạn không có quyền thao tác trên chứng chỉ này.")
        return cert

    # =========================================================================
    # COMMANDS
    # =========================================================================

    def create(self, actor: UserDB, owner: UserDB, data: CertificateInput) -> CertificateDB:
        if not can_manage(actor, owner.id):
            raise CertificatePermissionError("Bạn không có quyền thêm chứng chỉ cho người dùng này.")
        valid = validate_certificate(data)

        cert = self.repo.add(CertificateDB(
            id=str(uuid4()),
            user_id=owner.id,
            name=valid.name,
            credits=valid.credits,
            issued_at=valid.issued_at,
            image_url=valid.image_url,
        ))
        logger.info(f"Certificate {cert.id} created for {owner.username} by {actor.username}")
        self.audit.log(actor, AuditAction.CERTIFICATE_CREATE, "certificate", cert.id, cert.name,
                       {"owner_id": owner.id, "credits": cert.credits})
        return cert

    async def update(self, actor: UserDB, cert: CertificateDB, data: CertificateInput) -> CertificateDB:
        """
        Full-form update. When the image changes the previous file is removed;
        a failed removal is logged and the update still goes through.
        """
        if not can_manage(actor, cert.user_id):
            raise CertificatePermissionError("Bạn không có quyền thao tác trên chứng chỉ này.")
        valid = validate_certificate(data)

        old_url = cert.image_url
        if old_url and old_url != valid.image_url:
            old_id = extract_file_id_from_url(old_url)
            if old_id and old_id != extract_file_id_from_url(valid.image_url):
                if not await self.drive.delete_by_url(old_url):
                    logger.warning(f"Old image of certificate {cert.id} was not removed; continuing update")

        cert = self.repo.apply_changes(cert, {
            "name": valid.name,
            "credits": valid.credits,
            "issued_at": valid.issued_at,
            "image_url": valid.image_url,
        })
        logger.info(f"Certificate {cert.id} updated by {actor.username}")
        self.audit.log(actor, AuditAction.CERTIFICATE_UPDATE, "certificate", cert.id, cert.name)
        return cert

    async def delete(self, actor: UserDB, cert: CertificateDB) -> None:
        """Remove the stored image first, then the record."""
        if not can_manage(actor, cert.user_id):
            raise CertificatePermissionError("Bạn không có quyền thao tác trên chứng chỉ này.")

        file_id = extract_file_id_from_url(cert.image_url)
        if file_id:
            if self.drive.configured:
                await self.drive.delete(file_id)
            else:
                logger.warning(f"File storage not configured; image {file_id} of certificate {cert.id} left in place")

        cert_id, cert_name = cert.id, cert.name
        self.repo.delete(cert)
        logger.info(f"Certificate {cert_id} deleted by {actor.username}")
        self.audit.log(actor, AuditAction.CERTIFICATE_DELETE, "certificate", cert_id, cert_name)
