"""
CME Tracker - Report Data Loader
Reads users, certificates and categories into plain reporting records,
scoped to what the acting principal may see.
"""
import logging
import math
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from ...models.db_models import (
    UserDB, CertificateDB, DepartmentDB, TitleDB, PRIVILEGED_ROLES, normalize_status,
)
from ...models.reporting import PrincipalRecord, CertificateRecord, CategoryRecord, ReportDataset
from .collation import vi_sort_key

logger = logging.getLogger(__name__)


def to_principal_record(user: UserDB) -> PrincipalRecord:
    return PrincipalRecord(
        id=user.id,
        name=user.name or "",
        username=user.username or "",
        role=user.role,
        status=normalize_status(user.status),
        department_id=user.department_id,
        title_id=user.title_id,
    )


def to_certificate_record(cert: CertificateDB) -> Optional[CertificateRecord]:
    """
    Convert a stored certificate, or return None when it is malformed
    (no owner, no issue date, credits missing / non-numeric / negative / not finite).
    """
    if not cert.user_id or cert.issued_at is None:
        return None
    try:
        credits = float(cert.credits)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(credits) or credits < 0:
        return None

    issued_at = cert.issued_at
    if isinstance(issued_at, date) and not isinstance(issued_at, datetime):
        issued_at = datetime(issued_at.year, issued_at.month, issued_at.day)

    return CertificateRecord(
        id=cert.id,
        user_id=cert.user_id,
        name=cert.name or "",
        credits=credits,
        issued_at=issued_at,
        image_url=cert.image_url or "",
    )


class ReportDataLoader:
    """Load a ReportDataset for one principal."""

    def __init__(self, db: Session):
        self.db = db

    def load(self, principal: UserDB) -> ReportDataset:
        privileged = principal.role in PRIVILEGED_ROLES

        user_query = self.db.query(UserDB)
        cert_query = self.db.query(CertificateDB)
        if not privileged:
            user_query = user_query.filter(UserDB.id == principal.id)
            cert_query = cert_query.filter(CertificateDB.user_id == principal.id)

        users = sorted((to_principal_record(u) for u in user_query.all()), key=lambda u: vi_sort_key(u.name))
        certificates = self._certificates(cert_query.all())

        departments = [CategoryRecord(id=d.id, name=d.name) for d in self.db.query(DepartmentDB).all()]
        titles = [CategoryRecord(id=t.id, name=t.name) for t in self.db.query(TitleDB).all()]

        logger.debug(
            f"Loaded report dataset for {principal.username}: "
            f"{len(users)} users, {len(certificates)} certificates"
        )
        return ReportDataset(users=users, certificates=certificates, departments=departments, titles=titles)

    def _certificates(self, rows: List[CertificateDB]) -> List[CertificateRecord]:
        records = []
        for cert in rows:
            record = to_certificate_record(cert)
            if record is None:
                logger.warning(f"Dropping malformed certificate {cert.id} (user={cert.user_id})")
                continue
            records.append(record)
        return records
