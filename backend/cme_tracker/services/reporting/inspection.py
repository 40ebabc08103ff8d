"""
CME Tracker - Inspection
Look up who holds a given certificate, or what a given person holds.
Searches are accent-insensitive.
"""
from dataclasses import dataclass
from typing import List

from ...models.db_models import UserRole, UserStatus, normalize_status
from ...models.reporting import ReportDataset, PrincipalRecord, CertificateRecord
from .collation import normalize_text, vi_sort_key

SEARCH_RESULT_LIMIT = 10

# Accounts that never hold certificates of their own
_NON_STAFF_ROLES = (UserRole.ADMIN.value, UserRole.REPORTER.value)


@dataclass
class CertificateHolder:
    user: PrincipalRecord
    certificate: CertificateRecord


def _is_disabled(user: PrincipalRecord) -> bool:
    return normalize_status(user.status) == UserStatus.DISABLED.value


def search_certificate_names(dataset: ReportDataset, term: str, limit: int = SEARCH_RESULT_LIMIT) -> List[str]:
    """Distinct certificate names containing the term, collated."""
    needle = normalize_text(term or "").strip()
    if not needle:
        return []
    names = sorted({c.name for c in dataset.certificates}, key=vi_sort_key)
    return [name for name in names if needle in normalize_text(name)][:limit]


def certificate_holders(dataset: ReportDataset, certificate_name: str) -> List[CertificateHolder]:
    """Every (user, certificate) pair for an exact certificate name; disabled users excluded."""
    users = {u.id: u for u in dataset.users}
    holders = []
    for cert in dataset.certificates:
        if cert.name != certificate_name:
            continue
        user = users.get(cert.user_id)
        if user is None or _is_disabled(user):
            continue
        holders.append(CertificateHolder(user=user, certificate=cert))
    holders.sort(key=lambda h: vi_sort_key(h.user.name))
    return holders


def search_personnel(dataset: ReportDataset, term: str, limit: int = SEARCH_RESULT_LIMIT) -> List[PrincipalRecord]:
    """Staff whose name contains the term; disabled, admin and reporter accounts excluded."""
    needle = normalize_text(term or "").strip()
    if not needle:
        return []
    matches = [
        u for u in dataset.users
        if not _is_disabled(u) and u.role not in _NON_STAFF_ROLES and needle in normalize_text(u.name)
    ]
    return matches[:limit]


def certificates_of(dataset: ReportDataset, user_id: str) -> List[CertificateRecord]:
    """A principal's certificates, newest first."""
    certs = [c for c in dataset.certificates if c.user_id == user_id]
    return sorted(certs, key=lambda c: c.issued_at, reverse=True)
