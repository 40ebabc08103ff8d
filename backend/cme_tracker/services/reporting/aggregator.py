"""
CME Tracker - Reporting Aggregator

Pure functions over in-memory records: time filtering, per-user credit
sums, compliance evaluation and category grouping. No I/O happens here.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime, time
from typing import Dict, Iterable, List, Mapping, Optional

from ...models.reporting import (
    FilterMode, TimeFilter, ComplianceCycle, ComplianceStatus, ComplianceResult,
    GroupDimension, PrincipalRecord, CertificateRecord, SummaryRow, RowGroup, ReportGroup,
)
from .collation import vi_sort_key

logger = logging.getLogger(__name__)

COMPLIANCE_EXEMPT_TITLE_ID = os.getenv("COMPLIANCE_EXEMPT_TITLE_ID", "4")
COMPLIANCE_EXEMPT_TARGET = float(os.getenv("COMPLIANCE_EXEMPT_TARGET", "8"))
COMPLIANCE_STANDARD_TARGET = float(os.getenv("COMPLIANCE_STANDARD_TARGET", "120"))

UNKNOWN_GROUP_LABEL = "Không xác định"


# =============================================================================
# COMPLIANCE RULE
# =============================================================================

@dataclass(frozen=True)
class CompliancePolicy:
    """Credit target keyed by title: one exempt title gets the lowered target."""
    exempt_title_id: str = COMPLIANCE_EXEMPT_TITLE_ID
    exempt_target: float = COMPLIANCE_EXEMPT_TARGET
    standard_target: float = COMPLIANCE_STANDARD_TARGET

    def required_for(self, title_id: Optional[str]) -> float:
        if title_id is not None and str(title_id) == self.exempt_title_id:
            return self.exempt_target
        return self.standard_target


DEFAULT_POLICY = CompliancePolicy()


def evaluate_compliance(
    user: PrincipalRecord,
    total_credits: float,
    cycle: Optional[ComplianceCycle] = None,
    policy: CompliancePolicy = DEFAULT_POLICY,
) -> ComplianceResult:
    """
    Judge a user's cycle total against the target for their title.

    The cycle only scopes which credits were summed by the caller; it is
    accepted here so the result can be attributed to a cycle.
    """
    required = policy.required_for(user.title_id)
    status = ComplianceStatus.MET if total_credits >= required else ComplianceStatus.UNMET
    return ComplianceResult(required=required, status=status)


# =============================================================================
# FILTERING
# =============================================================================

def filter_by_time(certificates: Iterable[CertificateRecord], time_filter: TimeFilter) -> List[CertificateRecord]:
    """
    Keep certificates inside the time window.

    - YEAR: issue-date year equals time_filter.year
    - RANGE: [start 00:00:00, end 23:59:59.999999] UTC, empty when a bound is missing
    - ALL: unchanged
    """
    certificates = list(certificates)
    mode = FilterMode(time_filter.mode)

    if mode == FilterMode.ALL:
        return certificates

    if mode == FilterMode.YEAR:
        if time_filter.year is None:
            return []
        return [c for c in certificates if c.issued_at.year == int(time_filter.year)]

    if time_filter.start is None or time_filter.end is None:
        return []
    start = datetime.combine(time_filter.start, time.min)
    end = datetime.combine(time_filter.end, time.max)
    return [c for c in certificates if start <= c.issued_at <= end]


def filter_by_cycle(certificates: Iterable[CertificateRecord], cycle: ComplianceCycle) -> List[CertificateRecord]:
    """Keep certificates whose issue year falls inside the compliance cycle."""
    return [c for c in certificates if cycle.contains(c.issued_at.year)]


def relevant_principals(users: Iterable[PrincipalRecord], roles: Iterable[str]) -> List[PrincipalRecord]:
    """Principals whose role is reported on, in loader order."""
    roles = set(roles)
    return [u for u in users if u.role in roles]


# =============================================================================
# SUMS & GROUPS
# =============================================================================

def sum_by_user(certificates: Iterable[CertificateRecord]) -> Dict[str, float]:
    """Arithmetic sum of credits per owning user id."""
    totals: Dict[str, float] = {}
    for cert in certificates:
        totals[cert.user_id] = totals.get(cert.user_id, 0) + cert.credits
    return totals


def group_by(rows: Iterable[SummaryRow], dimension: GroupDimension) -> Dict[str, RowGroup]:
    """
    Group summary rows by the referenced category id.
    Rows without a category reference are left out of grouped output.
    """
    dimension = GroupDimension(dimension)
    groups: Dict[str, RowGroup] = {}
    for row in rows:
        group_id = row.department_id if dimension == GroupDimension.DEPARTMENT else row.title_id
        if not group_id:
            continue
        group = groups.setdefault(group_id, RowGroup())
        group.rows.append(row)
        group.total_credits += row.total_credits
    return groups


def order_groups(groups: Mapping[str, RowGroup], names: Mapping[str, str]) -> List[ReportGroup]:
    """Groups as a list ordered by category display name (Vietnamese collation)."""
    ordered = sorted(groups.items(), key=lambda item: vi_sort_key(names.get(item[0], "")))
    return [
        ReportGroup(
            group_id=group_id,
            group_name=names.get(group_id, UNKNOWN_GROUP_LABEL),
            rows=list(group.rows),
            total_credits=group.total_credits,
        )
        for group_id, group in ordered
    ]
