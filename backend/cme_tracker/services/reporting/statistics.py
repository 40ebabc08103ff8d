"""
CME Tracker - Statistics
Dashboard figures over active staff: cycle totals, averages, compliance
rate, monthly certificate counts and credits per year.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from ...models.db_models import STAFF_ROLES, UserStatus, normalize_status
from ...models.reporting import ReportDataset, ComplianceCycle, ComplianceStatus
from .aggregator import (
    CompliancePolicy, DEFAULT_POLICY, evaluate_compliance, filter_by_cycle, sum_by_user,
)


@dataclass
class StatisticsSummary:
    staff_count: int
    total_certificates: int
    average_credits: float  # cycle credits per staff member, 1 decimal
    compliance_rate: int  # percent of staff meeting their target
    monthly_certificates: List[int] = field(default_factory=lambda: [0] * 12)
    credits_by_year: Dict[int, float] = field(default_factory=dict)
    chart_year: Optional[int] = None


def round_half_up(value: float, step: str) -> Decimal:
    """Round halves away from zero, as the dashboard displays them (0.25 -> 0.3)."""
    return Decimal(str(value)).quantize(Decimal(step), rounding=ROUND_HALF_UP)


def compute_statistics(
    dataset: ReportDataset,
    cycle: Optional[ComplianceCycle],
    chart_year: int,
    policy: CompliancePolicy = DEFAULT_POLICY,
) -> StatisticsSummary:
    """Statistics over non-disabled staff and their certificates."""
    staff = [
        u for u in dataset.users
        if u.role in STAFF_ROLES and normalize_status(u.status) != UserStatus.DISABLED.value
    ]
    staff_ids = {u.id for u in staff}
    certificates = [c for c in dataset.certificates if c.user_id in staff_ids]

    monthly = [0] * 12
    credits_by_year: Dict[int, float] = {}
    for cert in certificates:
        year = cert.issued_at.year
        credits_by_year[year] = credits_by_year.get(year, 0) + cert.credits
        if year == chart_year:
            monthly[cert.issued_at.month - 1] += 1

    summary = StatisticsSummary(
        staff_count=len(staff),
        total_certificates=0,
        average_credits=0.0,
        compliance_rate=0,
        monthly_certificates=monthly,
        credits_by_year=dict(sorted(credits_by_year.items(), reverse=True)),
        chart_year=chart_year,
    )
    if cycle is None or not staff:
        return summary

    in_cycle = filter_by_cycle(certificates, cycle)
    totals = sum_by_user(in_cycle)
    compliant = sum(
        1 for user in staff
        if evaluate_compliance(user, totals.get(user.id, 0), cycle, policy).status == ComplianceStatus.MET
    )

    summary.total_certificates = len(in_cycle)
    summary.average_credits = float(round_half_up(sum(c.credits for c in in_cycle) / len(staff), "0.1"))
    summary.compliance_rate = int(round_half_up(compliant * 100 / len(staff), "1"))
    return summary


def available_years(dataset: ReportDataset, current_year: int) -> List[int]:
    """Years having certificates, plus the current year, newest first."""
    years = {c.issued_at.year for c in dataset.certificates}
    years.add(current_year)
    return sorted(years, reverse=True)
