"""
CME Tracker - Report Materializer

Shapes aggregated data into one of the closed set of report kinds.
Each kind fixes its header mapping (field key -> display label) and its
row type; totals always come from the aggregator, never re-derived.
"""
import logging
from dataclasses import dataclass, field, fields
from numbers import Number
from typing import Dict, List, Optional

from ...models.db_models import STAFF_ROLES
from ...models.reporting import (
    FilterMode, ReportKind, SortDirection, GroupDimension, TimeFilter, ComplianceCycle,
    ReportDataset, PrincipalRecord, CertificateRecord,
    ComplianceRow, SummaryRow, CertificateLine, NestedDetailRow, CertificateDetailRow,
    MaterializedReport, ReportRow,
    REPORT_KIND_LABELS, FIXED_ORDER_KINDS, UNASSIGNED_LABEL,
)
from .aggregator import (
    CompliancePolicy, DEFAULT_POLICY,
    evaluate_compliance, filter_by_time, filter_by_cycle, relevant_principals,
    sum_by_user, group_by, order_groups,
)
from .collation import vi_sort_key

logger = logging.getLogger(__name__)

ALL_CATEGORIES = "all"


class ReportRequestError(ValueError):
    """The report request cannot be materialized (missing cycle, unknown column...)."""
    pass


# =============================================================================
# HEADERS
# =============================================================================

REPORT_HEADERS: Dict[ReportKind, Dict[str, str]] = {
    ReportKind.COMPLIANCE: {
        "name": "Họ và tên",
        "title": "Chức danh",
        "total_credits": "Tổng số tiết",
        "requirement": "Yêu cầu",
        "status": "Trạng thái",
    },
    ReportKind.SUMMARY: {
        "name": "Họ và tên",
        "title": "Chức danh",
        "department": "Khoa/Phòng",
        "total_credits": "Tổng số tiết",
    },
    ReportKind.SUMMARY_DETAIL: {
        "name": "Họ tên",
        "certificates": "Tên chứng chỉ",
        "total_credits": "Tổng tiết",
    },
    ReportKind.DETAIL: {
        "name": "Họ tên",
        "certificate_name": "Tên chứng chỉ",
        "issued_on": "Ngày cấp",
        "credits": "Số tiết",
        "user_total_credits": "Tổng tiết",
    },
    ReportKind.DEPARTMENT: {
        "name": "Họ tên",
        "total_credits": "Tổng số tiết",
    },
    ReportKind.TITLE: {
        "name": "Họ tên",
        "total_credits": "Tổng số tiết",
    },
}


@dataclass
class ReportRequest:
    """What the caller asked for."""
    kind: ReportKind
    time_filter: TimeFilter = field(default_factory=TimeFilter)
    cycle: Optional[ComplianceCycle] = None
    category_id: str = ALL_CATEGORIES  # department/title filter for grouped kinds
    sort_key: Optional[str] = None
    sort_direction: SortDirection = SortDirection.ASCENDING


def describe_period(request: ReportRequest) -> str:
    """Human-readable window the report covers."""
    if request.kind == ReportKind.COMPLIANCE:
        return f"Chu kỳ {request.cycle.label}" if request.cycle else ""
    tf = request.time_filter
    mode = FilterMode(tf.mode)
    if mode == FilterMode.YEAR and tf.year is not None:
        return f"Năm {tf.year}"
    if mode == FilterMode.RANGE and tf.start and tf.end:
        return f"Từ {tf.start:%d/%m/%Y} đến {tf.end:%d/%m/%Y}"
    if mode == FilterMode.ALL:
        return "Toàn thời gian"
    return ""


# =============================================================================
# MATERIALIZER
# =============================================================================

class ReportMaterializer:
    """
    Build MaterializedReport objects from a visibility-scoped dataset.

    Only principals with a staff role (user, reporter_user) are reported on.
    """

    def __init__(self, dataset: ReportDataset, policy: CompliancePolicy = DEFAULT_POLICY):
        self.dataset = dataset
        self.policy = policy
        self.department_names = dataset.department_names
        self.title_names = dataset.title_names
        self.principals = relevant_principals(dataset.users, STAFF_ROLES)

    def materialize(self, request: ReportRequest) -> MaterializedReport:
        kind = ReportKind(request.kind)
        builders = {
            ReportKind.COMPLIANCE: self._compliance,
            ReportKind.SUMMARY: self._summary,
            ReportKind.SUMMARY_DETAIL: self._summary_detail,
            ReportKind.DETAIL: self._detail,
            ReportKind.DEPARTMENT: self._department,
            ReportKind.TITLE: self._title,
        }
        report = builders[kind](request)

        if request.sort_key:
            report.rows = sort_rows(report.rows, kind, request.sort_key, request.sort_direction)

        logger.info(f"Materialized {kind.value} report with {len(report.rows)} rows")
        return report

    # -------------------------------------------------------------------------

    def _new_report(self, kind: ReportKind, request: ReportRequest, rows: List[ReportRow]) -> MaterializedReport:
        title = REPORT_KIND_LABELS[kind]
        period = describe_period(request)
        if period:
            title = f"{title} ({period})"
        return MaterializedReport(kind=kind, title=title, headers=dict(REPORT_HEADERS[kind]), rows=rows)

    def _title_of(self, user: PrincipalRecord) -> str:
        return self.title_names.get(user.title_id, UNASSIGNED_LABEL)

    def _department_of(self, user: PrincipalRecord) -> str:
        return self.department_names.get(user.department_id, UNASSIGNED_LABEL)

    def _windowed(self, request: ReportRequest) -> List[CertificateRecord]:
        return filter_by_time(self.dataset.certificates, request.time_filter)

    def _summary_rows(self, users: List[PrincipalRecord], totals: Dict[str, float]) -> List[SummaryRow]:
        return [
            SummaryRow(
                id=user.id,
                name=user.name,
                title=self._title_of(user),
                department=self._department_of(user),
                total_credits=totals.get(user.id, 0),
                department_id=user.department_id,
                title_id=user.title_id,
            )
            for user in users
        ]

    def _compliance(self, request: ReportRequest) -> MaterializedReport:
        # Judged over the configured cycle, not the interactive time filter
        if request.cycle is None:
            raise ReportRequestError("Vui lòng cấu hình chu kỳ tuân thủ trong trang Quản trị.")
        totals = sum_by_user(filter_by_cycle(self.dataset.certificates, request.cycle))

        rows = []
        for user in self.principals:
            total = totals.get(user.id, 0)
            result = evaluate_compliance(user, total, request.cycle, self.policy)
            rows.append(ComplianceRow(
                id=user.id,
                name=user.name,
                title=self._title_of(user),
                total_credits=total,
                requirement=result.required,
                status=result.status.value,
            ))
        return self._new_report(ReportKind.COMPLIANCE, request, rows)

    def _summary(self, request: ReportRequest) -> MaterializedReport:
        totals = sum_by_user(self._windowed(request))
        return self._new_report(ReportKind.SUMMARY, request, self._summary_rows(self.principals, totals))

    def _certificates_by_user(self, request: ReportRequest) -> Dict[str, List[CertificateRecord]]:
        by_user: Dict[str, List[CertificateRecord]] = {}
        for cert in self._windowed(request):
            by_user.setdefault(cert.user_id, []).append(cert)
        for certs in by_user.values():
            certs.sort(key=lambda c: c.issued_at)
        return by_user

    def _summary_detail(self, request: ReportRequest) -> MaterializedReport:
        by_user = self._certificates_by_user(request)
        totals = sum_by_user(c for certs in by_user.values() for c in certs)

        rows = []
        for user in self.principals:
            lines = [
                CertificateLine(name=c.name, credits=c.credits, issued_on=c.issued_at.date().isoformat())
                for c in by_user.get(user.id, [])
            ]
            rows.append(NestedDetailRow(
                id=user.id,
                name=user.name,
                certificates=lines,
                total_credits=totals.get(user.id, 0),
            ))
        return self._new_report(ReportKind.SUMMARY_DETAIL, request, rows)

    def _detail(self, request: ReportRequest) -> MaterializedReport:
        by_user = self._certificates_by_user(request)
        totals = sum_by_user(c for certs in by_user.values() for c in certs)

        rows = []
        for user in self.principals:
            # Principals with nothing to enumerate are omitted
            for cert in by_user.get(user.id, []):
                rows.append(CertificateDetailRow(
                    id=cert.id,
                    user_id=user.id,
                    name=user.name,
                    certificate_name=cert.name,
                    issued_on=cert.issued_at.date().isoformat(),
                    credits=cert.credits,
                    user_total_credits=totals.get(user.id, 0),
                ))
        return self._new_report(ReportKind.DETAIL, request, rows)

    def _grouped(self, kind: ReportKind, dimension: GroupDimension, request: ReportRequest) -> MaterializedReport:
        users = self.principals
        category_id = request.category_id or ALL_CATEGORIES
        if category_id != ALL_CATEGORIES:
            attr = "department_id" if dimension == GroupDimension.DEPARTMENT else "title_id"
            users = [u for u in users if getattr(u, attr) == category_id]

        totals = sum_by_user(self._windowed(request))
        rows = self._summary_rows(users, totals)
        group_label = "department" if dimension == GroupDimension.DEPARTMENT else "title"
        rows.sort(key=lambda r: (vi_sort_key(getattr(r, group_label)), vi_sort_key(r.name)))

        names = self.department_names if dimension == GroupDimension.DEPARTMENT else self.title_names
        report = self._new_report(kind, request, rows)
        report.groups = order_groups(group_by(rows, dimension), names)
        return report

    def _department(self, request: ReportRequest) -> MaterializedReport:
        return self._grouped(ReportKind.DEPARTMENT, GroupDimension.DEPARTMENT, request)

    def _title(self, request: ReportRequest) -> MaterializedReport:
        return self._grouped(ReportKind.TITLE, GroupDimension.TITLE, request)


def materialize(dataset: ReportDataset, request: ReportRequest,
                policy: CompliancePolicy = DEFAULT_POLICY) -> MaterializedReport:
    """Convenience wrapper around ReportMaterializer."""
    return ReportMaterializer(dataset, policy).materialize(request)


# =============================================================================
# SORTING
# =============================================================================

def _is_number(value) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def sort_rows(rows: List[ReportRow], kind: ReportKind, key: str,
              direction: SortDirection = SortDirection.ASCENDING) -> List[ReportRow]:
    """
    Sort interactive report rows by one column.

    Grouped kinds and the per-certificate detail kind keep their fixed
    grouping order whatever key is requested. Text columns use Vietnamese
    collation, numeric columns compare numerically, anything else
    (nested lists) leaves the order unchanged.
    """
    kind = ReportKind(kind)
    if kind in FIXED_ORDER_KINDS or not rows:
        return list(rows)

    known = {f.name for f in fields(rows[0])}
    if key not in known:
        raise ReportRequestError(f"Không thể sắp xếp theo cột '{key}'.")

    values = [getattr(row, key) for row in rows]
    if all(isinstance(v, str) for v in values):
        sort_key = lambda row: vi_sort_key(getattr(row, key))  # noqa: E731
    elif all(_is_number(v) for v in values):
        sort_key = lambda row: getattr(row, key)  # noqa: E731
    else:
        return list(rows)

    reverse = SortDirection(direction) == SortDirection.DESCENDING
    return sorted(rows, key=sort_key, reverse=reverse)
