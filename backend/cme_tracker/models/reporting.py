"""
CME Tracker - Reporting Models

Plain dataclasses flowing through the reporting pipeline:
Loader -> Aggregator -> Materializer -> (Exporters | Snapshot Publisher).

Report rows are a tagged variant: every ReportKind owns exactly one row type,
and MaterializedReport.kind is the tag consumers switch on.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional, Union


# =============================================================================
# ENUMS
# =============================================================================

class FilterMode(str, Enum):
    YEAR = "year"
    ALL = "all"
    RANGE = "range"


class ReportKind(str, Enum):
    COMPLIANCE = "compliance"          # compliance status per cycle
    SUMMARY = "summary"                # flat summary
    SUMMARY_DETAIL = "summary_detail"  # flat summary with nested certificate detail
    DETAIL = "detail"                  # one row per certificate
    DEPARTMENT = "department"          # grouped by department
    TITLE = "title"                    # grouped by title


class ComplianceStatus(str, Enum):
    MET = "met"
    UNMET = "unmet"


class GroupDimension(str, Enum):
    DEPARTMENT = "department"
    TITLE = "title"


class SortDirection(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


REPORT_KIND_LABELS: Dict[ReportKind, str] = {
    ReportKind.COMPLIANCE: "Báo cáo tuân thủ theo chu kỳ",
    ReportKind.SUMMARY: "Báo cáo tổng hợp toàn bộ",
    ReportKind.SUMMARY_DETAIL: "Báo cáo tổng hợp kèm chi tiết chứng chỉ",
    ReportKind.DETAIL: "Báo cáo chi tiết chứng chỉ",
    ReportKind.DEPARTMENT: "Báo cáo tổng hợp theo Khoa/Phòng",
    ReportKind.TITLE: "Báo cáo tổng hợp theo Chức danh",
}

COMPLIANCE_STATUS_LABELS: Dict[str, str] = {
    ComplianceStatus.MET.value: "Đã đạt",
    ComplianceStatus.UNMET.value: "Chưa đạt",
}

# Kinds that keep their grouping order regardless of the requested sort key
FIXED_ORDER_KINDS = (ReportKind.DEPARTMENT, ReportKind.TITLE, ReportKind.DETAIL)

UNASSIGNED_LABEL = "Chưa có"


# =============================================================================
# INPUTS
# =============================================================================

@dataclass(frozen=True)
class TimeFilter:
    """Time window applied to certificate issue dates (evaluated in UTC)."""
    mode: FilterMode = FilterMode.ALL
    year: Optional[int] = None
    start: Optional[date] = None
    end: Optional[date] = None


@dataclass(frozen=True)
class ComplianceCycle:
    """Inclusive start/end years over which credits are judged."""
    start_year: int
    end_year: int

    def contains(self, year: int) -> bool:
        return self.start_year <= year <= self.end_year

    @property
    def label(self) -> str:
        return f"{self.start_year}-{self.end_year}"


@dataclass
class PrincipalRecord:
    id: str
    name: str
    username: str = ""
    role: str = "user"
    status: str = "active"
    department_id: Optional[str] = None
    title_id: Optional[str] = None


@dataclass
class CertificateRecord:
    id: str
    user_id: str
    name: str
    credits: float
    issued_at: datetime
    image_url: str = ""


@dataclass
class CategoryRecord:
    id: str
    name: str


@dataclass
class ReportDataset:
    """Everything the reporting pipeline needs, already visibility-scoped."""
    users: List[PrincipalRecord] = field(default_factory=list)
    certificates: List[CertificateRecord] = field(default_factory=list)
    departments: List[CategoryRecord] = field(default_factory=list)
    titles: List[CategoryRecord] = field(default_factory=list)

    @property
    def department_names(self) -> Dict[str, str]:
        return {d.id: d.name for d in self.departments}

    @property
    def title_names(self) -> Dict[str, str]:
        return {t.id: t.name for t in self.titles}


# =============================================================================
# AGGREGATION OUTPUT
# =============================================================================

@dataclass(frozen=True)
class ComplianceResult:
    required: float
    status: ComplianceStatus


@dataclass
class RowGroup:
    """Rows sharing one category id, with their summed totals."""
    rows: List["SummaryRow"] = field(default_factory=list)
    total_credits: float = 0


# =============================================================================
# REPORT ROWS (one type per ReportKind)
# =============================================================================

@dataclass
class ComplianceRow:
    id: str
    name: str
    title: str
    total_credits: float
    requirement: float
    status: str  # ComplianceStatus value


@dataclass
class SummaryRow:
    id: str
    name: str
    title: str
    department: str
    total_credits: float
    department_id: Optional[str] = None
    title_id: Optional[str] = None


@dataclass
class CertificateLine:
    name: str
    credits: float
    issued_on: str  # YYYY-MM-DD


@dataclass
class NestedDetailRow:
    id: str
    name: str
    certificates: List[CertificateLine]
    total_credits: float


@dataclass
class CertificateDetailRow:
    id: str  # certificate id
    user_id: str
    name: str
    certificate_name: str
    issued_on: str  # YYYY-MM-DD
    credits: float
    user_total_credits: float


ReportRow = Union[ComplianceRow, SummaryRow, NestedDetailRow, CertificateDetailRow]


@dataclass
class ReportGroup:
    group_id: str
    group_name: str
    rows: List[SummaryRow]
    total_credits: float


@dataclass
class MaterializedReport:
    kind: ReportKind
    title: str
    headers: Dict[str, str]
    rows: List[ReportRow]
    groups: List[ReportGroup] = field(default_factory=list)

    def row_dicts(self) -> List[dict]:
        return [asdict(row) for row in self.rows]


# =============================================================================
# ROW (DE)SERIALIZATION
# =============================================================================

ROW_TYPES = {
    ReportKind.COMPLIANCE: ComplianceRow,
    ReportKind.SUMMARY: SummaryRow,
    ReportKind.SUMMARY_DETAIL: NestedDetailRow,
    ReportKind.DETAIL: CertificateDetailRow,
    ReportKind.DEPARTMENT: SummaryRow,
    ReportKind.TITLE: SummaryRow,
}


def row_from_dict(kind: ReportKind, data: dict) -> ReportRow:
    """Rebuild the typed row for a report kind from its plain-dict form."""
    row_type = ROW_TYPES[ReportKind(kind)]
    if row_type is NestedDetailRow:
        data = dict(data)
        data["certificates"] = [CertificateLine(**line) for line in data.get("certificates", [])]
    return row_type(**data)


def rows_from_dicts(kind: ReportKind, items: List[dict]) -> List[ReportRow]:
    return [row_from_dict(kind, item) for item in items]
