"""
CME Tracker - Reports Router

Reporting pipeline over HTTP:
Loader -> Aggregator -> Materializer -> (CSV | HTML | shared snapshot).
Also serves the statistics dashboard and the inspection lookups.
All endpoints require a reporting role.
"""
from dataclasses import asdict
from datetime import date, datetime, timezone
from typing import Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import HTMLResponse, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import require_reporter
from ..database import get_db
from ..models.db_models import UserDB
from ..models.reporting import (
    FilterMode, ReportKind, SortDirection, TimeFilter, MaterializedReport, ReportDataset,
)
from ..services.audit_log import AuditAction, AuditLogger
from ..services.context import AppContext, build_app_context
from ..services.integrations import transform_drive_url
from ..services.reporting import ReportDataLoader, ReportMaterializer, ReportRequest, ReportRequestError
from ..services.reporting import exporters, inspection
from ..services.reporting.materializer import ALL_CATEGORIES, describe_period
from ..services.reporting.statistics import compute_statistics, available_years
from ..services.snapshots import SnapshotService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ReportGenerateRequest(BaseModel):
    kind: ReportKind
    filter_mode: FilterMode = FilterMode.ALL
    year: Optional[int] = None
    start: Optional[date] = None
    end: Optional[date] = None
    category_id: str = ALL_CATEGORIES
    sort_key: Optional[str] = None
    sort_direction: SortDirection = SortDirection.ASCENDING


class ReportGroupResponse(BaseModel):
    group_id: str
    group_name: str
    row_ids: List[str]
    total_credits: float


class ReportResponse(BaseModel):
    kind: ReportKind
    title: str
    period: str
    headers: Dict[str, str]
    rows: List[dict]
    groups: List[ReportGroupResponse] = []


class ShareResponse(BaseModel):
    id: str
    token: str
    expires_at: datetime
    share_path: str


class StatisticsResponse(BaseModel):
    staff_count: int
    total_certificates: int
    average_credits: float
    compliance_rate: int
    monthly_certificates: List[int]
    credits_by_year: Dict[int, float]
    chart_year: int
    cycle_start_year: int
    cycle_end_year: int


class PersonResponse(BaseModel):
    id: str
    name: str
    username: str
    role: str
    department_name: Optional[str] = None
    title_name: Optional[str] = None


class InspectionCertificateResponse(BaseModel):
    id: str
    user_id: str
    name: str
    credits: float
    issued_on: date
    display_url: str


class HolderResponse(BaseModel):
    user: PersonResponse
    certificate: InspectionCertificateResponse


# =============================================================================
# HELPERS
# =============================================================================

async def get_report_context(
    current_user: UserDB = Depends(require_reporter),
    db: Session = Depends(get_db),
) -> AppContext:
    return build_app_context(db, current_user)


def _load(ctx: AppContext, db: Session) -> ReportDataset:
    return ReportDataLoader(db).load(ctx.principal)


def _to_report_request(request: ReportGenerateRequest, ctx: AppContext) -> ReportRequest:
    return ReportRequest(
        kind=request.kind,
        time_filter=TimeFilter(mode=request.filter_mode, year=request.year, start=request.start, end=request.end),
        cycle=ctx.cycle,
        category_id=request.category_id or ALL_CATEGORIES,
        sort_key=request.sort_key,
        sort_direction=request.sort_direction,
    )


def _build(request: ReportGenerateRequest, ctx: AppContext, db: Session) -> MaterializedReport:
    try:
        return ReportMaterializer(_load(ctx, db)).materialize(_to_report_request(request, ctx))
    except ReportRequestError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _person(user, ctx: AppContext) -> PersonResponse:
    return PersonResponse(
        id=user.id,
        name=user.name,
        username=user.username,
        role=user.role,
        department_name=ctx.department_names.get(user.department_id),
        title_name=ctx.title_names.get(user.title_id),
    )


def _inspection_certificate(cert) -> InspectionCertificateResponse:
    return InspectionCertificateResponse(
        id=cert.id,
        user_id=cert.user_id,
        name=cert.name,
        credits=cert.credits,
        issued_on=cert.issued_at.date(),
        display_url=transform_drive_url(cert.image_url),
    )


# =============================================================================
# REPORTS
# =============================================================================

@router.post("/generate", response_model=ReportResponse)
async def generate_report(
    request: ReportGenerateRequest,
    ctx: AppContext = Depends(get_report_context),
    db: Session = Depends(get_db)
):
    """Materialize one report kind for the requested window."""
    report = _build(request, ctx, db)
    return ReportResponse(
        kind=report.kind,
        title=report.title,
        period=describe_period(_to_report_request(request, ctx)),
        headers=report.headers,
        rows=report.row_dicts(),
        groups=[
            ReportGroupResponse(
                group_id=g.group_id,
                group_name=g.group_name,
                row_ids=[r.id for r in g.rows],
                total_credits=g.total_credits,
            )
            for g in report.groups
        ],
    )


@router.post("/export/csv")
async def export_csv(
    request: ReportGenerateRequest,
    ctx: AppContext = Depends(get_report_context),
    db: Session = Depends(get_db)
):
    report = _build(request, ctx, db)
    filename = exporters.export_filename(report.kind, datetime.now(timezone.utc).date())
    return Response(
        content=exporters.to_csv(report).encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/export/html", response_class=HTMLResponse)
async def export_html(
    request: ReportGenerateRequest,
    ctx: AppContext = Depends(get_report_context),
    db: Session = Depends(get_db)
):
    report = _build(request, ctx, db)
    return HTMLResponse(exporters.to_html(report, subtitle=f"Người lập: {ctx.principal.name}"))


@router.post("/share", response_model=ShareResponse, status_code=status.HTTP_201_CREATED)
async def share_report(
    request: ReportGenerateRequest,
    ctx: AppContext = Depends(get_report_context),
    db: Session = Depends(get_db)
):
    """Publish an immutable snapshot of the report and return its link."""
    report = _build(request, ctx, db)
    published = SnapshotService(db).publish(report, created_by=ctx.principal.name, created_by_id=ctx.principal.id)
    AuditLogger(db).log(ctx.principal, AuditAction.REPORT_SHARE, "shared_report", published.id, report.title)
    return ShareResponse(
        id=published.id,
        token=published.token,
        expires_at=published.expires_at,
        share_path=f"/shared/{published.id}?token={published.token}",
    )


# =============================================================================
# STATISTICS
# =============================================================================

@router.get("/years", response_model=List[int])
async def report_years(
    ctx: AppContext = Depends(get_report_context),
    db: Session = Depends(get_db)
):
    """Years available for the year filter, newest first."""
    return available_years(_load(ctx, db), datetime.now(timezone.utc).year)


@router.get("/statistics", response_model=StatisticsResponse)
async def statistics(
    year: Optional[int] = Query(None, description="Year for the monthly chart"),
    ctx: AppContext = Depends(get_report_context),
    db: Session = Depends(get_db)
):
    chart_year = year or datetime.now(timezone.utc).year
    summary = compute_statistics(_load(ctx, db), ctx.cycle, chart_year)
    return StatisticsResponse(
        **asdict(summary),
        cycle_start_year=ctx.cycle.start_year,
        cycle_end_year=ctx.cycle.end_year,
    )


# =============================================================================
# INSPECTION
# =============================================================================

@router.get("/inspection/certificate-names", response_model=List[str])
async def search_certificate_names(
    q: str = Query(""),
    ctx: AppContext = Depends(get_report_context),
    db: Session = Depends(get_db)
):
    return inspection.search_certificate_names(_load(ctx, db), q)


@router.get("/inspection/holders", response_model=List[HolderResponse])
async def certificate_holders(
    name: str = Query(...),
    ctx: AppContext = Depends(get_report_context),
    db: Session = Depends(get_db)
):
    """Who holds a certificate with exactly this name."""
    return [
        HolderResponse(user=_person(h.user, ctx), certificate=_inspection_certificate(h.certificate))
        for h in inspection.certificate_holders(_load(ctx, db), name)
    ]


@router.get("/inspection/personnel", response_model=List[PersonResponse])
async def search_personnel(
    q: str = Query(""),
    ctx: AppContext = Depends(get_report_context),
    db: Session = Depends(get_db)
):
    return [_person(u, ctx) for u in inspection.search_personnel(_load(ctx, db), q)]


@router.get("/inspection/users/{user_id}/certificates", response_model=List[InspectionCertificateResponse])
async def certificates_of_user(
    user_id: str,
    ctx: AppContext = Depends(get_report_context),
    db: Session = Depends(get_db)
):
    dataset = _load(ctx, db)
    if not any(u.id == user_id for u in dataset.users):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Không tìm thấy người dùng.")
    return [_inspection_certificate(c) for c in inspection.certificates_of(dataset, user_id)]
