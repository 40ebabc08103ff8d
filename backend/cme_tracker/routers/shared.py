"""
CME Tracker - Shared Report Viewer
Public, read-only access to report snapshots by id and token.
No account needed; every denial cause is logged by the snapshot service.
"""
from datetime import datetime
from typing import Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import HTMLResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.reporting import exporters
from ..services.snapshots import (
    SnapshotService, SnapshotView, SnapshotAccessError, SnapshotNotFound, SnapshotExpired, SnapshotFormatError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shared", tags=["shared"])

FORMAT_ERROR_MESSAGE = "Lỗi định dạng dữ liệu báo cáo."


class SharedReportResponse(BaseModel):
    id: str
    title: str
    kind: str
    headers: Dict[str, str]
    rows: List[dict]
    created_by: str
    created_at: datetime
    expires_at: datetime


def _resolve(snapshot_id: str, token: Optional[str], db: Session) -> SnapshotView:
    try:
        return SnapshotService(db).resolve(snapshot_id, token)
    except SnapshotNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except SnapshotExpired as e:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=e.message)
    except SnapshotAccessError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
    except SnapshotFormatError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=FORMAT_ERROR_MESSAGE)


@router.get("/{snapshot_id}", response_model=SharedReportResponse)
async def view_shared_report(
    snapshot_id: str,
    token: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    """Frozen headers and rows exactly as they were published."""
    view = _resolve(snapshot_id, token, db)
    return SharedReportResponse(
        id=view.id,
        title=view.title,
        kind=view.kind,
        headers=view.headers,
        rows=view.rows,
        created_by=view.created_by,
        created_at=view.created_at,
        expires_at=view.expires_at,
    )


@router.get("/{snapshot_id}/print", response_class=HTMLResponse)
async def print_shared_report(
    snapshot_id: str,
    token: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    """Printable HTML rendering of a snapshot."""
    view = _resolve(snapshot_id, token, db)
    try:
        report = view.to_report()
    except SnapshotFormatError as e:
        logger.error(str(e))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=FORMAT_ERROR_MESSAGE)
    subtitle = (f"Người tạo: {view.created_by} - Hết hạn vào: "
                f"{view.expires_at:%d/%m/%Y %H:%M} (UTC)")
    return HTMLResponse(exporters.to_html(report, subtitle=subtitle))
