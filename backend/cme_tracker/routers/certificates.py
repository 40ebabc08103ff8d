"""
CME Tracker - Certificates Router
Owner (or admin) certificate CRUD, image upload through the file-storage
bridge, and AI-assisted field extraction from a certificate photo.
"""
from datetime import date, datetime
from typing import Dict, List, Optional, Union
import logging

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import CertificateDB, UserDB
from ..services.certificates import (
    CertificateService, CertificateInput, CertificateValidationError, CertificatePermissionError,
    validate_upload, can_manage,
)
from ..services.context import AppContext, get_app_context, get_ai_client
from ..services.integrations import (
    DriveBridgeClient, DriveBridgeError, GeminiClient, AIServiceError, AINotConfiguredError,
    get_drive_bridge, transform_drive_url,
)
from ..services.integrations.gemini import EXTRACTION_FALLBACK_MESSAGE, AI_NOT_CONFIGURED_MESSAGE
from ..services.repositories import UserRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/certificates", tags=["certificates"])

STORAGE_ERROR_MESSAGE = "Không thể lưu trữ ảnh chứng chỉ. Vui lòng thử lại sau."


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class CertificateRequest(BaseModel):
    name: Optional[str] = None
    credits: Optional[Union[float, str]] = None
    issued_on: Optional[Union[date, str]] = None
    image_url: Optional[str] = None
    user_id: Optional[str] = None  # admin only: create on behalf of another user


class CertificateResponse(BaseModel):
    id: str
    user_id: str
    name: str
    credits: float
    issued_on: date
    image_url: str
    display_url: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CertificateListResponse(BaseModel):
    certificates: List[CertificateResponse]
    total_credits: float


class ChartResponse(BaseModel):
    credits_by_year: Dict[int, float]


class UploadResponse(BaseModel):
    file_id: str
    url: str
    display_url: str


class ExtractionResponse(BaseModel):
    name: Optional[str] = None
    date: Optional[str] = None
    credits: Optional[float] = None


def certificate_response(cert: CertificateDB) -> CertificateResponse:
    return CertificateResponse(
        id=cert.id,
        user_id=cert.user_id,
        name=cert.name,
        credits=cert.credits,
        issued_on=cert.issued_at.date(),
        image_url=cert.image_url or "",
        display_url=transform_drive_url(cert.image_url),
        created_at=cert.created_at,
        updated_at=cert.updated_at,
    )


def _validation_error(e: CertificateValidationError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"message": "Dữ liệu chứng chỉ không hợp lệ.", "errors": e.errors},
    )


def _resolve_owner(ctx: AppContext, db: Session, user_id: Optional[str]) -> UserDB:
    """The principal themself, or (admins only) another user."""
    if not user_id or user_id == ctx.principal.id:
        return ctx.principal
    if not can_manage(ctx.principal, user_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Bạn không có quyền thao tác trên chứng chỉ của người dùng này.")
    owner = UserRepository(db).get(user_id)
    if owner is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Không tìm thấy người dùng.")
    return owner


def _get_managed(service: CertificateService, ctx: AppContext, certificate_id: str) -> CertificateDB:
    try:
        cert = service.get_for(ctx.principal, certificate_id)
    except CertificatePermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if cert is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Không tìm thấy chứng chỉ.")
    return cert


def _to_input(request: CertificateRequest) -> CertificateInput:
    return CertificateInput(
        name=request.name,
        credits=request.credits,
        issued_on=request.issued_on,
        image_url=request.image_url,
    )


# =============================================================================
# CRUD
# =============================================================================

@router.get("", response_model=CertificateListResponse)
async def list_certificates(
    year: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    ctx: AppContext = Depends(get_app_context),
    db: Session = Depends(get_db),
    drive: DriveBridgeClient = Depends(get_drive_bridge),
):
    """Own certificates, newest first, optionally filtered by year and name."""
    owner = _resolve_owner(ctx, db, user_id)
    certs, total = CertificateService(db, drive).list_for_user(owner.id, year=year, search=search)
    return CertificateListResponse(
        certificates=[certificate_response(c) for c in certs],
        total_credits=total,
    )


@router.get("/chart", response_model=ChartResponse)
async def credits_chart(
    user_id: Optional[str] = Query(None),
    ctx: AppContext = Depends(get_app_context),
    db: Session = Depends(get_db),
    drive: DriveBridgeClient = Depends(get_drive_bridge),
):
    owner = _resolve_owner(ctx, db, user_id)
    return ChartResponse(credits_by_year=CertificateService(db, drive).credits_by_year(owner.id))


@router.post("", response_model=CertificateResponse, status_code=status.HTTP_201_CREATED)
async def create_certificate(
    request: CertificateRequest,
    ctx: AppContext = Depends(get_app_context),
    db: Session = Depends(get_db),
    drive: DriveBridgeClient = Depends(get_drive_bridge),
):
    owner = _resolve_owner(ctx, db, request.user_id)
    try:
        cert = CertificateService(db, drive).create(ctx.principal, owner, _to_input(request))
    except CertificateValidationError as e:
        raise _validation_error(e)
    except CertificatePermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    return certificate_response(cert)


@router.put("/{certificate_id}", response_model=CertificateResponse)
async def update_certificate(
    certificate_id: str,
    request: CertificateRequest,
    ctx: AppContext = Depends(get_app_context),
    db: Session = Depends(get_db),
    drive: DriveBridgeClient = Depends(get_drive_bridge),
):
    service = CertificateService(db, drive)
    cert = _get_managed(service, ctx, certificate_id)
    try:
        cert = await service.update(ctx.principal, cert, _to_input(request))
    except CertificateValidationError as e:
        raise _validation_error(e)
    return certificate_response(cert)


@router.delete("/{certificate_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_certificate(
    certificate_id: str,
    ctx: AppContext = Depends(get_app_context),
    db: Session = Depends(get_db),
    drive: DriveBridgeClient = Depends(get_drive_bridge),
):
    """Deletes the stored image first; if that fails the record is kept."""
    service = CertificateService(db, drive)
    cert = _get_managed(service, ctx, certificate_id)
    try:
        await service.delete(ctx.principal, cert)
    except DriveBridgeError:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY,
                            detail="Không thể xóa ảnh chứng chỉ. Vui lòng thử lại sau.")
    return None


# =============================================================================
# IMAGES
# =============================================================================

async def _read_image(file: UploadFile) -> bytes:
    data = await file.read()
    try:
        validate_upload(len(data), file.content_type)
    except CertificateValidationError as e:
        raise _validation_error(e)
    return data


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
    file: UploadFile = File(...),
    user_id: Optional[str] = Query(None),
    ctx: AppContext = Depends(get_app_context),
    db: Session = Depends(get_db),
    drive: DriveBridgeClient = Depends(get_drive_bridge),
):
    """Upload a certificate photo into the owner's storage folder."""
    owner = _resolve_owner(ctx, db, user_id)
    data = await _read_image(file)
    try:
        uploaded = await drive.upload(data, file.content_type, owner.username)
    except DriveBridgeError:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=STORAGE_ERROR_MESSAGE)
    return UploadResponse(file_id=uploaded.id, url=uploaded.url, display_url=uploaded.display_url)


@router.delete("/upload/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard_upload(
    file_id: str,
    ctx: AppContext = Depends(get_app_context),
    drive: DriveBridgeClient = Depends(get_drive_bridge),
):
    """Clean up an image uploaded for a certificate form that was cancelled."""
    try:
        await drive.delete(file_id)
    except DriveBridgeError:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=STORAGE_ERROR_MESSAGE)
    logger.info(f"Discarded upload {file_id} for {ctx.principal.username}")
    return None


@router.post("/extract", response_model=ExtractionResponse)
async def extract_fields(
    file: UploadFile = File(...),
    ctx: AppContext = Depends(get_app_context),
    ai: GeminiClient = Depends(get_ai_client),
):
    """Read name, date and credits from a certificate photo."""
    if not ai.api_key:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=AI_NOT_CONFIGURED_MESSAGE)
    data = await _read_image(file)
    try:
        extracted = await ai.extract_certificate_fields(data, file.content_type)
    except AINotConfiguredError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=AI_NOT_CONFIGURED_MESSAGE)
    except AIServiceError as e:
        logger.error(f"Certificate extraction failed for {ctx.principal.username}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=EXTRACTION_FALLBACK_MESSAGE)
    return ExtractionResponse(name=extracted.name, date=extracted.date, credits=extracted.credits)
