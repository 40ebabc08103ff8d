"""
CME Tracker - Admin Router
Accounts, organizational categories, compliance settings, AI keys,
audit log and shared-report management.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_user, require_admin
from ..database import get_db
from ..models.db_models import UserDB, UserRole, UserStatus
from ..services.accounts import AccountService, UserValidationError
from ..services.audit_log import AuditAction, AuditLogger, DEFAULT_QUERY_LIMIT
from ..services.categories import CategoryService, CategoryValidationError
from ..services.integrations import DriveBridgeClient, get_drive_bridge
from ..services.repositories import UserRepository
from ..services.settings import SettingsService, SettingsValidationError
from ..services.snapshots import SnapshotService, SnapshotNotFound, ExpiryValidationError
from .auth import UserResponse, MessageResponse, user_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class UserCreateRequest(BaseModel):
    username: str
    name: str
    password: str
    role: UserRole = UserRole.USER
    status: UserStatus = UserStatus.ACTIVE
    department_id: Optional[str] = None
    title_id: Optional[str] = None
    position: Optional[str] = None
    practice_certificate_number: Optional[str] = None
    practice_certificate_issue_date: Optional[date] = None
    date_of_birth: Optional[date] = None


class UserUpdateRequest(BaseModel):
    name: Optional[str] = None
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None
    department_id: Optional[str] = None
    title_id: Optional[str] = None
    position: Optional[str] = None
    practice_certificate_number: Optional[str] = None
    practice_certificate_issue_date: Optional[date] = None
    date_of_birth: Optional[date] = None


class CategoryRequest(BaseModel):
    name: str
    id: Optional[str] = None


class CategoryResponse(BaseModel):
    id: str
    name: str


class SettingsRequest(BaseModel):
    compliance_start_year: int
    compliance_end_year: int


class SettingsResponse(BaseModel):
    compliance_start_year: int
    compliance_end_year: int


class AIKeyRequest(BaseModel):
    key: str


class AIKeyResponse(BaseModel):
    id: str
    masked: str
    is_active: bool
    created_at: Optional[datetime] = None


class AuditLogResponse(BaseModel):
    id: str
    timestamp: datetime
    actor_id: str
    actor_name: str
    action: str
    target_type: str
    target_id: str
    target_name: str
    details: Optional[Dict[str, Any]] = None


class SharedReportItem(BaseModel):
    id: str
    title: str
    kind: str
    created_by: str
    created_at: datetime
    expires_at: datetime
    is_expired: bool


class ExpiryUpdateRequest(BaseModel):
    expires_on: date


class BulkDeleteRequest(BaseModel):
    ids: List[str]


class DeleteResponse(BaseModel):
    status: str
    deleted_count: int = 0


def _get_user(db: Session, user_id: str) -> UserDB:
    user = UserRepository(db).get(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Không tìm thấy người dùng.")
    return user


# =============================================================================
# USERS
# =============================================================================

@router.get("/users", response_model=List[UserResponse])
async def list_users(
    search: Optional[str] = Query(None),
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """All accounts sorted by name; search is accent-insensitive."""
    departments = {d.id: d.name for d in CategoryService(db, "department").list()}
    titles = {t.id: t.name for t in CategoryService(db, "title").list()}
    return [user_response(u, departments, titles) for u in AccountService(db).list_users(search)]


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    request: UserCreateRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db)
):
    data = request.model_dump()
    try:
        user = AccountService(db).create_user(
            admin,
            username=data.pop("username"),
            name=data.pop("name"),
            password=data.pop("password"),
            role=data.pop("role").value,
            status=data.pop("status").value,
            **data,
        )
    except UserValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return user_response(user)


@router.put("/users/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    request: UserUpdateRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Only the fields present in the request are changed."""
    user = _get_user(db, user_id)
    changes = request.model_dump(exclude_unset=True)
    for key in ("role", "status"):
        if changes.get(key) is not None:
            changes[key] = changes[key].value
        else:
            changes.pop(key, None)
    try:
        user = AccountService(db).update_user(admin, user, changes)
    except UserValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return user_response(user)


@router.post("/users/{user_id}/unlock", response_model=UserResponse)
async def unlock_user(
    user_id: str,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Reset the failed-login counter and reactivate the account."""
    user = AccountService(db).reset_lock(admin, _get_user(db, user_id))
    return user_response(user)


@router.delete("/users/{user_id}", response_model=DeleteResponse)
async def delete_user(
    user_id: str,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
    drive: DriveBridgeClient = Depends(get_drive_bridge),
):
    """Delete a user together with their certificates."""
    user = _get_user(db, user_id)
    try:
        removed = await AccountService(db).delete_user(admin, user, drive)
    except UserValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return DeleteResponse(status="deleted", deleted_count=removed)


# =============================================================================
# DEPARTMENTS & TITLES
# =============================================================================

def _category_routes(kind: str, path: str):
    """Register list/create/rename/delete endpoints for one category kind."""

    @router.get(f"/{path}", response_model=List[CategoryResponse], name=f"list_{path}")
    async def list_categories(
        current_user: UserDB = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        # Readable by every signed-in user: profile forms need the lists
        return [CategoryResponse(id=c.id, name=c.name) for c in CategoryService(db, kind).list()]

    @router.post(f"/{path}", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED,
                 name=f"create_{kind}")
    async def create_category(
        request: CategoryRequest,
        admin: UserDB = Depends(require_admin),
        db: Session = Depends(get_db)
    ):
        try:
            entity = CategoryService(db, kind).create(admin, request.name, request.id)
        except CategoryValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return CategoryResponse(id=entity.id, name=entity.name)

    @router.put(f"/{path}/{{category_id}}", response_model=CategoryResponse, name=f"rename_{kind}")
    async def rename_category(
        category_id: str,
        request: CategoryRequest,
        admin: UserDB = Depends(require_admin),
        db: Session = Depends(get_db)
    ):
        service = CategoryService(db, kind)
        entity = service.get(category_id)
        if entity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Không tìm thấy mục này.")
        try:
            entity = service.rename(admin, entity, request.name)
        except CategoryValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return CategoryResponse(id=entity.id, name=entity.name)

    @router.delete(f"/{path}/{{category_id}}", response_model=DeleteResponse, name=f"delete_{kind}")
    async def delete_category(
        category_id: str,
        admin: UserDB = Depends(require_admin),
        db: Session = Depends(get_db)
    ):
        service = CategoryService(db, kind)
        entity = service.get(category_id)
        if entity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Không tìm thấy mục này.")
        service.delete(admin, entity)
        return DeleteResponse(status="deleted", deleted_count=1)


_category_routes("department", "departments")
_category_routes("title", "titles")


# =============================================================================
# SETTINGS
# =============================================================================

@router.get("/settings", response_model=SettingsResponse)
async def get_settings(
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Compliance cycle; defaults to the five years starting this year."""
    cycle = SettingsService(db).get_cycle()
    return SettingsResponse(compliance_start_year=cycle.start_year, compliance_end_year=cycle.end_year)


@router.put("/settings", response_model=SettingsResponse)
async def update_settings(
    request: SettingsRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        cycle = SettingsService(db).update_cycle(admin, request.compliance_start_year, request.compliance_end_year)
    except SettingsValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return SettingsResponse(compliance_start_year=cycle.start_year, compliance_end_year=cycle.end_year)


# =============================================================================
# AI KEYS
# =============================================================================

@router.get("/ai-keys", response_model=List[AIKeyResponse])
async def list_ai_keys(
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Keys are only ever returned masked. The oldest key is the active one."""
    return [AIKeyResponse(**vars(k)) for k in SettingsService(db).list_keys()]


@router.post("/ai-keys", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def add_ai_key(
    request: AIKeyRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        SettingsService(db).add_key(admin, request.key)
    except SettingsValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return MessageResponse(message="Đã thêm khóa API.")


@router.delete("/ai-keys/{key_id}", response_model=DeleteResponse)
async def delete_ai_key(
    key_id: str,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db)
):
    if not SettingsService(db).delete_key(admin, key_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Không tìm thấy khóa API.")
    return DeleteResponse(status="deleted", deleted_count=1)


# =============================================================================
# AUDIT LOG
# =============================================================================

@router.get("/audit-logs", response_model=List[AuditLogResponse])
async def list_audit_logs(
    action: Optional[str] = Query(None),
    actor_id: Optional[str] = Query(None),
    target_type: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_QUERY_LIMIT, ge=1, le=500),
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Newest first."""
    entries = AuditLogger(db).query(action=action, actor_id=actor_id, target_type=target_type, limit=limit)
    return [
        AuditLogResponse(
            id=e.id,
            timestamp=e.timestamp,
            actor_id=e.actor_id,
            actor_name=e.actor_name,
            action=e.action,
            target_type=e.target_type,
            target_id=e.target_id,
            target_name=e.target_name or "",
            details=e.details or {},
        )
        for e in entries
    ]


# =============================================================================
# SHARED REPORTS
# =============================================================================

@router.get("/shared-reports", response_model=List[SharedReportItem])
async def list_shared_reports(
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return [SharedReportItem(**vars(s)) for s in SnapshotService(db).list()]


@router.put("/shared-reports/{snapshot_id}/expiry", response_model=SharedReportItem)
async def update_shared_report_expiry(
    snapshot_id: str,
    request: ExpiryUpdateRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Extend (or shorten, but never backdate) a snapshot's lifetime."""
    service = SnapshotService(db)
    try:
        service.update_expiry(snapshot_id, request.expires_on)
    except ExpiryValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SnapshotNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    AuditLogger(db).log(admin, AuditAction.SHARED_REPORT_EXPIRY_UPDATE, "shared_report", snapshot_id,
                        details={"expires_on": request.expires_on.isoformat()})
    item = next(s for s in service.list() if s.id == snapshot_id)
    return SharedReportItem(**vars(item))


@router.delete("/shared-reports/{snapshot_id}", response_model=DeleteResponse)
async def delete_shared_report(
    snapshot_id: str,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Idempotent: deleting an unknown id reports zero deletions."""
    deleted = SnapshotService(db).revoke(snapshot_id)
    if deleted:
        AuditLogger(db).log(admin, AuditAction.SHARED_REPORT_DELETE, "shared_report", snapshot_id)
    return DeleteResponse(status="deleted", deleted_count=int(deleted))


@router.post("/shared-reports/bulk-delete", response_model=DeleteResponse)
async def bulk_delete_shared_reports(
    request: BulkDeleteRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db)
):
    count = SnapshotService(db).revoke_many(request.ids)
    if count:
        AuditLogger(db).log(admin, AuditAction.SHARED_REPORT_DELETE, "shared_report", "bulk",
                            details={"ids": request.ids, "deleted": count})
    return DeleteResponse(status="deleted", deleted_count=count)
