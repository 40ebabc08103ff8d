"""
CME Tracker - Application Context
Per-request state container built after authentication: acting principal,
category lookups, compliance cycle and the active AI key.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models.db_models import UserDB, UserRole, PRIVILEGED_ROLES
from ..models.reporting import CategoryRecord, ComplianceCycle
from .integrations.gemini import GeminiClient
from .repositories import DepartmentRepository, TitleRepository
from .settings import SettingsService


@dataclass
class AppContext:
    principal: UserDB
    cycle: ComplianceCycle
    departments: List[CategoryRecord] = field(default_factory=list)
    titles: List[CategoryRecord] = field(default_factory=list)
    ai_key: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.principal.role == UserRole.ADMIN.value

    @property
    def can_report(self) -> bool:
        return self.principal.role in PRIVILEGED_ROLES

    @property
    def department_names(self) -> Dict[str, str]:
        return {d.id: d.name for d in self.departments}

    @property
    def title_names(self) -> Dict[str, str]:
        return {t.id: t.name for t in self.titles}


def build_app_context(db: Session, principal: UserDB) -> AppContext:
    settings = SettingsService(db)
    return AppContext(
        principal=principal,
        cycle=settings.get_cycle(),
        departments=[CategoryRecord(id=d.id, name=d.name) for d in DepartmentRepository(db).list()],
        titles=[CategoryRecord(id=t.id, name=t.name) for t in TitleRepository(db).list()],
        ai_key=settings.active_key(),
    )


async def get_app_context(
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AppContext:
    """FastAPI dependency."""
    return build_app_context(db, current_user)


async def get_ai_client(ctx: AppContext = Depends(get_app_context)) -> GeminiClient:
    """FastAPI dependency: client bound to the active AI key (which may be unset)."""
    return GeminiClient(ctx.ai_key)
