"""
CME Tracker - Repositories

Thin collection access over a SQLAlchemy Session. Updates are plain
last-write-wins field assignment; callers never touch the Session
directly, so a version column could be added here later.
"""
import logging
from typing import Generic, List, Optional, Type, TypeVar
from uuid import uuid4

from sqlalchemy.orm import Session

from ..models.db_models import (
    UserDB, CertificateDB, DepartmentDB, TitleDB, SettingsDB, GeminiKeyDB,
)
from .reporting.collation import normalize_text, vi_sort_key

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


class Repository(Generic[ModelT]):
    """Generic CRUD for one table."""
    model: Type[ModelT]

    def __init__(self, db: Session):
        self.db = db

    def get(self, entity_id: str) -> Optional[ModelT]:
        return self.db.query(self.model).filter(self.model.id == entity_id).first()

    def list(self) -> List[ModelT]:
        return self.db.query(self.model).all()

    def add(self, entity: ModelT) -> ModelT:
        if getattr(entity, "id", None) is None and hasattr(self.model, "id"):
            entity.id = str(uuid4())
        self.db.add(entity)
        self.db.commit()
        self.db.refresh(entity)
        return entity

    def apply_changes(self, entity: ModelT, changes: dict) -> ModelT:
        """Assign each changed field and commit (last write wins)."""
        for key, value in changes.items():
            if not hasattr(entity, key):
                raise AttributeError(f"{self.model.__name__} has no field '{key}'")
            setattr(entity, key, value)
        self.db.commit()
        self.db.refresh(entity)
        return entity

    def delete(self, entity: ModelT) -> None:
        self.db.delete(entity)
        self.db.commit()


# =============================================================================
# PRINCIPALS & CERTIFICATES
# =============================================================================

class UserRepository(Repository[UserDB]):
    model = UserDB

    def by_username(self, username: str) -> Optional[UserDB]:
        return self.db.query(UserDB).filter(UserDB.username == username).first()

    def list(self) -> List[UserDB]:
        return sorted(self.db.query(UserDB).all(), key=lambda u: vi_sort_key(u.name))

    def search(self, term: Optional[str]) -> List[UserDB]:
        """Users whose name or username contains the term, accent-insensitive."""
        users = self.list()
        needle = normalize_text(term or "").strip()
        if not needle:
            return users
        return [u for u in users if needle in normalize_text(u.name) or needle in normalize_text(u.username)]


class CertificateRepository(Repository[CertificateDB]):
    model = CertificateDB

    def for_user(self, user_id: str) -> List[CertificateDB]:
        return (
            self.db.query(CertificateDB)
            .filter(CertificateDB.user_id == user_id)
            .order_by(CertificateDB.issued_at.desc())
            .all()
        )


# =============================================================================
# CATEGORIES
# =============================================================================

class DepartmentRepository(Repository[DepartmentDB]):
    model = DepartmentDB

    def list(self) -> List[DepartmentDB]:
        return sorted(self.db.query(DepartmentDB).all(), key=lambda d: vi_sort_key(d.name))


class TitleRepository(Repository[TitleDB]):
    model = TitleDB

    def list(self) -> List[TitleDB]:
        return sorted(self.db.query(TitleDB).all(), key=lambda t: vi_sort_key(t.name))


# =============================================================================
# CONFIGURATION
# =============================================================================

class SettingsRepository(Repository[SettingsDB]):
    """The settings table holds a single row (id=1)."""
    model = SettingsDB
    SINGLETON_ID = 1

    def get(self, entity_id: int = SINGLETON_ID) -> Optional[SettingsDB]:
        return self.db.query(SettingsDB).filter(SettingsDB.id == entity_id).first()

    def save_cycle(self, start_year: int, end_year: int) -> SettingsDB:
        settings = self.get()
        if settings is None:
            settings = SettingsDB(id=self.SINGLETON_ID, compliance_start_year=start_year,
                                  compliance_end_year=end_year)
            return self.add(settings)
        return self.apply_changes(settings, {
            "compliance_start_year": start_year,
            "compliance_end_year": end_year,
        })


class GeminiKeyRepository(Repository[GeminiKeyDB]):
    model = GeminiKeyDB

    def list(self) -> List[GeminiKeyDB]:
        return self.db.query(GeminiKeyDB).order_by(GeminiKeyDB.created_at.asc(), GeminiKeyDB.id.asc()).all()

    def active_key(self) -> Optional[str]:
        """The first registered key is the one in use."""
        keys = self.list()
        return keys[0].key if keys else None
