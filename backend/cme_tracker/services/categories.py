"""
CME Tracker - Category Service
Departments and titles: simple named lookups referenced by users.
"""
import logging
from typing import Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ..models.db_models import UserDB
from .audit_log import AuditAction, AuditLogger
from .repositories import Repository, DepartmentRepository, TitleRepository

logger = logging.getLogger(__name__)


class CategoryValidationError(ValueError):
    pass


class CategoryService:
    """CRUD for one category kind ("department" or "title")."""

    _KINDS = {
        "department": (DepartmentRepository, AuditAction.DEPARTMENT_CREATE,
                       AuditAction.DEPARTMENT_UPDATE, AuditAction.DEPARTMENT_DELETE),
        "title": (TitleRepository, AuditAction.TITLE_CREATE,
                  AuditAction.TITLE_UPDATE, AuditAction.TITLE_DELETE),
    }

    def __init__(self, db: Session, kind: str, audit: Optional[AuditLogger] = None):
        if kind not in self._KINDS:
            raise ValueError(f"Unknown category kind: {kind}")
        repo_cls, self.create_action, self.update_action, self.delete_action = self._KINDS[kind]
        self.kind = kind
        self.repo: Repository = repo_cls(db)
        self.audit = audit or AuditLogger(db)

    def list(self):
        return self.repo.list()

    def get(self, category_id: str):
        return self.repo.get(category_id)

    def create(self, actor: UserDB, name: str, category_id: Optional[str] = None):
        """Explicit ids are accepted so well-known titles keep stable ids."""
        name = (name or "").strip()
        if not name:
            raise CategoryValidationError("Tên không được để trống.")
        category_id = (category_id or "").strip() or str(uuid4())
        if self.repo.get(category_id) is not None:
            raise CategoryValidationError(f"Mã '{category_id}' đã tồn tại.")

        entity = self.repo.add(self.repo.model(id=category_id, name=name))
        logger.info(f"{self.kind} {entity.id} ({entity.name}) created by {actor.username}")
        self.audit.log(actor, self.create_action, self.kind, entity.id, entity.name)
        return entity

    def rename(self, actor: UserDB, entity, name: str):
        name = (name or "").strip()
        if not name:
            raise CategoryValidationError("Tên không được để trống.")
        old_name = entity.name
        entity = self.repo.apply_changes(entity, {"name": name})
        self.audit.log(actor, self.update_action, self.kind, entity.id, entity.name, {"from": old_name})
        return entity

    def delete(self, actor: UserDB, entity) -> None:
        """Users referencing the category keep working; their reference is cleared."""
        column = UserDB.department_id if self.kind == "department" else UserDB.title_id
        self.repo.db.query(UserDB).filter(column == entity.id).update(
            {column: None}, synchronize_session=False
        )
        entity_id, entity_name = entity.id, entity.name
        self.repo.delete(entity)
        logger.info(f"{self.kind} {entity_id} deleted by {actor.username}")
        self.audit.log(actor, self.delete_action, self.kind, entity_id, entity_name)
