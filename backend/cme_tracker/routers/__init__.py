"""CME Tracker - API Routers"""
from .auth import router as auth_router
from .certificates import router as certificates_router
from .reports import router as reports_router
from .shared import router as shared_router
from .admin import router as admin_router
from .ai import router as ai_router

__all__ = [
    "auth_router",
    "certificates_router",
    "reports_router",
    "shared_router",
    "admin_router",
    "ai_router",
]
