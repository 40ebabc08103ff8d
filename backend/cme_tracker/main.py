"""
CME Tracker - FastAPI Application

Continuing medical education tracking for hospital staff.

Architecture:
- Certificates are entered by staff (with AI-assisted field extraction)
- Reporting pipeline: Loader -> Aggregator -> Materializer -> (Exporters | Snapshot Publisher)
- Shared snapshots are immutable, time-limited and token-gated
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import (
    auth_router, certificates_router, reports_router, shared_router, admin_router, ai_router,
)
from .database import init_db

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    logger.info("CME Tracker started")
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="CME Tracker",
    description="""
    CME Tracker - Continuing Medical Education Tracking

    Staff upload their CME certificates; administrators manage accounts,
    departments, titles and the compliance cycle; reporters generate
    compliance reports and share read-only snapshots.

    ## Pipeline
    1. **Loader**: visibility-scoped users, certificates and categories
    2. **Aggregator**: time filter, per-user totals, compliance evaluation, grouping
    3. **Materializer**: one of six report kinds with fixed columns
    4. **Outputs**: JSON, CSV, HTML, or a shared snapshot link
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(certificates_router)
app.include_router(reports_router)
app.include_router(shared_router)
app.include_router(admin_router)
app.include_router(ai_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "CME Tracker",
        "version": "1.0.0",
        "description": "Continuing medical education tracking",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m cme_tracker.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
