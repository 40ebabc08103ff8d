"""
Shared fixtures: in-memory SQLite database, user factory and a
TestClient whose requests run against the same session.
"""
import os

# Must be set before cme_tracker.database creates its engine
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import datetime
from uuid import uuid4

import pytest


@pytest.fixture
def db():
    from cme_tracker.database import Base, SessionLocal, engine, init_db

    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(db):
    """Factory: make_user("an", role="user", title_id="1") -> UserDB."""
    from cme_tracker.auth import hash_password
    from cme_tracker.models.db_models import UserDB

    def _make(username, name=None, password="secret123", role="user", status="active", **fields):
        user = UserDB(
            id=str(uuid4()),
            username=username,
            name=name or username,
            password_hash=hash_password(password),
            role=role,
            status=status,
            failed_login_attempts=0,
            **fields,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_certificate(db):
    from cme_tracker.models.db_models import CertificateDB

    def _make(user, name, credits, issued_at, image_url=""):
        if not isinstance(issued_at, datetime):
            issued_at = datetime(issued_at.year, issued_at.month, issued_at.day)
        cert = CertificateDB(
            id=str(uuid4()),
            user_id=user.id,
            name=name,
            credits=credits,
            issued_at=issued_at,
            image_url=image_url,
        )
        db.add(cert)
        db.commit()
        return cert

    return _make


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient
    from cme_tracker.database import get_db
    from cme_tracker.main import app

    def _override():
        yield db

    app.dependency_overrides[get_db] = _override
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    from cme_tracker.auth import create_access_token

    def _headers(user):
        token = create_access_token(user.id, user.username, user.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers
