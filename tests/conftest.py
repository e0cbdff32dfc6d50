"""
Pytest fixtures for the travel hub test suite.

Provides:
- An in-memory SQLite database shared by the test session and the app
- User factories per role
- Request factories that go through the real workflow service
- A FastAPI TestClient with bearer tokens minted by the real JWT code

Environment is configured before any travelhub import so that module-level
settings pick it up.
"""

import itertools
import os
import tempfile
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("RATE_LIMIT", "10000/minute")
os.environ.setdefault("LOCAL_STORAGE_DIR", tempfile.mkdtemp(prefix="travelhub-test-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from travelhub.auth.security import create_access_token, get_password_hash
from travelhub.db import Base, get_db
from travelhub.models.models import ReimbursementRequest, User
from travelhub.schemas.requests import ExpenseItemCreate
from travelhub.services.workflow import create_request


TEST_PASSWORD = "Password123!"


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Users
# =============================================================================

@pytest.fixture
def password_hash() -> str:
    # One hash shared by every user in a test
    return get_password_hash(TEST_PASSWORD)


@pytest.fixture
def make_user(db, password_hash) -> Callable[..., User]:
    counter = itertools.count(1)

    def _make(
        role: str = "employee",
        *,
        name: Optional[str] = None,
        email: Optional[str] = None,
        department: str = "Programs",
        designation: str = "Officer",
        is_active: bool = True,
    ) -> User:
        n = next(counter)
        user = User(
            email=email or f"{role}{n}@example.com",
            name=name or f"{role.title()} {n}",
            role=role,
            department=department,
            designation=designation,
            password_hash=password_hash,
            is_active=is_active,
            created_at=datetime.now(timezone.utc),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def employee(make_user) -> User:
    return make_user("employee", name="Erin Employee")


@pytest.fixture
def approver(make_user) -> User:
    return make_user("approver", name="Alex Approver")


@pytest.fixture
def checker(make_user) -> User:
    return make_user("checker", name="Casey Checker")


@pytest.fixture
def admin(make_user) -> User:
    return make_user("admin", name="Ada Admin")


# =============================================================================
# Requests
# =============================================================================

def _expense(category: str = "accommodation", amount: str = "100.00", description: str = "") -> ExpenseItemCreate:
    return ExpenseItemCreate(category=category, amount=Decimal(amount), description=description)


@pytest.fixture
def expense() -> Callable[..., ExpenseItemCreate]:
    return _expense


@pytest.fixture
def make_request(db) -> Callable[..., ReimbursementRequest]:
    def _make(
        owner: User,
        *,
        request_type: str = "normal",
        approver: Optional[User] = None,
        items: Optional[List[ExpenseItemCreate]] = None,
        **details,
    ) -> ReimbursementRequest:
        if items is None and request_type != "in-valley":
            items = [_expense()]
        return create_request(
            db,
            owner,
            request_type=request_type,
            approver_id=approver.id if approver else None,
            items=items,
            purpose=details.pop("purpose", "Field visit"),
            **details,
        )

    return _make


# =============================================================================
# API
# =============================================================================

@pytest.fixture
def client(session_factory) -> TestClient:
    from travelhub.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable[[User], dict]:
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(str(user.id), user.role)}"}

    return _headers
