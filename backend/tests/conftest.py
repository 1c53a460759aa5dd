import os
from datetime import datetime, timezone

# Settings are read at import time; configure them before anything imports storefront.
os.environ.setdefault("JWT_SECRET", "test_jwt_secret")
os.environ.setdefault("ADMIN_SECRET_KEY", "test_admin_secret")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("EMAIL_ENABLED", "false")

import importlib
import re

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.core import config as app_config
from storefront.core.base import Base
from storefront.core.database import get_db
from storefront.core.security import create_access_token, hash_password
import storefront.models  # noqa: F401
from storefront.models.category import Category
from storefront.models.subcategory import Subcategory
from storefront.models.user import User, UserRole

TEST_PASSWORD = "Sunlight_2024"


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def session_factory(db_engine):
    # StaticPool keeps one in-memory DB for the whole session; reset the schema per test.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture()
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def _reset_mutable_settings():
    """
    settings is process-global; restore whatever a test tweaks.
    """
    keys = [
        "ENABLE_RATE_LIMITING",
        "REFRESH_TOKEN_ROTATION",
        "PASSWORD_MIN_LENGTH",
        "MAX_UPLOAD_BYTES",
        "CLOUDINARY_CLOUD_NAME",
        "CLOUDINARY_API_KEY",
        "CLOUDINARY_API_SECRET",
        "GOOGLE_CLIENT_ID",
        "GOOGLE_CLIENT_SECRET",
    ]
    original = {k: getattr(app_config.settings, k) for k in keys}
    try:
        yield
    finally:
        for k, v in original.items():
            setattr(app_config.settings, k, v)
        app_config.settings.ENABLE_RATE_LIMITING = False


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    """
    Captures outgoing mail instead of delivering it. Each item: (to_email, subject, body).
    """
    from storefront.services import auth as auth_service

    outbox: list[tuple[str, str, str]] = []

    def fake_send_email(to_email, subject, body):
        outbox.append((to_email, subject, body))
        return f"msg_test_{len(outbox)}"

    monkeypatch.setattr(auth_service, "send_email", fake_send_email)
    return outbox


def token_from_email(body: str) -> str:
    match = re.search(r"token=([^\s]+)", body)
    assert match, body
    return match.group(1)


@pytest.fixture()
def app(db_session):
    app_config.settings.ENABLE_RATE_LIMITING = False

    # SlowAPI decorators bind at import time; reload so a previous rate limiting test
    # can't leave limited routes behind.
    import storefront.routes.auth as auth_routes
    import storefront.main as main

    importlib.reload(auth_routes)
    importlib.reload(main)
    fastapi_app = main.app

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


def _make_user(db_session, *, email: str, role: UserRole, verified: bool = True, full_name: str | None = None):
    now = datetime.now(timezone.utc)
    user = User(
        email=email,
        full_name=full_name,
        password_hash=hash_password(TEST_PASSWORD),
        role=role,
        is_active=True,
        email_verified=verified,
        email_verified_at=now if verified else None,
        password_changed_at=now,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def customer(db_session):
    return _make_user(db_session, email="shopper@example.com", role=UserRole.CUSTOMER, full_name="Sam Shopper")


@pytest.fixture()
def admin(db_session):
    return _make_user(db_session, email="owner@example.com", role=UserRole.ADMIN, full_name="Olive Owner")


def bearer(user: User) -> dict[str, str]:
    token = create_access_token(user_id=user.id, email=user.email, role=user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture()
def customer_headers(customer):
    return bearer(customer)


@pytest.fixture()
def category(db_session):
    cat = Category(name="Clothing", slug="clothing", sort_order=1, is_active=True)
    db_session.add(cat)
    db_session.commit()
    db_session.refresh(cat)
    return cat


@pytest.fixture()
def make_subcategory(db_session):
    def _make(category: Category, name: str, *, sort_order: int = 0, is_active: bool = True, description=None):
        from storefront.core.slug import generate_slug

        sub = Subcategory(
            category_id=category.id,
            name=name,
            slug=generate_slug(name),
            description=description,
            sort_order=sort_order,
            is_active=is_active,
        )
        db_session.add(sub)
        db_session.commit()
        db_session.refresh(sub)
        return sub

    return _make
