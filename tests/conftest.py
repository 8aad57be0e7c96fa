import os
import tempfile
from typing import Generator

# Keep the module-level engine and uploads mount away from the working tree
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UPLOADS_DIR", tempfile.mkdtemp(prefix="storefront-uploads-"))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront import config, models
from storefront.auth import hash_password
from storefront.db import Base, enable_sqlite_foreign_keys
from storefront.main import app, get_db, get_notifier


class RecordingNotifier:
    """Collects messages instead of sending them; can be told to fail."""

    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, to, subject, body):
        if self.fail:
            raise RuntimeError("smtp unavailable")
        self.sent.append({"to": to, "subject": subject, "body": body})


@pytest.fixture(scope="function")
def db_session() -> Generator:
    # Use in-memory SQLite with a single connection
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    enable_sqlite_foreign_keys(engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture(autouse=True)
def settings(tmp_path):
    original = config.get_settings()
    config.configure(uploads_dir=str(tmp_path), owner_email="owner@shop.test", jwt_secret="test-secret")
    yield config.get_settings()
    config.configure(**original._asdict())


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope="function")
def client(db_session, notifier):
    # Override dependencies to use the same session and a recording notifier
    def override_get_db():
        try:
            yield db_session
        finally:
            pass
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_user(db, username, password="pw123", email=None, role=models.ROLE_USER):
    user = models.User(
        username=username,
        email=email or f"{username}@example.com",
        password_hash=hash_password(password),
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def login(client, username, password="pw123"):
    r = client.post("/api/login", json={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['token']}"}


@pytest.fixture
def admin_headers(client, db_session):
    make_user(db_session, "root", password="adminpass", role=models.ROLE_ADMIN)
    return login(client, "root", "adminpass")


@pytest.fixture
def category(db_session):
    cat = models.Category(name="Shoes", description="Running shoes")
    db_session.add(cat)
    db_session.commit()
    db_session.refresh(cat)
    return cat


@pytest.fixture
def product(db_session, category):
    from decimal import Decimal
    prod = models.Product(name="Runner", price=Decimal("50.00"), stock=10, category_id=category.id)
    db_session.add(prod)
    db_session.commit()
    db_session.refresh(prod)
    return prod
