import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("CHANGE_FEED_BACKEND", "memory")
sys.path.append(str(Path(__file__).resolve().parents[1]))

from medcheck.db.base import Base
from medcheck.db.models import Booking, StaffUser  # noqa: F401
from medcheck.db.session import get_db
from medcheck.main import app
from medcheck.services.auth_service import ensure_staff_user
from medcheck.services.change_feed import change_feed

TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

STAFF_EMAIL = "reviewer@example.com"
STAFF_PASSWORD = "StrongPass123"


@pytest.fixture(autouse=True)
def reset_database() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    change_feed.reset()


@pytest.fixture()
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client() -> TestClient:
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def staff_headers(client, db_session) -> dict[str, str]:
    ensure_staff_user(db_session, STAFF_EMAIL, STAFF_PASSWORD)
    login = client.post("/auth/login", json={"email": STAFF_EMAIL, "password": STAFF_PASSWORD})
    assert login.status_code == 200
    return {"Authorization": f"Bearer {login.json()['access_token']}"}
