"""
Test configuration for the physician attestation backend.
"""
import os

# Keep the application engine off the working directory
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from medattest.attestation.methods import MethodRegistry
from medattest.challenges.delivery import OutboxCodeDelivery
from medattest.config import settings
from medattest.database import Base, get_db
from medattest.directory.models import Physician
from medattest.directory.service import DatabasePhysicianDirectory
from medattest.main import app
from medattest.runtime import Runtime

# Test database URL
TEST_DATABASE_URL = "sqlite://"

# Create test database engine
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

LICENSE = "CRM123"
PHYSICIAN_NAME = "Dr. Ana Souza"
PHYSICIAN_EMAIL = "ana.souza@clinic.example"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(scope="function")
def db():
    """
    Create a fresh database for each test.
    """
    # Create tables
    Base.metadata.create_all(bind=engine)

    # Create session
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

    # Drop tables after test
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def delivery():
    return OutboxCodeDelivery()


@pytest.fixture
def runtime(db, clock, delivery):
    """
    Runtime wired to the test database, the fake clock and an in-memory outbox.
    """
    return Runtime(TestingSessionLocal, settings, delivery=delivery, clock=clock)


@pytest.fixture
def issuer(runtime):
    return runtime.issuer


@pytest.fixture
def validator(runtime):
    return runtime.validator


@pytest.fixture
def directory(db):
    return DatabasePhysicianDirectory(TestingSessionLocal)


@pytest.fixture
def methods(runtime):
    return MethodRegistry(runtime.otp_gateway, runtime.companion, approval_timeout=5)


@pytest.fixture
def physician(db):
    """
    A directory entry with a verified email.
    """
    entry = Physician(license_number=LICENSE, full_name=PHYSICIAN_NAME, email=PHYSICIAN_EMAIL, phone="+5511987654321")
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


@pytest.fixture(scope="function")
def client(db, runtime):
    """
    Create a test client with a test database session and runtime.
    """
    def override_get_db():
        try:
            yield db
        finally:
            pass

    # Override the get_db dependency
    app.dependency_overrides[get_db] = override_get_db
    original_runtime = app.state.runtime
    app.state.runtime = runtime

    # Create test client
    with TestClient(app) as client:
        yield client

    # Remove dependency override
    app.dependency_overrides = {}
    app.state.runtime = original_runtime
