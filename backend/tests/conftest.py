# backend/tests/conftest.py
"""
Shared fixtures for the homeserve test suite.

Every test gets its own in-memory SQLite database. Redis is never
configured, so booking/wallet locks run on the process-local registry.
"""

from __future__ import annotations

import os
from typing import Callable, Iterator, Optional

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.pop("REDIS_URL", None)
os.environ.setdefault("CI", "1")

from fastapi.testclient import TestClient  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
import ulid  # noqa: E402

from homeserve import models  # noqa: E402,F401
from homeserve.core.enums import BookingStatus, RoleName  # noqa: E402
from homeserve.database import Base  # noqa: E402
from homeserve.models.booking import Booking  # noqa: E402
from homeserve.models.worker import Worker  # noqa: E402
from homeserve.principal import Principal  # noqa: E402
from homeserve.services.assignment_service import AssignmentService  # noqa: E402
from homeserve.services.booking_service import BookingService  # noqa: E402
from homeserve.services.ledger_service import LedgerService  # noqa: E402
from homeserve.services.otp_gate import OTPGate  # noqa: E402
from tests.factories.builders import (  # noqa: E402
    TEST_OTP,
    FakePaymentProcessor,
    booking_request,
    make_worker,
)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine) -> Iterator[Session]:
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def fixed_otp(monkeypatch):
    """Codes are random in production; tests read them from here."""
    monkeypatch.setattr(OTPGate, "generate_code", staticmethod(lambda: TEST_OTP))
    return TEST_OTP


@pytest.fixture
def processor() -> FakePaymentProcessor:
    return FakePaymentProcessor()


@pytest.fixture
def ledger(db) -> LedgerService:
    return LedgerService(db)


@pytest.fixture
def booking_service(db, processor) -> BookingService:
    return BookingService(db, payment_processor=processor)


@pytest.fixture
def assignment_service(db) -> AssignmentService:
    return AssignmentService(db)


# Principals


def _principal(role: RoleName) -> Principal:
    return Principal(id=str(ulid.ULID()), role=role)


@pytest.fixture
def customer() -> Principal:
    return _principal(RoleName.CUSTOMER)


@pytest.fixture
def other_customer() -> Principal:
    return _principal(RoleName.CUSTOMER)


@pytest.fixture
def admin() -> Principal:
    return _principal(RoleName.ADMIN)


@pytest.fixture
def worker(db) -> Worker:
    return make_worker(db, "Ravi Kumar")


@pytest.fixture
def worker_principal(worker) -> Principal:
    return Principal(id=worker.id, role=RoleName.WORKER)


# Booking helpers


@pytest.fixture
def create_booking(booking_service, customer) -> Callable[..., Booking]:
    def _create(actor: Optional[Principal] = None, **overrides) -> Booking:
        return booking_service.create_booking(actor or customer, booking_request(**overrides))

    return _create


@pytest.fixture
def drive(booking_service, assignment_service, admin, worker_principal):
    """Walk a booking along the happy path: assigned, accepted, then in-progress."""
    steps = [BookingStatus.ASSIGNED, BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS]

    def _drive(booking: Booking, target: BookingStatus) -> Booking:
        reach = steps.index(target)
        if not booking.worker_id:
            assignment_service.assign_worker(booking.id, worker_principal.id, admin)
        if reach >= 1:
            booking_service.accept_booking(worker_principal, booking.id)
        if reach >= 2:
            booking_service.request_start_code(worker_principal, booking.id)
            booking_service.start_with_code(worker_principal, booking.id, TEST_OTP)
        return booking_service.get_booking(admin, booking.id)

    return _drive


@pytest.fixture
def app_client(db, processor) -> Iterator[TestClient]:
    from homeserve.api.dependencies import get_db, get_payment_processor
    from homeserve.main import app

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_processor] = lambda: processor
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
