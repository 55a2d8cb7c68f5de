import itertools
import json
import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient
from jose import jwt

SECRET_KEY = os.getenv("SECRET_KEY", "ci-test-secret")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS512")
VALID_SIGNATURE = "t=1,v1=test-signature"


def make_auth_headers(user_id, role: str = "customer") -> dict:
    """Bearer header with a token the booking service accepts."""
    exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(user_id),
        "role": role,
        "exp": int(exp.timestamp()),
    }
    token = jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


SERVICE_DIR = Path(__file__).resolve().parents[1]
ROOT_DIR = SERVICE_DIR.parent.parent

service_path = str(SERVICE_DIR)
shared_path = str(ROOT_DIR / "services")
for path in (service_path, shared_path):
    if path in sys.path:
        sys.path.remove(path)
    sys.path.insert(0, path)

for module_name in list(sys.modules):
    if module_name == "app" or module_name.startswith("app."):
        sys.modules.pop(module_name)

os.environ.setdefault("SECRET_KEY", SECRET_KEY)
os.environ.setdefault("JWT_ALGORITHM", ALGORITHM)

os.environ.setdefault("BOOKING_DATABASE_URL", f"sqlite:///{SERVICE_DIR / 'test_booking.db'}")
os.environ.setdefault("EVENT_STREAM", "test-stream")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("ENVIRONMENT", "test")

from app.main import app  # noqa: E402
from app.core.database import Base, SessionLocal, engine  # noqa: E402
from app.models.booking import (  # noqa: E402
    Booking,
    BookingPayment,
    BookingStatus,
    BookingStatusHistory,
    BookingType,
    PaymentStatus,
)
from app.models.payout_account import PayoutAccount, PayoutAccountStatus  # noqa: E402
from app.models.project import Project, ProjectStatus  # noqa: E402
from app.models.resource import Resource, ResourceKind  # noqa: E402
from app.services.context import BookingContext  # noqa: E402
from app.services.payment_processor import (  # noqa: E402
    AuthorizationIntent,
    CaptureResult,
    PaymentProcessorError,
    WebhookSignatureError,
)


class FakePaymentProcessor:
    """In-memory processor recording every call; operations in ``fail_on`` raise."""

    def __init__(self):
        self.calls = []
        self.fail_on = set()
        self._ids = itertools.count(1)

    def _record(self, operation, **details):
        self.calls.append((operation, details))
        if operation in self.fail_on:
            raise PaymentProcessorError(f"{operation} declined", code="card_declined")

    def count(self, operation) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def create_authorization(self, amount, currency, metadata, *, idempotency_key):
        self._record("create_authorization", amount=amount, currency=currency, metadata=metadata, key=idempotency_key)
        number = next(self._ids)
        return AuthorizationIntent(
            intent_id=f"pi_test_{number}",
            client_secret=f"pi_test_{number}_secret_abc",
            status="requires_payment_method",
        )

    def capture(self, intent_id, *, idempotency_key):
        self._record("capture", intent_id=intent_id, key=idempotency_key)
        return CaptureResult(intent_id=intent_id, charge_id=f"ch_{intent_id}")

    def transfer(self, destination, amount, currency, metadata, *, idempotency_key):
        self._record("transfer", destination=destination, amount=amount, currency=currency, key=idempotency_key)
        return f"tr_test_{next(self._ids)}"

    def refund(self, intent_id, amount, *, idempotency_key, reason=None):
        self._record("refund", intent_id=intent_id, amount=amount, key=idempotency_key)
        return f"re_test_{next(self._ids)}"

    def construct_event(self, payload, signature):
        if signature != VALID_SIGNATURE:
            raise WebhookSignatureError("Invalid webhook signature", code="INVALID_SIGNATURE")
        return json.loads(payload)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def prepare_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def auth_headers():
    return make_auth_headers


@pytest.fixture
def signed_webhook(client):
    """Post an event to the processor callback with a signature the fake accepts."""

    def post(event, signature=VALID_SIGNATURE):
        return client.post(
            "/webhooks/stripe",
            content=json.dumps(event),
            headers={"stripe-signature": signature, "content-type": "application/json"},
        )

    return post


@pytest.fixture
def processor():
    return FakePaymentProcessor()


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 1, 10, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def ctx(db_session, processor, clock):
    return BookingContext(db=db_session, processor=processor, clock=clock)


@pytest.fixture
def client(processor):
    app.state.event_publisher = None
    app.state.notifier = None
    app.state.payment_processor = processor

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_project(db_session):
    """Published project with a professional resource; keyword overrides apply."""

    def factory(**overrides):
        professional_id = overrides.pop("professional_id", None) or uuid4()
        project = Project(
            id=overrides.pop("id", None) or uuid4(),
            professional_id=professional_id,
            title="Bathroom renovation",
            status=ProjectStatus.PUBLISHED,
            execution_duration={"value": 3, "unit": "days"},
            buffer_duration={"value": 1, "unit": "days"},
            preparation_duration=None,
            resources=[],
            min_resources=1,
            subprojects=[],
            post_booking_questions=[],
        )
        for field, value in overrides.items():
            setattr(project, field, value)
        db_session.add(project)
        db_session.add(Resource(id=professional_id, kind=ResourceKind.PROFESSIONAL))
        for resource_id in project.resources or []:
            if str(resource_id) != str(professional_id):
                db_session.add(Resource(id=UUID(str(resource_id)), kind=ResourceKind.EMPLOYEE, owner_id=professional_id))
        db_session.commit()
        return project

    return factory


_numbers = itertools.count(1)


@pytest.fixture
def make_booking(db_session):
    """Booking persisted directly in a given status, optionally with a payment."""

    def factory(status=BookingStatus.RFQ, payment_status=None, amount="200.00", **overrides):
        booking = Booking(
            booking_number=f"BK-2024-{next(_numbers):06d}",
            booking_type=BookingType.PROFESSIONAL,
            customer_id=uuid4(),
            professional_id=uuid4(),
            status=status,
            rfq_data={"service_type": "Plumbing", "description": "Leaking sink"},
            quote={"amount": amount, "currency": "EUR"},
            assigned_team_members=[],
        )
        for field, value in overrides.items():
            setattr(booking, field, value)
        booking.status_history.append(
            BookingStatusHistory(
                status=status,
                sequence=0,
                timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
                note="Booking created",
            )
        )
        if payment_status is not None:
            booking.payment = BookingPayment(
                amount=Decimal(amount),
                currency="EUR",
                status=payment_status,
                payment_intent_id=f"pi_seed_{booking.booking_number}",
                client_secret=f"pi_seed_{booking.booking_number}_secret",
                charge_id=f"ch_seed_{booking.booking_number}",
                platform_commission=Decimal(amount) * Decimal("0.10"),
                professional_payout=Decimal(amount) * Decimal("0.90"),
                refunded_amount=Decimal("0"),
                authorized_at=datetime(2024, 1, 9, tzinfo=timezone.utc)
                if payment_status != PaymentStatus.PENDING
                else None,
            )
        db_session.add(booking)
        db_session.commit()
        return booking

    return factory


@pytest.fixture
def payout_account(db_session):
    def factory(professional_id, account_id="acct_test_1"):
        account = PayoutAccount(
            professional_id=professional_id,
            account_id=account_id,
            charges_enabled=True,
            payouts_enabled=True,
            details_submitted=True,
            account_status=PayoutAccountStatus.ACTIVE,
        )
        db_session.add(account)
        db_session.commit()
        return account

    return factory
