"""
Shared pytest fixtures for the push notification server test suite.

Test dependencies: pytest, pytest-asyncio, httpx, aiosqlite
"""

import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

from notifications.dispatcher import NotificationDispatcher
from notifications.service import PushService
from notifications.vapid import generate_vapid_keys, parse_vapid_keys
from notifications.webpush import DeliveryResult, PushDeliverer
from storage.database import Database
from storage.delivery_log import DeliveryLog
from storage.subscriptions import SubscriptionStore

ADMIN_KEY = "test-admin-key"
VAPID_CONTACT = "mailto:ops@example.com"


# ---------------------------------------------------------------------------
# Scripted push primitive
# ---------------------------------------------------------------------------


class FakeDeliverer(PushDeliverer):
    """
    Records every call and answers from a per-endpoint script.

    A script value is either a status code or an exception to raise.
    Unscripted endpoints get 201.
    """

    def __init__(self, script: dict | None = None, delay: float = 0.0):
        self.script = script or {}
        self.delay = delay
        self.calls: list[dict] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def deliver(
        self, endpoint, p256dh, auth, payload, vapid_keys, vapid_contact, ttl
    ) -> DeliveryResult:
        self.calls.append(
            {
                "endpoint": endpoint,
                "p256dh": p256dh,
                "auth": auth,
                "payload": payload,
                "vapid_contact": vapid_contact,
                "ttl": ttl,
            }
        )
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.script.get(endpoint, 201)
            if isinstance(outcome, BaseException):
                raise outcome
            error = "" if 200 <= outcome < 300 else f"push service said {outcome}"
            return DeliveryResult(status_code=outcome, error=error)
        finally:
            self.in_flight -= 1

    @property
    def endpoints(self) -> list[str]:
        return [c["endpoint"] for c in self.calls]


# ---------------------------------------------------------------------------
# Storage (real SQLite file per test)
# ---------------------------------------------------------------------------


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'notify.db'}")
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def subscription_store(database) -> SubscriptionStore:
    return SubscriptionStore(database)


@pytest.fixture
def delivery_log(database) -> DeliveryLog:
    return DeliveryLog(database)


# ---------------------------------------------------------------------------
# Delivery stack
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def vapid_keys():
    public_key, private_key = generate_vapid_keys()
    return parse_vapid_keys(public_key, private_key)


@pytest.fixture
def fake_deliverer() -> FakeDeliverer:
    return FakeDeliverer()


@pytest.fixture
def dispatcher(subscription_store, delivery_log, fake_deliverer, vapid_keys):
    return NotificationDispatcher(
        subscription_store,
        delivery_log,
        fake_deliverer,
        vapid_keys=vapid_keys,
        vapid_contact=VAPID_CONTACT,
    )


@pytest.fixture
def push_service(subscription_store, delivery_log, dispatcher, vapid_keys):
    return PushService(
        subscription_store,
        delivery_log,
        dispatcher,
        vapid_keys,
        welcome_delay_seconds=0.0,
    )


# ---------------------------------------------------------------------------
# FastAPI test client (uses httpx AsyncClient with ASGI transport)
# ---------------------------------------------------------------------------


@pytest.fixture
async def async_client(push_service):
    """
    An httpx.AsyncClient wired to the FastAPI app (no lifespan to avoid
    real key loading and database startup).
    """
    from api.main import create_app

    test_app = create_app(admin_key=ADMIN_KEY, cors_origin="https://app.example.com", lifespan=None)
    test_app.state.push_service = push_service

    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {ADMIN_KEY}"}


