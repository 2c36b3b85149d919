"""
Pytest configuration and shared fixtures for paysync tests.

Provides a file-backed SQLite database per test, a fake email sender,
a generated ECDSA signing key standing in for the monobank key, and an
httpx ASGI client with the app's collaborators overridden.
"""
import asyncio
import base64
from datetime import datetime
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from database import Base
from domain.enums import OrderStatus
from domain.errors import DispatchError, UpstreamError
from services.key_cache import PublicKeyCache
from services.notification_dispatcher import NotificationDispatcher
from services.order_store import OrderStore
from services.reconciliation_service import ReconciliationService
from services.signature_service import (
    AsymmetricVerifier,
    HmacVerifier,
    SignatureService,
    compute_hmac,
    parse_json_body,
)
from services.webhook_metrics import WebhookMetrics

WHITEPAY_SECRET = "whsec-test-secret"
MANUAL_SECRET = "manual-test-secret"


# ── Settings ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Known provider/catalog configuration for every test."""
    values = {
        "environment": "test",
        "mono_token": "mono-test-token",
        "whitepay_webhook_secret": WHITEPAY_SECRET,
        "resend_api_key": "re_test_key",
        "resend_api_url": "https://resend.test",
        "email_from": "D3 Education <access@d3.test>",
        "tg_link_base": "https://t.me/+base",
        "tg_link_ground": "https://t.me/+ground",
        "tg_link_foundation": "https://t.me/+foundation",
        "resend_template_base": "tpl-base",
        "resend_template_ground": "tpl-ground",
        "resend_template_foundation": "tpl-foundation",
        "manual_email_secret": MANUAL_SECRET,
        "dispatch_claim_ttl_seconds": 300,
    }
    for name, value in values.items():
        monkeypatch.setattr(settings, name, value)
    return settings


# ── Database Fixtures ────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    Fresh SQLite database file per test.

    A file (not :memory:) so concurrent sessions get their own connections
    and real write locking.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def order_store(session_factory) -> OrderStore:
    return OrderStore(session_factory, timeout_seconds=5)


@pytest.fixture
def make_order(session_factory):
    """Factory inserting an order row; returns the reference."""
    from db_models import Order

    async def _make(
        reference: str = "ord-1",
        status: OrderStatus = OrderStatus.PENDING,
        provider: str = "monobank",
        email: Optional[str] = "buyer@example.com",
        customer_name: str = "Olena",
        product_id: Optional[str] = "base",
        provider_order_id: Optional[str] = None,
        dispatch_claimed_at: Optional[datetime] = None,
        version: int = 0,
    ) -> str:
        async with session_factory() as session:
            session.add(Order(
                reference=reference,
                provider=provider,
                status=OrderStatus(status).value,
                email=email,
                customer_name=customer_name,
                product_id=product_id,
                provider_order_id=provider_order_id,
                dispatch_claimed_at=dispatch_claimed_at,
                version=version,
                amount=12999.0,
                currency="UAH",
            ))
            await session.commit()
        return reference

    return _make


# ── Email / Dispatch Fixtures ────────────────────────────────────────


class FakeEmailSender:
    """Records send() calls; can be slowed down or made to fail."""

    def __init__(self):
        self.calls: list[dict] = []
        self.delay = 0.0
        self.error: Optional[Exception] = None

    async def send(self, destination, template_reference, variables, subject):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.calls.append({
            "destination": destination,
            "template_reference": template_reference,
            "variables": variables,
            "subject": subject,
        })
        return {"id": f"email-{len(self.calls)}"}

    def fail_with_dispatch_error(self, message: str = "template not found"):
        self.error = DispatchError(message)

    def fail_with_upstream_error(self):
        self.error = UpstreamError("Email provider unreachable")


@pytest.fixture
def fake_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def dispatcher(fake_sender) -> NotificationDispatcher:
    return NotificationDispatcher(fake_sender)


@pytest.fixture
def reconciliation(order_store, dispatcher) -> ReconciliationService:
    return ReconciliationService(order_store, dispatcher, claim_ttl_seconds=300)


# ── Signature Fixtures ───────────────────────────────────────────────


@pytest.fixture(scope="session")
def mono_private_key():
    """Stand-in for monobank's signing key."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def sign_mono(mono_private_key):
    """Return the X-Sign header value for a raw body."""
    def _sign(body: bytes) -> str:
        signature = mono_private_key.sign(body, ec.ECDSA(hashes.SHA256()))
        return base64.b64encode(signature).decode("ascii")
    return _sign


@pytest.fixture
def sign_whitepay():
    """Return the Signature header value for a raw whitepay body."""
    def _sign(body: bytes, secret: str = WHITEPAY_SECRET) -> str:
        return compute_hmac(secret, parse_json_body(body))
    return _sign


class StubKeyFetcher:
    """Serves a fixed public key, counting calls; can be told to fail."""

    def __init__(self, public_key):
        self.public_key = public_key
        self.calls = 0
        self.error: Optional[Exception] = None

    async def __call__(self, provider_id: str):
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.public_key


@pytest.fixture
def key_fetcher(mono_private_key) -> StubKeyFetcher:
    return StubKeyFetcher(mono_private_key.public_key())


@pytest.fixture
def signature_service(key_fetcher) -> SignatureService:
    cache = PublicKeyCache(fetcher=key_fetcher, ttl_seconds=6 * 60 * 60)
    return SignatureService({
        "monobank": AsymmetricVerifier(cache),
        "whitepay": HmacVerifier(lambda: settings.whitepay_webhook_secret),
    })


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# ── HTTP Client ──────────────────────────────────────────────────────


@pytest.fixture
def webhook_metrics() -> WebhookMetrics:
    return WebhookMetrics()


@pytest_asyncio.fixture
async def client(signature_service, reconciliation, webhook_metrics):
    """
    ASGI client against the real app with test collaborators injected.
    """
    from deps import get_engine, get_metrics, get_verifier
    from main import app
    from middleware.rate_limit import get_rate_limiter

    app.dependency_overrides[get_verifier] = lambda: signature_service
    app.dependency_overrides[get_engine] = lambda: reconciliation
    app.dependency_overrides[get_metrics] = lambda: webhook_metrics
    get_rate_limiter().reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
