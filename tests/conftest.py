"""Shared fixtures: signed payloads, a fake Stripe provider, an in-memory store."""

import hashlib
import hmac
import json
import time
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from subsync.payments.errors import EntityNotFound
from subsync.payments.sync import SubscriptionStore

WEBHOOK_SECRET = "whsec_test_secret"

# 2025-01-01 / 2025-02-01 00:00 UTC
PERIOD_START = 1735689600
PERIOD_END = 1738368000


class InMemorySubscriptionStore(SubscriptionStore):
    """Dict-backed store with the same merge semantics as the Postgres one."""

    def __init__(self):
        self.records: dict[str, dict[str, Any]] = {}
        self.writes: list[tuple[str, dict[str, Any]]] = []

    async def upsert(self, email: str, fields: dict[str, Any]) -> None:
        self.writes.append((email, dict(fields)))
        record = self.records.setdefault(email, {"email": email})
        record.update(fields)
        record["updated_at"] = datetime.now(timezone.utc)


class FakeStripeProvider:
    """Serves canned Stripe objects; missing ids behave like deleted objects."""

    def __init__(self):
        self.sessions: dict[str, dict] = {}
        self.subscriptions: dict[str, dict] = {}
        self.customers: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.error: Exception | None = None

    async def retrieve_checkout_session(self, session_id: str) -> dict:
        return self._get("checkout_session", self.sessions, session_id)

    async def retrieve_subscription(self, subscription_id: str) -> dict:
        return self._get("subscription", self.subscriptions, subscription_id)

    async def retrieve_customer(self, customer_id: str) -> dict:
        return self._get("customer", self.customers, customer_id)

    def _get(self, label: str, objects: dict[str, dict], object_id: str) -> dict:
        self.calls.append((label, object_id))
        if self.error is not None:
            raise self.error
        if object_id not in objects:
            raise EntityNotFound(f"{label} {object_id} not found")
        return objects[object_id]


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def event_payload(event_type: str, obj: dict, event_id: str = "evt_test_1") -> bytes:
    """Serialize a Stripe event envelope."""
    return json.dumps(
        {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}
    ).encode("utf-8")


def subscription_object(
    subscription_id: str = "sub_test_123",
    customer: str = "cus_test_123",
    status: str = "active",
    interval: str | None = "month",
    start: int | None = PERIOD_START,
    end: int | None = PERIOD_END,
    **extra: Any,
) -> dict:
    """Subscription object with an expanded first item price."""
    price = {"id": "price_test_123", "recurring": {"interval": interval} if interval else None}
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "current_period_start": start,
        "current_period_end": end,
        "items": {"object": "list", "data": [{"id": "si_test_123", "price": price}]},
        **extra,
    }


@pytest.fixture
def store() -> InMemorySubscriptionStore:
    return InMemorySubscriptionStore()


@pytest.fixture
def provider() -> FakeStripeProvider:
    """Provider with one customer, one monthly subscription, and two sessions."""
    provider = FakeStripeProvider()
    provider.customers["cus_test_123"] = {
        "id": "cus_test_123",
        "object": "customer",
        "email": "Buyer@Example.com",
    }
    provider.subscriptions["sub_test_123"] = subscription_object()
    provider.sessions["cs_test_sub"] = {
        "id": "cs_test_sub",
        "object": "checkout.session",
        "customer": "cus_test_123",
        "customer_details": {"email": "buyer@example.com"},
        "subscription": "sub_test_123",
        "mode": "subscription",
    }
    provider.sessions["cs_test_once"] = {
        "id": "cs_test_once",
        "object": "checkout.session",
        "customer": None,
        "customer_details": {"email": "once@example.com"},
        "subscription": None,
        "mode": "payment",
    }
    return provider


@pytest.fixture
def mock_pool():
    """asyncpg-shaped pool whose connection records execute() calls."""
    mock_conn = AsyncMock()
    mock_acquire = MagicMock()
    mock_acquire.__aenter__ = AsyncMock(return_value=mock_conn)
    mock_acquire.__aexit__ = AsyncMock(return_value=None)
    pool = MagicMock()
    pool.acquire.return_value = mock_acquire
    pool.conn = mock_conn
    return pool
