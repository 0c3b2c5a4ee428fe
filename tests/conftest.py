"""Shared fixtures for the storefront test suite."""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from storefront.app import create_app
from storefront.config import Settings
from storefront.errors import NotificationFailure
from storefront.fulfillment import FulfillmentEngine
from storefront.models import Product
from storefront.notifications import ReceiptAck
from storefront.storage import MemoryStore
from storefront.webhooks.verification import compute_signature_header

WEBHOOK_SECRET = "whsec_test_secret"


class RecordingNotifier:
    """Notifier double that records every send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict] = []

    def notify(self, recipient, order, product, download_grant_id):
        self.sent.append(
            {
                "recipient": recipient,
                "order": order,
                "product": product,
                "download_grant_id": download_grant_id,
            }
        )
        if self.fail:
            raise NotificationFailure("Email API error: 503")
        return ReceiptAck(message_id="msg_123")


def make_event(
    event_type: str = "charge.succeeded",
    *,
    event_id: str = "evt_1",
    charge_id: str = "ch_1",
    product_id: str | None = "P1",
    email: str | None = "buyer@example.com",
    amount: int = 1999,
) -> dict:
    metadata = {"productId": product_id} if product_id is not None else {}
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {
            "object": {
                "id": charge_id,
                "object": "charge",
                "amount": amount,
                "currency": "usd",
                "metadata": metadata,
                "billing_details": {"email": email},
            }
        },
    }


def signed_request(event: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(event).encode()
    return body, {"Stripe-Signature": compute_signature_header(body, secret)}


@pytest.fixture()
def product() -> Product:
    return Product(id="P1", name="Field Guide", price_in_cents=1999, description="PDF edition")


@pytest.fixture()
def store(product) -> MemoryStore:
    return MemoryStore(products=[product])


@pytest.fixture()
def fixed_now() -> datetime:
    return datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def engine(store, fixed_now) -> FulfillmentEngine:
    return FulfillmentEngine(store, clock=lambda: fixed_now)


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        stripe_webhook_secret=WEBHOOK_SECRET,
        sender_email="support@example.com",
        resend_api_key="re_test_key",
        database_url="memory://",
        public_base_url="https://shop.example.com",
    )


@pytest.fixture()
def client(settings, store, notifier):
    app = create_app(settings, store=store, notifier=notifier)
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture()
def event_factory():
    """Factory for provider event payloads (see make_event)."""
    return make_event


@pytest.fixture()
def sign():
    """Return (body, headers) for a signed event."""
    return signed_request


@pytest.fixture()
def failing_notifier() -> RecordingNotifier:
    return RecordingNotifier(fail=True)
