"""Domain records for the fulfillment path.

All records are frozen dataclasses: orders and grants are immutable once
written, and charges are immutable once received.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class VerifiedEvent:
    """A provider event whose signature has been checked.

    Only the signature verifier builds these, so downstream code may trust
    ``type`` and ``data``.
    """

    id: str
    type: str
    data: dict[str, Any]
    created: int | None = None


@dataclass(frozen=True)
class Charge:
    """The subset of a charge event needed for fulfillment.

    ``amount`` is None when the event carries no non-negative integer amount;
    ``charge_id`` is empty when neither the charge nor the event has an id.
    The fulfillment engine rejects both before touching storage.
    """

    charge_id: str
    amount: int | None
    product_id: str | None
    billing_email: str | None
    currency: str = "usd"

    @staticmethod
    def from_event(event: VerifiedEvent) -> Charge:
        """Extract charge fields from a ``charge.succeeded`` event.

        Falls back to the event id when the charge object carries no id, so
        there is always a stable deduplication key when the provider sent one.
        """
        obj = event.data
        metadata = obj.get("metadata") or {}
        billing = obj.get("billing_details") or {}
        amount = obj.get("amount")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            amount = None
        charge_id = obj.get("id") or event.id
        return Charge(
            charge_id=str(charge_id) if charge_id else "",
            amount=amount,
            product_id=metadata.get("productId"),
            billing_email=billing.get("email"),
            currency=str(obj.get("currency") or "usd").lower(),
        )


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price_in_cents: int
    description: str = ""


@dataclass(frozen=True)
class Account:
    id: str
    email: str
    created_at: datetime


@dataclass(frozen=True)
class Order:
    id: str
    charge_id: str
    account_id: str
    product_id: str
    price_paid_in_cents: int
    created_at: datetime
    currency: str = "usd"


@dataclass(frozen=True)
class DownloadGrant:
    """Time-limited capability to download a purchased product."""

    id: str
    order_id: str
    product_id: str
    created_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class FulfillmentResult:
    """What a fulfillment produced (or had already produced)."""

    order: Order
    product: Product
    account: Account
    download_grant: DownloadGrant
    created: bool = True

    @property
    def download_grant_id(self) -> str:
        return self.download_grant.id
