"""Fulfillment engine: turns a successful charge into an order and a download grant.

Deduplication is keyed on the provider charge id, not on email/product/amount,
so a genuine repeat purchase creates a new order while a redelivered event
returns the original one.  Product lookup, account resolution, order
recording and grant issuance share one store transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from storefront.errors import InvalidChargeMetadata, ProductNotFound
from storefront.models import Charge, FulfillmentResult
from storefront.storage.base import Store

logger = logging.getLogger(__name__)

DOWNLOAD_GRANT_TTL = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def mask_email(email: str | None) -> str:
    """Redact the local part of an address for logs: ``b***@example.com``."""
    if not email or "@" not in email:
        return "***"
    local, domain = email.split("@", 1)
    return f"{local[:1]}***@{domain}"


class FulfillmentEngine:
    """Idempotent order/account/grant creation for successful charges."""

    def __init__(
        self,
        store: Store,
        grant_ttl: timedelta = DOWNLOAD_GRANT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if grant_ttl <= timedelta(0):
            raise ValueError("grant_ttl must be positive")
        self._store = store
        self._grant_ttl = grant_ttl
        self._clock = clock

    def fulfill(self, charge: Charge) -> FulfillmentResult:
        """Fulfill ``charge`` exactly once.

        Raises:
            InvalidChargeMetadata: product id, billing email, charge id or
                amount missing or malformed (no writes)
            ProductNotFound: product id unknown to the catalog (no writes)
            StorageTransient: storage unreachable; safe to redeliver
        """
        if not charge.product_id or not charge.billing_email:
            logger.error(
                "Charge %s missing product id or email (product=%r, email=%s)",
                charge.charge_id,
                charge.product_id,
                mask_email(charge.billing_email),
            )
            raise InvalidChargeMetadata("Product ID or email is missing")
        if not charge.charge_id:
            logger.error("Charge event carries neither a charge id nor an event id")
            raise InvalidChargeMetadata("Charge id is missing")
        if charge.amount is None:
            logger.error("Charge %s has no non-negative integer amount", charge.charge_id)
            raise InvalidChargeMetadata("Charge amount is missing or invalid")

        logger.info(
            "Processing product %s for %s (charge=%s)",
            charge.product_id,
            mask_email(charge.billing_email),
            charge.charge_id,
        )

        with self._store.transaction() as tx:
            product = tx.get_product(charge.product_id)
            if product is None:
                raise ProductNotFound(charge.product_id)

            existing = tx.find_order_by_charge(charge.charge_id)
            if existing is None:
                now = self._clock()
                account = tx.resolve_account(charge.billing_email, now)
                order = tx.record_order(
                    charge_id=charge.charge_id,
                    account_id=account.id,
                    product_id=product.id,
                    price_paid_in_cents=charge.amount,
                    currency=charge.currency,
                    now=now,
                )
                if order is not None:
                    grant = tx.issue_download_grant(
                        order_id=order.id,
                        product_id=product.id,
                        created_at=now,
                        expires_at=now + self._grant_ttl,
                    )
                    logger.info(
                        "Created order %s and download grant %s for charge %s",
                        order.id,
                        grant.id,
                        charge.charge_id,
                    )
                    return FulfillmentResult(order, product, account, grant, created=True)
                # Lost a race with a concurrent delivery of the same charge
                existing = tx.find_order_by_charge(charge.charge_id)

            return self._already_fulfilled(tx, charge, existing, product)

    def _already_fulfilled(self, tx, charge, order, product) -> FulfillmentResult:
        account = tx.get_account(order.account_id)
        grant = tx.find_grant_for_order(order.id)
        if account is None or grant is None:
            raise RuntimeError(f"Order {order.id} is missing its account or download grant")
        logger.info("Charge %s already fulfilled as order %s", charge.charge_id, order.id)
        return FulfillmentResult(order, product, account, grant, created=False)
