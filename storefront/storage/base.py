"""Storage contract for the fulfillment path.

A Store hands out transactions.  Everything done through one StoreTransaction
commits together or not at all.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol, runtime_checkable

from storefront.models import Account, DownloadGrant, Order, Product


@runtime_checkable
class StoreTransaction(Protocol):
    """Operations available inside one transaction."""

    def get_product(self, product_id: str) -> Product | None:
        ...

    def find_order_by_charge(self, charge_id: str) -> Order | None:
        ...

    def get_account(self, account_id: str) -> Account | None:
        ...

    def resolve_account(self, email: str, now: datetime) -> Account:
        """Return the account for ``email``, creating it if absent."""
        ...

    def record_order(
        self,
        *,
        charge_id: str,
        account_id: str,
        product_id: str,
        price_paid_in_cents: int,
        currency: str,
        now: datetime,
    ) -> Order | None:
        """Insert an order; None if one already exists for ``charge_id``."""
        ...

    def issue_download_grant(
        self, *, order_id: str, product_id: str, created_at: datetime, expires_at: datetime
    ) -> DownloadGrant:
        ...

    def find_grant_for_order(self, order_id: str) -> DownloadGrant | None:
        ...


@runtime_checkable
class Store(Protocol):
    """Process-wide storage handle, constructed once at startup."""

    def transaction(self) -> AbstractContextManager[StoreTransaction]:
        ...

    def add_product(self, product: Product) -> None:
        ...

    def init_schema(self) -> None:
        ...

    def close(self) -> None:
        ...
