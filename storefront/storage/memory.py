"""In-process store for local development and tests.

Transactions are serialized by a lock, which gives the same single-order
outcome under concurrent redelivery that unique constraints give in
Postgres.  A failed transaction restores the snapshot taken at its start.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from storefront.models import Account, DownloadGrant, Order, Product, new_id

logger = logging.getLogger(__name__)


class _State:
    def __init__(self) -> None:
        self.products: dict[str, Product] = {}
        self.accounts: dict[str, Account] = {}  # keyed by email
        self.orders: dict[str, Order] = {}  # keyed by charge_id
        self.grants: dict[str, DownloadGrant] = {}  # keyed by order_id


class MemoryTransaction:
    def __init__(self, state: _State):
        self._state = state

    def get_product(self, product_id: str) -> Product | None:
        return self._state.products.get(product_id)

    def find_order_by_charge(self, charge_id: str) -> Order | None:
        return self._state.orders.get(charge_id)

    def get_account(self, account_id: str) -> Account | None:
        for account in self._state.accounts.values():
            if account.id == account_id:
                return account
        return None

    def resolve_account(self, email: str, now: datetime) -> Account:
        account = self._state.accounts.get(email)
        if account is None:
            account = Account(id=new_id(), email=email, created_at=now)
            self._state.accounts[email] = account
        return account

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
        if charge_id in self._state.orders:
            return None
        order = Order(
            id=new_id(),
            charge_id=charge_id,
            account_id=account_id,
            product_id=product_id,
            price_paid_in_cents=price_paid_in_cents,
            created_at=now,
            currency=currency,
        )
        self._state.orders[charge_id] = order
        return order

    def issue_download_grant(
        self, *, order_id: str, product_id: str, created_at: datetime, expires_at: datetime
    ) -> DownloadGrant:
        if order_id in self._state.grants:
            raise ValueError(f"Download grant already issued for order {order_id}")
        grant = DownloadGrant(
            id=new_id(),
            order_id=order_id,
            product_id=product_id,
            created_at=created_at,
            expires_at=expires_at,
        )
        self._state.grants[order_id] = grant
        return grant

    def find_grant_for_order(self, order_id: str) -> DownloadGrant | None:
        return self._state.grants.get(order_id)


class MemoryStore:
    """Dict-backed Store with serialized, all-or-nothing transactions."""

    transaction_class = MemoryTransaction

    def __init__(self, products: list[Product] | None = None):
        self._state = _State()
        self._lock = threading.Lock()
        for product in products or []:
            self.add_product(product)

    @contextmanager
    def transaction(self) -> Iterator[MemoryTransaction]:
        with self._lock:
            snapshot = {k: dict(v) for k, v in vars(self._state).items()}
            try:
                yield self.transaction_class(self._state)
            except BaseException:
                self._state.__dict__.update(snapshot)
                raise

    def add_product(self, product: Product) -> None:
        with self._lock:
            self._state.products[product.id] = product

    def init_schema(self) -> None:
        logger.info("Memory store needs no schema")

    def close(self) -> None:
        pass

    # Read helpers for the order-history collaborator and tests

    @property
    def accounts(self) -> list[Account]:
        return list(self._state.accounts.values())

    @property
    def orders(self) -> list[Order]:
        return list(self._state.orders.values())

    @property
    def download_grants(self) -> list[DownloadGrant]:
        return list(self._state.grants.values())
