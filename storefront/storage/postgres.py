"""Postgres store: raw SQL over a psycopg connection pool.

Idempotency lives in the schema:
- accounts.email is UNIQUE, so concurrent upserts converge on one account
- orders.charge_id is UNIQUE, so redelivered charges insert nothing
- download_grants.order_id is UNIQUE, one grant per order

A second transaction inserting the same charge_id blocks on the unique index
until the first commits, then its ON CONFLICT DO NOTHING returns no row.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from storefront.errors import StorageTransient
from storefront.models import Account, DownloadGrant, Order, Product, new_id

logger = logging.getLogger(__name__)

SCHEMA_DDL = [
    """
    CREATE TABLE IF NOT EXISTS products (
        id              TEXT PRIMARY KEY,
        name            TEXT NOT NULL,
        price_in_cents  INTEGER NOT NULL,
        description     TEXT NOT NULL DEFAULT '',
        created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id          TEXT PRIMARY KEY,
        email       TEXT NOT NULL UNIQUE,
        created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id                   TEXT PRIMARY KEY,
        charge_id            TEXT NOT NULL UNIQUE,
        account_id           TEXT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
        product_id           TEXT NOT NULL REFERENCES products(id) ON DELETE RESTRICT,
        price_paid_in_cents  INTEGER NOT NULL,
        currency             TEXT NOT NULL DEFAULT 'usd',
        created_at           TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS download_grants (
        id          TEXT PRIMARY KEY,
        order_id    TEXT NOT NULL UNIQUE REFERENCES orders(id) ON DELETE CASCADE,
        product_id  TEXT NOT NULL REFERENCES products(id) ON DELETE CASCADE,
        created_at  TIMESTAMPTZ NOT NULL,
        expires_at  TIMESTAMPTZ NOT NULL,
        CHECK (expires_at > created_at)
    )
    """,
    "ALTER TABLE orders ADD COLUMN IF NOT EXISTS currency TEXT NOT NULL DEFAULT 'usd'",
    "CREATE INDEX IF NOT EXISTS idx_orders_account ON orders (account_id)",
]


def _account(row: dict[str, Any]) -> Account:
    return Account(id=row["id"], email=row["email"], created_at=row["created_at"])


def _order(row: dict[str, Any]) -> Order:
    return Order(
        id=row["id"],
        charge_id=row["charge_id"],
        account_id=row["account_id"],
        product_id=row["product_id"],
        price_paid_in_cents=row["price_paid_in_cents"],
        created_at=row["created_at"],
        currency=row["currency"],
    )


def _grant(row: dict[str, Any]) -> DownloadGrant:
    return DownloadGrant(
        id=row["id"],
        order_id=row["order_id"],
        product_id=row["product_id"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
    )


class PostgresTransaction:
    """StoreTransaction bound to one open psycopg transaction."""

    def __init__(self, conn: psycopg.Connection):
        self._conn = conn

    def get_product(self, product_id: str) -> Product | None:
        row = self._conn.execute(
            "SELECT id, name, price_in_cents, description FROM products WHERE id = %s",
            (product_id,),
        ).fetchone()
        if row is None:
            return None
        return Product(
            id=row["id"],
            name=row["name"],
            price_in_cents=row["price_in_cents"],
            description=row["description"],
        )

    def find_order_by_charge(self, charge_id: str) -> Order | None:
        row = self._conn.execute(
            "SELECT * FROM orders WHERE charge_id = %s", (charge_id,)
        ).fetchone()
        return _order(row) if row else None

    def get_account(self, account_id: str) -> Account | None:
        row = self._conn.execute(
            "SELECT id, email, created_at FROM accounts WHERE id = %s", (account_id,)
        ).fetchone()
        return _account(row) if row else None

    def resolve_account(self, email: str, now: datetime) -> Account:
        # DO UPDATE (not DO NOTHING) so RETURNING always yields the row
        row = self._conn.execute(
            """INSERT INTO accounts (id, email, created_at)
               VALUES (%s, %s, %s)
               ON CONFLICT (email) DO UPDATE SET email = EXCLUDED.email
               RETURNING id, email, created_at""",
            (new_id(), email, now),
        ).fetchone()
        return _account(row)

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
        row = self._conn.execute(
            """INSERT INTO orders
                   (id, charge_id, account_id, product_id, price_paid_in_cents, created_at, currency)
               VALUES (%s, %s, %s, %s, %s, %s, %s)
               ON CONFLICT (charge_id) DO NOTHING
               RETURNING *""",
            (new_id(), charge_id, account_id, product_id, price_paid_in_cents, now, currency),
        ).fetchone()
        return _order(row) if row else None

    def issue_download_grant(
        self, *, order_id: str, product_id: str, created_at: datetime, expires_at: datetime
    ) -> DownloadGrant:
        row = self._conn.execute(
            """INSERT INTO download_grants (id, order_id, product_id, created_at, expires_at)
               VALUES (%s, %s, %s, %s, %s)
               RETURNING *""",
            (new_id(), order_id, product_id, created_at, expires_at),
        ).fetchone()
        return _grant(row)

    def find_grant_for_order(self, order_id: str) -> DownloadGrant | None:
        row = self._conn.execute(
            "SELECT * FROM download_grants WHERE order_id = %s", (order_id,)
        ).fetchone()
        return _grant(row) if row else None


class PostgresStore:
    """Store backed by a psycopg ConnectionPool, opened once per process."""

    def __init__(
        self,
        database_url: str,
        min_size: int = 1,
        max_size: int = 10,
        pool: ConnectionPool | None = None,
    ):
        self._pool = pool or ConnectionPool(
            database_url,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row},
            open=True,
        )

    @contextmanager
    def _connection(self) -> Iterator[psycopg.Connection]:
        try:
            with self._pool.connection() as conn:
                yield conn
        except (psycopg.OperationalError, PoolTimeout) as e:
            logger.warning("Storage unavailable: %s", e.__class__.__name__)
            raise StorageTransient(str(e)) from e

    @contextmanager
    def transaction(self) -> Iterator[PostgresTransaction]:
        """Open a transaction; commit on clean exit, roll back on any error."""
        with self._connection() as conn:
            with conn.transaction():
                yield PostgresTransaction(conn)

    def add_product(self, product: Product) -> None:
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO products (id, name, price_in_cents, description)
                   VALUES (%s, %s, %s, %s)
                   ON CONFLICT (id) DO UPDATE
                   SET name = EXCLUDED.name,
                       price_in_cents = EXCLUDED.price_in_cents,
                       description = EXCLUDED.description""",
                (product.id, product.name, product.price_in_cents, product.description),
            )

    def init_schema(self) -> None:
        """Create tables if they don't exist.  Idempotent."""
        with self._connection() as conn:
            for ddl in SCHEMA_DDL:
                conn.execute(ddl)
        logger.info("Storefront schema initialized")

    def close(self) -> None:
        self._pool.close()
