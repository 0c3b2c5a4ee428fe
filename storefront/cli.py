"""Operator CLI for the storefront webhook service.

Usage:
    python -m storefront.cli init-db
    python -m storefront.cli add-product P1 "Field Guide" 1999 --description "PDF"
    python -m storefront.cli sign event.json
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from storefront.config import load_settings
from storefront.errors import ConfigurationError
from storefront.models import Product
from storefront.storage import build_store
from storefront.webhooks.verification import compute_signature_header


def _store_from_env(args: argparse.Namespace):
    if args.database_url:
        return build_store(args.database_url)
    return build_store(load_settings().database_url)


def cmd_init_db(args: argparse.Namespace) -> None:
    """Create the storefront tables."""
    store = _store_from_env(args)
    try:
        store.init_schema()
    finally:
        store.close()
    print("Schema initialized")


def cmd_add_product(args: argparse.Namespace) -> None:
    """Insert or update a catalog product."""
    store = _store_from_env(args)
    try:
        store.add_product(
            Product(
                id=args.product_id,
                name=args.name,
                price_in_cents=args.price_in_cents,
                description=args.description,
            )
        )
    finally:
        store.close()
    print(f"Product {args.product_id} saved")


def cmd_sign(args: argparse.Namespace) -> None:
    """Print a Stripe-Signature header for a payload file."""
    payload_path = Path(args.payload)
    if not payload_path.exists():
        print(f"ERROR: payload file not found: {payload_path}", file=sys.stderr)
        sys.exit(1)
    secret = args.secret or load_settings().stripe_webhook_secret
    print(compute_signature_header(payload_path.read_bytes(), secret, args.timestamp))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storefront",
        description="Storefront webhook service tools",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init-db", help="Create database tables")
    p_init.add_argument("--database-url", default=None)
    p_init.set_defaults(func=cmd_init_db)

    p_add = sub.add_parser("add-product", help="Insert or update a product")
    p_add.add_argument("product_id")
    p_add.add_argument("name")
    p_add.add_argument("price_in_cents", type=int)
    p_add.add_argument("--description", default="")
    p_add.add_argument("--database-url", default=None)
    p_add.set_defaults(func=cmd_add_product)

    p_sign = sub.add_parser("sign", help="Sign a webhook payload for local testing")
    p_sign.add_argument("payload", help="Path to the JSON event body")
    p_sign.add_argument("--secret", default=None, help="Defaults to STRIPE_WEBHOOK_SECRET")
    p_sign.add_argument("--timestamp", type=int, default=None)
    p_sign.set_defaults(func=cmd_sign)

    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        args.func(args)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
