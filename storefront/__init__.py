"""Storefront fulfillment: payment webhooks to orders, downloads and receipts."""

__version__ = "0.1.0"
