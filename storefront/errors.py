"""Error taxonomy for the webhook and fulfillment path.

Client-side failures (bad signature, bad metadata, unknown product) are
terminal: the provider should not redeliver them as-is.  StorageTransient is
the retryable class and maps to a 5xx so the provider redelivers.
NotificationFailure never changes the outcome of a committed fulfillment.
"""

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for all storefront errors."""


class ConfigurationError(StorefrontError):
    """Required configuration is missing or invalid at startup."""


class WebhookError(StorefrontError):
    """Inbound webhook could not be authenticated."""


class SignatureMissing(WebhookError):
    """No signature header was sent with the webhook."""


class SignatureInvalid(WebhookError):
    """Signature mismatch, stale timestamp, or unparseable signed payload."""


class FulfillmentError(StorefrontError):
    """Terminal failure while fulfilling a charge."""


class InvalidChargeMetadata(FulfillmentError):
    """Charge lacks a product id or billing email."""


class ProductNotFound(FulfillmentError):
    """Charge references a product the catalog does not know."""

    def __init__(self, product_id: str):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class StorageTransient(StorefrontError):
    """Storage was unreachable or timed out; safe to retry."""


class NotificationFailure(StorefrontError):
    """Receipt delivery failed after the order was committed."""
