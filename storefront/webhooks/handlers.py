"""Webhook HTTP handler: FastAPI route for inbound payment webhooks.

Each request:
1. Reads the raw body (needed for HMAC verification, never parsed before it)
2. Verifies the signature
3. Routes the event (fulfilling successful charges)
4. Sends a receipt for newly created orders
5. Maps the outcome to an HTTP status

Status contract:
- 400 for signature failures and terminal charge problems (do not redeliver)
- 200 for fulfilled, already-fulfilled and acknowledged events
- configurable (default 400) for unhandled event types
- 500 for anything else, so the provider redelivers
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from storefront.errors import (
    InvalidChargeMetadata,
    NotificationFailure,
    ProductNotFound,
    SignatureInvalid,
    SignatureMissing,
)
from storefront.fulfillment import mask_email
from storefront.notifications import Notifier
from storefront.webhooks.router import EventRouter, Outcome, OutcomeCode
from storefront.webhooks.verification import (
    DEFAULT_TOLERANCE_SECONDS,
    SIGNATURE_HEADER,
    verify,
)

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhooks/payment"


@dataclass(frozen=True)
class WebhookResponse:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


def _log_webhook(event_type: str, event_id: str, status: str) -> None:
    """Audit log for webhook activity."""
    logger.info("WEBHOOK_AUDIT event=%s id=%s status=%s", event_type, event_id, status)


def _get_header(headers: Mapping[str, str], name: str) -> str | None:
    name = name.lower()
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


class WebhookService:
    """Verify, route, fulfill and notify for one webhook delivery."""

    def __init__(
        self,
        secret: str,
        router: EventRouter,
        notifier: Notifier,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        unhandled_status: int = 400,
    ):
        self._secret = secret
        self._router = router
        self._notifier = notifier
        self._tolerance = tolerance_seconds
        self._unhandled_status = unhandled_status

    def handle(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookResponse:
        start = time.time()
        event_type, event_id = "unknown", "unknown"
        try:
            try:
                event = verify(
                    raw_body,
                    _get_header(headers, SIGNATURE_HEADER),
                    self._secret,
                    tolerance_seconds=self._tolerance,
                )
            except SignatureMissing:
                _log_webhook(event_type, event_id, "signature_missing")
                return WebhookResponse(400, {"error": "Signature missing"})
            except SignatureInvalid as e:
                logger.warning("Failed to verify event: %s", e)
                _log_webhook(event_type, event_id, "signature_invalid")
                return WebhookResponse(400, {"error": "Invalid signature"})

            event_type, event_id = event.type, event.id
            logger.info("Verified event: %s (id=%s)", event_type, event_id)

            try:
                outcome = self._router.route(event)
            except InvalidChargeMetadata:
                _log_webhook(event_type, event_id, "invalid_metadata")
                return WebhookResponse(400, {"error": "Invalid charge metadata"})
            except ProductNotFound as e:
                logger.error(
                    "Product %s not found for event %s; catalog and payments disagree",
                    e.product_id,
                    event_id,
                )
                _log_webhook(event_type, event_id, "product_not_found")
                return WebhookResponse(400, {"error": "Product not found"})

            if outcome.code is OutcomeCode.FULFILLED:
                self._send_receipt(outcome)

            _log_webhook(event_type, event_id, outcome.code.value)
            status = self._unhandled_status if outcome.code is OutcomeCode.UNHANDLED else 200
            return WebhookResponse(status, {"message": outcome.message})
        except Exception:
            logger.exception("Webhook handler failed: %s (id=%s)", event_type, event_id)
            _log_webhook(event_type, event_id, "failed")
            return WebhookResponse(500, {"error": "Webhook handler failed"})
        finally:
            elapsed_ms = (time.time() - start) * 1000
            logger.debug("Webhook processed in %.1fms: %s", elapsed_ms, event_type)

    def _send_receipt(self, outcome: Outcome) -> None:
        result = outcome.fulfillment
        recipient = result.account.email
        try:
            self._notifier.notify(recipient, result.order, result.product, result.download_grant_id)
        except NotificationFailure as e:
            logger.error(
                "Receipt not delivered for order %s to %s: %s",
                result.order.id,
                mask_email(recipient),
                e,
            )


def register_webhook_routes(app: FastAPI, service: WebhookService) -> None:
    """Register the payment webhook route on the FastAPI app."""

    @app.post(WEBHOOK_PATH)
    async def payment_webhook(request: Request):
        """Receive payment provider webhooks (signature-verified)."""
        body = await request.body()
        headers = {k.lower(): v for k, v in request.headers.items()}
        response = await run_in_threadpool(service.handle, body, headers)
        return JSONResponse(response.body, status_code=response.status_code)

    logger.info("Webhook route registered: %s", WEBHOOK_PATH)
