"""Purchase receipt delivery via a transactional email HTTP API.

One send per newly created fulfillment, no internal retry.  Delivery failure
is reported as NotificationFailure and never rolls back the committed order.

Security: the API key is sent only in the Authorization header, never logged.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

import requests

from storefront.errors import NotificationFailure
from storefront.fulfillment import DOWNLOAD_GRANT_TTL
from storefront.models import Order, Product

logger = logging.getLogger(__name__)

RECEIPT_SUBJECT = "Your purchase is complete!"


@dataclass(frozen=True)
class ReceiptMessage:
    subject: str
    text: str
    html: str


@dataclass(frozen=True)
class ReceiptAck:
    """Provider acknowledgment of an accepted message."""

    message_id: str = ""


class Notifier(Protocol):
    def notify(
        self, recipient: str, order: Order, product: Product, download_grant_id: str
    ) -> ReceiptAck:
        ...


def format_price(cents: int, currency: str = "usd") -> str:
    amount = f"{cents / 100:,.2f}"
    if currency.lower() == "usd":
        return f"${amount}"
    return f"{amount} {currency.upper()}"


def download_url(base_url: str, download_grant_id: str) -> str:
    return f"{base_url.rstrip('/')}/products/download/{download_grant_id}"


def describe_ttl(ttl: timedelta) -> str:
    """``24 hours``, ``1 hour``, or ``30 minutes`` for sub-hour lifetimes."""
    minutes = int(ttl.total_seconds() // 60)
    if minutes % 60:
        return f"{minutes} minute" + ("" if minutes == 1 else "s")
    hours = minutes // 60
    return f"{hours} hour" + ("" if hours == 1 else "s")


def render_receipt(
    order: Order,
    product: Product,
    download_grant_id: str,
    base_url: str,
    link_ttl: timedelta = DOWNLOAD_GRANT_TTL,
) -> ReceiptMessage:
    """Render the receipt in plain text and HTML."""
    price = format_price(order.price_paid_in_cents, order.currency)
    lifetime = describe_ttl(link_ttl)
    link = download_url(base_url, download_grant_id)
    purchased_on = order.created_at.strftime("%B %d, %Y")

    text = (
        f"Thank you for your purchase!\n\n"
        f"Product: {product.name}\n"
        f"Price paid: {price}\n"
        f"Order ID: {order.id}\n"
        f"Purchased on: {purchased_on}\n\n"
        f"Download your product: {link}\n"
        f"This link expires in {lifetime}.\n"
    )

    name = html.escape(product.name)
    description = html.escape(product.description)
    html_body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px;">
        <h1 style="margin: 0 0 16px 0;">Purchase Receipt</h1>
        <table style="width: 100%; font-size: 14px; color: #333;">
            <tr><td>Order ID</td><td>{html.escape(order.id)}</td></tr>
            <tr><td>Purchased on</td><td>{purchased_on}</td></tr>
            <tr><td>Price paid</td><td>{price}</td></tr>
        </table>
        <h2 style="margin: 24px 0 8px 0;">{name}</h2>
        <p style="margin: 0; color: #555;">{description}</p>
        <p style="margin-top: 24px;">
            <a href="{html.escape(link)}"
               style="background: #111; color: #fff; padding: 10px 16px; text-decoration: none;">
                Download
            </a>
        </p>
        <p style="font-size: 11px; color: #999; margin-top: 16px;">
            The download link expires {lifetime} after purchase.
        </p>
    </div>
    """
    return ReceiptMessage(subject=RECEIPT_SUBJECT, text=text, html=html_body)


class ReceiptNotifier:
    """Sends receipts through a Resend-compatible ``POST /emails`` endpoint."""

    def __init__(
        self,
        api_key: str,
        sender_email: str,
        base_url: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
        link_ttl: timedelta = DOWNLOAD_GRANT_TTL,
    ):
        self._api_key = api_key
        self._sender = f"Support <{sender_email}>"
        self._base_url = base_url
        self._api_url = api_url
        self._timeout = timeout
        self._link_ttl = link_ttl

    def notify(
        self, recipient: str, order: Order, product: Product, download_grant_id: str
    ) -> ReceiptAck:
        """Send one receipt.  Raises NotificationFailure on any delivery error."""
        message = render_receipt(
            order, product, download_grant_id, self._base_url, self._link_ttl
        )
        payload = {
            "from": self._sender,
            "to": [recipient],
            "subject": message.subject,
            "text": message.text,
            "html": message.html,
        }

        try:
            resp = requests.post(
                self._api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise NotificationFailure(f"Email API unreachable: {e.__class__.__name__}") from e

        if not 200 <= resp.status_code < 300:
            raise NotificationFailure(f"Email API error: {resp.status_code}")

        try:
            body = resp.json()
        except ValueError:
            body = {}
        message_id = str(body.get("id", "")) if isinstance(body, dict) else ""
        logger.info("Receipt sent for order %s (message=%s)", order.id, message_id or "n/a")
        return ReceiptAck(message_id=message_id)
