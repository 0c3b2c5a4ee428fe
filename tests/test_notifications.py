"""Tests for receipt rendering and delivery."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from storefront.errors import NotificationFailure
from storefront.models import Order, Product
from storefront.notifications import (
    RECEIPT_SUBJECT,
    ReceiptNotifier,
    describe_ttl,
    download_url,
    format_price,
    render_receipt,
)

ORDER = Order(
    id="ord_1",
    charge_id="ch_1",
    account_id="acct_1",
    product_id="P1",
    price_paid_in_cents=1999,
    created_at=datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc),
)
PRODUCT = Product(id="P1", name="Field <Guide>", price_in_cents=1999, description="PDF & EPUB")


def _notifier() -> ReceiptNotifier:
    return ReceiptNotifier(
        api_key="re_secret",
        sender_email="support@example.com",
        base_url="https://shop.example.com/",
        api_url="https://email.example.com/emails",
    )


class TestRenderReceipt:
    def test_references_product_price_and_grant(self):
        msg = render_receipt(ORDER, PRODUCT, "grant_1", "https://shop.example.com")
        assert msg.subject == RECEIPT_SUBJECT
        assert "Field <Guide>" in msg.text
        assert "$19.99" in msg.text
        assert "ord_1" in msg.text
        assert "https://shop.example.com/products/download/grant_1" in msg.text
        assert "https://shop.example.com/products/download/grant_1" in msg.html

    def test_html_escapes_product_fields(self):
        msg = render_receipt(ORDER, PRODUCT, "grant_1", "https://shop.example.com")
        assert "Field &lt;Guide&gt;" in msg.html
        assert "PDF &amp; EPUB" in msg.html
        assert "<Guide>" not in msg.html

    @pytest.mark.parametrize(
        "cents,currency,expected",
        [(1999, "usd", "$19.99"), (0, "usd", "$0.00"), (123456, "usd", "$1,234.56"), (500, "eur", "5.00 EUR")],
    )
    def test_format_price(self, cents, currency, expected):
        assert format_price(cents, currency) == expected

    def test_download_url_strips_trailing_slash(self):
        assert download_url("https://a.example/", "g") == "https://a.example/products/download/g"

    def test_non_usd_order_is_priced_in_its_currency(self):
        msg = render_receipt(
            replace(ORDER, currency="eur"), PRODUCT, "grant_1", "https://shop.example.com"
        )
        assert "Price paid: 19.99 EUR" in msg.text
        assert "19.99 EUR" in msg.html
        assert "$" not in msg.text

    def test_link_lifetime_defaults_to_24_hours(self):
        msg = render_receipt(ORDER, PRODUCT, "grant_1", "https://shop.example.com")
        assert "expires in 24 hours" in msg.text
        assert "expires 24 hours after purchase" in msg.html

    def test_link_lifetime_follows_configured_ttl(self):
        msg = render_receipt(
            ORDER, PRODUCT, "grant_1", "https://shop.example.com", link_ttl=timedelta(hours=72)
        )
        assert "expires in 72 hours" in msg.text
        assert "24 hours" not in msg.text
        assert "24 hours" not in msg.html

    @pytest.mark.parametrize(
        "ttl,expected",
        [
            (timedelta(hours=24), "24 hours"),
            (timedelta(hours=1), "1 hour"),
            (timedelta(minutes=90), "90 minutes"),
            (timedelta(minutes=1), "1 minute"),
        ],
    )
    def test_describe_ttl(self, ttl, expected):
        assert describe_ttl(ttl) == expected


class TestReceiptNotifier:
    @patch("storefront.notifications.requests.post")
    def test_sends_one_request(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200, json=lambda: {"id": "msg_42"})

        ack = _notifier().notify("buyer@example.com", ORDER, PRODUCT, "grant_1")

        assert ack.message_id == "msg_42"
        mock_post.assert_called_once()
        args, kwargs = mock_post.call_args
        assert args[0] == "https://email.example.com/emails"
        assert kwargs["headers"]["Authorization"] == "Bearer re_secret"
        assert kwargs["json"]["from"] == "Support <support@example.com>"
        assert kwargs["json"]["to"] == ["buyer@example.com"]
        assert kwargs["json"]["subject"] == RECEIPT_SUBJECT
        assert "grant_1" in kwargs["json"]["html"]
        assert kwargs["timeout"] == 10.0

    @patch("storefront.notifications.requests.post")
    def test_non_2xx_raises_notification_failure(self, mock_post):
        mock_post.return_value = MagicMock(status_code=422)
        with pytest.raises(NotificationFailure, match="422"):
            _notifier().notify("buyer@example.com", ORDER, PRODUCT, "grant_1")
        assert mock_post.call_count == 1

    @patch("storefront.notifications.requests.post")
    def test_transport_error_raises_notification_failure(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(NotificationFailure):
            _notifier().notify("buyer@example.com", ORDER, PRODUCT, "grant_1")
        assert mock_post.call_count == 1

    @patch("storefront.notifications.requests.post")
    def test_failure_message_does_not_leak_api_key(self, mock_post):
        mock_post.return_value = MagicMock(status_code=401)
        with pytest.raises(NotificationFailure) as excinfo:
            _notifier().notify("buyer@example.com", ORDER, PRODUCT, "grant_1")
        assert "re_secret" not in str(excinfo.value)

    @patch("storefront.notifications.requests.post")
    def test_unparseable_success_body(self, mock_post):
        response = MagicMock(status_code=200)
        response.json.side_effect = ValueError("no json")
        mock_post.return_value = response
        assert _notifier().notify("buyer@example.com", ORDER, PRODUCT, "grant_1").message_id == ""
