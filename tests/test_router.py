"""Tests for event routing by kind."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from storefront.models import Charge, VerifiedEvent
from storefront.webhooks.router import EventKind, EventRouter, OutcomeCode


def _event(event_type: str, data: dict | None = None) -> VerifiedEvent:
    return VerifiedEvent(id="evt_1", type=event_type, data=data or {"id": "obj_1"})


class TestEventKind:
    @pytest.mark.parametrize(
        "event_type,kind",
        [
            ("payment_intent.created", EventKind.PAYMENT_INTENT_CREATED),
            ("payment_intent.succeeded", EventKind.PAYMENT_INTENT_SUCCEEDED),
            ("charge.succeeded", EventKind.CHARGE_SUCCEEDED),
            ("charge.updated", EventKind.CHARGE_UPDATED),
        ],
    )
    def test_known_types(self, event_type, kind):
        assert EventKind.parse(event_type) is kind

    @pytest.mark.parametrize("event_type", ["charge.refunded", "other", "", "CHARGE.SUCCEEDED"])
    def test_unknown_types_map_to_other(self, event_type):
        assert EventKind.parse(event_type) is EventKind.OTHER


class TestEventRouter:
    @pytest.mark.parametrize(
        "event_type,message",
        [
            ("payment_intent.created", "Payment intent created"),
            ("payment_intent.succeeded", "Payment intent succeeded"),
            ("charge.updated", "Charge updated"),
        ],
    )
    def test_acknowledged_kinds_have_no_side_effects(self, event_type, message):
        engine = MagicMock()
        outcome = EventRouter(engine).route(_event(event_type))
        assert outcome.code is OutcomeCode.ACKNOWLEDGED
        assert outcome.message == message
        assert outcome.fulfillment is None
        engine.fulfill.assert_not_called()

    def test_unknown_type_is_unhandled_not_error(self):
        engine = MagicMock()
        outcome = EventRouter(engine).route(_event("customer.created"))
        assert outcome.code is OutcomeCode.UNHANDLED
        assert outcome.message == "Unhandled event type"
        assert outcome.event_type == "customer.created"
        engine.fulfill.assert_not_called()

    def test_charge_succeeded_fulfills(self, engine, store):
        data = {
            "id": "ch_1",
            "amount": 1999,
            "metadata": {"productId": "P1"},
            "billing_details": {"email": "buyer@example.com"},
        }
        outcome = EventRouter(engine).route(_event("charge.succeeded", data))
        assert outcome.code is OutcomeCode.FULFILLED
        assert outcome.message == "Charge succeeded"
        assert outcome.fulfillment.order.charge_id == "ch_1"
        assert len(store.orders) == 1

    def test_charge_succeeded_twice_is_already_fulfilled(self, engine, store):
        data = {
            "id": "ch_1",
            "amount": 1999,
            "metadata": {"productId": "P1"},
            "billing_details": {"email": "buyer@example.com"},
        }
        router = EventRouter(engine)
        first = router.route(_event("charge.succeeded", data))
        second = router.route(_event("charge.succeeded", data))
        assert second.code is OutcomeCode.ALREADY_FULFILLED
        assert second.fulfillment.order == first.fulfillment.order
        assert len(store.orders) == 1

    def test_charge_without_id_uses_event_id(self, engine, store):
        data = {
            "amount": 500,
            "metadata": {"productId": "P1"},
            "billing_details": {"email": "buyer@example.com"},
        }
        outcome = EventRouter(engine).route(_event("charge.succeeded", data))
        assert outcome.fulfillment.order.charge_id == "evt_1"

    def test_every_kind_has_a_handler(self):
        router = EventRouter(MagicMock())
        for kind in EventKind:
            assert kind in router._handlers


class TestChargeFromEvent:
    def test_extracts_fulfillment_fields(self):
        charge = Charge.from_event(
            _event(
                "charge.succeeded",
                {
                    "id": "ch_9",
                    "amount": 1999,
                    "currency": "eur",
                    "metadata": {"productId": "P1"},
                    "billing_details": {"email": "buyer@example.com"},
                },
            )
        )
        assert charge == Charge(
            charge_id="ch_9",
            amount=1999,
            product_id="P1",
            billing_email="buyer@example.com",
            currency="eur",
        )

    def test_missing_sections_become_none(self):
        charge = Charge.from_event(_event("charge.succeeded", {"id": "ch_9", "metadata": None}))
        assert charge.product_id is None
        assert charge.billing_email is None
        assert charge.amount is None

    @pytest.mark.parametrize("amount", ["1999", "19.99", 19.99, -1, True, None, [1999]])
    def test_non_integer_or_negative_amount_becomes_none(self, amount):
        charge = Charge.from_event(_event("charge.succeeded", {"id": "ch_9", "amount": amount}))
        assert charge.amount is None

    def test_zero_amount_is_kept(self):
        charge = Charge.from_event(_event("charge.succeeded", {"id": "ch_9", "amount": 0}))
        assert charge.amount == 0

    def test_no_charge_or_event_id_gives_empty_key(self):
        event = VerifiedEvent(id="", type="charge.succeeded", data={"amount": 100})
        assert Charge.from_event(event).charge_id == ""

    def test_currency_is_lowercased(self):
        charge = Charge.from_event(_event("charge.succeeded", {"id": "ch_9", "currency": "EUR"}))
        assert charge.currency == "eur"
