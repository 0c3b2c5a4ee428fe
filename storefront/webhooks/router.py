"""Event router: maps verified events to outcomes.

Event kinds form a closed enumeration with an explicit OTHER member.  The
handler table must cover every kind, so adding a kind without deciding how
to handle it fails at router construction rather than falling through.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from storefront.fulfillment import FulfillmentEngine
from storefront.models import Charge, FulfillmentResult, VerifiedEvent

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Provider event types this service recognizes."""

    PAYMENT_INTENT_CREATED = "payment_intent.created"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    CHARGE_SUCCEEDED = "charge.succeeded"
    CHARGE_UPDATED = "charge.updated"
    OTHER = "other"

    @classmethod
    def parse(cls, event_type: str) -> EventKind:
        for kind in cls:
            if kind is not cls.OTHER and kind.value == event_type:
                return kind
        return cls.OTHER


class OutcomeCode(str, Enum):
    ACKNOWLEDGED = "acknowledged"
    FULFILLED = "fulfilled"
    ALREADY_FULFILLED = "already_fulfilled"
    UNHANDLED = "unhandled"


@dataclass(frozen=True)
class Outcome:
    """Terminal result of routing one event."""

    code: OutcomeCode
    message: str
    event_type: str
    fulfillment: FulfillmentResult | None = None


# Kinds that are acknowledged without side effects -> response message
_ACK_MESSAGES: dict[EventKind, str] = {
    EventKind.PAYMENT_INTENT_CREATED: "Payment intent created",
    EventKind.PAYMENT_INTENT_SUCCEEDED: "Payment intent succeeded",
    EventKind.CHARGE_UPDATED: "Charge updated",
}


class EventRouter:
    """Dispatch verified events synchronously, one shot per event."""

    def __init__(self, engine: FulfillmentEngine):
        self._engine = engine
        self._handlers: dict[EventKind, Callable[[VerifiedEvent], Outcome]] = {
            EventKind.PAYMENT_INTENT_CREATED: self._acknowledge,
            EventKind.PAYMENT_INTENT_SUCCEEDED: self._acknowledge,
            EventKind.CHARGE_SUCCEEDED: self._charge_succeeded,
            EventKind.CHARGE_UPDATED: self._acknowledge,
            EventKind.OTHER: self._unhandled,
        }
        missing = set(EventKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for event kinds: {sorted(k.value for k in missing)}")

    def route(self, event: VerifiedEvent) -> Outcome:
        kind = EventKind.parse(event.type)
        return self._handlers[kind](event)

    def _acknowledge(self, event: VerifiedEvent) -> Outcome:
        kind = EventKind.parse(event.type)
        logger.info(
            "Acknowledged %s event %s (object=%s)",
            event.type,
            event.id,
            event.data.get("id", ""),
        )
        return Outcome(OutcomeCode.ACKNOWLEDGED, _ACK_MESSAGES[kind], event.type)

    def _charge_succeeded(self, event: VerifiedEvent) -> Outcome:
        charge = Charge.from_event(event)
        result = self._engine.fulfill(charge)
        if result.created:
            return Outcome(OutcomeCode.FULFILLED, "Charge succeeded", event.type, result)
        return Outcome(
            OutcomeCode.ALREADY_FULFILLED, "Charge already fulfilled", event.type, result
        )

    def _unhandled(self, event: VerifiedEvent) -> Outcome:
        logger.warning("Unhandled event type: %s (id=%s)", event.type, event.id)
        return Outcome(OutcomeCode.UNHANDLED, "Unhandled event type", event.type)
