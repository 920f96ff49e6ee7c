"""
Typed representation of provider webhook events.

EventKind enumerates the event types the billing core acts on; every
other type maps to EventKind.UNKNOWN. EventEnvelope is the parsed,
authenticated event handed from intake to the router.

Usage:
    from billing.webhooks.events import EventEnvelope, EventKind

    envelope = EventEnvelope.from_dict(event)
    if envelope.kind == EventKind.INVOICE_PAID:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from billing.exceptions import MalformedPayloadError

if TYPE_CHECKING:
    from typing import Any


class EventKind(str, Enum):
    """Provider event types handled by the billing core."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    UNKNOWN = "unknown"

    @classmethod
    def from_type(cls, event_type: str | None) -> EventKind:
        """Map a provider event type string to a kind. Never raises."""
        try:
            return cls(event_type)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class EventEnvelope:
    """
    An authenticated provider event.

    Attributes:
        id: Provider event id (evt_xxx), the idempotency key
        type: Raw provider event type
        kind: Parsed EventKind (UNKNOWN for unhandled types)
        data_object: The object the event is about (payload.data.object)
        payload: The full decoded event
        created: Provider-side creation time, if present
    """

    id: str
    type: str
    kind: EventKind
    data_object: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)
    created: datetime | None = None

    @classmethod
    def from_dict(cls, event: dict[str, Any]) -> EventEnvelope:
        """
        Build an envelope from a decoded event.

        Raises:
            MalformedPayloadError: If the event lacks an id or type, or its
                data.object is not an object
        """
        if not isinstance(event, dict):
            raise MalformedPayloadError("Webhook body is not a JSON object")

        event_id = event.get("id")
        event_type = event.get("type")
        if not isinstance(event_id, str) or not event_id:
            raise MalformedPayloadError("Webhook event is missing its id")
        if not isinstance(event_type, str) or not event_type:
            raise MalformedPayloadError(
                "Webhook event is missing its type",
                details={"event_id": event_id},
            )

        data = event.get("data") or {}
        data_object = data.get("object") if isinstance(data, dict) else None
        if data_object is None:
            data_object = {}
        if not isinstance(data_object, dict):
            raise MalformedPayloadError(
                "Webhook event data.object is not an object",
                details={"event_id": event_id},
            )

        created = None
        if isinstance(event.get("created"), (int, float)):
            created = datetime.fromtimestamp(event["created"], tz=timezone.utc)

        return cls(
            id=event_id,
            type=event_type,
            kind=EventKind.from_type(event_type),
            data_object=data_object,
            payload=event,
            created=created,
        )

    @property
    def object_id(self) -> str | None:
        return self.data_object.get("id")

    @property
    def metadata(self) -> dict[str, Any]:
        """Metadata attached to the event's object."""
        metadata = self.data_object.get("metadata")
        return metadata if isinstance(metadata, dict) else {}

    def get_metadata(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)
