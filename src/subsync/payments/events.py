"""Normalization of verified Stripe event envelopes into typed events."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from subsync.payments.errors import MalformedEvent


class EventKind(str, Enum):
    """Event kinds the reconciler knows, plus a catch-all."""

    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    UNKNOWN = "unknown"


# Stripe event type -> kind. invoice.paid is the newer name for a settled invoice.
STRIPE_EVENT_KINDS = {
    "checkout.session.completed": EventKind.CHECKOUT_COMPLETED,
    "customer.subscription.updated": EventKind.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": EventKind.SUBSCRIPTION_DELETED,
    "invoice.payment_succeeded": EventKind.PAYMENT_SUCCEEDED,
    "invoice.paid": EventKind.PAYMENT_SUCCEEDED,
    "invoice.payment_failed": EventKind.PAYMENT_FAILED,
}

# Fields each known kind must carry on data.object
REQUIRED_FIELDS = {
    EventKind.CHECKOUT_COMPLETED: ("id",),
    EventKind.SUBSCRIPTION_UPDATED: ("id", "customer"),
    EventKind.SUBSCRIPTION_DELETED: ("id", "customer"),
    EventKind.PAYMENT_SUCCEEDED: ("id", "customer"),
    EventKind.PAYMENT_FAILED: ("id", "customer"),
}


@dataclass(frozen=True)
class NormalizedEvent:
    """A verified event reduced to what the pipeline needs.

    Lives for one request and is never persisted.
    """

    kind: EventKind
    object_id: str | None
    raw_object: dict[str, Any] = field(repr=False)
    event_id: str | None = None
    event_type: str = ""


def normalize_event(event: dict[str, Any]) -> NormalizedEvent:
    """
    Map a verified Stripe event envelope to a NormalizedEvent.

    Unknown event types normalize to ``EventKind.UNKNOWN`` so new provider
    events never break the endpoint.

    Args:
        event: Decoded event envelope (``{"id", "type", "data": {"object"}}``)

    Returns:
        NormalizedEvent

    Raises:
        MalformedEvent: Envelope lacks a type or object, or a known kind
            lacks one of its required fields
    """
    event_type = event.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEvent("Event has no type")

    data = event.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise MalformedEvent("Event has no data.object", event_type)

    kind = STRIPE_EVENT_KINDS.get(event_type, EventKind.UNKNOWN)
    if kind is EventKind.UNKNOWN:
        return NormalizedEvent(
            kind=kind,
            object_id=obj.get("id"),
            raw_object=obj,
            event_id=event.get("id"),
            event_type=event_type,
        )

    missing = [name for name in REQUIRED_FIELDS[kind] if not obj.get(name)]
    if missing:
        raise MalformedEvent(
            f"{event_type} object missing required field(s): {', '.join(missing)}",
            event_type,
        )

    return NormalizedEvent(
        kind=kind,
        object_id=obj["id"],
        raw_object=obj,
        event_id=event.get("id"),
        event_type=event_type,
    )


def customer_ref(obj: dict[str, Any]) -> str | None:
    """Customer id from an object whose ``customer`` is an id or expanded object."""
    customer = obj.get("customer")
    if isinstance(customer, dict):
        return customer.get("id")
    return customer or None


def invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    """Subscription id an invoice belongs to, if any.

    Older API versions put it on ``invoice.subscription``; newer ones nest it
    under ``parent.subscription_details``.
    """
    subscription = invoice.get("subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    if subscription:
        return subscription

    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    subscription = details.get("subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    return subscription or None
