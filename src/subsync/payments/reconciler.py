"""Derivation of subscription record fields from resolved Stripe objects.

Pure functions only: no I/O, the clock is passed in. The table below is the
whole policy; ``reconcile`` is its literal encoding.

    kind                       plan                status      period                canceled_at
    checkout, no subscription  one_time            active      start=now, end=None   cleared
    checkout, subscription     interval | unknown  sub status  sub period            cleared unless canceled
    subscription_updated       interval | unknown  sub status  sub period            set only if canceled
    subscription_deleted       -                   canceled    -                     now
    payment_succeeded          (subscription_updated rule on the re-fetched subscription)
    payment_failed             -                   past_due    -                     -

"-" means the column is not written, so whatever the record holds survives.
Provider ids are only written when known, so a one-time purchase keeps the
subscription id of an earlier subscription.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from subsync.db.models import PLAN_ONE_TIME, PLAN_UNKNOWN, SubscriptionStatus
from subsync.payments.errors import MalformedEvent
from subsync.payments.events import EventKind, NormalizedEvent
from subsync.payments.resolver import ResolvedEntities


@dataclass
class SubscriptionUpdate:
    """Partial record: the columns to write for ``email``."""

    email: str
    fields: dict[str, Any]


def reconcile(
    event: NormalizedEvent,
    resolved: ResolvedEntities,
    now: datetime,
) -> SubscriptionUpdate:
    """
    Compute the partial subscription record an event implies.

    Args:
        event: Normalized event (never UNKNOWN)
        resolved: Output of the resolver for this event
        now: Processing time (UTC), used for one-time starts and cancellations

    Returns:
        SubscriptionUpdate

    Raises:
        MalformedEvent: A subscription object lacks a status or its period
            ends before it starts
    """
    kind = event.kind

    if kind is EventKind.CHECKOUT_COMPLETED:
        if resolved.subscription is None:
            fields = {
                "plan": PLAN_ONE_TIME,
                "status": SubscriptionStatus.ACTIVE.value,
                "current_period_start": now,
                "current_period_end": None,
            }
        else:
            fields = _subscription_fields(resolved.subscription, event, now)
        # A new purchase supersedes any earlier cancellation
        fields.setdefault("canceled_at", None)
        if resolved.customer_id:
            fields["stripe_customer_id"] = resolved.customer_id
        return SubscriptionUpdate(email=resolved.email, fields=fields)

    if kind in (EventKind.SUBSCRIPTION_UPDATED, EventKind.PAYMENT_SUCCEEDED):
        if resolved.subscription is None:
            raise ValueError(f"{kind.value} requires a resolved subscription")
        fields = _subscription_fields(resolved.subscription, event, now)
        if resolved.customer_id:
            fields["stripe_customer_id"] = resolved.customer_id
        return SubscriptionUpdate(email=resolved.email, fields=fields)

    if kind is EventKind.SUBSCRIPTION_DELETED:
        return SubscriptionUpdate(
            email=resolved.email,
            fields={
                "status": SubscriptionStatus.CANCELED.value,
                "canceled_at": now,
            },
        )

    if kind is EventKind.PAYMENT_FAILED:
        return SubscriptionUpdate(
            email=resolved.email,
            fields={"status": SubscriptionStatus.PAST_DUE.value},
        )

    raise ValueError(f"No derivation rule for event kind {kind}")


def _subscription_fields(
    subscription: dict[str, Any],
    event: NormalizedEvent,
    now: datetime,
) -> dict[str, Any]:
    """Fields shared by every rule that reads a subscription object."""
    status = subscription.get("status")
    if not status:
        raise MalformedEvent(
            f"subscription {subscription.get('id')} has no status", event.event_type
        )

    start, end = subscription_period(subscription)
    if start is not None and end is not None and end < start:
        raise MalformedEvent(
            f"subscription {subscription.get('id')} period ends before it starts",
            event.event_type,
        )

    fields = {
        "plan": subscription_interval(subscription) or PLAN_UNKNOWN,
        "status": status,
        "current_period_start": start,
        "current_period_end": end,
        "stripe_subscription_id": subscription.get("id"),
    }
    if status == SubscriptionStatus.CANCELED.value:
        fields["canceled_at"] = from_epoch(subscription.get("canceled_at")) or now
    return fields


def subscription_interval(subscription: dict[str, Any]) -> str | None:
    """Billing interval of the first subscription item ('month', 'year', ...)."""
    item = _first_item(subscription)
    price = item.get("price") or {}
    recurring = price.get("recurring") or {}
    if recurring.get("interval"):
        return recurring["interval"]

    # Legacy Plan objects carry the interval directly
    plan = item.get("plan") or subscription.get("plan") or {}
    return plan.get("interval") or None


def subscription_period(subscription: dict[str, Any]) -> tuple[datetime | None, datetime | None]:
    """Current billing period as UTC datetimes.

    Newer API versions moved the period from the subscription onto its items.
    """
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if start is None and end is None:
        item = _first_item(subscription)
        start = item.get("current_period_start")
        end = item.get("current_period_end")
    return from_epoch(start), from_epoch(end)


def from_epoch(value: int | float | None) -> datetime | None:
    """Epoch seconds to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _first_item(subscription: dict[str, Any]) -> dict[str, Any]:
    items = subscription.get("items") or {}
    data = items.get("data") or []
    return data[0] if data else {}
