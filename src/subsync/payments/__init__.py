"""Stripe webhook ingestion and subscription reconciliation.

Verifies webhook signatures, normalizes events, resolves the Stripe objects
they reference, derives subscription state, and upserts it by email.
"""

from subsync.payments.events import EventKind, NormalizedEvent, normalize_event
from subsync.payments.provider import StripeProvider
from subsync.payments.reconciler import SubscriptionUpdate, reconcile
from subsync.payments.resolver import ResolvedEntities, resolve
from subsync.payments.sync import (
    PostgresSubscriptionStore,
    SubscriptionStore,
    sync_subscription,
)
from subsync.payments.verification import verify_event
from subsync.payments.webhooks import handle_webhook

__all__ = [
    "EventKind",
    "NormalizedEvent",
    "PostgresSubscriptionStore",
    "ResolvedEntities",
    "StripeProvider",
    "SubscriptionStore",
    "SubscriptionUpdate",
    "handle_webhook",
    "normalize_event",
    "reconcile",
    "resolve",
    "sync_subscription",
    "verify_event",
]
