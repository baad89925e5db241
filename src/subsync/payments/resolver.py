"""Entity resolution: fetch the Stripe objects an event only references."""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from subsync.db.models import normalize_email
from subsync.payments.errors import MissingEmail
from subsync.payments.events import (
    EventKind,
    NormalizedEvent,
    customer_ref,
    invoice_subscription_id,
)

logger = logging.getLogger(__name__)


class Provider(Protocol):
    """The lookups the resolver needs; StripeProvider in production."""

    async def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]: ...

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]: ...

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]: ...


@dataclass
class ResolvedEntities:
    """Everything the reconciler needs beyond the event itself.

    ``subscription`` is the freshest subscription object available: a
    re-fetched one whenever the event kind calls for a lookup.
    """

    email: str
    customer_id: str | None = None
    subscription: dict[str, Any] | None = None
    session: dict[str, Any] | None = None


async def resolve(event: NormalizedEvent, provider: Provider) -> ResolvedEntities | None:
    """
    Resolve the email and provider objects for a known event.

    Args:
        event: Normalized event (never UNKNOWN)
        provider: Stripe lookup handle

    Returns:
        ResolvedEntities, or None when the event needs no write
        (a paid invoice that does not belong to a subscription)

    Raises:
        MissingEmail: No email can be tied to the event
        EntityNotFound: A referenced object no longer exists
        ProviderLookupFailed: A lookup failed transiently
    """
    obj = event.raw_object

    if event.kind is EventKind.CHECKOUT_COMPLETED:
        session = await provider.retrieve_checkout_session(event.object_id)
        details = session.get("customer_details") or {}
        email = normalize_email(details.get("email") or session.get("customer_email"))
        if email is None:
            raise MissingEmail(f"checkout session {event.object_id} has no email")

        subscription = None
        subscription_id = _object_id(session.get("subscription"))
        if subscription_id:
            subscription = await provider.retrieve_subscription(subscription_id)

        return ResolvedEntities(
            email=email,
            customer_id=customer_ref(session),
            subscription=subscription,
            session=session,
        )

    if event.kind is EventKind.SUBSCRIPTION_UPDATED:
        # The event payload is a notification; the re-fetched object is current truth
        subscription = await provider.retrieve_subscription(event.object_id)
        customer_id = customer_ref(subscription) or customer_ref(obj)
        email = await _email_for_customer(provider, customer_id, event)
        return ResolvedEntities(email=email, customer_id=customer_id, subscription=subscription)

    if event.kind is EventKind.SUBSCRIPTION_DELETED:
        # Deleted subscriptions stay retrievable but carry nothing the record needs
        customer_id = customer_ref(obj)
        email = await _email_for_customer(provider, customer_id, event)
        return ResolvedEntities(email=email, customer_id=customer_id, subscription=obj)

    if event.kind is EventKind.PAYMENT_SUCCEEDED:
        subscription_id = invoice_subscription_id(obj)
        if not subscription_id:
            logger.info(f"Invoice {event.object_id} has no subscription - nothing to sync")
            return None
        subscription = await provider.retrieve_subscription(subscription_id)
        customer_id = customer_ref(subscription) or customer_ref(obj)
        email = await _email_for_customer(provider, customer_id, event)
        return ResolvedEntities(email=email, customer_id=customer_id, subscription=subscription)

    if event.kind is EventKind.PAYMENT_FAILED:
        customer_id = customer_ref(obj)
        email = await _email_for_customer(provider, customer_id, event)
        return ResolvedEntities(email=email, customer_id=customer_id)

    raise ValueError(f"No resolution for event kind {event.kind}")


async def _email_for_customer(
    provider: Provider,
    customer_id: str | None,
    event: NormalizedEvent,
) -> str:
    """Look up the customer's email, raising MissingEmail when there is none."""
    if not customer_id:
        raise MissingEmail(f"{event.event_type} {event.object_id} has no customer")

    customer = await provider.retrieve_customer(customer_id)
    email = normalize_email(customer.get("email"))
    if email is None:
        raise MissingEmail(f"customer {customer_id} has no email")
    return email


def _object_id(ref: Any) -> str | None:
    if isinstance(ref, dict):
        return ref.get("id")
    return ref or None
