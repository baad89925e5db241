"""Stripe webhook handler and event processing."""

import logging
from datetime import datetime, timezone

import stripe
from aiohttp import web

from subsync.payments.errors import (
    InvalidSignature,
    MalformedEvent,
    WebhookError,
)
from subsync.payments.events import EventKind, normalize_event
from subsync.payments.reconciler import reconcile
from subsync.payments.resolver import Provider, resolve
from subsync.payments.sync import SubscriptionStore, sync_subscription
from subsync.payments.verification import verify_event

logger = logging.getLogger(__name__)


async def handle_webhook(
    payload: bytes,
    sig_header: str | None,
    *,
    webhook_secret: str,
    provider: Provider,
    store: SubscriptionStore,
    tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
) -> web.Response:
    """Verify a Stripe webhook and reconcile it into the subscription store.

    Pipeline: verify -> normalize -> resolve -> reconcile -> upsert. Nothing
    is written unless every earlier step succeeded.

    Args:
        payload: Raw webhook payload bytes
        sig_header: Stripe-Signature header value
        webhook_secret: Signing secret for this endpoint
        provider: Stripe lookup handle
        store: Subscription store
        tolerance: Maximum signature age in seconds

    Returns:
        aiohttp.web.Response: 200 ``{"received": true}`` when processed or
        deliberately ignored, 400 for untrusted or malformed input, 500 when
        Stripe should retry delivery
    """
    try:
        event = normalize_event(verify_event(payload, sig_header, webhook_secret, tolerance))
    except InvalidSignature as e:
        logger.error(f"Rejected webhook: {e}")
        return _error_response(e)
    except MalformedEvent as e:
        logger.error(f"Malformed webhook ({e.event_type or 'unknown type'}): {e}")
        return _error_response(e)

    logger.info(f"Received webhook: {event.event_type} ({event.event_id})")

    if event.kind is EventKind.UNKNOWN:
        logger.info(f"Unhandled event type: {event.event_type}")
        return web.json_response({"received": True, "ignored": "unhandled_event_type"})

    try:
        resolved = await resolve(event, provider)
        if resolved is None:
            return web.json_response({"received": True, "ignored": "nothing_to_sync"})

        update = reconcile(event, resolved, datetime.now(timezone.utc))
        await sync_subscription(store, update)

    except WebhookError as e:
        if e.acknowledge:
            # Retrying cannot fix this event; acknowledge so Stripe stops re-delivering
            logger.warning(f"Skipping {event.event_type} {event.object_id}: {e}")
            return web.json_response({"received": True, "ignored": type(e).__name__})
        if e.status < 500:
            logger.error(f"Malformed webhook ({event.event_type}): {e}")
        else:
            logger.exception(f"Error processing webhook {event.event_type}: {e}")
        return _error_response(e)

    except Exception as e:
        logger.exception(f"Error processing webhook {event.event_type}: {e}")
        # Return 500 so Stripe will retry
        return web.json_response({"error": "Internal error"}, status=500)

    return web.json_response({"received": True})


def _error_response(error: WebhookError) -> web.Response:
    # Server-side details stay in the logs
    message = str(error) if error.status < 500 else "Internal error"
    return web.json_response(
        {"error": type(error).__name__, "message": message},
        status=error.status,
    )
