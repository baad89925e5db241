"""Stripe webhook signature verification."""

import json
import logging

import stripe

from subsync.payments.errors import InvalidSignature, MalformedEvent

logger = logging.getLogger(__name__)


def verify_event(
    payload: bytes,
    sig_header: str | None,
    secret: str,
    tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
) -> dict:
    """Verify a webhook payload and decode it.

    The signature is checked against the exact bytes received; the JSON is
    decoded from those same bytes only after the check passes.

    Args:
        payload: Raw request body, untouched
        sig_header: Stripe-Signature header value
        secret: Webhook signing secret (whsec_...)
        tolerance: Maximum age of the signed timestamp in seconds

    Returns:
        Decoded event envelope

    Raises:
        InvalidSignature: Missing header or secret, bad signature, or
            timestamp outside the tolerance window
        MalformedEvent: Signature is valid but the body is not a JSON object
        ValueError: tolerance is not positive
    """
    if tolerance <= 0:
        # stripe skips the timestamp check entirely for a zero tolerance
        raise ValueError(f"tolerance must be positive, got {tolerance}")
    if not sig_header:
        raise InvalidSignature("Missing Stripe-Signature header")
    if not secret:
        # Refuse to accept anything rather than trusting unsigned input
        raise InvalidSignature("Webhook signing secret not configured")

    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        # Stripe signs UTF-8 text, so no valid signature can cover this body
        raise InvalidSignature("Payload is not UTF-8") from e

    try:
        stripe.WebhookSignature.verify_header(body, sig_header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise InvalidSignature(f"Invalid signature: {e}") from e

    try:
        event = json.loads(body)
    except ValueError as e:
        raise MalformedEvent(f"Invalid payload: {e}") from e

    if not isinstance(event, dict):
        raise MalformedEvent("Invalid payload: event is not a JSON object")

    return event
