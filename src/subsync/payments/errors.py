"""Failure taxonomy for webhook processing.

Each error knows the HTTP status the webhook endpoint answers with. Errors
with ``acknowledge = True`` are terminal for the event: answering 2xx stops
Stripe from re-delivering something a retry cannot fix. The rest either reject
untrusted input (4xx) or ask Stripe to retry later (5xx).
"""


class WebhookError(Exception):
    """Base class for every expected webhook processing failure."""

    status: int = 500
    acknowledge: bool = False


class InvalidSignature(WebhookError):
    """Payload was not signed by Stripe, was tampered with, or is too old."""

    status = 400


class MalformedEvent(WebhookError):
    """Payload is not a usable event, or a known kind lacks required fields."""

    status = 400

    def __init__(self, message: str, event_type: str | None = None):
        super().__init__(message)
        self.event_type = event_type


class ProviderLookupFailed(WebhookError):
    """Stripe lookup failed transiently (network, 5xx, rate limit, auth)."""

    status = 500


class EntityNotFound(WebhookError):
    """A referenced Stripe object no longer exists (e.g. a deleted customer)."""

    status = 200
    acknowledge = True


class MissingEmail(WebhookError):
    """No email could be tied to the event, so there is no record to write."""

    status = 200
    acknowledge = True


class StoreError(WebhookError):
    """Subscription store rejected or failed the write."""

    status = 500
