"""Read-only Stripe lookups used to resolve webhook cross-references."""

import asyncio
import json
import logging
from typing import Any, Callable

import stripe

from subsync.payments.errors import EntityNotFound, ProviderLookupFailed

logger = logging.getLogger(__name__)


def _to_dict(obj: Any) -> dict[str, Any]:
    """Plain dict from a StripeObject (or a dict, returned unchanged)."""
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    # StripeObject.__str__ is its JSON form in every SDK release
    return json.loads(str(obj))


class StripeProvider:
    """Long-lived handle for the lookups the resolver needs.

    Holds its own API key and passes it per request instead of setting the
    module-global ``stripe.api_key``. Safe to share between requests.
    """

    def __init__(self, api_key: str):
        if not api_key:
            raise ValueError("stripe_secret not configured")
        self._api_key = api_key

    async def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        """Fetch a Checkout Session with line item prices expanded."""
        return await self._retrieve(
            "checkout session",
            session_id,
            stripe.checkout.Session.retrieve,
            expand=["line_items.data.price"],
        )

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        """Fetch a Subscription with item prices expanded."""
        return await self._retrieve(
            "subscription",
            subscription_id,
            stripe.Subscription.retrieve,
            expand=["items.data.price"],
        )

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        """Fetch a Customer.

        Raises:
            EntityNotFound: Customer is missing or has been deleted
        """
        customer = await self._retrieve("customer", customer_id, stripe.Customer.retrieve)
        if customer.get("deleted"):
            raise EntityNotFound(f"customer {customer_id} has been deleted")
        return customer

    async def _retrieve(
        self,
        label: str,
        object_id: str,
        retrieve: Callable[..., Any],
        **params: Any,
    ) -> dict[str, Any]:
        """
        Run a blocking SDK retrieve in a worker thread and map its errors.

        Raises:
            EntityNotFound: Stripe reports the object does not exist
            ProviderLookupFailed: Any other Stripe or network failure
        """
        try:
            obj = await asyncio.to_thread(retrieve, object_id, api_key=self._api_key, **params)
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing" or e.http_status == 404:
                raise EntityNotFound(f"{label} {object_id} not found") from e
            raise ProviderLookupFailed(f"{label} {object_id} lookup rejected: {e}") from e
        except stripe.StripeError as e:
            raise ProviderLookupFailed(f"{label} {object_id} lookup failed: {e}") from e

        logger.debug(f"Retrieved {label} {object_id}")
        return _to_dict(obj)
