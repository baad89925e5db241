"""Tests for the Stripe lookup handle and its error mapping."""

from unittest.mock import patch

import pytest
import stripe

from subsync.payments.errors import EntityNotFound, ProviderLookupFailed
from subsync.payments.provider import StripeProvider


@pytest.fixture
def stripe_provider() -> StripeProvider:
    return StripeProvider("sk_test_123")


class TestStripeProvider:
    """Test StripeProvider."""

    def test_requires_api_key(self):
        """An empty key is a configuration error."""
        with pytest.raises(ValueError, match="stripe_secret"):
            StripeProvider("")

    @pytest.mark.asyncio
    async def test_retrieve_subscription_passes_key_and_expand(self, stripe_provider):
        """The key is passed per call, never set globally."""
        with patch("subsync.payments.provider.stripe.Subscription.retrieve") as mock_retrieve:
            mock_retrieve.return_value = {"id": "sub_1", "status": "active"}

            subscription = await stripe_provider.retrieve_subscription("sub_1")

        assert subscription == {"id": "sub_1", "status": "active"}
        mock_retrieve.assert_called_once_with(
            "sub_1", api_key="sk_test_123", expand=["items.data.price"]
        )

    @pytest.mark.asyncio
    async def test_retrieve_checkout_session_expands_line_items(self, stripe_provider):
        with patch("subsync.payments.provider.stripe.checkout.Session.retrieve") as mock_retrieve:
            mock_retrieve.return_value = {"id": "cs_1"}

            await stripe_provider.retrieve_checkout_session("cs_1")

        mock_retrieve.assert_called_once_with(
            "cs_1", api_key="sk_test_123", expand=["line_items.data.price"]
        )

    @pytest.mark.asyncio
    async def test_stripe_object_converted_to_dict(self, stripe_provider):
        """SDK objects come back as plain dicts."""
        obj = stripe.StripeObject.construct_from(
            {"id": "cus_1", "email": "a@example.com", "metadata": {"plan": "pro"}},
            "sk_test_123",
        )

        with patch("subsync.payments.provider.stripe.Customer.retrieve", return_value=obj):
            customer = await stripe_provider.retrieve_customer("cus_1")

        assert customer["email"] == "a@example.com"
        assert customer.get("deleted") is None
        assert customer["metadata"]["plan"] == "pro"

    @pytest.mark.asyncio
    async def test_deleted_customer_not_found(self, stripe_provider):
        """Stripe returns deleted customers as stubs with deleted=true."""
        with patch(
            "subsync.payments.provider.stripe.Customer.retrieve",
            return_value={"id": "cus_1", "deleted": True},
        ):
            with pytest.raises(EntityNotFound):
                await stripe_provider.retrieve_customer("cus_1")

    @pytest.mark.asyncio
    async def test_resource_missing_is_not_found(self, stripe_provider):
        """404 / resource_missing maps to EntityNotFound."""
        error = stripe.InvalidRequestError(
            "No such customer: 'cus_x'", "id", code="resource_missing", http_status=404
        )
        with patch("subsync.payments.provider.stripe.Customer.retrieve", side_effect=error):
            with pytest.raises(EntityNotFound):
                await stripe_provider.retrieve_customer("cus_x")

    @pytest.mark.asyncio
    async def test_other_invalid_request_is_lookup_failure(self, stripe_provider):
        """A rejected request that is not a 404 stays loud."""
        error = stripe.InvalidRequestError("Bad expand", "expand", http_status=400)
        with patch("subsync.payments.provider.stripe.Subscription.retrieve", side_effect=error):
            with pytest.raises(ProviderLookupFailed):
                await stripe_provider.retrieve_subscription("sub_1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            stripe.APIConnectionError("network down"),
            stripe.RateLimitError("slow down"),
            stripe.APIError("stripe 500"),
            stripe.AuthenticationError("bad key"),
        ],
    )
    async def test_transient_errors_are_lookup_failures(self, stripe_provider, error):
        """Network, rate limit, server, and auth errors map to ProviderLookupFailed."""
        with patch("subsync.payments.provider.stripe.Subscription.retrieve", side_effect=error):
            with pytest.raises(ProviderLookupFailed):
                await stripe_provider.retrieve_subscription("sub_1")
