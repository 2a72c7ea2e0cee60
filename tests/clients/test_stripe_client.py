"""Tests for StripeGateway - SDK calls, error mapping and webhook verification."""

import hashlib
import hmac
import json
import time
from unittest.mock import Mock, patch

import pytest
import stripe

from clients.stripe_client import (
    CheckoutSession,
    StripeGateway,
    StripeGatewayError,
    StripeUnavailableError,
    WebhookSignatureError,
)

WEBHOOK_SECRET = "whsec_test"


@pytest.fixture
def gateway():
    return StripeGateway("sk_test_platform", WEBHOOK_SECRET, timeout=5)


def sign(body: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{body}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class TestInit:

    @pytest.mark.parametrize("key,secret", [("", WEBHOOK_SECRET), ("sk_test", "")])
    def test_requires_credentials(self, key, secret):
        with pytest.raises(ValueError):
            StripeGateway(key, secret)


class TestCheckoutSession:

    def test_passes_api_key_and_params(self, gateway):
        created = Mock(id="cs_test_1", url="https://checkout.stripe.com/c/cs_test_1")
        with patch("stripe.checkout.Session.create", return_value=created) as create:
            session = gateway.create_checkout_session("sk_test_org", {"mode": "payment"})

        assert session == CheckoutSession(id="cs_test_1", url="https://checkout.stripe.com/c/cs_test_1")
        create.assert_called_once_with(api_key="sk_test_org", mode="payment")

    def test_stripe_account_forwarded(self, gateway):
        created = Mock(id="cs_test_1", url="https://checkout.stripe.com/x")
        with patch("stripe.checkout.Session.create", return_value=created) as create:
            gateway.create_checkout_session("sk_test_platform", {"mode": "payment"}, stripe_account="acct_1")

        assert create.call_args.kwargs["stripe_account"] == "acct_1"

    def test_connection_error_is_retryable(self, gateway):
        with patch("stripe.checkout.Session.create", side_effect=stripe.APIConnectionError("timeout")):
            with pytest.raises(StripeUnavailableError):
                gateway.create_checkout_session("sk_test_org", {})

    def test_rejection_maps_to_gateway_error(self, gateway):
        error = stripe.InvalidRequestError("Invalid currency: xyz", param="currency")
        with patch("stripe.checkout.Session.create", side_effect=error):
            with pytest.raises(StripeGatewayError, match="Invalid currency") as exc_info:
                gateway.create_checkout_session("sk_test_org", {})

        assert not isinstance(exc_info.value, StripeUnavailableError)
        assert "sk_test_org" not in str(exc_info.value)


class TestConnect:

    def test_create_connect_account(self, gateway):
        with patch("stripe.Account.create", return_value=Mock(id="acct_new")) as create:
            account_id = gateway.create_connect_account(email="owner@example.com", organization_id="org-1")

        assert account_id == "acct_new"
        kwargs = create.call_args.kwargs
        assert kwargs["api_key"] == "sk_test_platform"
        assert kwargs["type"] == "express"
        assert kwargs["metadata"] == {"organizationId": "org-1"}

    def test_account_link(self, gateway):
        with patch("stripe.AccountLink.create", return_value=Mock(url="https://connect.stripe.com/setup/x")) as create:
            url = gateway.create_account_link("acct_1", refresh_url="https://app/r", return_url="https://app/s")

        assert url == "https://connect.stripe.com/setup/x"
        assert create.call_args.kwargs["type"] == "account_onboarding"

    def test_retrieve_account_status(self, gateway):
        account = Mock(id="acct_1")
        account.get = {"charges_enabled": True, "payouts_enabled": False}.get
        with patch("stripe.Account.retrieve", return_value=account):
            status = gateway.retrieve_account("acct_1")

        assert status.charges_enabled is True
        assert status.payouts_enabled is False
        assert status.details_submitted is False


class TestVerifyWebhook:

    def test_valid_signature_returns_event(self, gateway):
        body = json.dumps({"id": "evt_1", "type": "checkout.session.completed"})

        event = gateway.verify_webhook(body.encode(), sign(body))

        assert event["type"] == "checkout.session.completed"

    def test_missing_header(self, gateway):
        with pytest.raises(WebhookSignatureError):
            gateway.verify_webhook(b"{}", None)

    def test_wrong_secret(self, gateway):
        body = json.dumps({"id": "evt_1"})

        with pytest.raises(WebhookSignatureError, match="Invalid signature"):
            gateway.verify_webhook(body.encode(), sign(body, secret="whsec_other"))

    def test_stale_timestamp(self, gateway):
        body = json.dumps({"id": "evt_1"})

        with pytest.raises(WebhookSignatureError):
            gateway.verify_webhook(body.encode(), sign(body, timestamp=int(time.time()) - 3600))

    def test_signed_non_json_body(self, gateway):
        body = "not json"

        with pytest.raises(WebhookSignatureError):
            gateway.verify_webhook(body.encode(), sign(body))
