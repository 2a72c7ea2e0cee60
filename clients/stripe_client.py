"""
Stripe gateway for Checkout, Connect onboarding and webhook verification.

Thin wrapper over the stripe SDK's module-level API. Every call passes its
API key explicitly so organization keys and the platform key never share
global state. The secret key is never logged.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict

import stripe

logger = logging.getLogger(__name__)


class StripeGatewayError(Exception):
    """Stripe rejected the request."""


class StripeUnavailableError(StripeGatewayError):
    """Stripe could not be reached or timed out. Safe to retry."""


class WebhookSignatureError(Exception):
    """Webhook payload could not be authenticated."""


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


@dataclass(frozen=True)
class ConnectAccountStatus:
    account_id: str
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool


class StripeGateway:
    """
    Outbound Stripe calls with bounded timeouts.

    Usage:
        gateway = StripeGateway(platform_secret_key, connect_webhook_secret, timeout=10)
        session = gateway.create_checkout_session(api_key, params)
        event = gateway.verify_webhook(raw_body, request.headers["stripe-signature"])
    """

    def __init__(
        self,
        platform_secret_key: str,
        connect_webhook_secret: str,
        timeout: float = 10,
        max_network_retries: int = 1,
    ):
        if not platform_secret_key:
            raise ValueError("platform_secret_key is required")
        if not connect_webhook_secret:
            raise ValueError("connect_webhook_secret is required")

        self._platform_secret_key = platform_secret_key
        self._connect_webhook_secret = connect_webhook_secret

        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
        stripe.max_network_retries = max_network_retries

    @property
    def platform_secret_key(self) -> str:
        return self._platform_secret_key

    def _call(self, operation: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except stripe.APIConnectionError as e:
            logger.error("Stripe unreachable during %s: %s", operation, type(e).__name__)
            raise StripeUnavailableError(f"Stripe unavailable during {operation}")
        except stripe.StripeError as e:
            # user_message never contains the API key
            message = getattr(e, "user_message", None) or "Stripe request failed"
            logger.error(
                "Stripe error during %s: %s (code=%s)",
                operation, type(e).__name__, getattr(e, "code", None),
            )
            raise StripeGatewayError(message)

    def create_checkout_session(
        self,
        api_key: str,
        params: Dict[str, Any],
        stripe_account: str | None = None,
    ) -> CheckoutSession:
        """
        Create a hosted Checkout session.

        Args:
            api_key: Platform key or the organization's own decrypted key
            params: Session parameters (mode, line_items, metadata, ...)
            stripe_account: Optional connected account to act on behalf of

        Raises:
            StripeUnavailableError: Network failure or timeout
            StripeGatewayError: Stripe rejected the request
        """
        kwargs = dict(params)
        if stripe_account:
            kwargs["stripe_account"] = stripe_account

        session = self._call(
            "checkout session creation",
            stripe.checkout.Session.create,
            api_key=api_key,
            **kwargs,
        )
        logger.info("Created checkout session %s", session.id)
        return CheckoutSession(id=session.id, url=session.url)

    def create_connect_account(self, email: str, organization_id: str, country: str = "FR") -> str:
        """Create an Express connected account on the platform. Returns the account id."""
        account = self._call(
            "connect account creation",
            stripe.Account.create,
            api_key=self._platform_secret_key,
            type="express",
            country=country,
            email=email,
            capabilities={
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            metadata={"organizationId": organization_id},
        )
        logger.info("Created Connect account %s", account.id)
        return account.id

    def create_account_link(self, account_id: str, refresh_url: str, return_url: str) -> str:
        """Onboarding link for a connected account."""
        link = self._call(
            "account link creation",
            stripe.AccountLink.create,
            api_key=self._platform_secret_key,
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
        )
        return link.url

    def create_login_link(self, account_id: str) -> str:
        """Express dashboard link for a connected account."""
        link = self._call(
            "login link creation",
            stripe.Account.create_login_link,
            account_id,
            api_key=self._platform_secret_key,
        )
        return link.url

    def retrieve_account(self, account_id: str) -> ConnectAccountStatus:
        account = self._call(
            "account retrieval",
            stripe.Account.retrieve,
            account_id,
            api_key=self._platform_secret_key,
        )
        return ConnectAccountStatus(
            account_id=account.id,
            charges_enabled=bool(account.get("charges_enabled")),
            payouts_enabled=bool(account.get("payouts_enabled")),
            details_submitted=bool(account.get("details_submitted")),
        )

    def verify_webhook(self, payload: bytes, signature_header: str | None) -> Dict[str, Any]:
        """
        Authenticate a Connect webhook delivery and decode its JSON body.

        Raises:
            WebhookSignatureError: Header missing, signature invalid, or body
                not JSON. The message is deliberately generic.
        """
        if not signature_header:
            raise WebhookSignatureError("Invalid signature")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body,
                signature_header,
                self._connect_webhook_secret,
                tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
            )
            return json.loads(body)
        except stripe.SignatureVerificationError:
            logger.warning("Webhook signature verification failed")
            raise WebhookSignatureError("Invalid signature")
        except ValueError:
            logger.warning("Webhook payload is not valid JSON")
            raise WebhookSignatureError("Invalid signature")
