"""
Stripe Checkout session builder for the public payment page.

Two charge routes:
    - Free plan with a commission: destination charge on the platform
      account, application fee kept, remainder transferred to the
      organization's Connect account.
    - Otherwise: charge on the organization's own Stripe account using its
      secret key, decrypted from Vault transit only for this call.

metadata.invoiceId and metadata.organizationId are always attached; the
webhook reconciler relies on them to find the invoice again.
"""

import logging
from typing import Any
from uuid import UUID

from clients.stripe_client import StripeGateway, StripeGatewayError, StripeUnavailableError
from clients.vault_client import VaultClient, VaultError
from core.config import BillingConfig
from core.database import BillingDatabase
from core.exceptions import (
    AlreadyPaidError,
    NotFoundError,
    PaymentConfigurationError,
    PaymentProviderError,
    PaymentProviderUnavailableError,
)
from core.models import DocumentType, Invoice, InvoiceStatus, Organization
from core.money import application_fee
from core.services.invoice_service import PAYABLE_STATUSES

logger = logging.getLogger(__name__)


class CheckoutService:
    """Creates hosted Checkout sessions for invoices."""

    def __init__(
        self,
        db: BillingDatabase,
        stripe_gateway: StripeGateway,
        vault: VaultClient,
        config: BillingConfig | None = None,
    ):
        self.db = db
        self.stripe = stripe_gateway
        self.vault = vault
        self.config = config or BillingConfig()

    def _session_params(self, invoice: Invoice, org: Organization) -> dict[str, Any]:
        base_url = self.config.app_base_url.rstrip("/")
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": self.config.currency,
                        "product_data": {"name": f"Facture {invoice.number}"},
                        "unit_amount": invoice.total_cents,
                    },
                    "quantity": 1,
                }
            ],
            "success_url": f"{base_url}/pay/{invoice.id}/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{base_url}/pay/{invoice.id}",
            "metadata": {
                "invoiceId": str(invoice.id),
                "organizationId": str(org.id),
            },
        }

        client_email = self.db.get_client_email(org.id, invoice.contact_id, invoice.company_id)
        if client_email:
            params["customer_email"] = client_email
        return params

    def _platform_route(self, invoice: Invoice, org: Organization, params: dict[str, Any]) -> str:
        if not org.stripe_account_id:
            raise PaymentConfigurationError(
                "Online payment is not set up for this organization. "
                "Link your Stripe Connect account in the payment settings."
            )

        fee = application_fee(invoice.total_cents, org.commission_rate)
        params["payment_intent_data"] = {
            "application_fee_amount": fee,
            "transfer_data": {"destination": org.stripe_account_id},
        }
        logger.info(
            "Checkout for invoice %s via platform: fee %s cents to %s",
            invoice.number, fee, org.stripe_account_id,
        )
        return self.stripe.platform_secret_key

    def _own_key_route(self, invoice: Invoice, org: Organization) -> str:
        if not org.has_own_stripe_key:
            raise PaymentConfigurationError(
                "Online payment is not set up for this organization. "
                "Add your Stripe keys in the payment settings."
            )
        try:
            secret_key = self.vault.decrypt(org.stripe_secret_key_encrypted)
        except VaultError:
            logger.error("Could not decrypt Stripe key for org %s", org.id)
            raise PaymentConfigurationError(
                "The organization's Stripe key could not be read. Re-enter it in the payment settings."
            )
        logger.info("Checkout for invoice %s via organization account", invoice.number)
        return secret_key

    def create_checkout_session(self, invoice_id: UUID) -> str:
        """
        Create a Checkout session for an unpaid invoice.

        Returns:
            The hosted Checkout URL.

        Raises:
            NotFoundError: Invoice missing, deleted, cancelled or refunded
            AlreadyPaidError: Invoice already paid
            PaymentConfigurationError: No Connect account or no own key
            PaymentProviderUnavailableError: Stripe timed out; retryable
            PaymentProviderError: Stripe rejected the request
        """
        invoice = self.db.get_document_unscoped(DocumentType.INVOICE, invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        if invoice.status == InvoiceStatus.PAID:
            raise AlreadyPaidError("This invoice has already been paid")
        if invoice.status not in PAYABLE_STATUSES:
            raise NotFoundError("invoice", invoice_id)

        org = self.db.get_organization(invoice.organization_id)
        if org is None:
            raise NotFoundError("organization", invoice.organization_id)

        params = self._session_params(invoice, org)
        if org.uses_platform_checkout:
            api_key = self._platform_route(invoice, org, params)
        else:
            api_key = self._own_key_route(invoice, org)

        try:
            session = self.stripe.create_checkout_session(api_key, params)
        except StripeUnavailableError:
            raise PaymentProviderUnavailableError(
                "The payment provider is temporarily unavailable. Please try again."
            )
        except StripeGatewayError as e:
            raise PaymentProviderError(f"Payment could not be started: {e}")

        return session.url
