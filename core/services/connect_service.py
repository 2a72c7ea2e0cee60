"""
Stripe Connect onboarding for organizations collecting through the platform.
"""

import logging
from uuid import UUID

from clients.stripe_client import (
    ConnectAccountStatus,
    StripeGateway,
    StripeGatewayError,
    StripeUnavailableError,
)
from core.audit import AuditAction, AuditLogger
from core.config import BillingConfig
from core.database import BillingDatabase
from core.exceptions import (
    NotFoundError,
    PaymentConfigurationError,
    PaymentProviderError,
    PaymentProviderUnavailableError,
)
from core.models import Organization

logger = logging.getLogger(__name__)

_SETTINGS_PATH = "/dashboard/settings?tab=payments"


class ConnectService:
    """Service for Stripe Connect account onboarding and status."""

    def __init__(
        self,
        db: BillingDatabase,
        audit: AuditLogger,
        stripe_gateway: StripeGateway,
        config: BillingConfig | None = None,
    ):
        self.db = db
        self.audit = audit
        self.stripe = stripe_gateway
        self.config = config or BillingConfig()

    def _get_org(self, organization_id: UUID) -> Organization:
        org = self.db.get_organization(organization_id)
        if org is None:
            raise NotFoundError("organization", organization_id)
        return org

    def _provider_call(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except StripeUnavailableError:
            raise PaymentProviderUnavailableError("Stripe is temporarily unavailable. Please try again.")
        except StripeGatewayError as e:
            raise PaymentProviderError(str(e))

    def create_onboarding_link(self, organization_id: UUID, email: str, user_id: UUID | None = None) -> str:
        """
        Onboarding URL for the organization's Express account.

        Creates the account on first use and stores its id.
        """
        org = self._get_org(organization_id)
        account_id = org.stripe_account_id

        if not account_id:
            account_id = self._provider_call(
                self.stripe.create_connect_account, email=email, organization_id=str(org.id)
            )
            self.db.set_stripe_account(org.id, account_id)
            self.audit.log_change(
                organization_id=org.id,
                entity_type="organization",
                entity_id=org.id,
                action=AuditAction.UPDATE,
                changes={"stripe_account_id": {"old": None, "new": account_id}},
                user_id=user_id,
            )
            logger.info("Linked Connect account %s to org %s", account_id, org.id)

        settings_url = self.config.app_base_url.rstrip("/") + _SETTINGS_PATH
        return self._provider_call(
            self.stripe.create_account_link,
            account_id,
            refresh_url=settings_url,
            return_url=f"{settings_url}&success=true",
        )

    def get_status(self, organization_id: UUID) -> dict:
        """
        Connect status for the payment settings page.

        Stripe failures read as not connected rather than raising.
        """
        org = self._get_org(organization_id)
        if not org.stripe_account_id:
            return {"is_connected": False}

        try:
            status: ConnectAccountStatus = self.stripe.retrieve_account(org.stripe_account_id)
        except StripeGatewayError:
            logger.warning("Could not retrieve Connect account %s", org.stripe_account_id)
            return {"is_connected": False, "account_id": org.stripe_account_id}

        return {
            "is_connected": status.details_submitted,
            "account_id": status.account_id,
            "charges_enabled": status.charges_enabled,
            "payouts_enabled": status.payouts_enabled,
        }

    def create_dashboard_link(self, organization_id: UUID) -> str:
        """Express dashboard login link for an already connected account."""
        org = self._get_org(organization_id)
        if not org.stripe_account_id:
            raise PaymentConfigurationError("No Stripe Connect account is linked to this organization")
        return self._provider_call(self.stripe.create_login_link, org.stripe_account_id)
