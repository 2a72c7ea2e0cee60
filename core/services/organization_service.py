"""
Organization payment settings and plan.

The organization's own Stripe secret key is encrypted with Vault transit
before it reaches the store and is never read back through this service.
"""

import logging
from decimal import Decimal
from uuid import UUID

from clients.vault_client import VaultClient
from core.audit import AuditAction, AuditLogger
from core.config import BillingConfig
from core.database import BillingDatabase
from core.exceptions import DocumentValidationError, NotFoundError
from core.models import Organization, StripeKeysUpdate
from core.plans import Plan

logger = logging.getLogger(__name__)


class OrganizationService:
    """Service for organization settings."""

    def __init__(
        self,
        db: BillingDatabase,
        audit: AuditLogger,
        vault: VaultClient,
        config: BillingConfig | None = None,
    ):
        self.db = db
        self.audit = audit
        self.vault = vault
        self.config = config or BillingConfig()

    def get(self, organization_id: UUID) -> Organization:
        org = self.db.get_organization(organization_id)
        if org is None:
            raise NotFoundError("organization", organization_id)
        return org

    def payment_settings(self, organization_id: UUID) -> dict:
        """Settings view. Reports whether a secret key is set, never the key."""
        org = self.get(organization_id)
        return {
            "plan": org.plan.value,
            "uses_platform_checkout": org.uses_platform_checkout,
            "stripe_account_id": org.stripe_account_id,
            "stripe_publishable_key": org.stripe_publishable_key,
            "has_stripe_secret_key": org.has_own_stripe_key,
            "commission_rate": str(org.commission_rate),
        }

    def set_stripe_keys(
        self,
        organization_id: UUID,
        keys: StripeKeysUpdate,
        user_id: UUID | None = None,
    ) -> None:
        """
        Store the organization's own Stripe keys.

        Raises:
            NotFoundError: Organization missing
            VaultError: Encryption failed; nothing is stored
        """
        self.get(organization_id)
        encrypted = self.vault.encrypt(keys.secret_key.get_secret_value())
        self.db.set_stripe_keys(organization_id, encrypted, keys.publishable_key)

        self.audit.log_change(
            organization_id=organization_id,
            entity_type="organization",
            entity_id=organization_id,
            action=AuditAction.UPDATE,
            changes={
                "stripe_secret_key": "updated",
                "stripe_publishable_key": keys.publishable_key,
            },
            user_id=user_id,
        )
        logger.info("Stripe keys updated for org %s", organization_id)

    def clear_stripe_keys(self, organization_id: UUID, user_id: UUID | None = None) -> None:
        self.get(organization_id)
        self.db.set_stripe_keys(organization_id, None, None)
        self.audit.log_change(
            organization_id=organization_id,
            entity_type="organization",
            entity_id=organization_id,
            action=AuditAction.UPDATE,
            changes={"stripe_secret_key": "removed", "stripe_publishable_key": None},
            user_id=user_id,
        )
        logger.info("Stripe keys removed for org %s", organization_id)

    def change_plan(self, organization_id: UUID, plan: Plan, user_id: UUID | None = None) -> Organization:
        """
        Move the organization to another plan.

        Paid plans pay no platform commission. Returning to the free plan
        reinstates the default commission, so checkout goes back through
        the platform account.

        Raises:
            NotFoundError: Organization missing
            DocumentValidationError: Already on that plan
        """
        org = self.get(organization_id)
        if org.plan == plan:
            raise DocumentValidationError(f"Already on the {plan.value} plan")

        commission = self.config.default_commission_rate if plan == Plan.FREE else Decimal("0")
        updated = self.db.set_plan(organization_id, plan, commission)
        if updated is None:
            raise NotFoundError("organization", organization_id)

        self.audit.log_change(
            organization_id=organization_id,
            entity_type="organization",
            entity_id=organization_id,
            action=AuditAction.UPDATE,
            changes={
                "plan": {"old": org.plan.value, "new": plan.value},
                "commission_rate": {"old": str(org.commission_rate), "new": str(commission)},
            },
            user_id=user_id,
        )
        logger.info("Org %s moved from %s to %s plan", organization_id, org.plan.value, plan.value)
        return updated
