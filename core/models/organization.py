"""Organization (tenant) models."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, SecretStr, field_validator

from core.plans import Plan


class Organization(BaseModel):
    """
    Tenant as stored.

    stripe_secret_key_encrypted holds Vault transit ciphertext, never a
    plaintext key. Use has_own_stripe_key rather than reading it.
    """

    id: UUID
    name: str
    plan: Plan = Plan.FREE
    monthly_invoice_count: int = 0
    last_invoice_reset_date: datetime | None = None
    stripe_account_id: str | None = None
    stripe_secret_key_encrypted: str | None = Field(default=None, repr=False)
    stripe_publishable_key: str | None = None
    commission_rate: Decimal = Decimal("0")
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def has_own_stripe_key(self) -> bool:
        return bool(self.stripe_secret_key_encrypted)

    @property
    def uses_platform_checkout(self) -> bool:
        """Free-plan organizations with a commission pay through the platform."""
        return self.plan == Plan.FREE and self.commission_rate > 0


class StripeKeysUpdate(BaseModel):
    """Organization's own Stripe keys, submitted from settings."""

    secret_key: SecretStr
    publishable_key: str = Field(..., min_length=10, pattern=r"^pk_(test|live)_")

    @field_validator("secret_key")
    @classmethod
    def _secret_key_format(cls, value: SecretStr) -> SecretStr:
        raw = value.get_secret_value()
        if not raw.startswith(("sk_test_", "sk_live_", "rk_test_", "rk_live_")):
            raise ValueError("secret_key must be a Stripe secret or restricted key")
        return value


class PlanChange(BaseModel):
    """Requested subscription plan."""

    plan: Plan
