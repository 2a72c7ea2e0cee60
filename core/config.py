"""Billing configuration."""

from decimal import Decimal

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Billing engine configuration.

    Secrets (Stripe keys, webhook secret) are not here; they come from Vault.
    """

    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL for public document pages and Stripe redirects",
    )

    currency: str = Field(
        default="eur",
        description="Checkout currency. The engine is single-currency.",
    )

    # Stripe
    stripe_timeout_seconds: float = Field(
        default=10,
        description="Timeout for each outbound Stripe HTTP call",
        gt=0,
        le=60,
    )
    stripe_max_network_retries: int = Field(
        default=1,
        description="SDK-level retries on network failure",
        ge=0,
        le=5,
    )
    default_commission_rate: Decimal = Field(
        default=Decimal("0.05"),
        description="Platform commission on free-plan payments (fraction)",
        ge=0,
        lt=1,
    )

    # Documents
    default_quote_validity_days: int = Field(
        default=30,
        description="valid_until offset when a quote is created without one",
        ge=1,
        le=365,
    )
    default_payment_terms_days: int = Field(
        default=30,
        description="due_date offset when an invoice is created without one",
        ge=0,
        le=365,
    )

    # Public endpoint throttling
    checkout_rate_limit_attempts: int = Field(
        default=10,
        description="Checkout sessions per invoice per window",
        ge=1,
        le=100,
    )
    checkout_rate_limit_window_minutes: int = Field(
        default=10,
        description="Checkout rate limit window",
        ge=1,
        le=60,
    )
    export_rate_limit_attempts: int = Field(
        default=20,
        description="Exports per organization per window",
        ge=1,
        le=200,
    )
    export_rate_limit_window_minutes: int = Field(
        default=60,
        description="Export rate limit window",
        ge=1,
        le=1440,
    )
