"""Payment models. Amounts in cents."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentMethod(str, Enum):
    STRIPE = "stripe"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CHECK = "check"
    PAYPAL = "paypal"


class Payment(BaseModel):
    """
    Money received against an invoice.

    reference is unique: the Checkout session id for Stripe payments, or a
    user-supplied / generated reference for manual ones.
    """

    id: UUID
    organization_id: UUID
    invoice_id: UUID
    amount_cents: int
    method: PaymentMethod
    reference: str
    stripe_payment_intent_id: str | None = None
    paid_at: datetime
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class ManualPaymentCreate(BaseModel):
    """A payment received outside Stripe."""

    method: PaymentMethod
    amount_cents: int | None = Field(None, gt=0)
    reference: str | None = Field(None, max_length=255)
    paid_at: datetime | None = None
