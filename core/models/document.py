"""Quote and invoice domain models.

All amounts are stored in cents (integer). 100,00 € = 10000 cents.
VAT rate is a percentage (20 = 20%), quantity may be fractional (0.5 days).
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from core.models.lifecycle import SoftDeletable


class QuoteStatus(str, Enum):
    """Quote lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class LineItemInput(BaseModel):
    """One priced row as submitted by the user."""

    description: str = Field(..., min_length=1, max_length=2000)
    quantity: Decimal = Field(..., gt=0, max_digits=12, decimal_places=3)
    unit_price_cents: int = Field(..., ge=0)
    vat_rate: Decimal = Field(Decimal("20"), ge=0, le=100, decimal_places=2)


class LineItem(BaseModel):
    """Line item as stored, with its computed amounts."""

    id: UUID
    document_id: UUID
    position: int
    description: str
    quantity: Decimal
    unit_price_cents: int
    vat_rate: Decimal
    subtotal_cents: int
    vat_amount_cents: int
    total_cents: int

    model_config = {"from_attributes": True}


class _DocumentInput(BaseModel):
    contact_id: UUID | None = None
    company_id: UUID | None = None
    title: str | None = Field(None, max_length=255)
    notes: str | None = Field(None, max_length=5000)
    issue_date: date | None = None
    items: list[LineItemInput] = Field(..., min_length=1, max_length=200)

    @model_validator(mode="after")
    def _requires_client(self):
        if self.contact_id is None and self.company_id is None:
            raise ValueError("A contact or a company is required")
        return self


class QuoteCreate(_DocumentInput):
    """Data required to create a quote."""

    valid_until: date | None = None


class InvoiceCreate(_DocumentInput):
    """Data required to create an invoice."""

    due_date: date | None = None
    quote_id: UUID | None = None


class DocumentUpdate(BaseModel):
    """Draft edits. Items, when given, replace the existing ones."""

    contact_id: UUID | None = None
    company_id: UUID | None = None
    title: str | None = Field(None, max_length=255)
    notes: str | None = Field(None, max_length=5000)
    issue_date: date | None = None
    valid_until: date | None = None
    due_date: date | None = None
    items: list[LineItemInput] | None = Field(None, min_length=1, max_length=200)

    @field_validator("issue_date")
    @classmethod
    def _issue_date_not_cleared(cls, value):
        # Omit to keep the stored date; the column is NOT NULL
        if value is None:
            raise ValueError("issue_date cannot be cleared")
        return value


class _Document(SoftDeletable):
    id: UUID
    organization_id: UUID
    created_by_id: UUID | None = None
    contact_id: UUID | None = None
    company_id: UUID | None = None
    number: str
    title: str | None = None
    notes: str | None = None
    currency: str = "EUR"
    subtotal_cents: int
    vat_amount_cents: int
    total_cents: int
    issue_date: date
    sent_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    items: list[LineItem] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    @property
    def total_euros(self) -> Decimal:
        return Decimal(self.total_cents) / 100


class Quote(_Document):
    """Full quote entity as stored."""

    status: QuoteStatus
    valid_until: date | None = None
    signed_at: datetime | None = None
    signer_name: str | None = None
    signer_email: str | None = None
    view_count: int = 0

    def is_expired_on(self, today: date) -> bool:
        return self.valid_until is not None and self.valid_until < today


class Invoice(_Document):
    """Full invoice entity as stored."""

    status: InvoiceStatus
    due_date: date | None = None
    paid_at: datetime | None = None
    quote_id: UUID | None = None

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID


class QuoteSignature(BaseModel):
    """Signature captured on the public quote page."""

    signer_name: str = Field(..., min_length=1, max_length=255)
    signer_email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    accept_terms: bool

    @model_validator(mode="after")
    def _terms_accepted(self):
        if not self.accept_terms:
            raise ValueError("Terms must be accepted to sign")
        return self


class PublicLineItem(BaseModel):
    description: str
    quantity: Decimal
    unit_price_cents: int
    vat_rate: Decimal
    total_cents: int


class PublicDocument(BaseModel):
    """
    Read model for unauthenticated document pages.

    Carries only what the recipient needs. No internal ids other than the
    document's own, no creator, no encrypted keys.
    """

    id: UUID
    document_type: str
    number: str
    status: str
    title: str | None = None
    currency: str
    subtotal_cents: int
    vat_amount_cents: int
    total_cents: int
    issue_date: date
    due_date: date | None = None
    valid_until: date | None = None
    organization_name: str
    stripe_publishable_key: str | None = None
    payable_online: bool = False
    items: list[PublicLineItem]
