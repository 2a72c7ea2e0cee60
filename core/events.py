"""
Domain events for billing documents.

Immutable event objects published after a status change has committed.
Services publish what happened; handlers react (notify the creator) without
the publisher knowing who's listening.

Events carry the full document so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# QUOTE EVENTS
# =============================================================================


@dataclass(frozen=True)
class QuoteEvent(BillingEvent):
    """Events related to quote lifecycle."""
    quote: Any = None  # Quote; Any avoids a models import cycle


@dataclass(frozen=True)
class QuoteSent(QuoteEvent):
    """Quote was delivered to the client."""

    @classmethod
    def create(cls, quote: Any) -> "QuoteSent":
        return cls(quote=quote)


@dataclass(frozen=True)
class QuoteAccepted(QuoteEvent):
    """Client accepted (or signed) the quote."""
    signed: bool = False

    @classmethod
    def create(cls, quote: Any, signed: bool = False) -> "QuoteAccepted":
        return cls(quote=quote, signed=signed)


@dataclass(frozen=True)
class QuoteRejected(QuoteEvent):
    """Client rejected the quote."""

    @classmethod
    def create(cls, quote: Any) -> "QuoteRejected":
        return cls(quote=quote)


@dataclass(frozen=True)
class QuoteExpired(QuoteEvent):
    """Quote passed its validity date without an answer."""

    @classmethod
    def create(cls, quote: Any) -> "QuoteExpired":
        return cls(quote=quote)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    """Events related to invoice lifecycle."""
    invoice: Any = None


@dataclass(frozen=True)
class InvoiceSent(InvoiceEvent):
    """Invoice was sent to the client."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceSent":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice was paid, through Stripe or recorded manually."""
    payment: Any = None

    @classmethod
    def create(cls, invoice: Any, payment: Any = None) -> "InvoicePaid":
        return cls(invoice=invoice, payment=payment)


@dataclass(frozen=True)
class InvoiceOverdue(InvoiceEvent):
    """Invoice passed its due date unpaid."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceOverdue":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceCancelled(InvoiceEvent):
    """Invoice was cancelled."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceCancelled":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceRefunded(InvoiceEvent):
    """Payment on the invoice was refunded."""
    amount_refunded_cents: int = 0

    @classmethod
    def create(cls, invoice: Any, amount_refunded_cents: int) -> "InvoiceRefunded":
        return cls(invoice=invoice, amount_refunded_cents=amount_refunded_cents)
