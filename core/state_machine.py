"""
Legal status transitions for quotes and invoices.

The tables below are the only source of truth. Services check a transition
here, then apply it with a compare-and-swap update on the current status so
two concurrent requests cannot both leave the same state.
"""

from core.exceptions import DocumentImmutableError, InvalidTransitionError
from core.models import InvoiceStatus, QuoteStatus

QUOTE_TRANSITIONS: dict[QuoteStatus, frozenset[QuoteStatus]] = {
    QuoteStatus.DRAFT: frozenset({QuoteStatus.SENT}),
    QuoteStatus.SENT: frozenset({QuoteStatus.ACCEPTED, QuoteStatus.REJECTED, QuoteStatus.EXPIRED}),
    QuoteStatus.ACCEPTED: frozenset(),
    QuoteStatus.REJECTED: frozenset(),
    QuoteStatus.EXPIRED: frozenset(),
}

INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.SENT, InvoiceStatus.CANCELLED}),
    InvoiceStatus.SENT: frozenset({InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED}),
    InvoiceStatus.OVERDUE: frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.PAID: frozenset({InvoiceStatus.REFUNDED}),
    InvoiceStatus.CANCELLED: frozenset(),
    InvoiceStatus.REFUNDED: frozenset(),
}

# Statuses a Stripe checkout completion may settle. Payment on the hosted page
# is proof of delivery, so an invoice paid before it was marked sent still
# settles; user actions must go through sent.
WEBHOOK_PAYABLE_STATUSES = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.OVERDUE})


def can_transition_quote(current: QuoteStatus, target: QuoteStatus) -> bool:
    return target in QUOTE_TRANSITIONS[current]


def can_transition_invoice(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    return target in INVOICE_TRANSITIONS[current]


def require_quote_transition(current: QuoteStatus, target: QuoteStatus) -> None:
    if not can_transition_quote(current, target):
        raise InvalidTransitionError("quote", current.value, target.value)


def require_invoice_transition(current: InvoiceStatus, target: InvoiceStatus) -> None:
    if not can_transition_invoice(current, target):
        raise InvalidTransitionError("invoice", current.value, target.value)


def require_editable(document_type: str, status) -> None:
    """Monetary fields may only change while the document is a draft."""
    if status.value != "draft":
        raise DocumentImmutableError(
            f"{document_type.capitalize()} is {status.value}; only drafts can be edited"
        )
