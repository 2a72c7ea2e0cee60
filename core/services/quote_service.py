"""
Quote service.

Quotes go draft -> sent -> accepted | rejected | expired. The client accepts
either through the user recording it or by signing on the public quote page.
An accepted quote can be converted into a draft invoice.
"""

import logging
from datetime import date, timedelta
from uuid import UUID

from core.audit import SYSTEM_ACTOR
from core.events import QuoteAccepted, QuoteExpired, QuoteRejected, QuoteSent
from core.exceptions import DocumentValidationError, InvalidTransitionError, NotFoundError
from core.models import (
    DocumentType,
    InvoiceCreate,
    LineItemInput,
    PublicDocument,
    PublicLineItem,
    Quote,
    QuoteCreate,
    QuoteSignature,
    QuoteStatus,
)
from core.plans import QuotaResource
from core.services.document_service import DocumentService
from core.state_machine import require_quote_transition
from utils.timezone import now_utc, today_utc

logger = logging.getLogger(__name__)

# Statuses a visitor may see on the public quote page
_PUBLIC_STATUSES = {QuoteStatus.SENT, QuoteStatus.ACCEPTED, QuoteStatus.REJECTED, QuoteStatus.EXPIRED}


class QuoteService(DocumentService):
    """Service for quote operations."""

    document_type = DocumentType.QUOTE
    quota_resource = QuotaResource.QUOTES
    term_column = "valid_until"
    public_path = "quote"

    def __init__(self, *args, invoices=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.invoices = invoices

    def _default_term(self, issue_date: date) -> date:
        return issue_date + timedelta(days=self.config.default_quote_validity_days)

    def _require_transition(self, current: QuoteStatus, target: QuoteStatus) -> None:
        require_quote_transition(current, target)

    def create(self, organization_id: UUID, data: QuoteCreate, user_id: UUID | None = None) -> Quote:
        """
        Create a draft quote.

        Raises:
            QuotaExceededError: Monthly quote ceiling reached
        """
        return self._create(organization_id, user_id, data, term_date=data.valid_until)

    def send(
        self,
        organization_id: UUID,
        quote_id: UUID,
        user_id: UUID | None = None,
        recipient_email: str | None = None,
        message: str | None = None,
    ) -> Quote:
        """
        Email the quote to the client and mark it sent.

        A quote already sent is delivered again without a status change.

        Raises:
            DocumentValidationError: No recipient address
            EmailGatewayError: Delivery failed; status is left unchanged
            InvalidTransitionError: Quote already answered or expired
        """
        current = self._get_or_raise(organization_id, quote_id)
        if current.status == QuoteStatus.SENT:
            self._deliver(organization_id, current, recipient_email, message)
            return current

        require_quote_transition(current.status, QuoteStatus.SENT)
        self._deliver(organization_id, current, recipient_email, message)
        return self.mark_sent(organization_id, quote_id, user_id=user_id)

    def mark_sent(self, organization_id: UUID, quote_id: UUID, user_id: UUID | None = None) -> Quote:
        """Mark a draft quote as sent without emailing it."""
        _, updated = self._apply_transition(
            organization_id, quote_id, QuoteStatus.SENT,
            fields={"sent_at": now_utc()},
            user_id=user_id,
        )
        self.event_bus.publish(QuoteSent.create(updated))
        return updated

    def accept(self, organization_id: UUID, quote_id: UUID, user_id: UUID | None = None) -> Quote:
        """Record the client's acceptance."""
        _, updated = self._apply_transition(organization_id, quote_id, QuoteStatus.ACCEPTED, user_id=user_id)
        self.event_bus.publish(QuoteAccepted.create(updated))
        return updated

    def reject(self, organization_id: UUID, quote_id: UUID, user_id: UUID | None = None) -> Quote:
        """Record the client's rejection."""
        _, updated = self._apply_transition(organization_id, quote_id, QuoteStatus.REJECTED, user_id=user_id)
        self.event_bus.publish(QuoteRejected.create(updated))
        return updated

    def expire(self, organization_id: UUID, quote_id: UUID, user_id: UUID | None = None) -> Quote:
        """Mark a sent quote as expired."""
        _, updated = self._apply_transition(
            organization_id, quote_id, QuoteStatus.EXPIRED,
            user_id=user_id,
            actor=None if user_id else SYSTEM_ACTOR,
        )
        self.event_bus.publish(QuoteExpired.create(updated))
        return updated

    def expire_overdue_quotes(self, today: date | None = None) -> int:
        """
        Daily sweep: expire sent quotes whose validity date has passed.

        A quote answered between listing and update is skipped.

        Returns:
            Number of quotes expired.
        """
        today = today or today_utc()
        expired = 0
        for quote in self.db.list_expired_quotes(today):
            try:
                self.expire(quote.organization_id, quote.id)
                expired += 1
            except (InvalidTransitionError, NotFoundError):
                logger.info("Quote %s changed before expiry, skipping", quote.id)
        if expired:
            logger.info("Expired %s quotes", expired)
        return expired

    # =========================================================================
    # PUBLIC PAGE
    # =========================================================================

    def _get_public_quote(self, quote_id: UUID) -> Quote:
        quote = self.db.get_document_unscoped(DocumentType.QUOTE, quote_id)
        if quote is None or quote.status not in _PUBLIC_STATUSES:
            raise NotFoundError("quote", quote_id)
        return quote

    def get_public(self, quote_id: UUID) -> PublicDocument:
        """
        Read model for the public quote page. Counts the view.

        Raises:
            NotFoundError: Missing, deleted, or still a draft
        """
        quote = self._get_public_quote(quote_id)
        self.db.increment_quote_views(quote_id)
        org = self.db.get_organization(quote.organization_id)

        return PublicDocument(
            id=quote.id,
            document_type="quote",
            number=quote.number,
            status=quote.status.value,
            title=quote.title,
            currency=quote.currency,
            subtotal_cents=quote.subtotal_cents,
            vat_amount_cents=quote.vat_amount_cents,
            total_cents=quote.total_cents,
            issue_date=quote.issue_date,
            valid_until=quote.valid_until,
            organization_name=org.name if org else "",
            items=[
                PublicLineItem(
                    description=item.description,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    vat_rate=item.vat_rate,
                    total_cents=item.total_cents,
                )
                for item in quote.items
            ],
        )

    def sign(self, quote_id: UUID, signature: QuoteSignature) -> Quote:
        """
        Client signature from the public page. Accepts the quote.

        A quote past its validity date is expired instead and the signature
        refused.

        Raises:
            NotFoundError: Missing, deleted, or still a draft
            InvalidTransitionError: Already signed, rejected or expired
            DocumentValidationError: Validity date has passed
        """
        quote = self._get_public_quote(quote_id)
        org_id = quote.organization_id

        if quote.status == QuoteStatus.SENT and quote.is_expired_on(today_utc()):
            self.expire(org_id, quote_id)
            raise DocumentValidationError(f"This quote expired on {quote.valid_until.isoformat()}")

        _, updated = self._apply_transition(
            org_id, quote_id, QuoteStatus.ACCEPTED,
            fields={
                "signed_at": now_utc(),
                "signer_name": signature.signer_name,
                "signer_email": signature.signer_email,
            },
            actor="client",
            current=quote,
        )
        logger.info("Quote %s signed by client", quote.number)
        self.event_bus.publish(QuoteAccepted.create(updated, signed=True))
        return updated

    # =========================================================================
    # CONVERSION
    # =========================================================================

    def convert_to_invoice(self, organization_id: UUID, quote_id: UUID, user_id: UUID | None = None):
        """
        Create a draft invoice from an accepted quote.

        The invoice gets its own number and consumes invoice quota.

        Raises:
            InvalidTransitionError: Quote not accepted
            QuotaExceededError: Monthly invoice ceiling reached
        """
        if self.invoices is None:
            raise RuntimeError("QuoteService was built without an InvoiceService")

        quote = self._get_or_raise(organization_id, quote_id)
        if quote.status != QuoteStatus.ACCEPTED:
            raise InvalidTransitionError("quote", quote.status.value, "invoiced")

        data = InvoiceCreate(
            contact_id=quote.contact_id,
            company_id=quote.company_id,
            title=quote.title,
            notes=quote.notes,
            quote_id=quote.id,
            items=[
                LineItemInput(
                    description=item.description,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    vat_rate=item.vat_rate,
                )
                for item in quote.items
            ],
        )
        invoice = self.invoices.create(organization_id, data, user_id=user_id)
        logger.info("Converted quote %s into invoice %s", quote.number, invoice.number)
        return invoice
