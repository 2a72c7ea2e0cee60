"""
Invoice service for billing and payments.

Invoices go draft -> sent -> paid, with overdue, cancelled and refunded
branches. Stripe payments are reconciled by the webhook service; this
service records payments made outside Stripe.
"""

import logging
from datetime import date, timedelta
from uuid import UUID, uuid4

from core.audit import SYSTEM_ACTOR, AuditAction
from core.events import InvoiceCancelled, InvoiceOverdue, InvoicePaid, InvoiceRefunded, InvoiceSent
from core.exceptions import (
    AlreadyPaidError,
    DocumentImmutableError,
    DocumentValidationError,
    InvalidTransitionError,
    NotFoundError,
    PlanRestrictionError,
)
from core.models import (
    DocumentType,
    Invoice,
    InvoiceCreate,
    InvoiceStatus,
    ManualPaymentCreate,
    Payment,
    PaymentMethod,
    PublicDocument,
    PublicLineItem,
)
from core.plans import QuotaResource, has_payment_method
from core.services.document_service import DocumentService
from core.state_machine import require_invoice_transition
from utils.timezone import now_utc, today_utc

logger = logging.getLogger(__name__)

# Statuses from which a client can still pay on the public page
PAYABLE_STATUSES = (InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.OVERDUE)

# Only these may be soft-deleted; issued invoices are cancelled instead
_DELETABLE_STATUSES = (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED)


class InvoiceService(DocumentService):
    """Service for invoice operations."""

    document_type = DocumentType.INVOICE
    quota_resource = QuotaResource.INVOICES
    term_column = "due_date"
    public_path = "pay"

    def _default_term(self, issue_date: date) -> date:
        return issue_date + timedelta(days=self.config.default_payment_terms_days)

    def _require_transition(self, current: InvoiceStatus, target: InvoiceStatus) -> None:
        require_invoice_transition(current, target)

    def create(self, organization_id: UUID, data: InvoiceCreate, user_id: UUID | None = None) -> Invoice:
        """
        Create a draft invoice.

        Raises:
            QuotaExceededError: Monthly invoice ceiling reached
        """
        extra = {"quote_id": data.quote_id} if data.quote_id else None
        return self._create(organization_id, user_id, data, term_date=data.due_date, extra=extra)

    def send(
        self,
        organization_id: UUID,
        invoice_id: UUID,
        user_id: UUID | None = None,
        recipient_email: str | None = None,
        message: str | None = None,
    ) -> Invoice:
        """
        Email the invoice with its payment link and mark it sent.

        Sent and overdue invoices are delivered again as a reminder without
        a status change.

        Raises:
            DocumentValidationError: No recipient address
            EmailGatewayError: Delivery failed; status is left unchanged
            InvalidTransitionError: Invoice paid, cancelled or refunded
        """
        current = self._get_or_raise(organization_id, invoice_id)
        if current.status in (InvoiceStatus.SENT, InvoiceStatus.OVERDUE):
            self._deliver(organization_id, current, recipient_email, message)
            return current

        require_invoice_transition(current.status, InvoiceStatus.SENT)
        self._deliver(organization_id, current, recipient_email, message)
        return self.mark_sent(organization_id, invoice_id, user_id=user_id)

    def mark_sent(self, organization_id: UUID, invoice_id: UUID, user_id: UUID | None = None) -> Invoice:
        """Mark a draft invoice as sent without emailing it."""
        _, updated = self._apply_transition(
            organization_id, invoice_id, InvoiceStatus.SENT,
            fields={"sent_at": now_utc()},
            user_id=user_id,
        )
        self.event_bus.publish(InvoiceSent.create(updated))
        return updated

    def record_manual_payment(
        self,
        organization_id: UUID,
        invoice_id: UUID,
        data: ManualPaymentCreate,
        user_id: UUID | None = None,
    ) -> tuple[Invoice, Payment]:
        """
        Record a payment received outside Stripe and mark the invoice paid.

        Raises:
            DocumentValidationError: Stripe method, partial amount, or duplicate reference
            PlanRestrictionError: Method not included in the organization's plan
            InvalidTransitionError: Invoice not sent or overdue
        """
        if data.method == PaymentMethod.STRIPE:
            raise DocumentValidationError("Stripe payments are recorded automatically")

        org = self.db.get_organization(organization_id)
        if org is None:
            raise NotFoundError("organization", organization_id)
        if not has_payment_method(org.plan, data.method.value):
            raise PlanRestrictionError(
                f"Payment method '{data.method.value}' is not available on the {org.plan.value} plan",
                current_plan=org.plan.value,
            )

        paid_at = data.paid_at or now_utc()
        with self.db.transaction() as tx:
            current = self._get_or_raise(organization_id, invoice_id, db=tx)
            amount = data.amount_cents if data.amount_cents is not None else current.total_cents
            if amount != current.total_cents:
                raise DocumentValidationError(
                    f"Amount must equal the invoice total ({current.total_cents} cents); "
                    "partial payments are not supported"
                )

            _, updated = self._apply_transition(
                organization_id, invoice_id, InvoiceStatus.PAID,
                fields={"paid_at": paid_at},
                user_id=user_id,
                db=tx,
                current=current,
                log_audit=False,
            )
            payment = tx.insert_payment({
                "id": uuid4(),
                "organization_id": organization_id,
                "invoice_id": invoice_id,
                "amount_cents": amount,
                "method": data.method.value,
                "reference": data.reference or f"manual-{uuid4()}",
                "stripe_payment_intent_id": None,
                "paid_at": paid_at,
                "created_at": now_utc(),
            })
            if payment is None:
                raise DocumentValidationError(f"Payment reference '{data.reference}' is already used")

        self._audit_transition(current, InvoiceStatus.PAID, {"paid_at": paid_at}, user_id=user_id)
        self.audit.log_change(
            organization_id=organization_id,
            entity_type="payment",
            entity_id=payment.id,
            action=AuditAction.CREATE,
            changes={"created": payment.model_dump(mode="json")},
            user_id=user_id,
        )
        self.event_bus.publish(InvoicePaid.create(updated, payment=payment))
        return updated, payment

    def cancel(self, organization_id: UUID, invoice_id: UUID, user_id: UUID | None = None) -> Invoice:
        """Cancel an unpaid invoice. Its number stays consumed."""
        _, updated = self._apply_transition(organization_id, invoice_id, InvoiceStatus.CANCELLED, user_id=user_id)
        self.event_bus.publish(InvoiceCancelled.create(updated))
        return updated

    def refund(self, organization_id: UUID, invoice_id: UUID, user_id: UUID | None = None) -> Invoice:
        """Record that a paid invoice was refunded outside Stripe."""
        _, updated = self._apply_transition(organization_id, invoice_id, InvoiceStatus.REFUNDED, user_id=user_id)
        self.event_bus.publish(InvoiceRefunded.create(updated, amount_refunded_cents=updated.total_cents))
        return updated

    def mark_overdue_invoices(self, today: date | None = None) -> int:
        """
        Daily sweep: sent invoices past their due date become overdue.

        An invoice paid between listing and update is skipped.

        Returns:
            Number of invoices marked overdue.
        """
        today = today or today_utc()
        marked = 0
        for invoice in self.db.list_overdue_invoices(today):
            try:
                _, updated = self._apply_transition(
                    invoice.organization_id, invoice.id, InvoiceStatus.OVERDUE,
                    actor=SYSTEM_ACTOR,
                )
            except (InvalidTransitionError, NotFoundError):
                logger.info("Invoice %s changed before overdue sweep, skipping", invoice.id)
                continue
            self.event_bus.publish(InvoiceOverdue.create(updated))
            marked += 1
        if marked:
            logger.info("Marked %s invoices overdue", marked)
        return marked

    def delete(self, organization_id: UUID, invoice_id: UUID, user_id: UUID | None = None) -> bool:
        """
        Soft-delete a draft or cancelled invoice.

        Raises:
            DocumentImmutableError: Invoice has been issued and not cancelled
        """
        current = self.db.get_document(self.document_type, organization_id, invoice_id, with_items=False)
        if current is not None and current.status not in _DELETABLE_STATUSES:
            raise DocumentImmutableError(
                f"Invoice is {current.status.value}; cancel it instead of deleting it"
            )
        return super().delete(organization_id, invoice_id, user_id=user_id)

    def get_public(self, invoice_id: UUID) -> PublicDocument:
        """
        Read model for the public payment page.

        Raises:
            NotFoundError: Missing, deleted, cancelled or refunded
            AlreadyPaidError: Invoice is paid
        """
        invoice = self.db.get_document_unscoped(DocumentType.INVOICE, invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        if invoice.status == InvoiceStatus.PAID:
            raise AlreadyPaidError("This invoice has already been paid")
        if invoice.status not in PAYABLE_STATUSES:
            raise NotFoundError("invoice", invoice_id)

        org = self.db.get_organization(invoice.organization_id)
        payable_online = bool(org) and (
            (org.uses_platform_checkout and bool(org.stripe_account_id))
            or (not org.uses_platform_checkout and org.has_own_stripe_key)
        )

        return PublicDocument(
            id=invoice.id,
            document_type="invoice",
            number=invoice.number,
            status=invoice.status.value,
            title=invoice.title,
            currency=invoice.currency,
            subtotal_cents=invoice.subtotal_cents,
            vat_amount_cents=invoice.vat_amount_cents,
            total_cents=invoice.total_cents,
            issue_date=invoice.issue_date,
            due_date=invoice.due_date,
            organization_name=org.name if org else "",
            stripe_publishable_key=org.stripe_publishable_key if org and not org.uses_platform_checkout else None,
            payable_online=payable_online,
            items=[
                PublicLineItem(
                    description=item.description,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    vat_rate=item.vat_rate,
                    total_cents=item.total_cents,
                )
                for item in invoice.items
            ],
        )
