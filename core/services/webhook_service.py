"""
Webhook reconciler for Stripe Connect events.

Turns verified, parsed Stripe events into invoice and payment state. Each
variant has its own handler. Rules shared by all of them:
    - The idempotency ledger row and the writes it guards commit together,
      so a redelivered event is a no-op and a crashed one is retried whole.
    - Unknown organizations or invoices are logged and acknowledged; Stripe
      would otherwise redeliver forever.
    - Notifications go out after commit and never fail the delivery.
    - Store errors propagate so the route answers 500 and Stripe retries.
"""

import logging
from uuid import UUID, uuid4

from core.audit import STRIPE_ACTOR, AuditAction, AuditLogger, transition_changes
from core.database import BillingDatabase
from core.event_bus import EventBus
from core.events import InvoicePaid, InvoiceRefunded
from core.models import DocumentType, InvoiceStatus, NotificationType, Organization
from core.money import format_eur
from core.services.notification_service import NotificationService
from core.state_machine import WEBHOOK_PAYABLE_STATUSES
from core.webhook_events import (
    AccountUpdated,
    ChargeRefunded,
    CheckoutCompleted,
    DisputeCreated,
    IgnoredEvent,
    PayoutFailed,
    PayoutPaid,
    WebhookEvent,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


def _as_uuid(value: str | None) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(value)
    except ValueError:
        return None


class WebhookService:
    """
    Applies Stripe Connect events to local state.

    Usage:
        service = WebhookService(db, audit, event_bus, notifications)
        service.handle(parse_webhook_event(envelope))
    """

    def __init__(
        self,
        db: BillingDatabase,
        audit: AuditLogger,
        event_bus: EventBus,
        notifications: NotificationService,
    ):
        self.db = db
        self.audit = audit
        self.event_bus = event_bus
        self.notifications = notifications

        self._handlers = {
            CheckoutCompleted: self._checkout_completed,
            ChargeRefunded: self._charge_refunded,
            AccountUpdated: self._account_updated,
            DisputeCreated: self._dispute_created,
            PayoutPaid: self._payout_paid,
            PayoutFailed: self._payout_failed,
            IgnoredEvent: self._ignored,
        }

    def handle(self, event: WebhookEvent) -> None:
        """Dispatch one parsed event. Returns normally for every acknowledged outcome."""
        handler = self._handlers[type(event)]
        handler(event)

    # =========================================================================
    # PAYMENTS
    # =========================================================================

    def _checkout_completed(self, event: CheckoutCompleted) -> None:
        invoice_id = _as_uuid(event.invoice_id)
        if invoice_id is None:
            logger.warning("Checkout session %s has no usable invoiceId metadata", event.session_id)
            return

        paid_at = now_utc()
        with self.db.transaction() as tx:
            if not tx.record_webhook_event(event.session_id, "checkout.session.completed"):
                logger.info("Checkout session %s already processed, skipping", event.session_id)
                return
            if tx.get_payment_by_reference(event.session_id) is not None:
                logger.info("Payment for session %s already recorded, skipping", event.session_id)
                return

            invoice = tx.get_document_unscoped(DocumentType.INVOICE, invoice_id)
            if invoice is None:
                logger.warning("Checkout session %s references unknown invoice %s", event.session_id, invoice_id)
                return
            metadata_org = _as_uuid(event.organization_id)
            if metadata_org is not None and metadata_org != invoice.organization_id:
                logger.warning(
                    "Checkout session %s organization %s does not own invoice %s",
                    event.session_id, metadata_org, invoice_id,
                )
                return
            if invoice.status == InvoiceStatus.PAID:
                logger.info("Invoice %s already paid, ignoring session %s", invoice.number, event.session_id)
                return
            if invoice.status not in WEBHOOK_PAYABLE_STATUSES:
                logger.warning(
                    "Invoice %s is %s; payment from session %s needs manual review",
                    invoice.number, invoice.status.value, event.session_id,
                )
                return

            updated = tx.transition(
                DocumentType.INVOICE, invoice.organization_id, invoice.id,
                from_statuses=tuple(s.value for s in WEBHOOK_PAYABLE_STATUSES),
                to_status=InvoiceStatus.PAID.value,
                fields={"paid_at": paid_at},
            )
            if updated is None:
                logger.info("Invoice %s changed concurrently, ignoring session %s", invoice.number, event.session_id)
                return

            payment = tx.insert_payment({
                "id": uuid4(),
                "organization_id": invoice.organization_id,
                "invoice_id": invoice.id,
                "amount_cents": invoice.total_cents,
                "method": "stripe",
                "reference": event.session_id,
                "stripe_payment_intent_id": event.payment_intent_id or event.session_id,
                "paid_at": paid_at,
                "created_at": paid_at,
            })
            if payment is None:
                # Reference claimed by a concurrent delivery; undo the transition with it
                raise RuntimeError(f"Payment reference {event.session_id} already exists")

        self.audit.log_change(
            organization_id=invoice.organization_id,
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.TRANSITION,
            changes=transition_changes(
                invoice.status.value, InvoiceStatus.PAID.value,
                session_id=event.session_id,
                amount_cents=invoice.total_cents,
            ),
            actor=STRIPE_ACTOR,
        )
        if event.amount_total is not None and event.amount_total != invoice.total_cents:
            logger.warning(
                "Session %s charged %s cents for invoice %s totalling %s",
                event.session_id, event.amount_total, invoice.number, invoice.total_cents,
            )
        logger.info("Invoice %s paid via Stripe session %s", invoice.number, event.session_id)
        self.event_bus.publish(InvoicePaid.create(updated, payment=payment))

    def _charge_refunded(self, event: ChargeRefunded) -> None:
        if not event.payment_intent_id:
            logger.info("Refunded charge %s has no payment intent, ignoring", event.charge_id)
            return

        with self.db.transaction() as tx:
            if not tx.record_webhook_event(event.charge_id, "charge.refunded"):
                logger.info("Refund of charge %s already processed, skipping", event.charge_id)
                return

            payment = tx.get_payment_by_payment_intent(event.payment_intent_id)
            if payment is None:
                logger.info("No payment found for refunded payment intent %s", event.payment_intent_id)
                return

            updated = tx.transition(
                DocumentType.INVOICE, payment.organization_id, payment.invoice_id,
                from_statuses=(InvoiceStatus.PAID.value,),
                to_status=InvoiceStatus.REFUNDED.value,
            )
            if updated is None:
                logger.info("Invoice %s is not paid, refund of %s not applied", payment.invoice_id, event.charge_id)
                return

        self.audit.log_change(
            organization_id=payment.organization_id,
            entity_type="invoice",
            entity_id=payment.invoice_id,
            action=AuditAction.TRANSITION,
            changes=transition_changes(
                InvoiceStatus.PAID.value, InvoiceStatus.REFUNDED.value,
                charge_id=event.charge_id,
                amount_refunded_cents=event.amount_refunded,
            ),
            actor=STRIPE_ACTOR,
        )
        logger.info("Invoice %s refunded (%s cents)", updated.number, event.amount_refunded)
        self.event_bus.publish(InvoiceRefunded.create(updated, amount_refunded_cents=event.amount_refunded))

    # =========================================================================
    # CONNECT ACCOUNT
    # =========================================================================

    def _organization_for(self, account_id: str | None, event_type: str) -> Organization | None:
        if not account_id:
            logger.warning("%s event without a connected account, ignoring", event_type)
            return None
        org = self.db.get_organization_by_stripe_account(account_id)
        if org is None:
            logger.warning("%s for unknown Connect account %s, ignoring", event_type, account_id)
        return org

    def _account_updated(self, event: AccountUpdated) -> None:
        org = self._organization_for(event.account_id, "account.updated")
        if org is None or event.charges_enabled:
            return

        notified = self.notifications.notify_organization(
            org.id,
            NotificationType.STRIPE_CONNECT_ISSUE,
            title="Compte Stripe Connect à vérifier",
            body=(
                "Votre compte Stripe Connect nécessite une vérification. "
                "Les paiements en ligne sont suspendus jusqu'à sa validation."
            ),
            metadata={"accountId": event.account_id},
        )
        logger.info("Charges disabled on %s, notified %s members of org %s", event.account_id, notified, org.id)

    def _dispute_created(self, event: DisputeCreated) -> None:
        org = self._organization_for(event.account_id, "charge.dispute.created")
        if org is None:
            return
        self.notifications.notify_organization(
            org.id,
            NotificationType.PAYMENT_DISPUTE,
            title="Litige de paiement",
            body=(
                f"Un litige de {format_eur(event.amount)} a été ouvert. "
                "Répondez rapidement depuis votre tableau de bord Stripe."
            ),
            metadata={"disputeId": event.dispute_id, "chargeId": event.charge_id or ""},
        )

    def _payout_paid(self, event: PayoutPaid) -> None:
        org = self._organization_for(event.account_id, "payout.paid")
        if org is None:
            return
        self.notifications.notify_organization(
            org.id,
            NotificationType.PAYOUT_RECEIVED,
            title="Virement envoyé",
            body=f"Un virement de {format_eur(event.amount)} a été envoyé sur votre compte bancaire.",
            metadata={"payoutId": event.payout_id},
        )

    def _payout_failed(self, event: PayoutFailed) -> None:
        org = self._organization_for(event.account_id, "payout.failed")
        if org is None:
            return
        body = f"Le virement de {format_eur(event.amount)} a échoué. Vérifiez vos informations bancaires dans Stripe."
        self.notifications.notify_organization(
            org.id,
            NotificationType.PAYOUT_FAILED,
            title="Virement échoué",
            body=body,
            metadata={"payoutId": event.payout_id, "failureMessage": event.failure_message or ""},
        )

    def _ignored(self, event: IgnoredEvent) -> None:
        logger.debug("Ignoring %s (%s): %s", event.event_type, event.event_id, event.reason)
