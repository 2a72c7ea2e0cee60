"""
Handlers for InvoicePaid and InvoiceRefunded events.

Tell the invoice's creator that money arrived or went back, whether the
change came from a Stripe webhook or a manual entry.
"""

import logging
from typing import Callable

from core.events import InvoicePaid, InvoiceRefunded
from core.models import NotificationType
from core.money import format_eur

logger = logging.getLogger(__name__)


def handle_invoice_paid(notification_service) -> Callable:
    """
    Factory that returns an InvoicePaid handler.

    Args:
        notification_service: NotificationService instance

    Returns:
        Handler callable that notifies the invoice creator
    """

    def handler(event: InvoicePaid):
        invoice = event.invoice
        if invoice.created_by_id is None:
            logger.info("Invoice %s has no creator to notify of payment", invoice.number)
            return

        amount = event.payment.amount_cents if event.payment else invoice.total_cents
        notification_service.notify_user(
            invoice.organization_id,
            invoice.created_by_id,
            NotificationType.PAYMENT_RECEIVED,
            title="Paiement reçu",
            body=f"La facture {invoice.number} a été payée ({format_eur(amount)}).",
            resource_type="invoice",
            resource_id=invoice.id,
            metadata={"invoiceId": str(invoice.id)},
        )

    return handler


def handle_invoice_refunded(notification_service) -> Callable:
    """Factory that returns an InvoiceRefunded handler."""

    def handler(event: InvoiceRefunded):
        invoice = event.invoice
        if invoice.created_by_id is None:
            return

        notification_service.notify_user(
            invoice.organization_id,
            invoice.created_by_id,
            NotificationType.PAYMENT_REFUNDED,
            title="Paiement remboursé",
            body=(
                f"Le paiement de la facture {invoice.number} a été remboursé "
                f"({format_eur(event.amount_refunded_cents)})."
            ),
            resource_type="invoice",
            resource_id=invoice.id,
            metadata={"invoiceId": str(invoice.id)},
        )

    return handler
