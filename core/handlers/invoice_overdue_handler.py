"""Handler for InvoiceOverdue events."""

from typing import Callable

from core.events import InvoiceOverdue
from core.models import NotificationType
from core.money import format_eur


def handle_invoice_overdue(notification_service) -> Callable:
    """Factory that returns an InvoiceOverdue handler notifying the creator."""

    def handler(event: InvoiceOverdue):
        invoice = event.invoice
        if invoice.created_by_id is None:
            return

        due = invoice.due_date.strftime("%d/%m/%Y") if invoice.due_date else "-"
        notification_service.notify_user(
            invoice.organization_id,
            invoice.created_by_id,
            NotificationType.INVOICE_OVERDUE,
            title="Facture en retard",
            body=f"La facture {invoice.number} ({format_eur(invoice.total_cents)}) était due le {due}.",
            resource_type="invoice",
            resource_id=invoice.id,
            metadata={"invoiceId": str(invoice.id)},
        )

    return handler
