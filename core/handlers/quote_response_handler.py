"""
Handlers for QuoteAccepted and QuoteRejected events.

Tell the quote's creator that the client answered.
"""

from typing import Callable

from core.events import QuoteAccepted, QuoteRejected
from core.models import NotificationType
from core.money import format_eur


def handle_quote_accepted(notification_service) -> Callable:
    """
    Factory that returns a QuoteAccepted handler.

    Args:
        notification_service: NotificationService instance
    """

    def handler(event: QuoteAccepted):
        quote = event.quote
        if quote.created_by_id is None:
            return

        how = "signé" if event.signed else "accepté"
        notification_service.notify_user(
            quote.organization_id,
            quote.created_by_id,
            NotificationType.QUOTE_ACCEPTED,
            title=f"Devis {how}",
            body=f"Le devis {quote.number} ({format_eur(quote.total_cents)}) a été {how} par votre client.",
            resource_type="quote",
            resource_id=quote.id,
            metadata={"quoteId": str(quote.id), "signed": event.signed},
        )

    return handler


def handle_quote_rejected(notification_service) -> Callable:
    """Factory that returns a QuoteRejected handler."""

    def handler(event: QuoteRejected):
        quote = event.quote
        if quote.created_by_id is None:
            return

        notification_service.notify_user(
            quote.organization_id,
            quote.created_by_id,
            NotificationType.QUOTE_REJECTED,
            title="Devis refusé",
            body=f"Le devis {quote.number} a été refusé par votre client.",
            resource_type="quote",
            resource_id=quote.id,
            metadata={"quoteId": str(quote.id)},
        )

    return handler
