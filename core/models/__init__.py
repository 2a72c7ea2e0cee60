"""Core domain models."""

from core.models.lifecycle import (
    ACTIVE_ONLY,
    DELETED_ONLY,
    Active,
    Deleted,
    Lifecycle,
    SoftDeletable,
    active_only,
)
from core.models.organization import Organization, PlanChange, StripeKeysUpdate
from core.models.document import (
    Quote, QuoteCreate, QuoteStatus, QuoteSignature,
    Invoice, InvoiceCreate, InvoiceStatus,
    DocumentUpdate, LineItem, LineItemInput,
    PublicDocument, PublicLineItem,
)
from core.models.payment import Payment, PaymentMethod, ManualPaymentCreate
from core.models.sequence import DocumentSequence, DocumentType, SequenceSettings
from core.models.notification import Notification, NotificationCreate, NotificationType

__all__ = [
    # Lifecycle
    "ACTIVE_ONLY", "DELETED_ONLY", "Active", "Deleted", "Lifecycle", "SoftDeletable", "active_only",
    # Organization
    "Organization", "PlanChange", "StripeKeysUpdate",
    # Documents
    "Quote", "QuoteCreate", "QuoteStatus", "QuoteSignature",
    "Invoice", "InvoiceCreate", "InvoiceStatus",
    "DocumentUpdate", "LineItem", "LineItemInput",
    "PublicDocument", "PublicLineItem",
    # Payment
    "Payment", "PaymentMethod", "ManualPaymentCreate",
    # Sequence
    "DocumentSequence", "DocumentType", "SequenceSettings",
    # Notification
    "Notification", "NotificationCreate", "NotificationType",
]
