"""In-app notification models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    QUOTE_ACCEPTED = "quote_accepted"
    QUOTE_REJECTED = "quote_rejected"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_REFUNDED = "payment_refunded"
    INVOICE_OVERDUE = "invoice_overdue"
    STRIPE_CONNECT_ISSUE = "stripe_connect_issue"
    PAYMENT_DISPUTE = "payment_dispute"
    PAYOUT_RECEIVED = "payout_received"
    PAYOUT_FAILED = "payout_failed"


class NotificationCreate(BaseModel):
    organization_id: UUID
    user_id: UUID
    type: NotificationType
    title: str = Field(..., max_length=255)
    body: str = Field(..., max_length=2000)
    resource_type: str | None = None
    resource_id: UUID | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Notification(NotificationCreate):
    id: UUID
    read_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
