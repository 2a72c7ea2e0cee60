"""
In-app notifications.

Single-recipient notifications propagate store errors to the caller.
Organization-wide fan-out isolates failures per member: one member's failed
insert is logged and the rest still get theirs.
"""

import logging
from typing import Any
from uuid import UUID

from core.database import BillingDatabase
from core.models import Notification, NotificationCreate, NotificationType

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for user notifications."""

    def __init__(self, db: BillingDatabase):
        self.db = db

    def notify_user(
        self,
        organization_id: UUID,
        user_id: UUID,
        type: NotificationType,
        title: str,
        body: str,
        resource_type: str | None = None,
        resource_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        notification = self.db.insert_notification(NotificationCreate(
            organization_id=organization_id,
            user_id=user_id,
            type=type,
            title=title,
            body=body,
            resource_type=resource_type,
            resource_id=resource_id,
            metadata=metadata or {},
        ))
        logger.info("Notification %s sent to user %s", type.value, user_id)
        return notification

    def notify_organization(
        self,
        organization_id: UUID,
        type: NotificationType,
        title: str,
        body: str,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """
        Notify every active member of an organization.

        Returns:
            Number of members successfully notified.
        """
        delivered = 0
        for user_id in self.db.list_member_ids(organization_id):
            try:
                self.notify_user(
                    organization_id, user_id, type, title, body,
                    resource_type="organization",
                    resource_id=organization_id,
                    metadata=metadata,
                )
                delivered += 1
            except Exception:
                logger.exception(
                    "Failed to notify user %s of %s (org %s)", user_id, type.value, organization_id
                )
        return delivered

    def list_for_user(
        self,
        organization_id: UUID,
        user_id: UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        return self.db.list_notifications(organization_id, user_id, unread_only=unread_only, limit=limit)

    def mark_read(self, organization_id: UUID, user_id: UUID, notification_id: UUID) -> bool:
        return self.db.mark_notification_read(organization_id, user_id, notification_id)
