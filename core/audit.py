"""
Audit trail for billing document changes.

Every mutation to a quote, invoice, payment, sequence or organization
setting is logged here. The audit log is:
- Append-only (entries never modified or deleted)
- Attributed (the user who acted, or the system actor for webhooks and sweeps)
- Tenant-scoped (every entry carries organization_id)
"""

from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

# Actor recorded when no user is behind the change
SYSTEM_ACTOR = "system"
STRIPE_ACTOR = "stripe"


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    TRANSITION = "transition"
    RESTORE = "restore"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two entity states.

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = exclude_fields or {"updated_at"}
    return {
        key: {"old": old.get(key), "new": new.get(key)}
        for key in sorted(set(old) | set(new))
        if key not in exclude and old.get(key) != new.get(key)
    }


def transition_changes(old_status: str, new_status: str, **extra: Any) -> dict[str, Any]:
    """Changes payload for a status transition."""
    changes: dict[str, Any] = {"status": {"old": old_status, "new": new_status}}
    changes.update(extra)
    return changes


class AuditLogger:
    """
    Audit trail writer.

    Pass model_dump(mode="json") output so UUIDs, Decimals and datetimes are
    JSON-serializable.

    Usage:
        audit = AuditLogger(postgres)
        audit.log_change(
            organization_id=org_id,
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.TRANSITION,
            changes=transition_changes("sent", "paid"),
            actor=STRIPE_ACTOR,
        )
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log_change(
        self,
        organization_id: UUID,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        user_id: UUID | None = None,
        actor: str | None = None,
    ) -> None:
        """
        Log an entity change.

        Args:
            organization_id: Tenant owning the entity
            entity_type: "quote", "invoice", "payment", "sequence", "organization"
            entity_id: ID of the entity
            action: CREATE, UPDATE, DELETE or TRANSITION
            changes: The changes made
            user_id: User who acted, None for system changes
            actor: Label for non-user changes ("stripe", "system")
        """
        self.postgres.execute(
            """
            INSERT INTO audit_log (
                id, organization_id, user_id, actor,
                entity_type, entity_id, action, changes, created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                uuid4(),
                organization_id,
                user_id,
                actor or ("user" if user_id else SYSTEM_ACTOR),
                entity_type,
                entity_id,
                action.value,
                Json(changes),
                now_utc(),
            )
        )
