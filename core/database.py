"""Database operations for the billing engine.

Every statement that touches tenant data carries an explicit
organization_id predicate. Soft-deleted rows are hidden through the single
ACTIVE_ONLY predicate. Multi-statement units of work run inside
transaction(), which hands back a BillingDatabase bound to one connection.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterator
from uuid import UUID, uuid4

from psycopg2.errors import UniqueViolation
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, PostgresTransaction
from core.exceptions import DocumentValidationError
from core.models import (
    ACTIVE_ONLY,
    DELETED_ONLY,
    DocumentSequence,
    DocumentType,
    Invoice,
    LineItem,
    Notification,
    NotificationCreate,
    Organization,
    Payment,
    Quote,
    SequenceSettings,
    active_only,
)
from core.plans import Plan
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

_DOCUMENT_TABLES = {
    DocumentType.QUOTE: ("quotes", "quote_items", Quote),
    DocumentType.INVOICE: ("invoices", "invoice_items", Invoice),
}

# Columns a caller may set through update_document / transition
_MUTABLE_COLUMNS = {
    DocumentType.QUOTE: {
        "contact_id", "company_id", "title", "notes", "issue_date", "valid_until",
        "subtotal_cents", "vat_amount_cents", "total_cents",
        "sent_at", "signed_at", "signer_name", "signer_email",
    },
    DocumentType.INVOICE: {
        "contact_id", "company_id", "title", "notes", "issue_date", "due_date",
        "subtotal_cents", "vat_amount_cents", "total_cents",
        "sent_at", "paid_at",
    },
}

_COUNTABLE_TABLES = {"contacts", "projects"}


def _set_clause(document_type: DocumentType, fields: dict[str, Any]) -> tuple[str, list[Any]]:
    unknown = set(fields) - _MUTABLE_COLUMNS[document_type]
    if unknown:
        raise ValueError(f"Columns not updatable on {document_type.value}: {sorted(unknown)}")
    columns = sorted(fields)
    return ", ".join(f"{column} = %s" for column in columns), [fields[c] for c in columns]


class BillingDatabase:
    """
    Store for organizations, documents, sequences, payments, the webhook
    ledger and notifications.

    Usage:
        db = BillingDatabase(postgres)
        with db.transaction() as tx:
            org = tx.get_organization_for_update(org_id)
            ...
    """

    def __init__(self, postgres: PostgresClient | PostgresTransaction):
        self._db = postgres

    @property
    def in_transaction(self) -> bool:
        return isinstance(self._db, PostgresTransaction)

    @contextmanager
    def transaction(self) -> Iterator["BillingDatabase"]:
        """
        Unit of work on one connection. Commits on success, rolls back on
        any exception. Nested calls join the enclosing transaction.
        """
        if self.in_transaction:
            yield self
            return
        with self._db.transaction() as tx:
            yield BillingDatabase(tx)

    # =========================================================================
    # ORGANIZATIONS
    # =========================================================================

    def get_organization(self, organization_id: UUID) -> Organization | None:
        row = self._db.execute_single(
            "SELECT * FROM organizations WHERE id = %s",
            (organization_id,),
        )
        return Organization.model_validate(row) if row else None

    def get_organization_for_update(self, organization_id: UUID) -> Organization | None:
        """Lock the organization row until the enclosing transaction ends."""
        row = self._db.execute_single(
            "SELECT * FROM organizations WHERE id = %s FOR UPDATE",
            (organization_id,),
        )
        return Organization.model_validate(row) if row else None

    def get_organization_by_stripe_account(self, account_id: str) -> Organization | None:
        row = self._db.execute_single(
            "SELECT * FROM organizations WHERE stripe_account_id = %s",
            (account_id,),
        )
        return Organization.model_validate(row) if row else None

    def reset_invoice_counter(self, organization_id: UUID, reset_at: datetime) -> None:
        self._db.execute(
            """
            UPDATE organizations
            SET monthly_invoice_count = 0, last_invoice_reset_date = %s, updated_at = %s
            WHERE id = %s
            """,
            (reset_at, now_utc(), organization_id),
        )

    def increment_invoice_counter(self, organization_id: UUID) -> int:
        return self._db.execute_scalar(
            """
            UPDATE organizations
            SET monthly_invoice_count = monthly_invoice_count + 1
            WHERE id = %s
            RETURNING monthly_invoice_count
            """,
            (organization_id,),
        )

    def set_stripe_account(self, organization_id: UUID, account_id: str) -> None:
        self._db.execute(
            "UPDATE organizations SET stripe_account_id = %s, updated_at = %s WHERE id = %s",
            (account_id, now_utc(), organization_id),
        )

    def set_stripe_keys(
        self,
        organization_id: UUID,
        secret_key_encrypted: str | None,
        publishable_key: str | None,
    ) -> None:
        self._db.execute(
            """
            UPDATE organizations
            SET stripe_secret_key_encrypted = %s, stripe_publishable_key = %s, updated_at = %s
            WHERE id = %s
            """,
            (secret_key_encrypted, publishable_key, now_utc(), organization_id),
        )

    def set_plan(self, organization_id: UUID, plan: Plan, commission_rate: Decimal) -> Organization | None:
        """Switch plan and platform commission together; they decide checkout routing."""
        row = self._db.execute_single(
            """
            UPDATE organizations
            SET plan = %s, commission_rate = %s, updated_at = %s
            WHERE id = %s
            RETURNING *
            """,
            (plan.value, commission_rate, now_utc(), organization_id),
        )
        return Organization.model_validate(row) if row else None

    def list_member_ids(self, organization_id: UUID) -> list[UUID]:
        rows = self._db.execute(
            "SELECT id FROM users WHERE organization_id = %s AND is_active = true ORDER BY created_at",
            (organization_id,),
        )
        return [UUID(str(row["id"])) for row in rows]

    # =========================================================================
    # QUOTA COUNTS
    # =========================================================================

    def count_documents_created_since(
        self,
        document_type: DocumentType,
        organization_id: UUID,
        since: datetime,
    ) -> int:
        """Documents created since a point in time, deleted ones included."""
        table = _DOCUMENT_TABLES[document_type][0]
        return self._db.execute_scalar(
            f"SELECT COUNT(*) FROM {table} WHERE organization_id = %s AND created_at >= %s",
            (organization_id, since),
        ) or 0

    def count_active(self, table: str, organization_id: UUID) -> int:
        """Live (not soft-deleted) rows of contacts or projects."""
        if table not in _COUNTABLE_TABLES:
            raise ValueError(f"Cannot count table {table}")
        return self._db.execute_scalar(
            f"SELECT COUNT(*) FROM {table} WHERE organization_id = %s AND {ACTIVE_ONLY}",
            (organization_id,),
        ) or 0

    def get_client_email(
        self,
        organization_id: UUID,
        contact_id: UUID | None,
        company_id: UUID | None,
    ) -> str | None:
        """Email of the document's contact, falling back to its company."""
        if contact_id:
            email = self._db.execute_scalar(
                f"SELECT email FROM contacts WHERE organization_id = %s AND id = %s AND {ACTIVE_ONLY}",
                (organization_id, contact_id),
            )
            if email:
                return email
        if company_id:
            return self._db.execute_scalar(
                f"SELECT email FROM companies WHERE organization_id = %s AND id = %s AND {ACTIVE_ONLY}",
                (organization_id, company_id),
            )
        return None

    # =========================================================================
    # DOCUMENT SEQUENCES
    # =========================================================================

    def ensure_sequence(
        self,
        organization_id: UUID,
        document_type: DocumentType,
        prefix: str,
        padding_length: int,
    ) -> None:
        """Create the sequence row with defaults if it does not exist yet."""
        self._db.execute(
            """
            INSERT INTO document_sequences (
                id, organization_id, document_type, prefix, suffix,
                current_number, padding_length, include_year, updated_at
            ) VALUES (%s, %s, %s, %s, '', 1, %s, true, %s)
            ON CONFLICT (organization_id, document_type) DO NOTHING
            """,
            (uuid4(), organization_id, document_type.value, prefix, padding_length, now_utc()),
        )

    def advance_sequence(self, organization_id: UUID, document_type: DocumentType) -> DocumentSequence:
        """
        Consume one number atomically.

        Returns the row as it was before the increment, so its
        current_number is the number just issued. The row stays locked
        until the enclosing transaction ends.
        """
        row = self._db.execute_single(
            """
            UPDATE document_sequences
            SET current_number = current_number + 1, updated_at = %s
            WHERE organization_id = %s AND document_type = %s
            RETURNING id, organization_id, document_type, prefix, suffix,
                      current_number - 1 AS current_number,
                      padding_length, include_year, updated_at
            """,
            (now_utc(), organization_id, document_type.value),
        )
        if row is None:
            raise RuntimeError(f"Sequence missing for {document_type.value} in {organization_id}")
        return DocumentSequence.model_validate(row)

    def get_sequence(self, organization_id: UUID, document_type: DocumentType) -> DocumentSequence | None:
        row = self._db.execute_single(
            "SELECT * FROM document_sequences WHERE organization_id = %s AND document_type = %s",
            (organization_id, document_type.value),
        )
        return DocumentSequence.model_validate(row) if row else None

    def list_sequences(self, organization_id: UUID) -> list[DocumentSequence]:
        rows = self._db.execute(
            "SELECT * FROM document_sequences WHERE organization_id = %s ORDER BY document_type",
            (organization_id,),
        )
        return [DocumentSequence.model_validate(row) for row in rows]

    def update_sequence(self, organization_id: UUID, settings: SequenceSettings) -> DocumentSequence | None:
        """
        Apply numbering settings.

        Returns None when the update would move current_number backwards
        (checked in the same statement, so a concurrent creation cannot
        slip between check and write).
        """
        row = self._db.execute_single(
            """
            UPDATE document_sequences
            SET prefix = %s, suffix = %s, current_number = %s,
                padding_length = %s, include_year = %s, updated_at = %s
            WHERE organization_id = %s AND document_type = %s AND current_number <= %s
            RETURNING *
            """,
            (
                settings.prefix, settings.suffix, settings.current_number,
                settings.padding_length, settings.include_year, now_utc(),
                organization_id, settings.document_type.value, settings.current_number,
            ),
        )
        return DocumentSequence.model_validate(row) if row else None

    # =========================================================================
    # DOCUMENTS (quotes and invoices)
    # =========================================================================

    def insert_document(self, document_type: DocumentType, values: dict[str, Any]):
        """Insert a quote or invoice row. Raises on a duplicate number."""
        table, _, model = _DOCUMENT_TABLES[document_type]
        columns = sorted(values)
        try:
            row = self._db.execute_single(
                f"""
                INSERT INTO {table} ({", ".join(columns)})
                VALUES ({", ".join(["%s"] * len(columns))})
                RETURNING *
                """,
                tuple(values[c] for c in columns),
            )
        except UniqueViolation:
            raise DocumentValidationError(
                f"Number {values.get('number')} is already used; adjust the numbering settings"
            )
        return model.model_validate(row)

    def replace_items(
        self,
        document_type: DocumentType,
        document_id: UUID,
        items: list[dict[str, Any]],
    ) -> list[LineItem]:
        """Delete and re-insert a document's line items, keeping their order."""
        items_table = _DOCUMENT_TABLES[document_type][1]
        self._db.execute(f"DELETE FROM {items_table} WHERE document_id = %s", (document_id,))

        stored = []
        for position, item in enumerate(items):
            row = self._db.execute_single(
                f"""
                INSERT INTO {items_table} (
                    id, document_id, position, description, quantity, unit_price_cents,
                    vat_rate, subtotal_cents, vat_amount_cents, total_cents
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    uuid4(), document_id, position, item["description"], item["quantity"],
                    item["unit_price_cents"], item["vat_rate"], item["subtotal_cents"],
                    item["vat_amount_cents"], item["total_cents"],
                ),
            )
            stored.append(LineItem.model_validate(row))
        return stored

    def get_items(self, document_type: DocumentType, document_id: UUID) -> list[LineItem]:
        items_table = _DOCUMENT_TABLES[document_type][1]
        rows = self._db.execute(
            f"SELECT * FROM {items_table} WHERE document_id = %s ORDER BY position",
            (document_id,),
        )
        return [LineItem.model_validate(row) for row in rows]

    def _with_items(self, document_type: DocumentType, document):
        if document is not None:
            document.items = self.get_items(document_type, document.id)
        return document

    def get_document(
        self,
        document_type: DocumentType,
        organization_id: UUID,
        document_id: UUID,
        with_items: bool = True,
    ):
        """Active document owned by the organization, or None."""
        table, _, model = _DOCUMENT_TABLES[document_type]
        row = self._db.execute_single(
            f"SELECT * FROM {table} WHERE organization_id = %s AND id = %s AND {ACTIVE_ONLY}",
            (organization_id, document_id),
        )
        document = model.model_validate(row) if row else None
        return self._with_items(document_type, document) if with_items else document

    def get_document_unscoped(self, document_type: DocumentType, document_id: UUID):
        """
        Active document by id alone, for public pages.

        Callers must project the result through a public read model.
        """
        table, _, model = _DOCUMENT_TABLES[document_type]
        row = self._db.execute_single(
            f"SELECT * FROM {table} WHERE id = %s AND {ACTIVE_ONLY}",
            (document_id,),
        )
        return self._with_items(document_type, model.model_validate(row) if row else None)

    def list_documents(
        self,
        document_type: DocumentType,
        organization_id: UUID,
        status: str | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list:
        table, _, model = _DOCUMENT_TABLES[document_type]
        clauses = ["organization_id = %s", ACTIVE_ONLY]
        params: list[Any] = [organization_id]
        if status:
            clauses.append("status = %s")
            params.append(status)
        if search:
            clauses.append("(number ILIKE %s OR title ILIKE %s)")
            params.extend([f"%{search}%", f"%{search}%"])
        params.extend([limit, offset])

        rows = self._db.execute(
            f"""
            SELECT * FROM {table}
            WHERE {" AND ".join(clauses)}
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params),
        )
        return [model.model_validate(row) for row in rows]

    def update_document(
        self,
        document_type: DocumentType,
        organization_id: UUID,
        document_id: UUID,
        fields: dict[str, Any],
        expected_status: str,
    ):
        """Update columns only while the document is still in expected_status."""
        return self.transition(
            document_type, organization_id, document_id,
            from_statuses=(expected_status,), to_status=expected_status, fields=fields,
        )

    def transition(
        self,
        document_type: DocumentType,
        organization_id: UUID,
        document_id: UUID,
        from_statuses: tuple[str, ...],
        to_status: str,
        fields: dict[str, Any] | None = None,
    ):
        """
        Compare-and-swap status change.

        Returns the updated document, or None when the document is missing
        or its status is no longer one of from_statuses.
        """
        table, _, model = _DOCUMENT_TABLES[document_type]
        extra_sql, extra_params = _set_clause(document_type, fields or {})
        set_sql = "status = %s, updated_at = %s" + (f", {extra_sql}" if extra_sql else "")

        row = self._db.execute_single(
            f"""
            UPDATE {table}
            SET {set_sql}
            WHERE organization_id = %s AND id = %s AND status = ANY(%s) AND {ACTIVE_ONLY}
            RETURNING *
            """,
            (to_status, now_utc(), *extra_params, organization_id, document_id, list(from_statuses)),
        )
        return self._with_items(document_type, model.model_validate(row) if row else None)

    def soft_delete(self, document_type: DocumentType, organization_id: UUID, document_id: UUID) -> bool:
        table = _DOCUMENT_TABLES[document_type][0]
        rows = self._db.execute(
            f"""
            UPDATE {table} SET deleted_at = %s
            WHERE organization_id = %s AND id = %s AND {ACTIVE_ONLY}
            RETURNING id
            """,
            (now_utc(), organization_id, document_id),
        )
        return len(rows) > 0

    def list_deleted_documents(
        self,
        document_type: DocumentType,
        organization_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> list:
        """Soft-deleted documents, most recently deleted first."""
        table, _, model = _DOCUMENT_TABLES[document_type]
        rows = self._db.execute(
            f"""
            SELECT * FROM {table}
            WHERE organization_id = %s AND {DELETED_ONLY}
            ORDER BY deleted_at DESC
            LIMIT %s OFFSET %s
            """,
            (organization_id, limit, offset),
        )
        return [model.model_validate(row) for row in rows]

    def restore_document(self, document_type: DocumentType, organization_id: UUID, document_id: UUID):
        """Clear deleted_at. Number, status and amounts are untouched."""
        table, _, model = _DOCUMENT_TABLES[document_type]
        row = self._db.execute_single(
            f"""
            UPDATE {table} SET deleted_at = NULL, updated_at = %s
            WHERE organization_id = %s AND id = %s AND {DELETED_ONLY}
            RETURNING *
            """,
            (now_utc(), organization_id, document_id),
        )
        return model.model_validate(row) if row else None

    def increment_quote_views(self, quote_id: UUID) -> None:
        self._db.execute(
            f"UPDATE quotes SET view_count = view_count + 1 WHERE id = %s AND {ACTIVE_ONLY}",
            (quote_id,),
        )

    def list_overdue_invoices(self, today: date, limit: int = 500) -> list[Invoice]:
        """Sent invoices past their due date, across all organizations."""
        rows = self._db.execute(
            f"""
            SELECT * FROM invoices
            WHERE status = 'sent' AND due_date < %s AND {ACTIVE_ONLY}
            ORDER BY due_date
            LIMIT %s
            """,
            (today, limit),
        )
        return [Invoice.model_validate(row) for row in rows]

    def list_expired_quotes(self, today: date, limit: int = 500) -> list[Quote]:
        """Sent quotes past their validity date, across all organizations."""
        rows = self._db.execute(
            f"""
            SELECT * FROM quotes
            WHERE status = 'sent' AND valid_until < %s AND {ACTIVE_ONLY}
            ORDER BY valid_until
            LIMIT %s
            """,
            (today, limit),
        )
        return [Quote.model_validate(row) for row in rows]

    def list_invoices_for_export(
        self,
        organization_id: UUID,
        start: date | None,
        end: date | None,
        status: str | None,
    ) -> list[dict[str, Any]]:
        """Invoice rows with client name, client email and amount paid, oldest first."""
        clauses = ["i.organization_id = %s", active_only("i")]
        params: list[Any] = [organization_id]
        if start:
            clauses.append("i.issue_date >= %s")
            params.append(start)
        if end:
            clauses.append("i.issue_date <= %s")
            params.append(end)
        if status:
            clauses.append("i.status = %s")
            params.append(status)

        return self._db.execute(
            f"""
            SELECT i.*,
                   COALESCE(co.name, NULLIF(TRIM(CONCAT(c.first_name, ' ', c.last_name)), '')) AS client_name,
                   COALESCE(c.email, co.email) AS client_email,
                   (SELECT COALESCE(SUM(p.amount_cents), 0) FROM payments p WHERE p.invoice_id = i.id) AS paid_cents
            FROM invoices i
            LEFT JOIN contacts c ON c.id = i.contact_id AND c.organization_id = i.organization_id
            LEFT JOIN companies co ON co.id = i.company_id AND co.organization_id = i.organization_id
            WHERE {" AND ".join(clauses)}
            ORDER BY i.issue_date, i.number
            """,
            tuple(params),
        )

    # =========================================================================
    # PAYMENTS AND WEBHOOK LEDGER
    # =========================================================================

    def record_webhook_event(self, reference: str, event_type: str) -> bool:
        """
        Claim a webhook reference in the idempotency ledger.

        Returns True if this call recorded it, False if it was already
        processed. Must run in the same transaction as the writes it guards.
        """
        rows = self._db.execute(
            """
            INSERT INTO processed_webhook_events (reference, event_type, processed_at)
            VALUES (%s, %s, %s)
            ON CONFLICT (reference) DO NOTHING
            RETURNING reference
            """,
            (reference, event_type, now_utc()),
        )
        return len(rows) > 0

    def insert_payment(self, values: dict[str, Any]) -> Payment | None:
        """Insert a payment. None if one with the same reference exists."""
        columns = sorted(values)
        row = self._db.execute_single(
            f"""
            INSERT INTO payments ({", ".join(columns)})
            VALUES ({", ".join(["%s"] * len(columns))})
            ON CONFLICT (reference) DO NOTHING
            RETURNING *
            """,
            tuple(values[c] for c in columns),
        )
        return Payment.model_validate(row) if row else None

    def get_payment_by_reference(self, reference: str) -> Payment | None:
        row = self._db.execute_single("SELECT * FROM payments WHERE reference = %s", (reference,))
        return Payment.model_validate(row) if row else None

    def get_payment_by_payment_intent(self, payment_intent_id: str) -> Payment | None:
        row = self._db.execute_single(
            "SELECT * FROM payments WHERE stripe_payment_intent_id = %s ORDER BY paid_at DESC LIMIT 1",
            (payment_intent_id,),
        )
        return Payment.model_validate(row) if row else None

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    def insert_notification(self, data: NotificationCreate) -> Notification:
        row = self._db.execute_single(
            """
            INSERT INTO notifications (
                id, organization_id, user_id, type, title, body,
                resource_type, resource_id, metadata, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                uuid4(), data.organization_id, data.user_id, data.type.value, data.title,
                data.body, data.resource_type, data.resource_id, Json(data.metadata), now_utc(),
            ),
        )
        return Notification.model_validate(row)

    def list_notifications(
        self,
        organization_id: UUID,
        user_id: UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        unread_sql = " AND read_at IS NULL" if unread_only else ""
        rows = self._db.execute(
            f"""
            SELECT * FROM notifications
            WHERE organization_id = %s AND user_id = %s{unread_sql}
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (organization_id, user_id, limit),
        )
        return [Notification.model_validate(row) for row in rows]

    def mark_notification_read(self, organization_id: UUID, user_id: UUID, notification_id: UUID) -> bool:
        rows = self._db.execute(
            """
            UPDATE notifications SET read_at = %s
            WHERE organization_id = %s AND user_id = %s AND id = %s AND read_at IS NULL
            RETURNING id
            """,
            (now_utc(), organization_id, user_id, notification_id),
        )
        return len(rows) > 0
