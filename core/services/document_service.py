"""
Shared behaviour for quotes and invoices.

Creation runs as one transaction: quota reservation first, then the
sequence number, then the document and its line items. A quota denial
therefore never burns a number, and a failed insert rolls back both the
reservation and the number.
"""

import logging
from datetime import date
from typing import Any
from uuid import UUID, uuid4

from clients.email_client import EmailGatewayClient
from core.audit import AuditAction, AuditLogger, compute_changes, transition_changes
from core.config import BillingConfig
from core.database import BillingDatabase
from core.event_bus import EventBus
from core.exceptions import DocumentValidationError, InvalidTransitionError, NotFoundError
from core.models import DocumentType, DocumentUpdate, LineItemInput
from core.money import calculate_totals, format_eur
from core.plans import QuotaResource
from core.services.quota_service import QuotaService
from core.services.sequence_service import SequenceService
from core.state_machine import require_editable
from utils.timezone import now_utc, today_utc

logger = logging.getLogger(__name__)


def line_item_rows(items: list[LineItemInput]) -> tuple[Any, list[dict[str, Any]]]:
    """Compute totals and the rows to store for each line item."""
    totals = calculate_totals(items)
    rows = [
        {
            "description": item.description,
            "quantity": item.quantity,
            "unit_price_cents": item.unit_price_cents,
            "vat_rate": item.vat_rate,
            "subtotal_cents": line.subtotal_cents,
            "vat_amount_cents": line.vat_amount_cents,
            "total_cents": line.total_cents,
        }
        for item, line in zip(items, totals.lines)
    ]
    return totals, rows


class DocumentService:
    """Base for QuoteService and InvoiceService."""

    document_type: DocumentType
    quota_resource: QuotaResource
    # Column holding the date that ends the document's useful life
    term_column: str
    public_path: str

    def __init__(
        self,
        db: BillingDatabase,
        audit: AuditLogger,
        event_bus: EventBus,
        quotas: QuotaService,
        sequences: SequenceService,
        email: EmailGatewayClient | None = None,
        config: BillingConfig | None = None,
    ):
        self.db = db
        self.audit = audit
        self.event_bus = event_bus
        self.quotas = quotas
        self.sequences = sequences
        self.email = email
        self.config = config or BillingConfig()

    @property
    def _name(self) -> str:
        return self.document_type.value

    def _default_term(self, issue_date: date) -> date:
        raise NotImplementedError

    def _require_transition(self, current, target) -> None:
        raise NotImplementedError

    def _create(
        self,
        organization_id: UUID,
        user_id: UUID | None,
        data,
        term_date: date | None,
        extra: dict[str, Any] | None = None,
    ):
        totals, item_rows = line_item_rows(data.items)
        issue_date = data.issue_date or today_utc()
        now = now_utc()

        with self.db.transaction() as tx:
            self.quotas.require(organization_id, self.quota_resource, db=tx)
            number = self.sequences.next_number(organization_id, self.document_type, db=tx)

            values = {
                "id": uuid4(),
                "organization_id": organization_id,
                "created_by_id": user_id,
                "contact_id": data.contact_id,
                "company_id": data.company_id,
                "number": number,
                "title": data.title,
                "notes": data.notes,
                "status": "draft",
                "currency": "EUR",
                "subtotal_cents": totals.subtotal_cents,
                "vat_amount_cents": totals.vat_amount_cents,
                "total_cents": totals.total_cents,
                "issue_date": issue_date,
                self.term_column: term_date or self._default_term(issue_date),
                "created_at": now,
                "updated_at": now,
            }
            values.update(extra or {})

            document = tx.insert_document(self.document_type, values)
            document.items = tx.replace_items(self.document_type, document.id, item_rows)

        self.audit.log_change(
            organization_id=organization_id,
            entity_type=self._name,
            entity_id=document.id,
            action=AuditAction.CREATE,
            changes={
                "created": {
                    "number": number,
                    "subtotal_cents": totals.subtotal_cents,
                    "vat_amount_cents": totals.vat_amount_cents,
                    "total_cents": totals.total_cents,
                    **{k: str(v) for k, v in (extra or {}).items()},
                }
            },
            user_id=user_id,
        )
        logger.info("Created %s %s (%s) for org %s", self._name, number, document.id, organization_id)
        return document

    def get_by_id(self, organization_id: UUID, document_id: UUID):
        """
        Get a document with its line items.

        Returns:
            Document if found, owned by the organization and not deleted;
            None otherwise.
        """
        return self.db.get_document(self.document_type, organization_id, document_id)

    def _get_or_raise(self, organization_id: UUID, document_id: UUID, db: BillingDatabase | None = None):
        document = (db or self.db).get_document(self.document_type, organization_id, document_id)
        if document is None:
            raise NotFoundError(self._name, document_id)
        return document

    def list_documents(
        self,
        organization_id: UUID,
        status: str | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list:
        """Documents newest first, optionally filtered by status or number/title search."""
        return self.db.list_documents(
            self.document_type, organization_id,
            status=status, search=search, limit=limit, offset=offset,
        )

    def update_draft(self, organization_id: UUID, document_id: UUID, data: DocumentUpdate, user_id: UUID | None = None):
        """
        Edit a draft. New items replace the old ones and totals are recomputed.

        Raises:
            NotFoundError: Document missing
            DocumentImmutableError: Document is no longer a draft
            DocumentValidationError: Edit would leave the document without a client
        """
        current = self._get_or_raise(organization_id, document_id)
        require_editable(self._name, current.status)

        fields = data.model_dump(
            exclude_unset=True,
            exclude={"items", "valid_until", "due_date"},
        )
        contact_id = fields.get("contact_id", current.contact_id)
        company_id = fields.get("company_id", current.company_id)
        if contact_id is None and company_id is None:
            raise DocumentValidationError("A contact or a company is required")
        term = getattr(data, self.term_column)
        if self.term_column in data.model_fields_set:
            fields[self.term_column] = term

        item_rows = None
        if data.items is not None:
            totals, item_rows = line_item_rows(data.items)
            fields.update(
                subtotal_cents=totals.subtotal_cents,
                vat_amount_cents=totals.vat_amount_cents,
                total_cents=totals.total_cents,
            )

        with self.db.transaction() as tx:
            updated = tx.update_document(
                self.document_type, organization_id, document_id, fields, expected_status="draft"
            )
            if updated is None:
                # Sent between our read and the update
                latest = self._get_or_raise(organization_id, document_id, db=tx)
                require_editable(self._name, latest.status)
                raise NotFoundError(self._name, document_id)
            if item_rows is not None:
                updated.items = tx.replace_items(self.document_type, document_id, item_rows)

        self.audit.log_change(
            organization_id=organization_id,
            entity_type=self._name,
            entity_id=document_id,
            action=AuditAction.UPDATE,
            changes=compute_changes(
                current.model_dump(mode="json", exclude={"items"}),
                updated.model_dump(mode="json", exclude={"items"}),
            ),
            user_id=user_id,
        )
        return updated

    def _apply_transition(
        self,
        organization_id: UUID,
        document_id: UUID,
        target,
        fields: dict[str, Any] | None = None,
        user_id: UUID | None = None,
        actor: str | None = None,
        from_statuses: tuple | None = None,
        db: BillingDatabase | None = None,
        current=None,
        log_audit: bool = True,
    ):
        """
        Move a document to target with a compare-and-swap on its status.

        Legality is checked against the state machine unless from_statuses
        is given explicitly. Losing a race to a concurrent transition
        raises InvalidTransitionError from the status that won.

        Inside a caller's transaction pass log_audit=False and call
        _audit_transition once it commits; the audit log writes outside it.

        Returns:
            (previous document, updated document)
        """
        db = db or self.db
        current = current or self._get_or_raise(organization_id, document_id, db=db)
        if from_statuses is None:
            self._require_transition(current.status, target)
        elif current.status not in from_statuses:
            raise InvalidTransitionError(self._name, current.status.value, target.value)

        updated = db.transition(
            self.document_type, organization_id, document_id,
            from_statuses=(current.status.value,),
            to_status=target.value,
            fields=fields,
        )
        if updated is None:
            latest = self._get_or_raise(organization_id, document_id, db=db)
            raise InvalidTransitionError(self._name, latest.status.value, target.value)

        if log_audit:
            self._audit_transition(current, target, fields, user_id=user_id, actor=actor)
        logger.info(
            "%s %s: %s -> %s", self._name.capitalize(), current.number, current.status.value, target.value
        )
        return current, updated

    def _audit_transition(self, current, target, fields=None, user_id: UUID | None = None, actor: str | None = None) -> None:
        self.audit.log_change(
            organization_id=current.organization_id,
            entity_type=self._name,
            entity_id=current.id,
            action=AuditAction.TRANSITION,
            changes=transition_changes(
                current.status.value, target.value,
                **{k: str(v) for k, v in (fields or {}).items()},
            ),
            user_id=user_id,
            actor=actor,
        )

    def _deliver(self, organization_id: UUID, document, recipient_email: str | None, message: str | None) -> str:
        """Email the document's public link. Returns the recipient address."""
        if self.email is None:
            raise DocumentValidationError("Email delivery is not configured")

        recipient = recipient_email or self.db.get_client_email(
            organization_id, document.contact_id, document.company_id
        )
        if not recipient:
            raise DocumentValidationError(
                f"No email address for this {self._name}'s client; provide a recipient"
            )

        org = self.db.get_organization(organization_id)
        self.email.send_document(
            to=recipient,
            document_type=self._name,
            document_number=document.number,
            organization_name=org.name if org else "",
            public_url=f"{self.config.app_base_url.rstrip('/')}/{self.public_path}/{document.id}",
            total_display=format_eur(document.total_cents),
            message=message,
        )
        return recipient

    def delete(self, organization_id: UUID, document_id: UUID, user_id: UUID | None = None) -> bool:
        """
        Soft-delete a document. The row is kept and hidden from reads.

        Returns:
            True if deleted, False if not found.
        """
        current = self.db.get_document(self.document_type, organization_id, document_id, with_items=False)
        if current is None:
            return False

        deleted = self.db.soft_delete(self.document_type, organization_id, document_id)
        if deleted:
            self.audit.log_change(
                organization_id=organization_id,
                entity_type=self._name,
                entity_id=document_id,
                action=AuditAction.DELETE,
                changes={"deleted": current.model_dump(mode="json", exclude={"items"})},
                user_id=user_id,
            )
        return deleted

    def list_trash(self, organization_id: UUID, limit: int = 50, offset: int = 0) -> list:
        return self.db.list_deleted_documents(self.document_type, organization_id, limit=limit, offset=offset)

    def restore(self, organization_id: UUID, document_id: UUID, user_id: UUID | None = None):
        """
        Bring a soft-deleted document back as it was.

        The document keeps its number and status; no quota or sequence
        number is consumed.

        Raises:
            NotFoundError: Document missing or not deleted
        """
        restored = self.db.restore_document(self.document_type, organization_id, document_id)
        if restored is None:
            raise NotFoundError(self._name, document_id)

        self.audit.log_change(
            organization_id=organization_id,
            entity_type=self._name,
            entity_id=document_id,
            action=AuditAction.RESTORE,
            changes={"restored": {"number": restored.number, "status": restored.status.value}},
            user_id=user_id,
        )
        logger.info("Restored %s %s for org %s", self._name, restored.number, organization_id)
        return restored