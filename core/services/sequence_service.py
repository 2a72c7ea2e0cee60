"""
Document numbering.

Each organization has one sequence per document type. Numbers are issued by
a single UPDATE ... RETURNING inside the creating transaction, so two
concurrent creations for the same organization and type serialize on the
sequence row and can never share a number.
"""

import logging
from uuid import UUID

from core.audit import AuditAction, AuditLogger, compute_changes
from core.database import BillingDatabase
from core.exceptions import DocumentValidationError
from core.models import DocumentSequence, DocumentType, SequenceSettings
from core.models.sequence import DEFAULT_PADDING, DEFAULT_PREFIXES
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


def format_document_number(
    counter: int,
    prefix: str = "",
    suffix: str = "",
    padding_length: int = DEFAULT_PADDING,
    include_year: bool = True,
    year: int | None = None,
) -> str:
    """
    Render a document number.

    Format: prefix ["-" year] "-" zero-padded counter, then suffix appended
    as-is. An empty prefix is dropped together with its separator.

        >>> format_document_number(42, prefix="F", year=2025)
        'F-2025-0042'
        >>> format_document_number(7, include_year=False, padding_length=3)
        '007'
    """
    parts = []
    if prefix:
        parts.append(prefix)
    if include_year:
        parts.append(str(year if year is not None else now_utc().year))
    parts.append(str(counter).zfill(padding_length))
    return "-".join(parts) + (suffix or "")


def default_sequence(organization_id: UUID, document_type: DocumentType) -> dict:
    """Settings a sequence gets when it is created on first use."""
    return {
        "organization_id": organization_id,
        "document_type": document_type,
        "prefix": DEFAULT_PREFIXES[document_type],
        "suffix": "",
        "current_number": 1,
        "padding_length": DEFAULT_PADDING,
        "include_year": True,
    }


class SequenceService:
    """Service for document numbering."""

    def __init__(self, db: BillingDatabase, audit: AuditLogger):
        self.db = db
        self.audit = audit

    def next_number(
        self,
        organization_id: UUID,
        document_type: DocumentType,
        db: BillingDatabase | None = None,
    ) -> str:
        """
        Consume and return the next number.

        Pass the creating transaction as db so the number is only consumed
        if the document is actually inserted. Store failures propagate.
        """
        db = db or self.db
        db.ensure_sequence(
            organization_id,
            document_type,
            prefix=DEFAULT_PREFIXES[document_type],
            padding_length=DEFAULT_PADDING,
        )
        sequence = db.advance_sequence(organization_id, document_type)
        number = format_document_number(
            sequence.current_number,
            prefix=sequence.prefix,
            suffix=sequence.suffix,
            padding_length=sequence.padding_length,
            include_year=sequence.include_year,
        )
        logger.info("Issued %s number %s for org %s", document_type.value, number, organization_id)
        return number

    def preview(self, organization_id: UUID, document_type: DocumentType) -> str:
        """The number the next document would get, without consuming it."""
        sequence = self.db.get_sequence(organization_id, document_type)
        settings = sequence.model_dump() if sequence else default_sequence(organization_id, document_type)
        return format_document_number(
            settings["current_number"],
            prefix=settings["prefix"],
            suffix=settings["suffix"],
            padding_length=settings["padding_length"],
            include_year=settings["include_year"],
        )

    def list_sequences(self, organization_id: UUID) -> list[DocumentSequence]:
        """Stored sequences, one per document type that has been used or configured."""
        return self.db.list_sequences(organization_id)

    def update_sequence(
        self,
        organization_id: UUID,
        settings: SequenceSettings,
        user_id: UUID | None = None,
    ) -> DocumentSequence:
        """
        Change prefix, suffix, padding, year inclusion or jump the counter ahead.

        Raises:
            DocumentValidationError: If current_number would move backwards
        """
        with self.db.transaction() as tx:
            tx.ensure_sequence(
                organization_id,
                settings.document_type,
                prefix=DEFAULT_PREFIXES[settings.document_type],
                padding_length=DEFAULT_PADDING,
            )
            before = tx.get_sequence(organization_id, settings.document_type)
            updated = tx.update_sequence(organization_id, settings)
            if updated is None:
                raise DocumentValidationError(
                    f"Next number cannot go below {before.current_number}; "
                    "numbers already issued are never reused"
                )

        self.audit.log_change(
            organization_id=organization_id,
            entity_type="sequence",
            entity_id=updated.id,
            action=AuditAction.UPDATE,
            changes=compute_changes(
                before.model_dump(mode="json"),
                updated.model_dump(mode="json"),
            ),
            user_id=user_id,
        )
        logger.info("Updated %s sequence for org %s", settings.document_type.value, organization_id)
        return updated
