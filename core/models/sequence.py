"""Document numbering models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class DocumentType(str, Enum):
    QUOTE = "quote"
    INVOICE = "invoice"


DEFAULT_PREFIXES = {
    DocumentType.QUOTE: "D",
    DocumentType.INVOICE: "F",
}
DEFAULT_PADDING = 4


class DocumentSequence(BaseModel):
    """
    Numbering state for one organization and document type.

    current_number is the next number to issue. It only ever increases.
    """

    id: UUID
    organization_id: UUID
    document_type: DocumentType
    prefix: str = ""
    suffix: str = ""
    current_number: int = 1
    padding_length: int = DEFAULT_PADDING
    include_year: bool = True
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class SequenceSettings(BaseModel):
    """Settings submitted from the numbering configuration screen."""

    document_type: DocumentType
    prefix: str = Field("", max_length=20)
    suffix: str = Field("", max_length=20)
    current_number: int = Field(1, ge=1)
    padding_length: int = Field(DEFAULT_PADDING, ge=1, le=8)
    include_year: bool = True
