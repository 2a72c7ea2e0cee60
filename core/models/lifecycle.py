"""
Soft-delete lifecycle.

Rows are never hard-deleted by the billing engine; deleted_at marks them
invisible. Every read that should hide deleted rows goes through
ACTIVE_ONLY so the predicate lives in one place.
"""

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel

ACTIVE_ONLY = "deleted_at IS NULL"
DELETED_ONLY = "deleted_at IS NOT NULL"


def active_only(alias: str | None = None) -> str:
    """ACTIVE_ONLY predicate, optionally qualified with a table alias."""
    return f"{alias}.{ACTIVE_ONLY}" if alias else ACTIVE_ONLY


@dataclass(frozen=True)
class Active:
    pass


@dataclass(frozen=True)
class Deleted:
    at: datetime


Lifecycle = Active | Deleted


class SoftDeletable(BaseModel):
    """Mixin for entities carrying a deleted_at timestamp."""

    deleted_at: datetime | None = None

    @property
    def lifecycle(self) -> Lifecycle:
        if self.deleted_at is None:
            return Active()
        return Deleted(at=self.deleted_at)

    @property
    def is_active(self) -> bool:
        return isinstance(self.lifecycle, Active)
