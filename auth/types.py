"""Pydantic models for auth domain."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class Session(BaseModel):
    """
    An active user session.

    organization_id is resolved once at login; request handlers receive it
    from here and pass it explicitly into every billing operation.
    """

    token: str = Field(..., description="Session token (opaque string)")
    user_id: UUID
    organization_id: UUID | None = None
    email: str | None = None
    created_at: datetime
    expires_at: datetime
    last_activity_at: datetime
