"""Authentication configuration."""

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    """
    Session validation and throttling configuration.

    Sessions are issued by the login service; this side only validates and
    extends them.
    """

    session_cookie_name: str = Field(
        default="session_token",
        description="Cookie carrying the opaque session token",
    )
    session_expiry_hours: int = Field(
        default=2160,  # 90 days
        description="Session lifetime in hours",
        ge=1,
        le=2160,
    )
    session_extend_on_activity: bool = Field(
        default=True,
        description="Whether to extend session expiry on activity",
    )
