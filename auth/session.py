"""Session token validation.

Sessions live in Valkey under session:<token> with a TTL matching their
expiry. The login service writes them; the billing API reads them to
resolve the acting user and their organization.
"""

import secrets
from datetime import timedelta
from uuid import UUID

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.types import Session
from auth.exceptions import SessionExpiredError
from utils.timezone import now_utc, parse_iso


def _session_payload(session: Session) -> dict:
    return {
        "user_id": str(session.user_id),
        "organization_id": str(session.organization_id) if session.organization_id else None,
        "email": session.email,
        "created_at": session.created_at.isoformat(),
        "expires_at": session.expires_at.isoformat(),
        "last_activity_at": session.last_activity_at.isoformat(),
    }


class SessionManager:
    """Session token lifecycle management.

    Supports automatic session extension on activity.
    """

    KEY_PREFIX = "session:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config

    def _key(self, token: str) -> str:
        return f"{self.KEY_PREFIX}{token}"

    def _store(self, session: Session) -> None:
        self._valkey.set_json(
            self._key(session.token),
            _session_payload(session),
            expire_seconds=self._config.session_expiry_hours * 3600,
        )

    def create_session(
        self,
        user_id: UUID,
        organization_id: UUID | None,
        email: str | None = None,
    ) -> Session:
        """Create a session for a user in an organization."""
        now = now_utc()
        session = Session(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            organization_id=organization_id,
            email=email,
            created_at=now,
            expires_at=now + timedelta(hours=self._config.session_expiry_hours),
            last_activity_at=now,
        )
        self._store(session)
        return session

    def validate_session(self, token: str) -> Session:
        """Validate session token and return session.

        Raises SessionExpiredError if token invalid or expired.
        """
        data = self._valkey.get_json(self._key(token))

        if data is None:
            raise SessionExpiredError("Session not found or expired")

        organization_id = data.get("organization_id")
        session = Session(
            token=token,
            user_id=UUID(data["user_id"]),
            organization_id=UUID(organization_id) if organization_id else None,
            email=data.get("email"),
            created_at=parse_iso(data["created_at"]),
            expires_at=parse_iso(data["expires_at"]),
            last_activity_at=parse_iso(data["last_activity_at"]),
        )

        if now_utc() > session.expires_at:
            self._valkey.delete(self._key(token))
            raise SessionExpiredError("Session expired")

        if self._config.session_extend_on_activity:
            session = self._extend_session(session)
        return session

    def _extend_session(self, session: Session) -> Session:
        now = now_utc()
        updated = session.model_copy(update={
            "expires_at": now + timedelta(hours=self._config.session_expiry_hours),
            "last_activity_at": now,
        })
        self._store(updated)
        return updated

    def revoke_session(self, token: str) -> None:
        """Safe to call with nonexistent token."""
        self._valkey.delete(self._key(token))
