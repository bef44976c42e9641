"""Session validation against the shared session store.

Sessions are created, extended and revoked by the account service. Billing
only reads them: the token from the session_token cookie is looked up in
Valkey under the same key the account service writes.
"""

import json
import logging
from typing import Protocol
from uuid import UUID

from clients.valkey_client import ValkeyClient
from auth.types import Session
from auth.exceptions import SessionExpiredError
from utils.timezone import now_utc, parse_iso

logger = logging.getLogger(__name__)


class SessionValidator(Protocol):
    def validate_session(self, token: str) -> Session:
        """Raises SessionExpiredError for unknown or expired tokens."""
        ...


class ValkeySessionValidator:
    """Read-only view of the session store."""

    KEY_PREFIX = "session:"

    def __init__(self, valkey: ValkeyClient):
        self._valkey = valkey

    def _key(self, token: str) -> str:
        return f"{self.KEY_PREFIX}{token}"

    def validate_session(self, token: str) -> Session:
        """Return the session for token.

        Raises SessionExpiredError if the token is unknown, unreadable or
        past its expiry.
        """
        raw = self._valkey.get(self._key(token))
        if raw is None:
            raise SessionExpiredError("Session not found or expired")

        try:
            data = json.loads(raw)
            session = Session(
                token=token,
                user_id=UUID(data["user_id"]),
                created_at=parse_iso(data["created_at"]),
                expires_at=parse_iso(data["expires_at"]),
                last_activity_at=parse_iso(data["last_activity_at"]),
            )
        except (ValueError, KeyError, TypeError):
            logger.warning("Unreadable session record rejected")
            raise SessionExpiredError("Session not found or expired")

        # Valkey TTL normally removes these first.
        if now_utc() > session.expires_at:
            raise SessionExpiredError("Session expired")

        return session
