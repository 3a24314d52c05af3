"""Authentication handshake for the hub's duplex connection.

The hub speaks first with ``auth_required``; we answer with the token and
wait for ``auth_ok`` or ``auth_invalid``. Nothing else is allowed through
until that exchange completes. The object is pure protocol state: the
connection owner does the I/O and the timing.
"""
import logging
from enum import Enum
from typing import Any, Dict, Optional
from .errors import AuthenticationError

log = logging.getLogger("ha")


class HandshakeState(str, Enum):
    AWAITING_CHALLENGE = "awaiting_challenge"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


class Handshake:
    def __init__(self, token: str):
        self._token = token
        self.state = HandshakeState.AWAITING_CHALLENGE

    @property
    def authenticated(self) -> bool:
        return self.state is HandshakeState.AUTHENTICATED

    @property
    def finished(self) -> bool:
        return self.state in (HandshakeState.AUTHENTICATED, HandshakeState.REJECTED)

    def receive(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Advance on one inbound message; returns the reply to send, if any.

        Raises ``AuthenticationError`` when the hub rejects the token.
        """
        if self.finished:
            return None

        kind = message.get("type")
        if kind == "auth_required":
            self.state = HandshakeState.AUTHENTICATING
            return {"type": "auth", "access_token": self._token}

        if kind == "auth_ok" and self.state is HandshakeState.AUTHENTICATING:
            self.state = HandshakeState.AUTHENTICATED
            return None

        if kind == "auth_invalid":
            self.state = HandshakeState.REJECTED
            raise AuthenticationError(message.get("message") or "Invalid authentication")

        log.warning("Ignoring %r while %s", kind, self.state.value)
        return None
