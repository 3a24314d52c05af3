"""Failure taxonomy for the hub bridge.

Only conditions that callers are expected to react to get their own class;
"device not found" is deliberately absent, it is returned as a
``UserFacingMessage`` result and never raised.
"""
from typing import Optional


class BridgeError(Exception):
    pass


class NotConfiguredError(BridgeError):
    def __init__(self, message: str = "Home Assistant not configured"):
        super().__init__(message)


class ConfigurationError(BridgeError):
    """Hub unreachable, bad URL or failed liveness probe. Never retried."""


class AuthenticationError(BridgeError):
    """Credential rejected by the hub. Requires a new configuration."""


class TransientConnectionError(BridgeError):
    """Timeout or socket failure; the reconnection controller retries these."""


class ConnectionLostError(TransientConnectionError):
    def __init__(self, message: str = "connection lost"):
        super().__init__(message)


class HttpError(BridgeError):
    def __init__(self, status: int, body: str):
        super().__init__(f"HA API error {status}: {body}")
        self.status = status
        self.body = body


class ServiceInvocationError(HttpError):
    pass


class RequestFailedError(BridgeError):
    """A correlated duplex request answered with ``success: false``."""

    def __init__(self, request_id: int, code: Optional[str], message: Optional[str]):
        super().__init__(f"request {request_id} failed: {code or 'unknown_error'} ({message or 'Request failed'})")
        self.request_id = request_id
        self.code = code
