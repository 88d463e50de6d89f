"""
Error taxonomy for the bridge.

Transient errors (TransportFault, NetworkError, ProtocolError,
AutomationSinkError) are recovered or logged where they happen. Fatal
errors (ReconnectExhausted, AuthError) reach the operator and need manual
intervention. RequestError marks a programming mistake and is never retried.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""

    fatal: bool = False


class TransportFault(BridgeError):
    """The WebSocket dropped, closed early, or could not be opened."""

    def __init__(self, message: str, code: int | None = None, reason: str = ""):
        super().__init__(message)
        self.code = code
        self.reason = reason


class ReconnectExhausted(TransportFault):
    """Every reconnect attempt failed. Automatic recovery has stopped."""

    fatal = True

    def __init__(self, attempts: int, last_error: BaseException | None = None):
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"Gave up after {attempts} reconnect attempts{detail}")
        self.attempts = attempts
        self.last_error = last_error


class AuthError(BridgeError):
    """Refresh token rejected, or a request was unauthorized twice in a row."""

    fatal = True


class NetworkError(BridgeError):
    """An HTTP request could not be completed."""


class RequestError(BridgeError):
    """Unknown endpoint kind, unsupported method or malformed body."""


class ProtocolError(BridgeError):
    """A message could not be parsed or has an unexpected shape."""


class AutomationSinkError(BridgeError):
    """The automation backend (OBS) rejected or could not run a request."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code
