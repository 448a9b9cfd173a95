"""Exception hierarchy shared by the ledger client and the whitelist store.

Every error carries a human readable ``message`` which the HTTP layer passes
straight to the UI.  Remote failures derive from :class:`RpcError` so callers
that only care about "the fetch failed" can catch a single class.
"""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for all errors raised by this project."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidAddress(MonitorError):
    def __init__(self, address: str) -> None:
        super().__init__(
            f'Invalid XRPL address: "{address}". Valid addresses start with '
            "'r' and are 25-35 characters long."
        )
        self.address = address


class RpcError(MonitorError):
    """A request reached the network layer and failed."""

    def __init__(self, message: str, server: str) -> None:
        super().__init__(message)
        self.server = server


class NetworkError(RpcError):
    def __init__(self, server: str, detail: str = "") -> None:
        msg = (
            f"Network error: Unable to connect to XRPL server at {server}. "
            "Please check your internet connection."
        )
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg, server)


class ServerError(RpcError):
    def __init__(self, server: str, status_code: int, reason: str = "") -> None:
        msg = f"XRPL server error ({status_code}) from {server}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg, server)
        self.status_code = status_code
        self.reason = reason


class ApiError(RpcError):
    """The node understood the request and rejected it."""

    def __init__(self, server: str, error: str, error_message: str | None = None) -> None:
        super().__init__(f"XRPL API error: {error_message or error}", server)
        self.error = error
        self.error_message = error_message


class MalformedResponse(RpcError):
    def __init__(self, server: str, detail: str) -> None:
        super().__init__(f"Invalid response from XRPL server {server}: {detail}", server)
        self.detail = detail


class DuplicateToken(MonitorError):
    def __init__(self, currency: str, issuer: str) -> None:
        super().__init__(f"Token {currency} issued by {issuer} is already in the monitoring list")
        self.currency = currency
        self.issuer = issuer


class TokenNotFound(MonitorError):
    def __init__(self, currency: str, issuer: str) -> None:
        super().__init__(f"Token {currency} issued by {issuer} not found")
        self.currency = currency
        self.issuer = issuer


class PersistenceError(MonitorError):
    def __init__(self, path: str, detail: str = "") -> None:
        msg = f"Failed to save token configuration to {path}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
        self.path = path
