"""Failure taxonomy shared by the token, query and decode paths.

The request handler is the only place these become HTTP statuses
(see ``terms_gateway.main``).
"""


class GatewayError(Exception):
    """Base class. ``query`` is the statement that triggered the failure, if any."""

    def __init__(self, message: str, query: str | None = None):
        super().__init__(message)
        self.message = message
        self.query = query

    def __str__(self) -> str:
        if self.query:
            return f"{self.message}, query: {self.query}"
        return self.message


class AuthError(GatewayError):
    """Signing key, assertion or token exchange failure. Never retried."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TransportError(GatewayError):
    """The outbound request could not be sent at all."""


class UpstreamRejection(GatewayError):
    """BigQuery answered with a non-success status."""

    def __init__(self, message: str, status_code: int, body: str, query: str | None = None):
        super().__init__(message, query=query)
        self.status_code = status_code
        self.body = body


class DecodeError(GatewayError):
    """Response body is not JSON or lacks the structure we walk."""


class RangeError(GatewayError):
    """Caller supplied date bounds that are unparsable or out of order."""


class CacheError(GatewayError):
    """Key-value store read/write failure. Never leaves the credential cache."""
