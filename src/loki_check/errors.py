"""Typed failures raised by the ingestion verifier."""

from typing import Optional


class VerificationError(Exception):
    """Base class for everything IngestionVerifier raises."""


class BackendUnreachable(VerificationError):
    """Every attempt failed at the transport level (refused, reset, timed out)."""

    def __init__(self, url: str, attempts: int, reason: str = ""):
        self.url = url
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"Loki unreachable at {url} after {attempts} attempt(s)"
            + (f": {reason}" if reason else "")
        )


class BackendError(VerificationError):
    """Every attempt got a response, but never an HTTP 200."""

    def __init__(self, status_code: int, url: str, attempts: int, body: str = ""):
        self.status_code = status_code
        self.url = url
        self.attempts = attempts
        self.body = body[:300]
        super().__init__(
            f"Loki returned HTTP {status_code} after {attempts} attempt(s): {self.body}"
        )


class MalformedResponse(VerificationError):
    """The body is not JSON or does not look like a query_range envelope."""

    def __init__(self, reason: str, body: Optional[str] = None):
        self.reason = reason
        self.body = body[:300] if body is not None else None
        super().__init__(f"Malformed Loki response: {reason}")


class Cancelled(VerificationError):
    """The caller's cancel event fired or its deadline passed."""

    def __init__(self, attempts: int, reason: str = "cancelled"):
        self.attempts = attempts
        self.reason = reason
        super().__init__(f"Verification {reason} after {attempts} attempt(s)")
