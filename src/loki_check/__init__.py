from loki_check.errors import (
    BackendError,
    BackendUnreachable,
    Cancelled,
    MalformedResponse,
    VerificationError,
)
from loki_check.logql import build_logql, build_selector, line_filter
from loki_check.schemas.logs import VerificationOutcome
from loki_check.verifier import IngestionVerifier, contains, regex_search

__all__ = [
    "IngestionVerifier",
    "VerificationOutcome",
    "VerificationError",
    "BackendUnreachable",
    "BackendError",
    "MalformedResponse",
    "Cancelled",
    "contains",
    "regex_search",
    "build_logql",
    "build_selector",
    "line_filter",
]
