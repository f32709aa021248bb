from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    CONNECTION_FAILURE = "connection_failure"
    TIMEOUT = "timeout"
    TLS_FAILURE = "tls_failure"
    MALFORMED_RESPONSE = "malformed_response"
    INVALID_URL = "invalid_url"
    HTTP_ERROR = "http_error"
    TOO_MANY_REDIRECTS = "too_many_redirects"
    ALREADY_EXISTS = "already_exists"
    IO_FAILURE = "io_failure"
    CANCELLED = "cancelled"

    # Non-fatal signals; they never fail a Target on their own.
    RESUME_NOT_SUPPORTED = "resume_not_supported"
    UNSUPPORTED_CONTENT_FOR_RECURSION = "unsupported_content_for_recursion"


class FetchError(Exception):
    """A failure local to one Target."""

    def __init__(self, kind: ErrorKind, url: str, message: str = "") -> None:
        self.kind = kind
        self.url = url
        self.message = message or kind.value
        super().__init__(f"{kind.value}: {url}: {self.message}")


class ConfigError(ValueError):
    """Crawl-wide misconfiguration, raised before any worker starts."""
