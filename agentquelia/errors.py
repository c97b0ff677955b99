from __future__ import annotations


class AgentError(Exception):
    """Base class for every error raised by the agent."""


class ConfigError(AgentError, ValueError):
    """Invalid or missing agent configuration."""


# -----------------------------
# Sources
# -----------------------------


class SourceError(AgentError):
    """A source failed to produce a reading. Always terminal for the cycle."""

    kind = "source"


class SourceFileNotFoundError(SourceError):
    kind = "file_not_found"

    def __init__(self, path: str) -> None:
        super().__init__(f"file not found: {path}")
        self.path = path


class SourceReadError(SourceError):
    kind = "read_error"


class SourceParseError(SourceError):
    kind = "parse_error"


class ValueNotFoundError(SourceError):
    kind = "value_not_found"


class InvalidValueTypeError(SourceError):
    kind = "invalid_value_type"


class HttpSourceError(SourceError):
    """Network failure or non-2xx response from an HTTP source.

    status is None when no response was received.
    """

    kind = "http_error"

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class CsvSourceError(SourceParseError):
    kind = "csv_error"


class JsonSourceError(SourceParseError):
    kind = "json_error"


# -----------------------------
# Transport
# -----------------------------


class TransportError(AgentError):
    """One failed delivery attempt.

    retriable tells the retry policy whether another attempt may succeed.
    """

    retriable = False


class NetworkError(TransportError):
    retriable = True


class AuthFailedError(TransportError):
    retriable = False


class RateLimitedError(TransportError):
    retriable = True

    def __init__(self, retry_after_s: float) -> None:
        super().__init__(f"rate limited, retry after {retry_after_s:g} seconds")
        self.retry_after_s = retry_after_s


class ServerError(TransportError):
    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"server error (status {status}): {body}")
        self.status = status
        self.body = body

    @property
    def retriable(self) -> bool:  # type: ignore[override]
        return self.status >= 500


class TransportTimeoutError(TransportError):
    retriable = True

    def __init__(self, message: str = "request timeout") -> None:
        super().__init__(message)


class InvalidResponseError(TransportError):
    retriable = False


# -----------------------------
# One-shot collaborators
# -----------------------------


class UpdateError(AgentError):
    """Self-update failed."""


class UpdateCheckFailed(UpdateError):
    pass


class UpdateDownloadFailed(UpdateError):
    pass


class ChecksumMismatch(UpdateError):
    def __init__(self, *, expected: str, actual: str) -> None:
        super().__init__(f"checksum verification failed: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class UpdateInstallFailed(UpdateError):
    pass


class InvalidVersion(UpdateError):
    pass


class ServiceError(AgentError):
    """Service manager registration failed."""
