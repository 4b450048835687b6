"""Build export client errors."""

from __future__ import annotations


class ExportAPIError(RuntimeError):
    """Raised when the build export server returns an error response."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise with a message and optional HTTP status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, status_code: int, url: str) -> ExportAPIError:
        """Return an error for non-2xx HTTP responses."""
        return cls(f"Build export HTTP {status_code} for {url}", status_code=status_code)

    @classmethod
    def unexpected_content_type(cls, content_type: str) -> ExportAPIError:
        """Return an error for responses that are not event streams."""
        return cls(f"Build export returned non-stream content type: {content_type!r}")


class ExportConfigError(RuntimeError):
    """Raised when export client configuration is invalid."""

    @classmethod
    def invalid_server_url(cls, url: str) -> ExportConfigError:
        """Return an error when the server URL is not an absolute http(s) URL."""
        return cls(f"Build export server URL must be http(s), got: {url!r}")
