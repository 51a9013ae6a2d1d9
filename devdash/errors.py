"""Exceptions raised by devdash and the HTTP status each one maps to."""
from typing import Optional, Tuple


class DevdashError(Exception):
    status_code = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(DevdashError):
    """Missing or malformed request input. Not retryable."""

    status_code = 400


class NotConfiguredError(DevdashError):
    """An integration was requested but its credentials are not set."""

    status_code = 503


class UpstreamError(DevdashError):
    """A call to an external service failed.

    ``upstream_status`` is the status returned by the service (None for
    network failures). Not-found is surfaced as 404; everything else is a
    bad gateway from the dashboard's point of view.
    """

    def __init__(self, service: str, message: str, *, upstream_status: Optional[int] = None):
        status = 404 if upstream_status == 404 else 502
        super().__init__(message, status_code=status)
        self.service = service
        self.upstream_status = upstream_status


def parse_repo(repo: Optional[str]) -> Tuple[str, str]:
    """Split ``owner/name`` or raise ValidationError."""
    parts = (repo or "").strip().split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValidationError("Invalid repo format. Use owner/repo")
    return parts[0], parts[1]
