"""Error taxonomy shared by adapters, the coordinator, the job registry and the API.

Each error knows the HTTP status it is surfaced with; the FastAPI handlers in
``mediagen.app`` turn them into the ``{"success": false, "message": ...}``
envelope.
"""

from typing import Any, Dict, Optional


class MediaGenError(Exception):
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.details = details or {}


class ValidationError(MediaGenError):
    """Missing credential, missing field or malformed identifier. Never retried."""

    status_code = 400


class AuthError(MediaGenError):
    """The provider rejected the credential (401/403/404 on the base generator)."""

    status_code = 401

    def __init__(self, message: str, *, upstream_status: int, body: str = "", **kw):
        super().__init__(message, **kw)
        self.upstream_status = upstream_status
        self.body = body


class NotFoundError(MediaGenError):
    status_code = 404


class UpstreamError(MediaGenError):
    """Provider reachable but answered with a failure status."""

    status_code = 502

    def __init__(self, message: str, *, upstream_status: Optional[int] = None, body: str = "", **kw):
        super().__init__(message, **kw)
        self.upstream_status = upstream_status
        self.body = body


class InternalError(MediaGenError):
    """Unexpected condition, e.g. a malformed provider response."""

    status_code = 500
