# Domain errors. Each carries a kind tag and an HTTP status the routers map to.

from typing import Dict, Optional


class LocationError(Exception):
    """Base class for location / waypoint errors surfaced to callers."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_detail(self) -> Dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(LocationError):
    """Missing/out-of-range coordinates or mark fields. Raised before any mutation."""

    kind = "validation"
    status_code = 400


class NotFoundError(LocationError):
    """Unknown connection, user or mark id."""

    kind = "not_found"
    status_code = 404


class AuthorizationError(LocationError):
    """Caller lacks the role for the operation (e.g. non-owner group mark)."""

    kind = "authorization"
    status_code = 403


class StorageError(LocationError):
    """Durable write failed."""

    kind = "storage"
    status_code = 503


class BroadcastError(LocationError):
    """Publishing to the real-time channel failed."""

    kind = "broadcast"
    status_code = 502
