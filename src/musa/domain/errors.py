"""Error taxonomy shared by the resolver, the map engine and the HTTP layer."""
from __future__ import annotations

from typing import Any, Dict


class MusaError(Exception):
    """Base class for failures reported to API callers."""

    kind: str = "error"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class MalformedRequest(MusaError):
    kind = "malformed_request"
    status_code = 400


class Unauthorized(MusaError):
    kind = "unauthorized"
    status_code = 401


class NotFound(MusaError):
    kind = "not_found"
    status_code = 400


class Conflict(MusaError):
    kind = "conflict"
    status_code = 400


class BackendFailure(MusaError):
    """The document store itself failed."""

    kind = "backend_failure"
    status_code = 500
