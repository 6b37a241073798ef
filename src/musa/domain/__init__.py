"""Domain layer: document models and the error taxonomy."""

from .documents import (
    ID_FIELD,
    MAPS_TO_FIELD,
    MapChild,
    MapRecord,
    ModelDocument,
    ValidationError,
    coerce_text_value,
    normalize_maps_to,
)
from .errors import BackendFailure, Conflict, MalformedRequest, MusaError, NotFound, Unauthorized

__all__ = [
    "ID_FIELD",
    "MAPS_TO_FIELD",
    "BackendFailure",
    "Conflict",
    "MalformedRequest",
    "MapChild",
    "MapRecord",
    "ModelDocument",
    "MusaError",
    "NotFound",
    "Unauthorized",
    "ValidationError",
    "coerce_text_value",
    "normalize_maps_to",
]
