"""JSON-safe rendering of stored records."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from bson import ObjectId


def to_jsonable(value: Any) -> Any:
    """Recursively turn ObjectIds into hex strings and datetimes into ISO strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value
