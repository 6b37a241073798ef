"""Document models for registered collections and for the reserved ``Maps`` collection."""
from __future__ import annotations

from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from musa.config.settings import ModelSchema
from musa.domain.errors import MalformedRequest

ID_FIELD = "_id"
MAPS_TO_FIELD = "_maps_to_"
TIMESTAMP_FIELDS = ("created_at", "updated_at")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ValidationError(MalformedRequest):
    """Raised when a document payload does not match its model schema."""

    kind = "validation_error"


def _matches_type(value: Any, field_type: str) -> bool:
    if field_type == "any":
        return True
    if field_type == "string":
        return isinstance(value, str)
    if field_type == "boolean":
        return isinstance(value, bool)
    if field_type == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if field_type == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if field_type == "array":
        return isinstance(value, list)
    if field_type == "object":
        return isinstance(value, dict)
    return False


_BOOLEAN_TEXT = {"true": True, "false": False}


def coerce_text_value(raw: str, field_type: Optional[str]) -> Any:
    """Convert a URL segment to the declared scalar type of a field.

    Strings, undeclared fields and non-scalar types are returned as given.
    """
    try:
        if field_type == "integer":
            return int(raw)
        if field_type == "number":
            return float(raw)
    except ValueError as exc:
        raise ValidationError(f"Expected a {field_type} value, got {raw!r}.") from exc
    if field_type == "boolean":
        if raw.lower() not in _BOOLEAN_TEXT:
            raise ValidationError(f"Expected a boolean value, got {raw!r}.")
        return _BOOLEAN_TEXT[raw.lower()]
    return raw


def normalize_maps_to(value: Any) -> List[str]:
    """Return ``_maps_to_`` as a list of non-empty references."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"'{MAPS_TO_FIELD}' must be a list of map references.")
    refs: List[str] = []
    for item in value:
        if item is None:
            continue
        ref = str(item).strip()
        if ref:
            refs.append(ref)
    return refs


class ModelDocument:
    """A document of one registered model, validated against its schema.

    Fields not declared by the schema are dropped from new payloads, like a
    strict ODM would. ``_id``, ``_maps_to_`` and the timestamps are managed
    here and are always accepted.
    """

    def __init__(self, schema: ModelSchema, payload: Mapping[str, Any]):
        if not isinstance(payload, Mapping):
            raise ValidationError("Document payload must be a mapping.")
        self.schema = schema
        self.data = self._apply_defaults(dict(payload))
        self.validate()

    @classmethod
    def from_payload(cls, schema: ModelSchema, payload: Mapping[str, Any]) -> "ModelDocument":
        """Build a new document from a request body; a client supplied ``_id`` is ignored."""
        if not isinstance(payload, Mapping):
            raise ValidationError("Document payload must be a mapping.")
        body = {key: value for key, value in payload.items() if key not in (ID_FIELD, *TIMESTAMP_FIELDS)}
        return cls(schema, body)

    def _apply_defaults(self, document: Dict[str, Any]) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for key, value in document.items():
            if key in self.schema.fields or key in (ID_FIELD, *TIMESTAMP_FIELDS):
                data[key] = deepcopy(value)
        data[MAPS_TO_FIELD] = normalize_maps_to(document.get(MAPS_TO_FIELD))
        data.setdefault("created_at", _now_iso())
        data["updated_at"] = _now_iso()
        return data

    def validate(self) -> None:
        missing_required = [
            field for field in self.schema.required if self.data.get(field) in (None, "")
        ]
        if missing_required:
            raise ValidationError(
                f"{self.schema.name} document missing required fields: {', '.join(missing_required)}"
            )
        for field, field_type in self.schema.fields.items():
            value = self.data.get(field)
            if value is None:
                continue
            if not _matches_type(value, field_type):
                raise ValidationError(f"{self.schema.name}.{field} must be of type {field_type}.")

    @classmethod
    def from_update(
        cls,
        schema: ModelSchema,
        stored: Mapping[str, Any],
        updates: Mapping[str, Any],
    ) -> "ModelDocument":
        """Apply ``updates`` over a stored record; ``_id`` and ``created_at`` are immutable.

        Undeclared fields already on the stored record are carried over
        untouched; undeclared fields in ``updates`` are still dropped.
        """
        if not isinstance(updates, Mapping):
            raise ValidationError("Update payload must be a mapping.")
        merged = dict(stored)
        for key, value in updates.items():
            if key in (ID_FIELD, "created_at"):
                continue
            merged[key] = value
        document = cls(schema, merged)
        for key, value in stored.items():
            if key not in document.data and key not in schema.fields:
                document.data[key] = deepcopy(value)
        return document

    @property
    def id(self) -> Any:
        return self.data.get(ID_FIELD)

    @id.setter
    def id(self, value: Any) -> None:
        self.data[ID_FIELD] = value

    @property
    def maps_to(self) -> List[str]:
        return list(self.data.get(MAPS_TO_FIELD) or [])

    @maps_to.setter
    def maps_to(self, refs: List[str]) -> None:
        self.data[MAPS_TO_FIELD] = normalize_maps_to(refs)

    def value_of(self, field: str) -> Any:
        return self.data.get(field)

    def to_mongo(self) -> Dict[str, Any]:
        payload = deepcopy(self.data)
        payload["updated_at"] = _now_iso()
        return payload


class MapChild(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    value: Any = None
    doc_id: Any = Field(default=None, alias="docID")


class MapRecord(BaseModel):
    """A map groups documents of one model under distinct values."""

    model_config = ConfigDict(populate_by_name=True)

    id: Any = Field(default=None, alias=ID_FIELD)
    type: str
    doc_schema: str
    children: List[MapChild] = Field(default_factory=list)

    @classmethod
    def from_mongo(cls, record: Mapping[str, Any]) -> "MapRecord":
        return cls.model_validate(dict(record))

    def child_for_value(self, value: Any) -> Optional[MapChild]:
        """Child holding ``value``; the last one wins when several do."""
        found = None
        for child in self.children:
            if child.value == value:
                found = child
        return found

    def child_for_document(self, doc_id: Any) -> Optional[MapChild]:
        for child in self.children:
            if str(child.doc_id) == str(doc_id):
                return child
        return None

    def to_mongo(self) -> Dict[str, Any]:
        payload = self.model_dump(by_alias=True)
        if payload.get(ID_FIELD) is None:
            payload.pop(ID_FIELD, None)
        return payload


__all__ = [
    "ID_FIELD",
    "MAPS_TO_FIELD",
    "MapChild",
    "MapRecord",
    "ModelDocument",
    "ValidationError",
    "normalize_maps_to",
]
