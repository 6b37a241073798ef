"""Map association: keeps ``_maps_to_`` and map children consistent.

A ``_maps_to_`` entry is either a map type name (``"lang"``), meaning a new
map has to be created for the document, or the id of an existing map the
document joins. Appends and removals on ``children`` are single guarded
updates, so two writers can never both claim the same value (or the same
document) in one map.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

from musa.config.settings import MapTypeConfig
from musa.domain.documents import MapChild, MapRecord, ModelDocument
from musa.domain.errors import BackendFailure, Conflict, MalformedRequest, NotFound
from musa.storage.store import CollectionHandle, coerce_id

LOGGER = logging.getLogger(__name__)

CREATED = "created"
APPENDED = "appended"


@dataclass(frozen=True)
class MapChange:
    """One map write performed during a reconcile, kept so it can be undone."""

    action: str
    map_id: Any
    doc_id: Any


@dataclass
class ReconcileResult:
    document: ModelDocument
    changed: bool = False
    changes: List[MapChange] = field(default_factory=list)


class MapAssociationEngine:
    def __init__(self, maps: CollectionHandle, map_types: Mapping[str, MapTypeConfig]) -> None:
        self.maps = maps
        self.map_types = dict(map_types)

    def is_map_type(self, ref: str) -> bool:
        return ref in self.map_types

    def value_field(self, map_type: str) -> str:
        config = self.map_types.get(map_type)
        return config.value_field if config else map_type

    async def load_map(self, map_ref: Any) -> MapRecord:
        map_id = coerce_id(map_ref)
        record = await self.maps.find_by_id(map_id) if map_id is not None else None
        if record is None:
            raise NotFound(f"Map not found ({map_ref})")
        return MapRecord.from_mongo(record)

    async def reconcile(
        self,
        document: ModelDocument,
        model_name: str,
        candidate_value: Optional[Any] = None,
    ) -> ReconcileResult:
        """Create or join every map referenced by ``document._maps_to_``.

        ``candidate_value`` overrides the value read from the document's value
        field. On failure every map write done by this call is undone before
        the error propagates.
        """
        refs = _unique(document.maps_to)
        if not refs:
            LOGGER.debug("Nothing to do on maps for %s %s", model_name, document.id)
            return ReconcileResult(document=document)

        result = ReconcileResult(document=document)
        resolved: List[str] = []
        try:
            for ref in refs:
                if self.is_map_type(ref):
                    resolved.append(await self._create_map(ref, document, model_name, candidate_value, result))
                else:
                    await self._join_map(ref, document, model_name, candidate_value, result)
                    resolved.append(ref)
        except Exception:
            await self.rollback(result.changes)
            raise

        if resolved != document.maps_to:
            document.maps_to = resolved
        return result

    async def _create_map(
        self,
        map_type: str,
        document: ModelDocument,
        model_name: str,
        candidate_value: Optional[Any],
        result: ReconcileResult,
    ) -> str:
        value = self._candidate(document, map_type, candidate_value)
        LOGGER.debug("Creating a new %s map for %s %s (value=%s)", map_type, model_name, document.id, value)
        record = MapRecord(
            type=map_type,
            doc_schema=model_name,
            children=[MapChild(value=value, doc_id=document.id)],
        )
        map_id = await self.maps.insert(record.to_mongo())
        result.changes.append(MapChange(CREATED, map_id, document.id))
        result.changed = True
        return str(map_id)

    async def _join_map(
        self,
        map_ref: str,
        document: ModelDocument,
        model_name: str,
        candidate_value: Optional[Any],
        result: ReconcileResult,
    ) -> None:
        record = await self.load_map(map_ref)
        if record.doc_schema != model_name:
            raise Conflict(f"Map {map_ref} groups {record.doc_schema} documents, not {model_name}")
        if record.child_for_document(document.id) is not None:
            LOGGER.debug("Document %s already in map %s. Nothing to do", document.id, map_ref)
            return

        value = self._candidate(document, record.type, candidate_value)
        if record.child_for_value(value) is not None:
            raise Conflict(f"{value} already in MAP")

        applied = await self.maps.update_one(
            {
                "_id": record.id,
                "children.docID": {"$ne": document.id},
                "children.value": {"$ne": value},
            },
            {"$push": {"children": {"value": value, "docID": document.id}}},
        )
        if not applied:
            # Another writer touched the map between the read and the append.
            record = await self.load_map(map_ref)
            if record.child_for_document(document.id) is not None:
                return
            raise Conflict(f"{value} already in MAP")

        LOGGER.debug("Added %s (value=%s) to map %s", document.id, value, map_ref)
        result.changes.append(MapChange(APPENDED, record.id, document.id))
        result.changed = True

    def _candidate(self, document: ModelDocument, map_type: str, candidate_value: Optional[Any]) -> Any:
        if candidate_value is not None:
            return candidate_value
        value_field = self.value_field(map_type)
        value = document.value_of(value_field)
        if value in (None, ""):
            raise MalformedRequest(f"Document has no '{value_field}' value for map type '{map_type}'")
        return value

    async def detach(self, doc_id: Any, map_ref: Any) -> None:
        """Remove ``doc_id`` from the children of map ``map_ref``."""
        map_id = coerce_id(map_ref)
        if map_id is None:
            raise NotFound(f"Map not found ({map_ref})")
        matched = await self.maps.update_one({"_id": map_id}, {"$pull": {"children": {"docID": doc_id}}})
        if not matched:
            raise NotFound(f"Map not found ({map_ref})")
        LOGGER.debug("Removed doc %s from map %s", doc_id, map_ref)

    async def rollback(self, changes: List[MapChange]) -> None:
        """Undo ``changes`` newest first. Failures are logged and skipped."""
        for change in reversed(changes):
            try:
                if change.action == CREATED:
                    await self.maps.delete(change.map_id)
                else:
                    await self.maps.update_one(
                        {"_id": change.map_id},
                        {"$pull": {"children": {"docID": change.doc_id}}},
                    )
            except BackendFailure as exc:
                LOGGER.warning(
                    "Could not undo %s map %s for document %s: %s",
                    change.action,
                    change.map_id,
                    change.doc_id,
                    exc,
                )


def _unique(refs: List[str]) -> List[str]:
    seen = set()
    unique: List[str] = []
    for ref in refs:
        if ref in seen:
            continue
        seen.add(ref)
        unique.append(ref)
    return unique
