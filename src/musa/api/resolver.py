"""Read path: turns a filter description into matching documents.

Supported filters::

    (none)                               all documents of the model
    id/{id}                              one document by id
    key/{key}/{value}                    documents whose {key} equals {value}
    map/{type}/{value}/{map_id}          the {value, docID} child of a map
    map/{type}/{value}/{map_id}/document the document that child points to
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from musa.domain.documents import MapRecord, coerce_text_value
from musa.domain.errors import MalformedRequest, NotFound
from musa.storage.registry import ModelRegistry
from musa.storage.store import CollectionHandle

LOGGER = logging.getLogger(__name__)

DOCUMENT_MODIFIER = "document"


@dataclass(frozen=True)
class AllDocuments:
    pass


@dataclass(frozen=True)
class ById:
    id: str


@dataclass(frozen=True)
class ByKey:
    key: str
    value: str


@dataclass(frozen=True)
class ByMap:
    map_type: str
    value: str
    map_id: str
    modifier: Optional[str] = None


FilterSpec = Union[AllDocuments, ById, ByKey, ByMap]


def _present(value: Optional[str]) -> bool:
    return bool(value) and value != "undefined"


def parse_filter(filter_type: Optional[str], args: Sequence[str] = ()) -> FilterSpec:
    """Build a :data:`FilterSpec` from the URL segments following the model name."""
    if not filter_type:
        return AllDocuments()
    args = list(args)
    if filter_type == "id":
        if len(args) != 1 or not _present(args[0]):
            raise MalformedRequest("Malformed url. Missing parameter")
        return ById(id=args[0])
    if filter_type == "key":
        if len(args) != 2 or not all(_present(arg) for arg in args):
            raise MalformedRequest("Malformed url. Missing parameters")
        return ByKey(key=args[0], value=args[1])
    if filter_type == "map":
        if len(args) not in (3, 4) or not all(_present(arg) for arg in args[:3]):
            raise MalformedRequest("Missing parameter in map query")
        modifier = args[3] if len(args) == 4 else None
        if modifier is not None and modifier != DOCUMENT_MODIFIER:
            raise MalformedRequest(f"Unsupported map modifier: {modifier}")
        return ByMap(map_type=args[0], value=args[1], map_id=args[2], modifier=modifier)
    raise MalformedRequest(f"Unsupported filter type: {filter_type}")


class FilterResolver:
    def __init__(self, registry: ModelRegistry) -> None:
        self.registry = registry

    def _handle(self, model: str) -> CollectionHandle:
        handle = self.registry.get_model(model) if self.registry.is_known_model(model) else None
        if handle is None:
            raise MalformedRequest(f"Unknown model {model}")
        return handle

    async def find(self, model: str, spec: Optional[FilterSpec] = None) -> Any:
        handle = self._handle(model)
        if spec is None or isinstance(spec, AllDocuments):
            return await handle.find()
        if isinstance(spec, ById):
            return await self._by_id(handle, spec)
        if isinstance(spec, ByKey):
            return await self._by_key(handle, spec)
        if isinstance(spec, ByMap):
            return await self._by_map(handle, spec)
        raise MalformedRequest(f"Unsupported filter: {spec!r}")

    async def _by_id(self, handle: CollectionHandle, spec: ById) -> Dict[str, Any]:
        found = await handle.find_by_id(spec.id)
        if found is None:
            raise NotFound(f"Document {spec.id} not found in {handle.name}")
        return found

    async def _by_key(self, handle: CollectionHandle, spec: ByKey) -> List[Dict[str, Any]]:
        if spec.key.startswith("$"):
            raise MalformedRequest(f"Invalid key: {spec.key}")
        schema = self.registry.get_schema(handle.name)
        field_type = schema.fields.get(spec.key) if schema is not None else None
        return await handle.find({spec.key: coerce_text_value(spec.value, field_type)})

    async def _by_map(self, handle: CollectionHandle, spec: ByMap) -> Dict[str, Any]:
        found = await self.registry.maps.find_by_id(spec.map_id)
        if found is None:
            raise NotFound(f"Map not found ({spec.map_id})")
        record = MapRecord.from_mongo(found)
        if record.type != spec.map_type:
            LOGGER.debug("Map %s has type %s, queried as %s", spec.map_id, record.type, spec.map_type)
        child = record.child_for_value(spec.value)
        if child is None:
            raise NotFound("Child not found")
        if spec.modifier != DOCUMENT_MODIFIER:
            return child.model_dump(by_alias=True)
        document = await handle.find_by_id(child.doc_id)
        if document is None:
            raise NotFound("Document not found from MAP id")
        return document
