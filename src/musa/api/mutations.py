"""Write path: document persistence sequenced with map reconciliation.

Every write saves the document first. A failed save ends the operation;
a failed reconciliation (or re-save) is compensated so no half-written
document or map membership is left behind.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from musa.config.settings import ModelSchema
from musa.domain.documents import ID_FIELD, MAPS_TO_FIELD, ModelDocument, ValidationError, normalize_maps_to
from musa.domain.errors import BackendFailure, MalformedRequest, MusaError, NotFound
from musa.maps.engine import MapAssociationEngine
from musa.storage.registry import ModelRegistry
from musa.storage.store import CollectionHandle, new_id

LOGGER = logging.getLogger(__name__)


@dataclass
class MutationResult:
    id: Any
    map_ids: List[str] = field(default_factory=list)
    changed: bool = False

    @property
    def map_id(self) -> Optional[str]:
        return self.map_ids[0] if self.map_ids else None


class MutationOrchestrator:
    def __init__(self, registry: ModelRegistry, engine: MapAssociationEngine) -> None:
        self.registry = registry
        self.engine = engine

    def _target(self, model: str) -> Tuple[CollectionHandle, ModelSchema]:
        handle = self.registry.get_model(model) if self.registry.is_known_model(model) else None
        schema = self.registry.get_schema(model)
        if handle is None or schema is None:
            raise MalformedRequest(f"Unknown model {model}")
        return handle, schema

    async def create(self, model: str, body: Mapping[str, Any]) -> MutationResult:
        handle, schema = self._target(model)
        document = ModelDocument.from_payload(schema, body)
        document.id = new_id()
        await handle.insert(document.to_mongo())

        try:
            result = await self.engine.reconcile(document, model)
        except Exception:
            LOGGER.info("Map reconciliation failed for new %s %s, removing it", model, document.id)
            await self._discard(handle, document.id)
            raise

        if not result.changed:
            return MutationResult(id=document.id)
        try:
            await handle.replace(document.id, document.to_mongo())
        except BackendFailure:
            await self.engine.rollback(result.changes)
            await self._discard(handle, document.id)
            raise
        return MutationResult(id=document.id, map_ids=document.maps_to, changed=True)

    async def update(self, model: str, doc_id: Optional[str], body: Mapping[str, Any]) -> MutationResult:
        handle, schema = self._target(model)
        if not doc_id:
            raise MalformedRequest("Missing id in update request")
        stored = await handle.find_by_id(doc_id)
        if stored is None:
            raise NotFound(f"Unknown document {doc_id}")

        document = ModelDocument.from_update(schema, stored, body)
        # Realised memberships survive an update; only delete detaches a document.
        kept = [ref for ref in _stored_refs(stored) if not self.engine.is_map_type(ref)]
        document.maps_to = kept + [ref for ref in document.maps_to if ref not in kept]

        if not await handle.replace(document.id, document.to_mongo()):
            raise NotFound(f"Unknown document {doc_id}")

        try:
            result = await self.engine.reconcile(document, model)
        except Exception:
            await self._restore(handle, stored)
            raise

        if not result.changed:
            return MutationResult(id=document.id)
        try:
            await handle.replace(document.id, document.to_mongo())
        except BackendFailure:
            await self.engine.rollback(result.changes)
            await self._restore(handle, stored)
            raise
        return MutationResult(id=document.id, map_ids=document.maps_to, changed=True)

    async def delete(self, model: str, doc_id: Optional[str]) -> MutationResult:
        handle, _schema = self._target(model)
        if not doc_id:
            raise MalformedRequest("Missing id in delete request")
        stored = await handle.find_by_id(doc_id)
        if stored is None:
            raise NotFound("Inexistent document")
        if not await handle.delete(stored[ID_FIELD]):
            raise NotFound("Inexistent document")

        for ref in _stored_refs(stored):
            if self.engine.is_map_type(ref):
                continue
            try:
                await self.engine.detach(stored[ID_FIELD], ref)
            except MusaError as exc:
                LOGGER.warning("Could not remove doc %s from map %s: %s", stored[ID_FIELD], ref, exc)
        return MutationResult(id=doc_id)

    async def _discard(self, handle: CollectionHandle, doc_id: Any) -> None:
        try:
            await handle.delete(doc_id)
        except BackendFailure as exc:
            LOGGER.warning("Could not remove %s %s after a failed write: %s", handle.name, doc_id, exc)

    async def _restore(self, handle: CollectionHandle, stored: Dict[str, Any]) -> None:
        try:
            await handle.replace(stored[ID_FIELD], stored)
        except BackendFailure as exc:
            LOGGER.warning("Could not restore %s %s after a failed update: %s", handle.name, stored[ID_FIELD], exc)


def _stored_refs(stored: Mapping[str, Any]) -> List[str]:
    try:
        return normalize_maps_to(stored.get(MAPS_TO_FIELD))
    except ValidationError:
        LOGGER.warning("Ignoring malformed %s on document %s", MAPS_TO_FIELD, stored.get(ID_FIELD))
        return []
