"""Offline consistency pass over maps and the documents that reference them.

Finds map children whose document is gone, ``_maps_to_`` entries pointing at
missing maps, entries still holding an unrealised map type, and documents
that reference a map which does not list them. With ``fix=True`` the first
two are repaired; the others are reported for manual follow-up.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Set, Tuple

from musa.domain.documents import ID_FIELD, MAPS_TO_FIELD, MapRecord, ValidationError, normalize_maps_to
from musa.storage.registry import ModelRegistry
from musa.maps.engine import MapAssociationEngine

LOGGER = logging.getLogger(__name__)


@dataclass
class RepairReport:
    maps_checked: int = 0
    documents_checked: int = 0
    dangling_children: List[Tuple[str, str]] = field(default_factory=list)
    missing_maps: List[Tuple[str, str, str]] = field(default_factory=list)
    unrealised: List[Tuple[str, str, str]] = field(default_factory=list)
    unlisted: List[Tuple[str, str, str]] = field(default_factory=list)
    fixed: int = 0

    @property
    def clean(self) -> bool:
        return not (self.dangling_children or self.missing_maps or self.unrealised or self.unlisted)

    def summary(self) -> str:
        return (
            f"maps checked: {self.maps_checked}\n"
            f"documents checked: {self.documents_checked}\n"
            f"dangling map children: {len(self.dangling_children)}\n"
            f"references to missing maps: {len(self.missing_maps)}\n"
            f"unrealised map types: {len(self.unrealised)}\n"
            f"documents missing from their map: {len(self.unlisted)}\n"
            f"fixed: {self.fixed}"
        )


class MapRepairer:
    def __init__(self, registry: ModelRegistry, engine: MapAssociationEngine) -> None:
        self.registry = registry
        self.engine = engine

    async def audit(self, *, fix: bool = False) -> RepairReport:
        report = RepairReport()
        maps: Dict[str, MapRecord] = {}
        for raw in await self.registry.maps.find():
            record = MapRecord.from_mongo(raw)
            maps[str(record.id)] = record
        report.maps_checked = len(maps)

        existing: Dict[str, Set[str]] = {}
        for model in self.registry.model_names():
            handle = self.registry.get_model(model)
            documents = await handle.find()
            existing[model] = {str(doc[ID_FIELD]) for doc in documents}
            for doc in documents:
                report.documents_checked += 1
                doc_id = str(doc[ID_FIELD])
                try:
                    refs = normalize_maps_to(doc.get(MAPS_TO_FIELD))
                except ValidationError:
                    LOGGER.warning("Skipping %s %s: malformed %s", model, doc_id, MAPS_TO_FIELD)
                    continue

                keep: List[str] = []
                for ref in refs:
                    if self.engine.is_map_type(ref):
                        report.unrealised.append((model, doc_id, ref))
                        keep.append(ref)
                        continue
                    record = maps.get(ref)
                    if record is None:
                        report.missing_maps.append((model, doc_id, ref))
                        continue
                    keep.append(ref)
                    if record.child_for_document(doc_id) is None:
                        report.unlisted.append((model, doc_id, ref))

                if fix and keep != refs:
                    await handle.update_one({ID_FIELD: doc[ID_FIELD]}, {"$set": {MAPS_TO_FIELD: keep}})
                    report.fixed += 1
                    LOGGER.info("Dropped missing map references from %s %s", model, doc_id)

        for map_id, record in maps.items():
            known_ids = existing.get(record.doc_schema)
            if known_ids is None:
                LOGGER.warning("Map %s groups unregistered model %s, skipping", map_id, record.doc_schema)
                continue
            for child in record.children:
                if str(child.doc_id) in known_ids:
                    continue
                report.dangling_children.append((map_id, str(child.doc_id)))
                if fix:
                    await self.engine.detach(child.doc_id, map_id)
                    report.fixed += 1
                    LOGGER.info("Removed dangling doc %s from map %s", child.doc_id, map_id)
        return report
