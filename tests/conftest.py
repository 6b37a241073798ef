"""Shared fixtures: in-memory stand-ins for the pymongo async collection API."""
from __future__ import annotations

from copy import deepcopy
from typing import Any, Dict, List, Optional, Set

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from musa.api.app import create_app
from musa.api.mutations import MutationOrchestrator
from musa.api.resolver import FilterResolver
from musa.config.settings import Settings, parse_schema_config
from musa.maps.engine import MapAssociationEngine
from musa.storage.registry import ModelRegistry

TOKEN = "secret-token"


class FakeInsertResult:
    def __init__(self, inserted_id: Any) -> None:
        self.inserted_id = inserted_id


class FakeUpdateResult:
    def __init__(self, matched_count: int) -> None:
        self.matched_count = matched_count
        self.modified_count = matched_count


class FakeDeleteResult:
    def __init__(self, deleted_count: int) -> None:
        self.deleted_count = deleted_count


class FakeCursor:
    def __init__(self, documents: List[Dict[str, Any]]) -> None:
        self._documents = documents

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        if length is None:
            return list(self._documents)
        return list(self._documents[:length])


def _resolve(document: Dict[str, Any], path: str) -> List[Any]:
    values: List[Any] = [document]
    for part in path.split("."):
        nxt: List[Any] = []
        for value in values:
            if isinstance(value, list):
                nxt.extend(item.get(part) for item in value if isinstance(item, dict) and part in item)
            elif isinstance(value, dict) and part in value:
                nxt.append(value[part])
        values = nxt
    flat: List[Any] = []
    for value in values:
        if isinstance(value, list):
            flat.extend(value)
        else:
            flat.append(value)
    return flat


def _matches(document: Dict[str, Any], filter_doc: Dict[str, Any]) -> bool:
    for key, condition in filter_doc.items():
        values = _resolve(document, key)
        if isinstance(condition, dict) and "$ne" in condition:
            if condition["$ne"] in values:
                return False
        elif condition not in values:
            return False
    return True


class FakeCollection:
    """Subset of ``pymongo.asynchronous.collection.AsyncCollection`` used by the store."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.storage: List[Dict[str, Any]] = []
        self.fail_on: Set[str] = set()
        self.calls: List[str] = []

    def _record(self, method: str) -> None:
        self.calls.append(method)
        if method in self.fail_on:
            raise PyMongoError(f"simulated {method} failure on {self.name}")

    def _first(self, filter_doc: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for document in self.storage:
            if _matches(document, filter_doc):
                return document
        return None

    async def find_one(self, filter_doc: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self._record("find_one")
        found = self._first(filter_doc)
        return deepcopy(found) if found is not None else None

    def find(self, filter_doc: Optional[Dict[str, Any]] = None) -> FakeCursor:
        self._record("find")
        return FakeCursor([deepcopy(doc) for doc in self.storage if _matches(doc, filter_doc or {})])

    async def insert_one(self, document: Dict[str, Any]) -> FakeInsertResult:
        self._record("insert_one")
        stored = deepcopy(document)
        stored.setdefault("_id", ObjectId())
        self.storage.append(stored)
        return FakeInsertResult(stored["_id"])

    async def replace_one(self, filter_doc: Dict[str, Any], document: Dict[str, Any]) -> FakeUpdateResult:
        self._record("replace_one")
        for index, existing in enumerate(self.storage):
            if _matches(existing, filter_doc):
                replacement = deepcopy(document)
                replacement["_id"] = existing["_id"]
                self.storage[index] = replacement
                return FakeUpdateResult(1)
        return FakeUpdateResult(0)

    async def update_one(self, filter_doc: Dict[str, Any], update_doc: Dict[str, Any]) -> FakeUpdateResult:
        self._record("update_one")
        target = self._first(filter_doc)
        if target is None:
            return FakeUpdateResult(0)
        for field, value in update_doc.get("$set", {}).items():
            target[field] = deepcopy(value)
        for field, value in update_doc.get("$push", {}).items():
            target.setdefault(field, []).append(deepcopy(value))
        for field, condition in update_doc.get("$pull", {}).items():
            target[field] = [
                item for item in target.get(field, []) if not _matches(item, condition)
            ]
        return FakeUpdateResult(1)

    async def delete_one(self, filter_doc: Dict[str, Any]) -> FakeDeleteResult:
        self._record("delete_one")
        target = self._first(filter_doc)
        if target is None:
            return FakeDeleteResult(0)
        self.storage.remove(target)
        return FakeDeleteResult(1)


class FakeDatabase:
    def __init__(self) -> None:
        self.collections: Dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]


@pytest.fixture
def schema_config():
    return parse_schema_config(
        {
            "version": "v1",
            "available_maps": {"lang": {"value_field": "lang"}},
            "models": [
                {
                    "name": "Contents",
                    "fields": {"title": "string", "body": "string", "lang": "string", "tags": "array"},
                    "required": ["title"],
                },
                {
                    "name": "Pois",
                    "fields": {"name": "string", "lang": "string", "lat": "number"},
                    "required": ["name"],
                },
            ],
        }
    )


@pytest.fixture
def settings(schema_config) -> Settings:
    return Settings(schema=schema_config, tokens=(TOKEN,))


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def registry(schema_config, database) -> ModelRegistry:
    return ModelRegistry(schema_config, database)


@pytest.fixture
def engine(registry, schema_config) -> MapAssociationEngine:
    return MapAssociationEngine(registry.maps, schema_config.map_types)


@pytest.fixture
def resolver(registry) -> FilterResolver:
    return FilterResolver(registry)


@pytest.fixture
def orchestrator(registry, engine) -> MutationOrchestrator:
    return MutationOrchestrator(registry, engine)


@pytest.fixture
def client(settings, database) -> TestClient:
    return TestClient(create_app(settings, database=database))
