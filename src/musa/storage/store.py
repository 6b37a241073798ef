"""Async MongoDB access wrapped behind a small collection handle."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional

from bson import ObjectId
from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from musa.domain.errors import BackendFailure

LOGGER = logging.getLogger(__name__)


def coerce_id(value: Any) -> Optional[ObjectId]:
    """Return ``value`` as an ObjectId, or ``None`` when it cannot be one."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and len(value) == 24 and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def new_id() -> ObjectId:
    return ObjectId()


class CollectionHandle:
    """Operations the API needs from one collection.

    Every driver error is re-raised as :class:`BackendFailure`; ids that are
    not valid ObjectIds behave like absent documents.
    """

    def __init__(self, collection: Any, name: str) -> None:
        self._collection = collection
        self.name = name

    @contextmanager
    def _backend_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except PyMongoError as exc:
            LOGGER.error("%s on %s failed: %s", action, self.name, exc)
            raise BackendFailure(f"{action} on {self.name} failed: {exc}") from exc

    async def find_by_id(self, doc_id: Any) -> Optional[Dict[str, Any]]:
        oid = coerce_id(doc_id)
        if oid is None:
            return None
        with self._backend_errors("find_by_id"):
            return await self._collection.find_one({"_id": oid})

    async def find(self, filter_doc: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        with self._backend_errors("find"):
            cursor = self._collection.find(dict(filter_doc or {}))
            return await cursor.to_list(None)

    async def insert(self, document: Mapping[str, Any]) -> Any:
        with self._backend_errors("insert"):
            result = await self._collection.insert_one(dict(document))
        return result.inserted_id

    async def replace(self, doc_id: Any, document: Mapping[str, Any]) -> bool:
        oid = coerce_id(doc_id)
        if oid is None:
            return False
        with self._backend_errors("replace"):
            result = await self._collection.replace_one({"_id": oid}, dict(document))
        return result.matched_count > 0

    async def update_one(self, filter_doc: Mapping[str, Any], update_doc: Mapping[str, Any]) -> bool:
        """Apply ``update_doc`` to the first match; ``False`` when nothing matched."""
        with self._backend_errors("update"):
            result = await self._collection.update_one(dict(filter_doc), dict(update_doc))
        return result.matched_count > 0

    async def delete(self, doc_id: Any) -> bool:
        oid = coerce_id(doc_id)
        if oid is None:
            return False
        with self._backend_errors("delete"):
            result = await self._collection.delete_one({"_id": oid})
        return result.deleted_count > 0


def open_database(mongo_url: str, db_name: str) -> Any:
    """Return the async database handle; the client connects lazily on first use."""
    client = AsyncMongoClient(mongo_url)
    return client[db_name]
