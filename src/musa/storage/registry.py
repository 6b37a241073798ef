"""Model name -> collection handle lookup."""
from __future__ import annotations

from typing import Any, Dict, Optional

from musa.config.settings import MAPS_MODEL, ModelSchema, SchemaConfig
from musa.storage.store import CollectionHandle


def collection_name_for(model_name: str) -> str:
    """Collections are the lower-cased model names (``Contents`` -> ``contents``)."""
    return model_name.lower()


class ModelRegistry:
    """Registered models and the reserved ``Maps`` collection.

    Built once at startup. ``Maps`` is always resolvable through
    :meth:`get_model` but is never reported as a known public model.
    """

    def __init__(self, schema: SchemaConfig, database: Any) -> None:
        self.schema = schema
        self._handles: Dict[str, CollectionHandle] = {}
        for model in schema.models:
            self._handles[model.name] = CollectionHandle(database[collection_name_for(model.name)], model.name)
        self._handles[MAPS_MODEL] = CollectionHandle(database[collection_name_for(MAPS_MODEL)], MAPS_MODEL)

    def is_known_model(self, name: str) -> bool:
        return name != MAPS_MODEL and name in self._handles

    def get_model(self, name: str) -> Optional[CollectionHandle]:
        return self._handles.get(name)

    def get_schema(self, name: str) -> Optional[ModelSchema]:
        return self.schema.model(name)

    @property
    def maps(self) -> CollectionHandle:
        return self._handles[MAPS_MODEL]

    def model_names(self) -> tuple[str, ...]:
        return self.schema.model_names
