"""Storage layer: async collection handles and the model registry."""

from .registry import ModelRegistry, collection_name_for
from .store import CollectionHandle, coerce_id, new_id, open_database

__all__ = [
    "CollectionHandle",
    "ModelRegistry",
    "coerce_id",
    "collection_name_for",
    "new_id",
    "open_database",
]
