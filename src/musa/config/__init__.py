"""Configuration for the MuSA backend."""

from .settings import (
    MAPS_MODEL,
    MapTypeConfig,
    ModelSchema,
    SchemaConfig,
    Settings,
    configure_logging,
    load_schema_config,
    load_settings,
    parse_schema_config,
)

__all__ = [
    "MAPS_MODEL",
    "MapTypeConfig",
    "ModelSchema",
    "SchemaConfig",
    "Settings",
    "configure_logging",
    "load_schema_config",
    "load_settings",
    "parse_schema_config",
]
