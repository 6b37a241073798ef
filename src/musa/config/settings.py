"""Loading of the schema definitions and runtime settings."""
from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

MAPS_MODEL = "Maps"
FIELD_TYPES = frozenset({"string", "number", "integer", "boolean", "array", "object", "any"})
DEFAULT_SCHEMAS_PATH = Path(__file__).resolve().parents[3] / "configs" / "schemas.yaml"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass(frozen=True)
class ModelSchema:
    """Declared shape of one registered model."""

    name: str
    fields: Mapping[str, str]
    required: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MapTypeConfig:
    name: str
    value_field: str


@dataclass(frozen=True)
class SchemaConfig:
    version: str
    map_types: Mapping[str, MapTypeConfig]
    models: Tuple[ModelSchema, ...]

    def model(self, name: str) -> Optional[ModelSchema]:
        for schema in self.models:
            if schema.name == name:
                return schema
        return None

    @property
    def model_names(self) -> Tuple[str, ...]:
        return tuple(schema.name for schema in self.models)


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once at startup and passed explicitly."""

    schema: SchemaConfig
    mongo_url: str = "mongodb://localhost:27017"
    db_name: str = "test"
    listen_port: int = 8003
    log_file: str = "./log/backend_API.log"
    run_mode: str = "production"
    tokens: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def development(self) -> bool:
        return self.run_mode == "development"


def load_schema_config(config_path: str | Path) -> SchemaConfig:
    """Parse the YAML schema definitions into a :class:`SchemaConfig`."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Schema configuration not found at {config_path}")
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    if not isinstance(data, dict):
        raise TypeError("schemas.yaml must define a mapping with 'version' and 'models' keys.")
    return parse_schema_config(data)


def parse_schema_config(data: Mapping[str, Any]) -> SchemaConfig:
    version = data.get("version")
    if not version:
        raise ValueError("Schema configuration is missing 'version'.")

    raw_maps = data.get("available_maps") or {}
    if isinstance(raw_maps, list):
        # Bare list of map types: the value is read from a field of the same name.
        raw_maps = {name: {"value_field": name} for name in raw_maps}
    if not isinstance(raw_maps, dict):
        raise TypeError("`available_maps` must be a mapping or a list of map type names.")
    map_types: Dict[str, MapTypeConfig] = {}
    for name, options in raw_maps.items():
        options = options or {}
        map_types[str(name)] = MapTypeConfig(name=str(name), value_field=str(options.get("value_field") or name))

    raw_models = data.get("models")
    if not isinstance(raw_models, list) or not raw_models:
        raise TypeError("`models` section must be a non-empty list of model definitions.")
    models = []
    seen = set()
    for entry in raw_models:
        schema = _parse_model(entry)
        if schema.name == MAPS_MODEL:
            raise ValueError(f"'{MAPS_MODEL}' is reserved and cannot be declared as a model.")
        if schema.name in seen:
            raise ValueError(f"Model '{schema.name}' is declared more than once.")
        seen.add(schema.name)
        models.append(schema)
    return SchemaConfig(version=str(version), map_types=map_types, models=tuple(models))


def _parse_model(entry: Any) -> ModelSchema:
    if not isinstance(entry, dict) or not entry.get("name"):
        raise TypeError("Every model definition must be a mapping with a 'name'.")
    name = str(entry["name"])
    fields = entry.get("fields") or {}
    if not isinstance(fields, dict):
        raise TypeError(f"Fields of model '{name}' must be a mapping of field -> type.")
    for field_name, field_type in fields.items():
        if field_type not in FIELD_TYPES:
            raise ValueError(f"Unsupported type '{field_type}' for {name}.{field_name}")
    required = tuple(str(item) for item in entry.get("required") or ())
    undeclared = [item for item in required if item not in fields]
    if undeclared:
        raise ValueError(f"Model '{name}' requires undeclared fields: {', '.join(undeclared)}")
    return ModelSchema(name=name, fields=dict(fields), required=required)


def _resolve_mongo_url() -> str:
    mongo_url = os.getenv("MONGO_URL") or os.getenv("MONGO_URI")
    return mongo_url or "mongodb://localhost:27017"


def _split_tokens(raw: str | None) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(token.strip() for token in raw.split(",") if token.strip())


def load_settings(schemas_path: str | Path | None = None) -> Settings:
    """Build :class:`Settings` from the environment (and ``.env``) plus the schema file."""
    load_dotenv()
    path = schemas_path or os.getenv("MUSA_SCHEMAS_PATH") or DEFAULT_SCHEMAS_PATH
    schema = load_schema_config(path)
    port = os.getenv("MUSA_LISTEN_PORT") or os.getenv("meta_port") or "8003"
    run_mode = (os.getenv("MUSA_RUN_MODE") or "production").strip().lower()
    return Settings(
        schema=schema,
        mongo_url=_resolve_mongo_url(),
        db_name=os.getenv("MUSA_DB_NAME") or "test",
        listen_port=int(port),
        log_file=os.getenv("MUSA_LOG_FILE") or "./log/backend_API.log",
        run_mode=run_mode,
        tokens=_split_tokens(os.getenv("MUSA_TOKENS")),
    )


def configure_logging(run_mode: str, log_file: str | None = None) -> None:
    """Development logs everything to the console; production adds the log file."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    level = logging.DEBUG if run_mode == "development" else logging.INFO
    if run_mode != "development" and log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    logging.getLogger(__name__).info("Logging configured for %s mode", run_mode)
