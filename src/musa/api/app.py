"""FastAPI application exposing the generic document API.

Endpoints:
- GET /health: liveness check, no store access.
- GET /api/{version}/{model}[/{filter_type}/...]: find (see :mod:`musa.api.resolver`).
- POST /api/{version}/{model}: create, body carries ``token``.
- PUT /api/{version}/{model}/{id}: update, body carries ``token``.
- DELETE /api/{version}/{model}/{id}/{token}: delete.

Every response is ``{"request": <operation>, "status": 1 | -1, ...}``.

Example POST /api/v1/Contents body:
{
    "token": "<shared secret>",
    "title": "Colosseo",
    "lang": "it",
    "_maps_to_": ["lang"]
}
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from musa.config.settings import Settings, load_settings
from musa.domain.errors import BackendFailure, MalformedRequest, MusaError, Unauthorized
from musa.maps.engine import MapAssociationEngine
from musa.storage.registry import ModelRegistry
from musa.storage.store import open_database
from musa.api.auth import StaticTokenVerifier, TokenVerifier
from musa.api.mutations import MutationOrchestrator, MutationResult
from musa.api.resolver import FilterResolver, parse_filter
from musa.api.serialization import to_jsonable

LOGGER = logging.getLogger("musa.api")


def _envelope(operation: str, **payload: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"request": operation, "status": 1}
    body.update(to_jsonable(payload))
    return body


def _mutation_payload(result: MutationResult) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"_id": result.id}
    if result.changed and result.map_ids:
        payload["map_id"] = result.map_id
        payload["map_ids"] = result.map_ids
    return payload


def create_app(
    settings: Optional[Settings] = None,
    *,
    database: Any = None,
    verifier: Optional[TokenVerifier] = None,
) -> FastAPI:
    settings = settings or load_settings()
    owns_database = database is None
    if database is None:
        database = open_database(settings.mongo_url, settings.db_name)

    registry = ModelRegistry(settings.schema, database)
    engine = MapAssociationEngine(registry.maps, settings.schema.map_types)
    resolver = FilterResolver(registry)
    mutations = MutationOrchestrator(registry, engine)
    verifier = verifier or StaticTokenVerifier(settings.tokens)
    schema_version = settings.schema.version.lower()

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        LOGGER.info("API serving models %s (schema %s)", ", ".join(registry.model_names()), schema_version)
        yield
        if owns_database:
            await database.client.close()

    app = FastAPI(title="MuSA backend API", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.resolver = resolver
    app.state.mutations = mutations

    @app.exception_handler(MusaError)
    async def musa_error_handler(request: Request, exc: MusaError) -> JSONResponse:
        operation = "authenticate" if isinstance(exc, Unauthorized) else getattr(request.state, "operation", "unknown")
        if exc.status_code >= 500:
            LOGGER.error("%s %s failed: %s", operation, request.url.path, exc.message)
        else:
            LOGGER.debug("%s %s rejected: %s", operation, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"request": operation, "status": -1, "err": exc.to_payload()},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        operation = getattr(request.state, "operation", "unknown")
        LOGGER.exception("Unhandled error during %s %s", operation, request.url.path)
        failure = BackendFailure("Unexpected server error")
        return JSONResponse(
            status_code=failure.status_code,
            content={"request": operation, "status": -1, "err": failure.to_payload()},
        )

    def check_target(request: Request, operation: str, version: str, model: str) -> None:
        request.state.operation = operation
        if not registry.is_known_model(model):
            raise MalformedRequest(f"Unknown model {model}")
        if version.lower() != schema_version:
            raise MalformedRequest(f"Unsupported version {version}")

    async def read_body(request: Request) -> Dict[str, Any]:
        raw = await request.body()
        if not raw:
            return {}
        try:
            body = await request.json()
        except ValueError as exc:
            raise MalformedRequest("Request body must be valid JSON") from exc
        if not isinstance(body, dict):
            raise MalformedRequest("Request body must be a JSON object")
        return body

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/{version}/{model}")
    @app.get("/api/{version}/{model}/{filter_type}")
    @app.get("/api/{version}/{model}/{filter_type}/{a}")
    @app.get("/api/{version}/{model}/{filter_type}/{a}/{b}")
    @app.get("/api/{version}/{model}/{filter_type}/{a}/{b}/{c}")
    @app.get("/api/{version}/{model}/{filter_type}/{a}/{b}/{c}/{d}")
    async def find(
        request: Request,
        version: str,
        model: str,
        filter_type: Optional[str] = None,
        a: Optional[str] = None,
        b: Optional[str] = None,
        c: Optional[str] = None,
        d: Optional[str] = None,
    ) -> Dict[str, Any]:
        check_target(request, "find", version, model)
        args = [arg for arg in (a, b, c, d) if arg is not None]
        spec = parse_filter(filter_type, args)
        found = await resolver.find(model, spec)
        return _envelope("find", found=found)

    @app.post("/api/{version}/{model}")
    async def create(request: Request, version: str, model: str) -> Dict[str, Any]:
        check_target(request, "create", version, model)
        body = await read_body(request)
        verifier.verify(body.pop("token", None))
        result = await mutations.create(model, body)
        LOGGER.info("Created %s %s", model, result.id)
        return _envelope("create", **_mutation_payload(result))

    @app.put("/api/{version}/{model}/{doc_id}")
    async def update(request: Request, version: str, model: str, doc_id: str) -> Dict[str, Any]:
        check_target(request, "update", version, model)
        body = await read_body(request)
        verifier.verify(body.pop("token", None))
        result = await mutations.update(model, doc_id, body)
        LOGGER.info("Updated %s %s", model, result.id)
        return _envelope("update", **_mutation_payload(result))

    @app.delete("/api/{version}/{model}/{doc_id}")
    @app.delete("/api/{version}/{model}/{doc_id}/{token}")
    async def remove(
        request: Request,
        version: str,
        model: str,
        doc_id: str,
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        check_target(request, "delete", version, model)
        verifier.verify(token)
        result = await mutations.delete(model, doc_id)
        LOGGER.info("Deleted %s %s", model, doc_id)
        return _envelope("delete", id=result.id)

    return app
