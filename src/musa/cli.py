"""Command line interface for the MuSA backend."""
from __future__ import annotations

import argparse
import asyncio
import logging

from musa.config.settings import Settings, configure_logging, load_settings
from musa.maps.engine import MapAssociationEngine
from musa.maps.repair import MapRepairer, RepairReport
from musa.storage.registry import ModelRegistry
from musa.storage.store import open_database

LOGGER = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="MuSA document API backend")
    parser.add_argument("--schemas", help="Path to schemas.yaml (defaults to MUSA_SCHEMAS_PATH or configs/).")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, help="Listen port (defaults to MUSA_LISTEN_PORT).")
    serve_parser.set_defaults(func=_run_serve)

    repair_parser = subparsers.add_parser("repair", help="Audit map consistency")
    repair_parser.add_argument("--fix", action="store_true", help="Remove dangling children and references.")
    repair_parser.set_defaults(func=_run_repair)

    args = parser.parse_args(argv)
    settings = load_settings(args.schemas)
    configure_logging(settings.run_mode, settings.log_file)
    args.func(args, settings)


def _run_serve(args: argparse.Namespace, settings: Settings) -> None:
    import uvicorn

    from musa.api.app import create_app

    port = args.port or settings.listen_port
    LOGGER.info("--- API server listening on port %s", port)
    uvicorn.run(create_app(settings), host=args.host, port=port, log_config=None)


async def run_repair(settings: Settings, *, fix: bool) -> RepairReport:
    database = open_database(settings.mongo_url, settings.db_name)
    try:
        registry = ModelRegistry(settings.schema, database)
        engine = MapAssociationEngine(registry.maps, settings.schema.map_types)
        return await MapRepairer(registry, engine).audit(fix=fix)
    finally:
        await database.client.close()


def _run_repair(args: argparse.Namespace, settings: Settings) -> None:
    report = asyncio.run(run_repair(settings, fix=args.fix))
    print(report.summary())
    if not report.clean and not args.fix:
        LOGGER.info("Run with --fix to remove dangling children and missing map references")


if __name__ == "__main__":
    main()
