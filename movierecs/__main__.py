"""Run the service with ``python -m movierecs`` or the ``movierecs`` script.

Usage:
    movierecs [serve]
    movierecs seed-lookup [PATH] [--database-url URL]

``seed-lookup`` copies a JSON movie dataset into the ``movie_metadata``
table used as the second lookup tier. PATH defaults to ``LOOKUP_DATA_PATH``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Sequence

import uvicorn

from app.config import DEFAULT_LOOKUP_DATA_PATH, settings
from app.services.lookup import seed_document_store

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="movierecs", description=settings.app_name)
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("serve", help="Run the HTTP API (default)")
    seed = commands.add_parser(
        "seed-lookup", help="Load a JSON movie dataset into the document store"
    )
    seed.add_argument(
        "path",
        nargs="?",
        type=Path,
        default=settings.lookup_data_path or DEFAULT_LOOKUP_DATA_PATH,
        help="JSON array of movies (default: LOOKUP_DATA_PATH)",
    )
    seed.add_argument(
        "--database-url",
        default=settings.database_url,
        help="Target database (default: DATABASE_URL)",
    )
    return parser


def serve() -> None:
    logger.info(
        "Starting %s on %s:%s (%s)",
        settings.app_name,
        settings.server_host,
        settings.server_port,
        settings.environment,
    )
    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO)
    args = build_parser().parse_args(argv)

    if args.command == "seed-lookup":
        count = asyncio.run(seed_document_store(args.database_url, args.path))
        print(f"Seeded {count} movies into the document store")
        return 0

    serve()
    return 0


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    raise SystemExit(main())
