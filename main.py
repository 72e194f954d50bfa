#!/usr/bin/env python3
"""
Auth API -- registration, login and rotating access/refresh tokens.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py serve --reload
  python main.py migrate

Environment variables (see core/config.py for the full list):
  ACCESS_SECRET    HMAC key for access tokens (>= 32 chars)
  REFRESH_SECRET   HMAC key for refresh tokens (>= 32 chars, must differ)
  DATABASE_URL     SQLAlchemy async URL, default sqlite+aiosqlite:///./authapi.db
  DEBUG=true       auto-generate missing secrets for local development
"""

import argparse
import asyncio
import logging
import sys

import uvicorn
from pydantic import ValidationError

from auth.errors import StorageError
from auth.store import UserStore
from core.config import get_settings
from core.logging_config import setup_logging

logger = logging.getLogger("authapi.cli")


async def _migrate(database_url: str) -> None:
    store = UserStore(database_url)
    try:
        await store.init_schema()
    finally:
        await store.close()


def cmd_migrate(args: argparse.Namespace) -> int:
    settings = get_settings()
    try:
        asyncio.run(_migrate(settings.database_url))
    except StorageError:
        logger.exception("Migration failed")
        return 1
    logger.info("Schema is up to date (%s)", settings.database_url)
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    settings = get_settings()
    uvicorn.run(
        "api.main:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
        log_config=None,  # api.main's lifespan configures logging
    )
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Auth API server and maintenance commands.")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn.")
    serve.add_argument("--host", default=None, help="Bind address (default: HOST setting).")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: PORT setting).")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only).")
    serve.set_defaults(func=cmd_serve)

    migrate = sub.add_parser("migrate", help="Create the database schema and exit.")
    migrate.set_defaults(func=cmd_migrate)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"  [!] Invalid configuration:\n{e}", file=sys.stderr)
        return 2
    setup_logging(settings.env, settings.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
