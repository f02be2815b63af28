from __future__ import annotations

import argparse
import asyncio
import sys

from sqlalchemy.exc import SQLAlchemyError

from modsentry.persistence.db import create_schema, drop_schema, engine


def _build_parser() -> argparse.ArgumentParser:
    # Production schemas come from Alembic; this bootstraps dev and demo databases.
    parser = argparse.ArgumentParser(description="Create the moderation schema")
    parser.add_argument("--reset", action="store_true", help="Drop existing tables first")
    return parser


async def _init_db(args: argparse.Namespace) -> int:
    try:
        if args.reset:
            await drop_schema()
        await create_schema()
    finally:
        await engine.dispose()
    print("schema ready")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_init_db(args))
    except (SQLAlchemyError, OSError) as exc:
        print(f"init_db failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
