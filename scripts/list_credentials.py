from __future__ import annotations

import argparse
import asyncio
import sys

from sqlalchemy.exc import SQLAlchemyError

from modsentry.services.credential_pool import CredentialPool


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="List pool credentials without exposing secrets")
    parser.add_argument("--inactive-only", action="store_true", help="Show only deactivated credentials")
    parser.add_argument("--include-removed", action="store_true", help="Include soft-removed credentials")
    return parser


async def _list_credentials(args: argparse.Namespace, *, pool: CredentialPool | None = None) -> int:
    pool = pool or CredentialPool()
    views = await pool.list_credentials(
        active=False if args.inactive_only else None,
        include_removed=args.include_removed,
        limit=200,
    )
    print("id\tname\tactive\tfailure_count\tlast_used_at\tdeactivated_at\tremoved_at")
    for view in views:
        print(
            f"{view.id}\t{view.name}\t{view.active}\t{view.failure_count}\t"
            f"{view.last_used_at.isoformat() if view.last_used_at else ''}\t"
            f"{view.deactivated_at.isoformat() if view.deactivated_at else ''}\t"
            f"{view.removed_at.isoformat() if view.removed_at else ''}"
        )
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_list_credentials(args))
    except SQLAlchemyError as exc:
        print(f"list_credentials failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
