from __future__ import annotations

import argparse
import asyncio
import sys

from sqlalchemy.exc import SQLAlchemyError

from modsentry.core.errors import ModSentryError
from modsentry.services.credential_pool import CredentialPool


def _build_parser() -> argparse.ArgumentParser:
    # Deactivated keys never return on their own; this is the operator path back.
    parser = argparse.ArgumentParser(description="Reactivate a credential and reset its failure count")
    parser.add_argument("--id", required=True, dest="credential_id", help="Credential id")
    parser.add_argument("--actor", default="reactivate_credential", help="Actor recorded in the audit log")
    return parser


async def _reactivate(args: argparse.Namespace, *, pool: CredentialPool | None = None) -> int:
    pool = pool or CredentialPool()
    view = await pool.reactivate(args.credential_id, actor_ref=args.actor)
    print(f"credential {view.id} ({view.name}) active={view.active} failure_count={view.failure_count}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_reactivate(args))
    except (ModSentryError, SQLAlchemyError) as exc:
        print(f"reactivate_credential failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
