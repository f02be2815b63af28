from __future__ import annotations

import argparse
import asyncio
import getpass
import sys

from sqlalchemy.exc import SQLAlchemyError

from modsentry.core.errors import ModSentryError
from modsentry.services.credential_pool import CredentialPool


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Add a provider API key to the credential pool")
    parser.add_argument("--name", required=True, help="Operator-facing label")
    parser.add_argument("--description", default=None, help="Optional note")
    parser.add_argument(
        "--secret",
        default=None,
        help="Provider API key; prompted for when omitted so it stays out of shell history",
    )
    parser.add_argument("--actor", default="add_credential", help="Actor recorded in the audit log")
    return parser


async def _add_credential(args: argparse.Namespace, *, pool: CredentialPool | None = None) -> int:
    secret = args.secret or getpass.getpass("Provider API key: ")
    pool = pool or CredentialPool()
    view = await pool.add_credential(
        name=args.name,
        secret=secret,
        description=args.description,
        actor_ref=args.actor,
    )
    print("credential added:")
    print(f"  id: {view.id}")
    print(f"  name: {view.name}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_add_credential(args))
    except (ModSentryError, ValueError, SQLAlchemyError) as exc:
        print(f"add_credential failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
