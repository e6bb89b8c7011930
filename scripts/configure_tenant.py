from __future__ import annotations

import argparse
import asyncio
import getpass
import os
import sys

from lifecycleops.core.logging import configure_logging
from lifecycleops.persistence.db import create_all, get_engine
from lifecycleops.services.container import build_services


def _build_parser() -> argparse.ArgumentParser:
    # Secrets are read from the environment or a prompt, never from argv.
    parser = argparse.ArgumentParser(description="Configure tenant credentials and print a session id")
    parser.add_argument("--application-id", required=True, help="Directory application (client) id")
    parser.add_argument("--directory-id", required=True, help="Directory (tenant) id")
    parser.add_argument(
        "--secret-env",
        default="LIFECYCLEOPS_CLIENT_SECRET",
        help="Environment variable holding the client secret",
    )
    parser.add_argument("--actor", default="configure_tenant", help="Actor recorded in the audit trail")
    parser.add_argument("--init-db", action="store_true", help="Create tables first (SQLite/dev only)")
    return parser


def _read_secret(env_name: str) -> str:
    secret = os.environ.get(env_name)
    if secret:
        return secret
    if not sys.stdin.isatty():
        return sys.stdin.readline().strip()
    return getpass.getpass("Client secret: ")


async def _configure(args: argparse.Namespace) -> int:
    if args.init_db:
        await create_all(get_engine())
    services = build_services()
    session_id = await services.registry.create_session(
        args.application_id,
        args.directory_id,
        _read_secret(args.secret_env),
        actor_id=args.actor,
    )
    tenant = await services.registry.resolve_tenant(session_id)
    print("Tenant configured:")
    print(f"  tenant_id: {tenant.tenant_id}")
    print(f"  session_id: {session_id}")
    return 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = _build_parser().parse_args(argv)
    try:
        return asyncio.run(_configure(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"configure_tenant failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
