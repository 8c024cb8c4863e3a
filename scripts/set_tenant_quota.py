from __future__ import annotations

import argparse
import asyncio
import sys

from incidentops.core.config import get_settings
from incidentops.core.errors import IncidentOpsError
from incidentops.persistence.db import get_sessionmaker
from incidentops.persistence.repos.factory import build_sql_repositories
from incidentops.services.quota import UsageService


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Set a tenant's rolling 24h write limit")
    parser.add_argument("--tenant", required=True, help="Tenant identifier")
    parser.add_argument("--limit", type=int, required=True, help="Writes allowed per window")
    return parser


async def _set_quota(args: argparse.Namespace) -> int:
    repositories = build_sql_repositories(get_sessionmaker())
    service = UsageService(repositories.usage, repositories.tenants, settings=get_settings())
    quota = await service.set_daily_write_limit(
        tenant_id=args.tenant, daily_write_limit=args.limit
    )
    print(f"tenant_id={quota.tenant_id} daily_write_limit={quota.daily_write_limit}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_set_quota(args))
    except IncidentOpsError as exc:
        print(f"set_tenant_quota rejected: {exc.code} {exc.message}", file=sys.stderr)
        return 2
    except Exception as exc:  # noqa: BLE001 - show full operator-facing error context.
        print(f"set_tenant_quota failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
