from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone

from incidentops.persistence.db import get_sessionmaker
from incidentops.persistence.repos.factory import build_sql_repositories


_COLUMNS = ("id", "key_prefix", "name", "service_account", "scopes", "last_used_at", "revoked_at")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Show a tenant's API keys and their owners")
    parser.add_argument("--tenant", required=True, help="Tenant identifier")
    parser.add_argument(
        "--stale-days",
        type=int,
        default=None,
        help="Only show active keys unused for at least this many days",
    )
    parser.add_argument("--include-revoked", action="store_true", help="Also show revoked keys")
    return parser


def _is_stale(last_activity: datetime, stale_days: int | None) -> bool:
    if stale_days is None:
        return True
    if last_activity.tzinfo is None:
        last_activity = last_activity.replace(tzinfo=timezone.utc)
    return (datetime.now(timezone.utc) - last_activity).days >= stale_days


async def _show_keys(args: argparse.Namespace) -> int:
    # Goes through the tenant-scoped repositories; hashes are never loaded into the output.
    repositories = build_sql_repositories(get_sessionmaker())
    accounts = {
        account.id: account.name
        for account in await repositories.api_keys.list_service_accounts(tenant_id=args.tenant)
    }
    records = await repositories.api_keys.list_api_keys(tenant_id=args.tenant)

    print("\t".join(_COLUMNS))
    shown = 0
    for record in records:
        if record.revoked_at is not None and not args.include_revoked:
            continue
        if not _is_stale(record.last_used_at or record.created_at, args.stale_days):
            continue
        shown += 1
        print(
            "\t".join(
                (
                    record.id,
                    record.key_prefix,
                    record.name,
                    accounts.get(record.service_account_id, "?"),
                    ",".join(record.scopes),
                    record.last_used_at.isoformat() if record.last_used_at else "-",
                    record.revoked_at.isoformat() if record.revoked_at else "-",
                )
            )
        )
    print(f"# {shown} of {len(records)} keys", file=sys.stderr)
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_show_keys(args))
    except Exception as exc:  # noqa: BLE001 - operators need the failure reason, not a traceback.
        print(f"list_api_keys failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
