#!/usr/bin/env python3
"""
CleanMod Operator CLI

Administrative commands against the configured database (DATABASE_URL).

Usage:
    python scripts/manage.py init-db
    python scripts/manage.py seed-plans
    python scripts/manage.py create-org "Acme" --plan free
    python scripts/manage.py create-key <org_id> --name "production"
    python scripts/manage.py deactivate-key <org_id> <key_id>
    python scripts/manage.py usage <org_id>
    python scripts/manage.py serve --reload
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from app.auth.credentials import CredentialStore
from app.config import configure_logging, get_settings
from app.quota.ledger import QuotaLedger, billing_period
from app.store import Database, create_organization, seed_plans


def _database() -> Database:
    return Database(get_settings().database_url)


async def init_db(args: argparse.Namespace) -> int:
    db = _database()
    try:
        await db.create_all()
    finally:
        await db.dispose()
    print(f"Tables created ({db.dialect})")
    return 0


async def seed(args: argparse.Namespace) -> int:
    db = _database()
    try:
        await db.create_all()
        plans = await seed_plans(db)
    finally:
        await db.dispose()

    print("Seeded plans:")
    for plan in plans:
        print(f"  {plan.name:<10} {plan.monthly_quota:>8}/month  models={','.join(plan.models_allowed)}")
    return 0


async def create_org(args: argparse.Namespace) -> int:
    db = _database()
    try:
        org = await create_organization(
            db,
            args.name,
            plan_name=args.plan,
            owner_id=args.owner,
            store_input_preview=args.store_input_preview,
            timezone=args.timezone,
        )
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1
    finally:
        await db.dispose()

    print(f"Organization created: {org.id} ({org.name})")
    return 0


async def create_key(args: argparse.Namespace) -> int:
    db = _database()
    try:
        credentials = CredentialStore(db)
        if await credentials.load_tenant(args.org_id) is None:
            print(f"ERROR: Organization not found: {args.org_id}")
            return 1
        raw_secret, key_id = await credentials.create_api_key(args.org_id, args.name)
    finally:
        await db.dispose()

    print(f"API key created: {key_id}")
    print("")
    print(f"  {raw_secret}")
    print("")
    print("Store it now. It cannot be shown again.")
    return 0


async def deactivate_key(args: argparse.Namespace) -> int:
    db = _database()
    try:
        deactivated = await CredentialStore(db).deactivate_api_key(args.org_id, args.key_id)
    finally:
        await db.dispose()

    if not deactivated:
        print(f"ERROR: API key {args.key_id} not found for organization {args.org_id}")
        return 1
    print(f"API key deactivated: {args.key_id}")
    return 0


async def usage(args: argparse.Namespace) -> int:
    settings = get_settings()
    db = _database()
    try:
        tenant = await CredentialStore(db).load_tenant(args.org_id)
        if tenant is None:
            print(f"ERROR: Organization not found: {args.org_id}")
            return 1

        ledger = QuotaLedger(db, settings)
        now = datetime.now(timezone.utc)
        start, end = billing_period(ledger.today_for(tenant, now))
        used = await ledger.usage_between(tenant.id, start, end)
        quota = ledger.quota_for(tenant)
    finally:
        await db.dispose()

    print(f"Organization: {tenant.name} ({tenant.id})")
    print(f"Billing period: {start} .. {end} (exclusive)")
    print(f"Usage: {used} / {quota}")
    return 0


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


def main():
    """Main entry point for the operator CLI."""

    parser = argparse.ArgumentParser(
        description="CleanMod operator commands",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/manage.py seed-plans
  python scripts/manage.py create-org "Acme" --plan starter
  python scripts/manage.py create-key <org_id> --name production
  python scripts/manage.py usage <org_id>
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("seed-plans", help="Create the free/starter/pro plans")

    org_parser = subparsers.add_parser("create-org", help="Create an organization")
    org_parser.add_argument("name", help="Organization display name")
    org_parser.add_argument("--plan", help="Plan name for an active subscription")
    org_parser.add_argument("--owner", help="Owning account identifier")
    org_parser.add_argument(
        "--store-input-preview",
        action="store_true",
        help="Keep a truncated input preview in moderation logs",
    )
    org_parser.add_argument("--timezone", help="IANA timezone for billing months")

    key_parser = subparsers.add_parser("create-key", help="Create an API key")
    key_parser.add_argument("org_id", help="Organization identifier")
    key_parser.add_argument("--name", help="Key name (default: Key <timestamp>)")

    deactivate_parser = subparsers.add_parser("deactivate-key", help="Deactivate an API key")
    deactivate_parser.add_argument("org_id", help="Organization identifier")
    deactivate_parser.add_argument("key_id", help="API key identifier")

    usage_parser = subparsers.add_parser("usage", help="Show current-month usage")
    usage_parser.add_argument("org_id", help="Organization identifier")

    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", help="Bind host (default: HOST)")
    serve_parser.add_argument("--port", type=int, help="Bind port (default: PORT)")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    args = parser.parse_args()
    configure_logging(get_settings())

    match args.command:
        case "init-db":
            code = asyncio.run(init_db(args))
        case "seed-plans":
            code = asyncio.run(seed(args))
        case "create-org":
            code = asyncio.run(create_org(args))
        case "create-key":
            code = asyncio.run(create_key(args))
        case "deactivate-key":
            code = asyncio.run(deactivate_key(args))
        case "usage":
            code = asyncio.run(usage(args))
        case "serve":
            code = serve(args)
        case _:
            parser.print_help()
            code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
