#!/usr/bin/env python3
"""
Money Ledger Management CLI

Commands for managing a ledger database:
- migrate: Apply all pending schema migrations
- version: Print the current schema version
- downgrade: Revert the schema to an earlier version
- validate: Check the shipped migration list
- stats: Print row counts and the total balance
- health-check: Run health checks against the store

The database comes from --database, or MONEY_LEDGER_DATABASE_PATH.

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage --database ledger.db3 migrate
    python -m tools.manage --database ledger.db3 downgrade --to 5
    python -m tools.manage validate
"""

import argparse
import sys
from decimal import Decimal
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def _open_store(args):
    """Open the configured store without migrating it."""
    from money_ledger.db import SqliteStore, StorageConfig

    if args.database:
        config = StorageConfig.from_path(args.database, apply_migrations=False)
    else:
        config = StorageConfig.from_env()
        config.apply_migrations = False
        if config.memory_base:
            print("Error: no database configured (use --database or MONEY_LEDGER_DATABASE_PATH)")
            return None
    return SqliteStore(config)


def cmd_migrate(args):
    """Apply every pending migration."""
    from money_ledger.db import MigrationError

    store = _open_store(args)
    if store is None:
        return 1

    with store:
        before = store.schema_version()
        try:
            applied = store.migrate()
        except MigrationError as e:
            print(f"[FAIL] {e}")
            return 1

        if applied:
            print(f"[OK] Migrated from version {before} to {store.schema_version()}")
            print(f"  Applied: {', '.join(str(v) for v in applied)}")
        else:
            print(f"[OK] Already at latest version {before}")
    return 0


def cmd_version(args):
    """Print the current schema version."""
    from money_ledger.db import MIGRATIONS

    store = _open_store(args)
    if store is None:
        return 1

    with store:
        current = store.schema_version()
    print(f"Schema version: {current} (latest: {MIGRATIONS.latest_version})")
    return 0


def cmd_downgrade(args):
    """Revert the schema to an earlier version."""
    from money_ledger.db import MigrationError

    store = _open_store(args)
    if store is None:
        return 1

    with store:
        current = store.schema_version()
        if args.to > current:
            print(f"Error: target {args.to} is above current version {current}; use migrate")
            return 1
        try:
            reverted = store.migrate(args.to)
        except MigrationError as e:
            print(f"[FAIL] {e}")
            return 1

    if reverted:
        print(f"[OK] Reverted: {', '.join(str(v) for v in reverted)}")
    else:
        print(f"[OK] Already at version {current}")
    return 0


def cmd_validate(args):
    """Validate the shipped migration list."""
    from money_ledger.db import MIGRATIONS, MigrationError

    try:
        MIGRATIONS.validate(downgrades=True)
    except MigrationError as e:
        print(f"[FAIL] {e}")
        return 1

    print(f"[OK] {len(MIGRATIONS.steps)} migrations valid")
    return 0


def cmd_stats(args):
    """Print row counts and the total balance."""
    store = _open_store(args)
    if store is None:
        return 1

    with store:
        users = store.get_users()
        accounts = store.get_accounts()
        transactions = store.get_transactions()

    total = sum((a.balance for a in accounts), Decimal("0"))
    print(f"Users:        {len(users)}")
    print(f"Accounts:     {len(accounts)}")
    print(f"Transactions: {len(transactions)}")
    print(f"Total balance: {total}")
    return 0


def cmd_health_check(args):
    """Run health checks."""
    from money_ledger.observability import check_health

    store = _open_store(args)
    if store is None:
        return 1

    with store:
        status = check_health(store)

    print("=== Health Check ===")
    for name, check in status.checks.items():
        print(f"  {name}: {check}")
    print(f"  duration: {status.duration_ms}ms")
    return 0 if status.healthy else 1


def main(argv=None):
    from money_ledger.observability import setup_logging

    parser = argparse.ArgumentParser(
        description="Money Ledger Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--database", "-d", help="SQLite database file")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("migrate", help="Apply all pending migrations")
    subparsers.add_parser("version", help="Print the current schema version")

    p_downgrade = subparsers.add_parser(
        "downgrade",
        help="Revert the schema to an earlier version"
    )
    p_downgrade.add_argument("--to", type=int, required=True, help="Target version")

    subparsers.add_parser("validate", help="Validate the migration list")
    subparsers.add_parser("stats", help="Print row counts")
    subparsers.add_parser("health-check", help="Run health checks")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging()

    commands = {
        "migrate": cmd_migrate,
        "version": cmd_version,
        "downgrade": cmd_downgrade,
        "validate": cmd_validate,
        "stats": cmd_stats,
        "health-check": cmd_health_check,
    }

    return commands[args.command](args) or 0


if __name__ == "__main__":
    sys.exit(main())
