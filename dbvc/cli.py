"""
dbvc command line interface.

Every subcommand prints its result as JSON on stdout and exits non-zero
when the operation failed or reported a problem.
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from . import __version__
from .config import DbvcConfig
from .exceptions import DbvcError
from .logging_config import configure_logging
from .service import MigrationService

logger = logging.getLogger(__name__)


def _default_executor() -> str:
    return os.getenv("DBVC_EXECUTOR") or os.getenv("USER") or os.getenv("USERNAME") or "dbvc-cli"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dbvc", description="Database schema version control"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--ledger", help="Ledger database path or sqlite:/// URL")
    parser.add_argument("--document-store", help="Directory of the backup document store")
    parser.add_argument("--env-file", help="Explicit .env file to load")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")

    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create", help="Register a new migration")
    create.add_argument("--name", required=True)
    create.add_argument("--database-id", required=True)
    create.add_argument("--author", required=True)
    create.add_argument("--description")
    create.add_argument("--up-file", type=Path, help="File holding the forward script")
    create.add_argument("--down-file", type=Path, help="File holding the reverse script")
    create.add_argument(
        "--irreversible", action="store_true", help="Register without a reverse script"
    )
    create.add_argument("--tag", action="append", dest="tags", default=None)
    create.add_argument("--depends-on", action="append", default=None)

    run = commands.add_parser("run", help="Apply pending migrations")
    run.add_argument("--database-id", required=True)
    run.add_argument("--environment", required=True)
    run.add_argument("--executor", default=_default_executor())
    run.add_argument("--target", dest="target_migration_id", help="Stop after this migration")
    run.add_argument("--dry-run", action="store_true")

    rollback = commands.add_parser("rollback", help="Revert one applied migration")
    rollback.add_argument("migration_id")
    rollback.add_argument("--database-id", required=True)
    rollback.add_argument("--environment", required=True)
    rollback.add_argument("--executor", default=_default_executor())

    status = commands.add_parser("status", help="Show migration status")
    status.add_argument("--database-id")
    status.add_argument("--environment")

    snapshot = commands.add_parser("snapshot", help="Capture a schema snapshot")
    snapshot.add_argument("--database-id", required=True)
    snapshot.add_argument("--environment", required=True)
    snapshot.add_argument(
        "--capture-type", default="manual", choices=["auto", "manual", "baseline"]
    )
    snapshot.add_argument("--migration-id", dest="triggering_migration_id")
    snapshot.add_argument("--captured-by", default=_default_executor())

    verify = commands.add_parser("verify", help="Check ledger integrity")
    verify.add_argument("--database-id", required=True)
    verify.add_argument("--environment", required=True)
    verify.add_argument("--fix-drift", action="store_true", help="Delete expired locks")

    history = commands.add_parser("history", help="Show execution history")
    history.add_argument("--database-id", required=True)
    history.add_argument("--environment")
    history.add_argument("--migration-id")
    history.add_argument("--limit", type=int, default=50)

    register = commands.add_parser("register-db", help="Add a database to the inventory")
    register.add_argument("database_id")
    register.add_argument("database_name")
    register.add_argument("--secret-name", help="Secret holding the database connection URL")

    commands.add_parser("health", help="Check ledger and backup store health")

    return parser


def build_service(args: argparse.Namespace) -> MigrationService:
    config = DbvcConfig.from_environment(args.env_file)
    if args.ledger:
        config.ledger.url = args.ledger
    if args.document_store:
        config.document_store.path = args.document_store

    def report(current: int, total: int, message: str) -> None:
        logger.info(f"[{current}/{total}] {message}")

    return MigrationService(config, progress_callback=report)


def _read_script(path: Path | None) -> str | None:
    return path.read_text(encoding="utf-8") if path else None


def dispatch(service: MigrationService, args: argparse.Namespace) -> tuple[Any, bool]:
    """Run one subcommand. Returns the printable result and whether it succeeded."""
    if args.command == "create":
        down_script = "" if args.irreversible else _read_script(args.down_file)
        result = service.create_migration(
            name=args.name,
            database_id=args.database_id,
            author=args.author,
            description=args.description,
            up_script=_read_script(args.up_file),
            down_script=down_script,
            tags=args.tags,
            depends_on=args.depends_on,
        )
        return result, True

    if args.command == "run":
        result = service.run_migrations(
            args.database_id,
            args.environment,
            args.executor,
            target_migration_id=args.target_migration_id,
            dry_run=args.dry_run,
        )
        return result, result["success"]

    if args.command == "rollback":
        result = service.rollback_migration(
            args.migration_id, args.database_id, args.environment, args.executor
        )
        return result, result["success"]

    if args.command == "status":
        return service.get_migration_status(args.database_id, args.environment), True

    if args.command == "snapshot":
        result = service.capture_schema_snapshot(
            args.database_id,
            args.environment,
            capture_type=args.capture_type,
            triggering_migration_id=args.triggering_migration_id,
            captured_by=args.captured_by,
        )
        return result, True

    if args.command == "verify":
        result = service.verify_integrity(args.database_id, args.environment, args.fix_drift)
        return result, result["isValid"]

    if args.command == "history":
        records = service.get_execution_history(
            args.database_id, args.environment, args.migration_id, args.limit
        )
        return [record.to_dict() for record in records], True

    if args.command == "register-db":
        entry = service.register_database(args.database_id, args.database_name, args.secret_name)
        return entry.to_dict(), True

    if args.command == "health":
        result = service.health()
        return result, result["status"] == "healthy"

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose, json_logs=args.json_logs)

    try:
        with build_service(args) as service:
            result, ok = dispatch(service, args)
    except DbvcError as e:
        print(json.dumps({"success": False, "error": e.to_dict()}, indent=2, default=str))
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
