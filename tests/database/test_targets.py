"""Tests for target connection resolution and the ledger schema."""

import pytest

from dbvc.config import DbvcConfig, StaticSecretProvider
from dbvc.database.connection import DatabaseConnection
from dbvc.database.schema import (
    LEDGER_SCHEMA_VERSION,
    LEDGER_TABLES,
    ensure_ledger_schema,
    get_ledger_schema_version,
)
from dbvc.database.targets import TargetConnections
from dbvc.exceptions import ValidationError


class TestTargetConnections:
    def test_registered_connection_wins(self, ledger, target_db):
        targets = TargetConnections(ledger, secret_provider=StaticSecretProvider())
        targets.register("app", "dev", target_db)

        assert targets.resolve("app", "dev") is target_db
        assert targets.resolve("app", "staging") is target_db
        assert targets.resolve("app", "prod") is ledger

    def test_registered_connection_is_connected_on_resolve(self, ledger, tmp_path):
        lazy = DatabaseConnection(str(tmp_path / "lazy.db"))
        targets = TargetConnections(ledger)
        targets.register("app", "prod", lazy)

        assert targets.resolve("app", "prod").is_connected is True
        lazy.close()

    def test_environment_secret_is_resolved(self, ledger, tmp_path):
        path = tmp_path / "dev.db"
        secrets = StaticSecretProvider({"SQL-DEV-CONNECTION-STRING": f"sqlite:///{path}"})
        targets = TargetConnections(ledger, DbvcConfig(), secrets)

        connection = targets.resolve("app", "dev")

        assert connection is not ledger
        assert connection.db_path == path
        assert targets.resolve("billing", "dev") is connection
        targets.close()
        assert connection.is_connected is False

    def test_inventory_secret_takes_precedence(self, ledger, tmp_path):
        secrets = StaticSecretProvider(
            {
                "APP-CONNECTION": f"sqlite:///{tmp_path / 'app.db'}",
                "SQL-DEV-CONNECTION-STRING": f"sqlite:///{tmp_path / 'shared.db'}",
            }
        )
        targets = TargetConnections(
            ledger,
            DbvcConfig(),
            secrets,
            secret_name_for=lambda database_id: "APP-CONNECTION" if database_id == "app" else None,
        )

        assert targets.resolve("app", "dev").db_path == tmp_path / "app.db"
        assert targets.resolve("crm", "dev").db_path == tmp_path / "shared.db"
        targets.close()

    def test_missing_secret_falls_back_to_ledger(self, ledger):
        targets = TargetConnections(ledger, DbvcConfig(), StaticSecretProvider())

        assert targets.resolve("app", "prod") is ledger

    def test_close_leaves_registered_connections_open(self, ledger, target_db):
        targets = TargetConnections(ledger)
        targets.register("app", "dev", target_db)

        targets.close()

        assert target_db.is_connected is True

    def test_unknown_environment_is_rejected(self, ledger):
        with pytest.raises(ValidationError):
            TargetConnections(ledger).resolve("app", "qa")


class TestLedgerSchema:
    def test_creates_every_table(self, ledger):
        rows = ledger.fetch_all("SELECT name FROM sqlite_master WHERE type = 'table'")

        assert LEDGER_TABLES <= {row["name"] for row in rows}
        assert get_ledger_schema_version(ledger) == LEDGER_SCHEMA_VERSION

    def test_is_idempotent(self, ledger):
        ledger.execute(
            "INSERT INTO migration_locks (database_id, locked_at, locked_by, expires_at) "
            "VALUES ('app', 'x', 'alice', 'y')"
        )

        ensure_ledger_schema(ledger)

        assert ledger.fetch_one("SELECT COUNT(*) AS n FROM migration_locks")["n"] == 1

    def test_fresh_database_reports_version_zero(self, target_db):
        assert get_ledger_schema_version(target_db) == 0
