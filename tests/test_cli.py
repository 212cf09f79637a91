"""
Tests for the dbvc command line interface. Each test drives ``main()``
against a temporary ledger and reads the JSON printed on stdout.
"""

import json
from unittest.mock import Mock

import pytest

from dbvc import __version__
from dbvc.cli import build_parser, main


@pytest.fixture(autouse=True)
def no_logging_setup(monkeypatch):
    """Leave pytest's log capture handlers in place."""
    configure = Mock()
    monkeypatch.setattr("dbvc.cli.configure_logging", configure)
    return configure


@pytest.fixture
def ledger_path(tmp_path):
    return str(tmp_path / "cli-ledger.db")


@pytest.fixture
def dbvc(ledger_path, capsys):
    """Run the CLI against the temporary ledger; returns (exit code, parsed JSON)."""

    def _run(*args):
        code = main(["--ledger", ledger_path, *args])
        out = capsys.readouterr().out
        return code, json.loads(out)

    return _run


@pytest.fixture
def write_script(tmp_path):
    def _write(name, content):
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return str(path)

    return _write


def create(dbvc, write_script, name, up, *extra):
    return dbvc(
        "create",
        "--name", name,
        "--database-id", "app",
        "--author", "alice",
        "--up-file", write_script(f"{name.replace(' ', '_')}.up.sql", up),
        *extra,
    )


class TestParser:
    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--version"])

        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_capture_type_choices(self):
        parser = build_parser()
        args = parser.parse_args(
            ["snapshot", "--database-id", "app", "--environment", "dev", "--capture-type", "baseline"]
        )
        assert args.capture_type == "baseline"

        with pytest.raises(SystemExit):
            parser.parse_args(
                ["snapshot", "--database-id", "app", "--environment", "dev", "--capture-type", "nightly"]
            )

    def test_executor_defaults_from_environment(self, monkeypatch):
        monkeypatch.setenv("DBVC_EXECUTOR", "deploy-bot")

        args = build_parser().parse_args(["run", "--database-id", "app", "--environment", "dev"])

        assert args.executor == "deploy-bot"

    def test_logging_options_are_passed_through(self, no_logging_setup, ledger_path, capsys):
        main(["--ledger", ledger_path, "--verbose", "--json-logs", "health"])

        no_logging_setup.assert_called_once_with(verbose=True, json_logs=True)


class TestCommands:
    def test_create_run_status_history(self, dbvc, write_script):
        code, created = create(dbvc, write_script, "create users", "CREATE TABLE users (id INTEGER);")
        assert code == 0
        migration_id = created["migrationId"]
        assert created["filePath"].endswith(f"{migration_id}.sql")

        code, run = dbvc("run", "--database-id", "app", "--environment", "dev", "--executor", "alice")
        assert code == 0
        assert run["success"] is True
        assert [m["migrationId"] for m in run["executedMigrations"]] == [migration_id]

        code, status = dbvc("status", "--database-id", "app", "--environment", "dev")
        assert code == 0
        assert status["databases"][0]["appliedMigrations"] == 1

        code, history = dbvc("history", "--database-id", "app")
        assert code == 0
        assert history[0]["status"] == "success"
        assert history[0]["executor"] == "alice"

    def test_failed_run_exits_non_zero(self, dbvc, write_script):
        create(dbvc, write_script, "broken", "INSERT INTO nowhere VALUES (1);")

        code, run = dbvc("run", "--database-id", "app", "--environment", "prod", "--executor", "alice")

        assert code == 1
        assert run["success"] is False
        assert run["failedMigration"] is not None

    def test_dry_run_applies_nothing(self, dbvc, write_script):
        create(dbvc, write_script, "create users", "CREATE TABLE users (id INTEGER);")

        code, _ = dbvc("run", "--database-id", "app", "--environment", "dev", "--dry-run")
        _, status = dbvc("status", "--database-id", "app", "--environment", "dev")

        assert code == 0
        assert status["databases"][0]["pendingMigrations"] == 1

    def test_rollback(self, dbvc, write_script):
        _, created = create(
            dbvc,
            write_script,
            "create users",
            "CREATE TABLE users (id INTEGER);",
            "--down-file",
            write_script("down.sql", "DROP TABLE users;"),
        )
        dbvc("run", "--database-id", "app", "--environment", "dev")

        code, result = dbvc(
            "rollback", created["migrationId"], "--database-id", "app", "--environment", "dev"
        )

        assert code == 0
        assert result["success"] is True

    def test_irreversible_migration_cannot_be_rolled_back(self, dbvc, write_script):
        _, created = create(
            dbvc, write_script, "create users", "CREATE TABLE users (id INTEGER);", "--irreversible"
        )
        dbvc("run", "--database-id", "app", "--environment", "dev")

        code, result = dbvc(
            "rollback", created["migrationId"], "--database-id", "app", "--environment", "dev"
        )

        assert code == 1
        assert "not reversible" in result["error"]

    def test_snapshot_and_verify(self, dbvc, write_script):
        create(dbvc, write_script, "create users", "CREATE TABLE users (id INTEGER);")
        dbvc("run", "--database-id", "app", "--environment", "dev")

        code, snapshot = dbvc(
            "snapshot", "--database-id", "app", "--environment", "dev", "--captured-by", "alice"
        )
        assert code == 0
        assert snapshot["tableCount"] == 1

        code, verify = dbvc("verify", "--database-id", "app", "--environment", "dev")
        assert code == 0
        assert verify["isValid"] is True

    def test_register_db_and_health(self, dbvc):
        code, entry = dbvc("register-db", "crm", "Customer CRM", "--secret-name", "CRM-CONNECTION")
        assert code == 0
        assert entry["connectionSecretName"] == "CRM-CONNECTION"

        code, health = dbvc("health")
        assert code == 0
        assert health["status"] == "healthy"

    def test_document_store_option_enables_mirror(self, dbvc, tmp_path):
        code, health = dbvc("--document-store", str(tmp_path / "docs"), "health")

        assert code == 0
        assert health["documentStore"]["configured"] is True

    def test_engine_errors_are_printed_as_json(self, dbvc, write_script):
        code, result = dbvc(
            "create", "--name", "   ", "--database-id", "app", "--author", "alice"
        )

        assert code == 1
        assert result["success"] is False
        assert result["error"]["error"] == "ValidationError"

    def test_unknown_environment_is_an_error(self, dbvc):
        code, result = dbvc("run", "--database-id", "app", "--environment", "qa")

        assert code == 1
        assert result["error"]["error"] == "ValidationError"
