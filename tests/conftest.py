"""Shared fixtures for the dbvc test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from dbvc.config import DbvcConfig, StaticSecretProvider
from dbvc.database import DatabaseConnection, FileDocumentStore
from dbvc.database.schema import ensure_ledger_schema
from dbvc.service import MigrationService

_ISOLATED_VARIABLES = [
    "SQL-DEV-CONNECTION-STRING",
    "SQL-PROD-CONNECTION-STRING",
    "SQL_DEV_CONNECTION_STRING",
    "SQL_PROD_CONNECTION_STRING",
    "DBVC_LEDGER_URL",
    "DBVC_DOCUMENT_STORE_PATH",
    "DBVC_LOCK_TIMEOUT_MINUTES",
    "DBVC_TRANSACTION_TIMEOUT_SECONDS",
    "DBVC_RETRY_ATTEMPTS",
    "DBVC_RETRY_DELAY_MS",
    "DBVC_MIGRATIONS_PATH",
    "DBVC_ENVIRONMENT",
    "DBVC_EXECUTOR",
    "ENVIRONMENT",
]


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep developer machine settings out of the tests."""
    for name in _ISOLATED_VARIABLES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(tmp_path):
    """Connected ledger database with the ledger tables created."""
    db = DatabaseConnection(str(tmp_path / "ledger.db")).connect()
    ensure_ledger_schema(db)
    yield db
    db.close()


@pytest.fixture
def target_db(tmp_path):
    """Separate target database the migration scripts run against."""
    db = DatabaseConnection(str(tmp_path / "app.db")).connect()
    yield db
    db.close()


@pytest.fixture
def config(tmp_path):
    config = DbvcConfig()
    config.ledger.url = str(tmp_path / "ledger.db")
    config.execution.retry_delay_ms = 0
    return config


@pytest.fixture
def service(config, clock, target_db):
    """Connected service without a backup mirror; ``app`` targets ``target_db`` in dev and prod."""
    svc = MigrationService(config, secret_provider=StaticSecretProvider(), now=clock)
    svc.connect()
    svc.targets.register("app", "dev", target_db)
    svc.targets.register("app", "prod", target_db)
    yield svc
    svc.close()


@pytest.fixture
def document_store(tmp_path):
    return FileDocumentStore(tmp_path / "documents")


@pytest.fixture
def mirrored_service(config, clock, target_db, document_store):
    """Connected service that mirrors the ledger into ``document_store``."""
    svc = MigrationService(
        config,
        document_store=document_store,
        secret_provider=StaticSecretProvider(),
        now=clock,
    )
    svc.connect()
    svc.targets.register("app", "dev", target_db)
    yield svc
    svc.close()


@pytest.fixture
def make_migration(clock):
    """Register a migration one second after the previous one so ids sort by creation."""

    def _make(svc, name, up_script, down_script=None, database_id="app", **kwargs):
        clock.advance(seconds=1)
        result = svc.create_migration(
            name=name,
            database_id=database_id,
            author="alice",
            up_script=up_script,
            down_script=down_script,
            **kwargs,
        )
        return result["migrationId"]

    return _make
