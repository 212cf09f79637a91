from unittest.mock import Mock

from dbvc.database.document_store import ENTITY_CHANGE_EVENT
from dbvc.database.models import ChangeEventType
from dbvc.exceptions import DatabaseError
from dbvc.migrations.events import ChangeEventRecorder
from dbvc.repositories import ChangeEventRepository


def test_record_stores_event_with_clock_time(ledger, clock):
    recorder = ChangeEventRecorder(ChangeEventRepository(ledger), now=clock)

    event = recorder.record(
        "20240115_103000_x", "app", ChangeEventType.STARTED, "dev", {"ticket": "OPS-1"}
    )

    assert event.id is not None
    assert event.timestamp == clock()
    assert event.context == {"ticket": "OPS-1"}


def test_events_are_listed_newest_first(ledger, clock):
    repository = ChangeEventRepository(ledger)
    recorder = ChangeEventRecorder(repository, now=clock)
    recorder.record("m1", "app", ChangeEventType.STARTED, "dev")
    recorder.record("m1", "app", ChangeEventType.COMPLETED, "dev")
    recorder.record("m2", "app", ChangeEventType.STARTED, "dev")

    assert [e.event_type for e in repository.find_by_database("app", "m1")] == [
        ChangeEventType.COMPLETED,
        ChangeEventType.STARTED,
    ]
    assert len(repository.find_by_database("app", limit=2)) == 2


def test_ledger_failure_is_logged_not_raised(clock, caplog):
    repository = Mock()
    repository.create.side_effect = DatabaseError("database is locked")
    recorder = ChangeEventRecorder(repository, now=clock)

    assert recorder.record("m1", "app", ChangeEventType.FAILED, "dev") is None
    assert "Failed to record failed event" in caplog.text


def test_event_is_mirrored_with_composite_id(ledger, clock):
    replicator = Mock()
    recorder = ChangeEventRecorder(ChangeEventRepository(ledger), replicator, now=clock)

    event = recorder.record("m1", "app", ChangeEventType.COMPLETED, "prod")

    entity_type, document = replicator.submit.call_args.args
    assert entity_type == ENTITY_CHANGE_EVENT
    assert document["id"] == f"app_m1_{event.id}"
    assert document["eventType"] == "completed"
    assert document["databaseId"] == "app"


def test_event_is_mirrored_even_when_ledger_write_fails(clock):
    repository = Mock()
    repository.create.side_effect = DatabaseError("disk full")
    replicator = Mock()
    recorder = ChangeEventRecorder(repository, replicator, now=clock)

    recorder.record("m1", "app", ChangeEventType.STARTED, "dev")

    _, document = replicator.submit.call_args.args
    assert document["id"].startswith("app_m1_")
