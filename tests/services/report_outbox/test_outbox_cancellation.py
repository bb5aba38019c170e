from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from obstruction_bingo.report_outbox.contracts import KIND_CANCEL, KIND_FOUND, GeoLocation
from obstruction_bingo.report_outbox.outbox import (
    CANCEL_ALREADY_QUEUED,
    CANCEL_COMPENSATED,
    CANCEL_DELETED,
    ReportOutbox,
    ReportOutboxError,
)
from obstruction_bingo.report_outbox.store import SqliteReportStore, build_report_store


T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class _RecordingTrigger:
    def __init__(self) -> None:
        self.calls = 0

    def schedule(self) -> None:
        self.calls += 1


def _outbox(tmp_path: Path) -> tuple[ReportOutbox, SqliteReportStore, _RecordingTrigger, _Clock]:
    store = build_report_store(str(tmp_path / "outbox.sqlite"))
    assert isinstance(store, SqliteReportStore)
    trigger = _RecordingTrigger()
    clock = _Clock(T0)
    return ReportOutbox(store, trigger=trigger, now_fn=clock), store, trigger, clock


def _claim_all(store: SqliteReportStore, at: datetime) -> list[str]:
    claimed = store.claim_deliverable(
        mature_before=at,
        stale_sending_before=at - timedelta(seconds=30),
        claimed_at=at,
        limit=100,
    )
    return [record.uuid for record in claimed]


def test_enqueue_persists_found_and_notifies_trigger(tmp_path: Path) -> None:
    outbox, store, trigger, _ = _outbox(tmp_path)
    report_id = outbox.enqueue(" r-1 ", "Car on sidewalk", detail="blocking ramp", text_location="5th and Pine")
    assert report_id == "r-1"
    record = store.get("r-1")
    assert record is not None
    assert record.is_unsent
    assert record.created_at == T0
    assert record.as_wire() == {
        "uuid": "r-1",
        "type": KIND_FOUND,
        "tile": "Car on sidewalk",
        "details": "blocking ramp",
        "textLocation": "5th and Pine",
        "latitude": None,
        "longitude": None,
        "accuracy": None,
    }
    assert trigger.calls == 1


def test_location_replaces_text_location(tmp_path: Path) -> None:
    outbox, store, _, _ = _outbox(tmp_path)
    outbox.enqueue(
        "r-1",
        "Scooter",
        text_location="ignored",
        location=GeoLocation(latitude=47.6, longitude=-122.3, accuracy=8.0),
    )
    wire = store.get("r-1").as_wire()
    assert wire["textLocation"] == ""
    assert (wire["latitude"], wire["longitude"], wire["accuracy"]) == (47.6, -122.3, 8.0)


def test_enqueue_rejects_reused_id_and_blank_inputs(tmp_path: Path) -> None:
    outbox, store, trigger, _ = _outbox(tmp_path)
    outbox.enqueue("r-1", "Scooter")
    with pytest.raises(ReportOutboxError, match="REPORT_ID_COLLISION"):
        outbox.enqueue("r-1", "Scooter")
    with pytest.raises(ReportOutboxError):
        outbox.enqueue("", "Scooter")
    with pytest.raises(ReportOutboxError):
        outbox.enqueue("r-2", "  ")
    assert store.count() == 1
    assert trigger.calls == 1


def test_cancel_before_any_send_deletes_locally(tmp_path: Path) -> None:
    outbox, store, trigger, clock = _outbox(tmp_path)
    outbox.enqueue("r-1", "Car on sidewalk")
    clock.advance(5)
    outcome = outbox.cancel("r-1")
    assert outcome.status == CANCEL_DELETED
    assert outcome.sent_compensation is False
    assert store.count() == 0
    # Only the enqueue armed the timer; nothing is left to deliver.
    assert trigger.calls == 1


def test_cancel_after_send_started_queues_compensation(tmp_path: Path) -> None:
    outbox, store, trigger, clock = _outbox(tmp_path)
    outbox.enqueue("r-1", "Car on sidewalk")
    clock.advance(60)
    assert _claim_all(store, clock.now) == ["r-1"]

    clock.advance(2)
    outcome = outbox.cancel("r-1")
    assert outcome.status == CANCEL_COMPENSATED
    assert outcome.sent_compensation is True

    found = store.get("r-1", kind=KIND_FOUND)
    cancel = store.get("r-1", kind=KIND_CANCEL)
    assert found is not None and found.sending_since is not None
    assert cancel is not None and cancel.is_unsent
    assert cancel.created_at == clock.now
    assert cancel.as_wire() == {"uuid": "r-1", "type": KIND_CANCEL}
    assert trigger.calls == 2


def test_repeated_cancel_reuses_queued_compensation(tmp_path: Path) -> None:
    outbox, store, _, clock = _outbox(tmp_path)
    outbox.enqueue("r-1", "Scooter")
    clock.advance(60)
    _claim_all(store, clock.now)
    assert outbox.cancel("r-1").status == CANCEL_COMPENSATED
    assert outbox.cancel("r-1").status == CANCEL_ALREADY_QUEUED
    assert store.metrics(now=clock.now).cancel_count == 1


def test_cancel_of_unknown_id_queues_cancel(tmp_path: Path) -> None:
    # An acknowledged Found is gone locally; the endpoint still needs the Cancel.
    outbox, store, _, _ = _outbox(tmp_path)
    assert outbox.cancel("delivered-earlier").status == CANCEL_COMPENSATED
    assert store.get("delivered-earlier", kind=KIND_CANCEL) is not None


def test_outbox_without_trigger_still_persists(tmp_path: Path) -> None:
    store = build_report_store(str(tmp_path / "outbox.sqlite"))
    outbox = ReportOutbox(store)
    outbox.enqueue("r-1", "Scooter")
    trigger = _RecordingTrigger()
    outbox.attach_trigger(trigger)
    outbox.cancel("r-1")
    assert store.count() == 0
    assert trigger.calls == 0
