from __future__ import annotations

from dataclasses import replace

import pytest

from obstruction_bingo.report_outbox.contracts import GeoLocation
from obstruction_bingo.tile_machine.states import (
    AskToSendReports,
    CancelReport,
    Clicked,
    ConsentAnswered,
    DetailsCancelled,
    DetailsNotReported,
    DetailsReported,
    DisableAutoLocation,
    EnqueueReport,
    MarkPending,
    MatchDetails,
    PositionAcquired,
    PositionFailed,
    RememberSendReports,
    RequestLocation,
    ShowDetailsDialog,
    TileDetails,
    TileEnvironment,
    TileMachineError,
    TilePhase,
    TileSnapshot,
    TileSpec,
    ToggleMatch,
    VoidPendingClick,
    WarnMissingDetail,
    initial_snapshot,
)
from obstruction_bingo.tile_machine.transitions import advance


SCOOTER = TileSpec(tile_id=7, alt="Scooter blocking sidewalk")
WRITE_IN = TileSpec(tile_id=24, alt="Add your own", is_add_your_own=True)
FREE = TileSpec(tile_id=12, alt="Free square", free_square=True)


class _Ids:
    def __init__(self) -> None:
        self.minted: list[str] = []

    def __call__(self) -> str:
        value = f"id-{len(self.minted) + 1}"
        self.minted.append(value)
        return value


def _env(tile: TileSpec = SCOOTER, ids: _Ids | None = None, **overrides) -> TileEnvironment:
    values = dict(
        tile_index=3,
        tile=tile,
        matched=MatchDetails(),
        send_reports=None,
        auto_location=True,
        location_permission="granted",
        new_report_id=ids or _Ids(),
    )
    values.update(overrides)
    return TileEnvironment(**values)


def _unmatched() -> TileSnapshot:
    return initial_snapshot(MatchDetails())


def test_first_click_asks_for_consent() -> None:
    transition = advance(_unmatched(), Clicked(), _env())
    assert transition.snapshot.phase == TilePhase.SHOULD_ASK_TO_SEND
    assert transition.trail == (TilePhase.UNMATCHED_CLICKED, TilePhase.SHOULD_ASK_TO_SEND)
    assert transition.effects == (MarkPending(tile_index=3), AskToSendReports(tile_index=3))


def test_consent_then_location_enqueues_with_coordinates() -> None:
    ids = _Ids()
    env = _env(ids=ids)
    asked = advance(_unmatched(), Clicked(), env).snapshot

    locating = advance(asked, ConsentAnswered(send_reports=True), env)
    assert locating.snapshot.phase == TilePhase.GETTING_LOCATION
    assert locating.snapshot.report_id == "id-1"
    assert locating.effects == (RememberSendReports(send_reports=True), RequestLocation(tile_index=3))

    here = GeoLocation(latitude=47.6, longitude=-122.3, accuracy=9.0)
    done = advance(locating.snapshot, PositionAcquired(location=here), env)
    assert done.snapshot.phase == TilePhase.MATCHED
    assert done.snapshot.report_id is None
    assert done.effects == (
        EnqueueReport(report_id="id-1", tile_ref=SCOOTER.alt, detail="", text_location="", location=here),
        ToggleMatch(tile_index=3, matched=True, report_id="id-1", detail=None),
    )


def test_declined_consent_matches_without_report() -> None:
    ids = _Ids()
    env = _env(ids=ids)
    asked = advance(_unmatched(), Clicked(), env).snapshot
    done = advance(asked, ConsentAnswered(send_reports=False), env)
    assert done.snapshot.phase == TilePhase.MATCHED
    assert done.effects == (
        RememberSendReports(send_reports=False),
        ToggleMatch(tile_index=3, matched=True, report_id=None, detail=None),
    )
    assert ids.minted == []


def test_known_preference_skips_consent() -> None:
    transition = advance(_unmatched(), Clicked(), _env(send_reports=False))
    assert transition.trail == (
        TilePhase.UNMATCHED_CLICKED,
        TilePhase.DECIDE_HOW_TO_GET_DETAILS,
        TilePhase.DECIDE_DETAILS_NO_REPORT,
        TilePhase.DETAILS_COMPLETE,
        TilePhase.MATCHED,
    )
    assert not any(isinstance(effect, EnqueueReport) for effect in transition.effects)


@pytest.mark.parametrize(
    "overrides",
    [
        {"auto_location": False},
        {"location_permission": "denied"},
    ],
)
def test_manual_details_when_location_unavailable(overrides: dict) -> None:
    env = _env(send_reports=True, **overrides)
    dialog = advance(_unmatched(), Clicked(), env)
    assert dialog.snapshot.phase == TilePhase.GET_DETAILS
    assert dialog.effects[-1] == ShowDetailsDialog(tile_index=3, details=TileDetails(), send_reports=True)

    typed = TileDetails(text_location="5th and Pine", detail="two scooters")
    done = advance(dialog.snapshot, DetailsReported(details=typed), env)
    assert done.effects[0] == EnqueueReport(
        report_id="id-1",
        tile_ref=SCOOTER.alt,
        detail="two scooters",
        text_location="5th and Pine",
        location=None,
    )
    assert done.effects[1] == ToggleMatch(tile_index=3, matched=True, report_id="id-1", detail="two scooters")


def test_add_your_own_always_uses_dialog() -> None:
    env = _env(tile=WRITE_IN, send_reports=True)
    dialog = advance(_unmatched(), Clicked(), env)
    assert dialog.snapshot.phase == TilePhase.GET_DETAILS
    assert dialog.snapshot.report_id == "id-1"


def test_dont_report_clears_reserved_id() -> None:
    env = _env(tile=WRITE_IN, send_reports=True)
    dialog = advance(_unmatched(), Clicked(), env).snapshot
    done = advance(dialog, DetailsNotReported(details=TileDetails(detail="ladder")), env)
    assert done.effects == (ToggleMatch(tile_index=3, matched=True, report_id=None, detail="ladder"),)


def test_add_your_own_without_reporting_still_collects_detail() -> None:
    env = _env(tile=WRITE_IN, send_reports=False)
    dialog = advance(_unmatched(), Clicked(), env)
    assert dialog.snapshot.phase == TilePhase.GET_DETAILS
    assert dialog.effects[-1] == ShowDetailsDialog(tile_index=3, details=TileDetails(), send_reports=False)


def test_add_your_own_without_detail_warns() -> None:
    env = _env(tile=WRITE_IN, send_reports=False)
    dialog = advance(_unmatched(), Clicked(), env).snapshot
    done = advance(dialog, DetailsNotReported(details=TileDetails()), env)
    assert done.snapshot.phase == TilePhase.MATCHED
    assert done.effects[-1] == WarnMissingDetail(tile_index=3, tile_ref=WRITE_IN.alt)


def test_cancelled_dialog_voids_click() -> None:
    env = _env(send_reports=True, auto_location=False)
    dialog = advance(_unmatched(), Clicked(), env).snapshot
    cancelled = advance(dialog, DetailsCancelled(), env)
    assert cancelled.snapshot.phase == TilePhase.UNMATCHED
    assert cancelled.snapshot.report_id is None
    assert cancelled.effects == (VoidPendingClick(tile_index=3),)


def test_location_failure_disables_auto_location_and_drops_report() -> None:
    env = _env(send_reports=True)
    locating = advance(_unmatched(), Clicked(), env).snapshot
    failed = advance(locating, PositionFailed(reason="timeout"), env)
    assert failed.snapshot.phase == TilePhase.MATCHED
    assert failed.effects == (
        DisableAutoLocation(reason="timeout"),
        ToggleMatch(tile_index=3, matched=True, report_id=None, detail=None),
    )


def test_unmatching_cancels_the_stored_report() -> None:
    matched = MatchDetails(matched=True, report_id="id-9", detail="curb")
    env = _env(matched=matched)
    transition = advance(initial_snapshot(matched), Clicked(), env)
    assert transition.snapshot.phase == TilePhase.UNMATCHED
    assert transition.trail == (TilePhase.MATCHED_CLICKED, TilePhase.UNMATCHED)
    assert transition.effects == (CancelReport(report_id="id-9"), ToggleMatch(tile_index=3, matched=False))


def test_unmatching_without_report_only_toggles() -> None:
    matched = MatchDetails(matched=True)
    transition = advance(initial_snapshot(matched), Clicked(), _env(matched=matched))
    assert transition.effects == (ToggleMatch(tile_index=3, matched=False),)


def test_free_square_never_unmarks() -> None:
    matched = MatchDetails(matched=True)
    transition = advance(initial_snapshot(matched), Clicked(), _env(tile=FREE, matched=matched))
    assert transition.snapshot.phase == TilePhase.MATCHED
    assert transition.effects == ()
    assert transition.ignored is False


def test_second_click_starts_fresh_details() -> None:
    env = _env(send_reports=True, auto_location=False)
    stale = TileSnapshot(phase=TilePhase.UNMATCHED, details=TileDetails(text_location="old", detail="old"))
    dialog = advance(stale, Clicked(), env)
    assert dialog.snapshot.details == TileDetails()


@pytest.mark.parametrize(
    ("phase", "event"),
    [
        (TilePhase.UNMATCHED, PositionAcquired(location=GeoLocation(latitude=1.0, longitude=2.0))),
        (TilePhase.UNMATCHED, ConsentAnswered(send_reports=True)),
        (TilePhase.GET_DETAILS, Clicked()),
        (TilePhase.GETTING_LOCATION, DetailsCancelled()),
        (TilePhase.MATCHED, PositionFailed()),
    ],
)
def test_events_outside_their_phase_are_ignored(phase: TilePhase, event) -> None:
    snapshot = TileSnapshot(phase=phase, report_id="id-1")
    transition = advance(snapshot, event, _env())
    assert transition.ignored is True
    assert transition.snapshot == snapshot
    assert transition.effects == ()


def test_unknown_event_is_rejected() -> None:
    with pytest.raises(TileMachineError):
        advance(_unmatched(), object(), _env())  # type: ignore[arg-type]


def test_initial_snapshot_keeps_stored_detail() -> None:
    snapshot = initial_snapshot(MatchDetails(matched=True, report_id="id-1", detail="curb"))
    assert snapshot.phase == TilePhase.MATCHED
    assert replace(snapshot.details, detail=None) == TileDetails()
    assert snapshot.details.detail == "curb"
