"""Pure transition function for the per-tile interaction machine.

`advance` applies one event and then keeps running the automatic phases until
the machine reaches a phase that waits for input. Side effects come back as
data; `TileController` executes them.
"""

from __future__ import annotations

from dataclasses import replace

from .states import (
    PERMISSION_DENIED,
    WAITING_PHASES,
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
    PositionAcquired,
    PositionFailed,
    RememberSendReports,
    RequestLocation,
    ShowDetailsDialog,
    TileDetails,
    TileEffect,
    TileEnvironment,
    TileEvent,
    TileMachineError,
    TilePhase,
    TileSnapshot,
    TileTransition,
    ToggleMatch,
    VoidPendingClick,
    WarnMissingDetail,
)

# Automatic phases never repeat within one settle, so this bounds a bug, not a workload.
_MAX_AUTOMATIC_STEPS = len(TilePhase) + 1


def advance(snapshot: TileSnapshot, event: TileEvent, env: TileEnvironment) -> TileTransition:
    effects: list[TileEffect] = []
    accepted = _accept(snapshot, event, env, effects)
    if accepted is None:
        return TileTransition(snapshot=snapshot, effects=(), trail=(snapshot.phase,), ignored=True)
    return _settle(accepted, env, effects)


def _accept(
    snapshot: TileSnapshot,
    event: TileEvent,
    env: TileEnvironment,
    effects: list[TileEffect],
) -> TileSnapshot | None:
    phase = snapshot.phase
    if isinstance(event, Clicked):
        if phase == TilePhase.UNMATCHED:
            return replace(snapshot, phase=TilePhase.UNMATCHED_CLICKED)
        if phase == TilePhase.MATCHED:
            return replace(snapshot, phase=TilePhase.MATCHED_CLICKED)
        return None

    if isinstance(event, ConsentAnswered):
        if phase != TilePhase.SHOULD_ASK_TO_SEND:
            return None
        effects.append(RememberSendReports(send_reports=bool(event.send_reports)))
        return replace(snapshot, phase=TilePhase.DECIDE_HOW_TO_GET_DETAILS, send_reports=bool(event.send_reports))

    if isinstance(event, DetailsReported):
        if phase != TilePhase.GET_DETAILS:
            return None
        return replace(snapshot, phase=TilePhase.DETAILS_COMPLETE, details=event.details)

    if isinstance(event, DetailsNotReported):
        if phase != TilePhase.GET_DETAILS:
            return None
        return replace(snapshot, phase=TilePhase.DETAILS_COMPLETE, details=event.details, report_id=None)

    if isinstance(event, DetailsCancelled):
        if phase != TilePhase.GET_DETAILS:
            return None
        return replace(snapshot, phase=TilePhase.CANCELING_MATCH_CLICK)

    if isinstance(event, PositionAcquired):
        if phase != TilePhase.GETTING_LOCATION:
            return None
        details = replace(snapshot.details, text_location="", location=event.location)
        return replace(snapshot, phase=TilePhase.DETAILS_COMPLETE, details=details)

    if isinstance(event, PositionFailed):
        if phase != TilePhase.GETTING_LOCATION:
            return None
        # Stop auto-locating for later clicks and drop this report.
        effects.append(DisableAutoLocation(reason=event.reason))
        return replace(snapshot, phase=TilePhase.DETAILS_COMPLETE, report_id=None)

    raise TileMachineError(f"unknown tile event: {event!r}")


def _settle(snapshot: TileSnapshot, env: TileEnvironment, effects: list[TileEffect]) -> TileTransition:
    trail: list[TilePhase] = [snapshot.phase]
    current = snapshot
    for _ in range(_MAX_AUTOMATIC_STEPS):
        if current.phase in WAITING_PHASES:
            _enter_waiting(current, env, effects)
            return TileTransition(snapshot=current, effects=tuple(effects), trail=tuple(trail))
        current = _run_automatic(current, env, effects)
        trail.append(current.phase)
    raise TileMachineError(f"tile machine did not settle: {' -> '.join(phase.value for phase in trail)}")


def _enter_waiting(snapshot: TileSnapshot, env: TileEnvironment, effects: list[TileEffect]) -> None:
    if snapshot.phase == TilePhase.SHOULD_ASK_TO_SEND:
        effects.append(AskToSendReports(tile_index=env.tile_index))
    elif snapshot.phase == TilePhase.GET_DETAILS:
        effects.append(
            ShowDetailsDialog(
                tile_index=env.tile_index,
                details=snapshot.details,
                send_reports=snapshot.send_reports,
            )
        )
    elif snapshot.phase == TilePhase.GETTING_LOCATION:
        effects.append(RequestLocation(tile_index=env.tile_index))


def _run_automatic(snapshot: TileSnapshot, env: TileEnvironment, effects: list[TileEffect]) -> TileSnapshot:
    phase = snapshot.phase
    tile = env.tile

    if phase == TilePhase.UNMATCHED_CLICKED:
        effects.append(MarkPending(tile_index=env.tile_index))
        next_phase = (
            TilePhase.SHOULD_ASK_TO_SEND if env.send_reports is None else TilePhase.DECIDE_HOW_TO_GET_DETAILS
        )
        return replace(
            snapshot,
            phase=next_phase,
            report_id=None,
            details=TileDetails(text_location=""),
            send_reports=env.send_reports,
        )

    if phase == TilePhase.DECIDE_HOW_TO_GET_DETAILS:
        if snapshot.send_reports:
            return replace(snapshot, phase=TilePhase.DECIDE_DETAILS_REPORT)
        return replace(snapshot, phase=TilePhase.DECIDE_DETAILS_NO_REPORT)

    if phase == TilePhase.DECIDE_DETAILS_REPORT:
        report_id = env.new_report_id()
        if not env.auto_location or env.location_permission == PERMISSION_DENIED or tile.is_add_your_own:
            return replace(snapshot, phase=TilePhase.GET_DETAILS, report_id=report_id)
        return replace(snapshot, phase=TilePhase.GETTING_LOCATION, report_id=report_id)

    if phase == TilePhase.DECIDE_DETAILS_NO_REPORT:
        next_phase = TilePhase.GET_DETAILS if tile.is_add_your_own else TilePhase.DETAILS_COMPLETE
        return replace(snapshot, phase=next_phase, report_id=None)

    if phase == TilePhase.CANCELING_MATCH_CLICK:
        effects.append(VoidPendingClick(tile_index=env.tile_index))
        return replace(snapshot, phase=TilePhase.UNMATCHED, report_id=None)

    if phase == TilePhase.DETAILS_COMPLETE:
        details = snapshot.details
        if snapshot.report_id is not None:
            effects.append(
                EnqueueReport(
                    report_id=snapshot.report_id,
                    tile_ref=tile.tile_ref,
                    detail=details.detail or "",
                    text_location=details.text_location or "",
                    location=details.location,
                )
            )
        effects.append(
            ToggleMatch(
                tile_index=env.tile_index,
                matched=True,
                report_id=snapshot.report_id,
                detail=details.detail,
            )
        )
        if tile.is_add_your_own and not details.detail:
            effects.append(WarnMissingDetail(tile_index=env.tile_index, tile_ref=tile.tile_ref))
        return replace(snapshot, phase=TilePhase.MATCHED, report_id=None)

    if phase == TilePhase.MATCHED_CLICKED:
        if tile.free_square:
            # The free square can never be unmarked.
            return replace(snapshot, phase=TilePhase.MATCHED)
        if env.matched.report_id is not None:
            effects.append(CancelReport(report_id=env.matched.report_id))
        effects.append(ToggleMatch(tile_index=env.tile_index, matched=False))
        return replace(snapshot, phase=TilePhase.UNMATCHED, report_id=None, details=TileDetails())

    raise TileMachineError(f"phase {phase.value!r} is not automatic")
