"""Driver that runs tile transitions and executes their effects."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
import logging
import threading
from typing import Protocol

from obstruction_bingo.report_outbox.contracts import GeoLocation
from obstruction_bingo.report_outbox.ids import new_report_id
from obstruction_bingo.report_outbox.outbox import ReportOutboxError
from obstruction_bingo.report_outbox.store import ReportStoreError

from .board import MatchedTileStore, ReportingPreferences
from .states import (
    DRAWN_MATCHED_PHASES,
    PERMISSION_STATES,
    PERMISSION_UNKNOWN,
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
    TileSpec,
    TileTransition,
    ToggleMatch,
    VoidPendingClick,
    WarnMissingDetail,
    initial_snapshot,
)
from .transitions import advance


logger = logging.getLogger("obstruction_bingo.tile_machine.controller")


class ReportQueue(Protocol):
    def enqueue(
        self,
        report_id: str,
        tile_ref: str,
        detail: str = "",
        text_location: str = "",
        location: GeoLocation | None = None,
    ) -> str:
        ...

    def cancel(self, report_id: str) -> object:
        ...


class ConsentPrompt(Protocol):
    def ask(self, *, on_answer: Callable[[bool], None], abort: threading.Event) -> None:
        """Ask whether reports may be sent; call `on_answer` once unless aborted."""


class DetailsDialog(Protocol):
    def show(
        self,
        *,
        tile: TileSpec,
        details: TileDetails,
        send_reports: bool | None,
        on_report: Callable[[TileDetails], None],
        on_dont_report: Callable[[TileDetails], None],
        on_cancel: Callable[[], None],
        abort: threading.Event,
    ) -> None:
        """Collect details; exactly one callback fires unless aborted."""


class LocationProvider(Protocol):
    def permission_state(self) -> str:
        ...

    def request(
        self,
        *,
        on_position: Callable[[GeoLocation], None],
        on_error: Callable[[str], None],
        abort: threading.Event,
    ) -> None:
        ...


class TileController:
    """One per rendered tile; discarded (``close``) when the tile goes away."""

    def __init__(
        self,
        *,
        tile_index: int,
        tile: TileSpec,
        board: MatchedTileStore,
        preferences: ReportingPreferences,
        outbox: ReportQueue,
        consent_prompt: ConsentPrompt,
        details_dialog: DetailsDialog,
        location_provider: LocationProvider,
        report_id_factory: Callable[[], str] = new_report_id,
    ) -> None:
        self.tile_index = int(tile_index)
        self.tile = tile
        self.board = board
        self.preferences = preferences
        self.outbox = outbox
        self.consent_prompt = consent_prompt
        self.details_dialog = details_dialog
        self.location_provider = location_provider
        self._report_id_factory = report_id_factory
        self._snapshot: TileSnapshot = initial_snapshot(board.get(self.tile_index))
        self._abort = threading.Event()
        self._queue: deque[TileEvent] = deque()
        self._dispatching = False
        self._history: list[TileTransition] = []

    @property
    def snapshot(self) -> TileSnapshot:
        return self._snapshot

    @property
    def phase(self) -> TilePhase:
        return self._snapshot.phase

    @property
    def drawn_matched(self) -> bool:
        """Whether the tile renders as marked while its flow is in progress."""
        return self._snapshot.phase in DRAWN_MATCHED_PHASES

    @property
    def history(self) -> tuple[TileTransition, ...]:
        return tuple(self._history)

    @property
    def closed(self) -> bool:
        return self._abort.is_set()

    def click(self) -> None:
        self.dispatch(Clicked())

    def answer_consent(self, send_reports: bool) -> None:
        self.dispatch(ConsentAnswered(send_reports=bool(send_reports)))

    def report_details(self, details: TileDetails) -> None:
        self.dispatch(DetailsReported(details=details))

    def skip_report(self, details: TileDetails) -> None:
        self.dispatch(DetailsNotReported(details=details))

    def cancel_details(self) -> None:
        self.dispatch(DetailsCancelled())

    def position_acquired(self, location: GeoLocation) -> None:
        self.dispatch(PositionAcquired(location=location))

    def position_failed(self, reason: str = "") -> None:
        self.dispatch(PositionFailed(reason=str(reason or "")))

    def close(self) -> None:
        """Abort pending dialogs and location requests; queued reports are untouched."""
        self._abort.set()
        self._queue.clear()

    def dispatch(self, event: TileEvent) -> None:
        if self.closed:
            logger.debug("tile %d is closed; dropping %r", self.tile_index, event)
            return
        self._queue.append(event)
        if self._dispatching:
            # A collaborator answered synchronously; the outer loop picks this up.
            return
        self._dispatching = True
        completed = False
        try:
            while self._queue and not self.closed:
                self._apply(self._queue.popleft())
            completed = True
        finally:
            self._dispatching = False
            if not completed:
                # Callbacks queued behind a failed event belong to a flow that no longer exists.
                self._queue.clear()

    def _apply(self, event: TileEvent) -> None:
        transition = advance(self._snapshot, event, self._environment())
        if transition.ignored:
            logger.debug(
                "tile %d ignored %s in phase %s",
                self.tile_index,
                type(event).__name__,
                self._snapshot.phase.value,
            )
            return
        self._snapshot = transition.snapshot
        self._history.append(transition)
        logger.debug(
            "tile %d: %s",
            self.tile_index,
            " -> ".join(phase.value for phase in transition.trail),
        )
        for effect in transition.effects:
            self._execute(effect)

    def _environment(self) -> TileEnvironment:
        permission = str(self.location_provider.permission_state() or PERMISSION_UNKNOWN).strip().lower()
        if permission not in PERMISSION_STATES:
            permission = PERMISSION_UNKNOWN
        return TileEnvironment(
            tile_index=self.tile_index,
            tile=self.tile,
            matched=self.board.get(self.tile_index),
            send_reports=self.preferences.send_reports,
            auto_location=self.preferences.auto_location,
            location_permission=permission,
            new_report_id=self._report_id_factory,
        )

    def _execute(self, effect: TileEffect) -> None:
        if isinstance(effect, MarkPending):
            self.board.mark_pending(effect.tile_index)
        elif isinstance(effect, AskToSendReports):
            self.consent_prompt.ask(on_answer=self.answer_consent, abort=self._abort)
        elif isinstance(effect, ShowDetailsDialog):
            self.details_dialog.show(
                tile=self.tile,
                details=effect.details,
                send_reports=effect.send_reports,
                on_report=self.report_details,
                on_dont_report=self.skip_report,
                on_cancel=self.cancel_details,
                abort=self._abort,
            )
        elif isinstance(effect, RequestLocation):
            self.location_provider.request(
                on_position=self.position_acquired,
                on_error=self.position_failed,
                abort=self._abort,
            )
        elif isinstance(effect, RememberSendReports):
            self.preferences.send_reports = effect.send_reports
        elif isinstance(effect, DisableAutoLocation):
            logger.info("geolocation failed (%s); auto-location disabled", effect.reason or "unknown")
            self.preferences.auto_location = False
        elif isinstance(effect, VoidPendingClick):
            self.board.cancel_pending(effect.tile_index)
        elif isinstance(effect, EnqueueReport):
            try:
                self.outbox.enqueue(
                    effect.report_id,
                    effect.tile_ref,
                    effect.detail,
                    effect.text_location,
                    effect.location,
                )
            except (ReportOutboxError, ReportStoreError):
                # The match stands without a report; the board update below still runs.
                logger.exception("tile %d: failed to queue report %s", self.tile_index, effect.report_id)
        elif isinstance(effect, CancelReport):
            try:
                self.outbox.cancel(effect.report_id)
            except (ReportOutboxError, ReportStoreError):
                logger.exception("tile %d: failed to cancel report %s", self.tile_index, effect.report_id)
        elif isinstance(effect, ToggleMatch):
            self.board.toggle_match(
                effect.tile_index,
                effect.matched,
                report_id=effect.report_id,
                detail=effect.detail,
            )
        elif isinstance(effect, WarnMissingDetail):
            logger.warning("marked add-your-own tile %d (%r) is missing details", effect.tile_index, effect.tile_ref)
        else:
            raise TileMachineError(f"unknown tile effect: {effect!r}")
