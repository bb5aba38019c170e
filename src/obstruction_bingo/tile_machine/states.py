"""Tile interaction phases, events and effects."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from obstruction_bingo.report_outbox.contracts import GeoLocation


class TileMachineError(ValueError):
    """Raised when the tile machine receives inconsistent inputs."""


class TilePhase(str, Enum):
    UNMATCHED = "unmatched"
    UNMATCHED_CLICKED = "unmatched_clicked"
    SHOULD_ASK_TO_SEND = "should_send_report"
    DECIDE_HOW_TO_GET_DETAILS = "decide_how_to_get_details"
    DECIDE_DETAILS_REPORT = "decide_how_to_get_details_report"
    DECIDE_DETAILS_NO_REPORT = "decide_how_to_get_details_noreport"
    GET_DETAILS = "get_details"
    GETTING_LOCATION = "getting_location"
    DETAILS_COMPLETE = "details_complete"
    CANCELING_MATCH_CLICK = "canceling_match_click"
    MATCHED = "matched"
    MATCHED_CLICKED = "matched_clicked"


# Phases that wait for a click or a collaborator callback.
WAITING_PHASES: frozenset[TilePhase] = frozenset(
    {
        TilePhase.UNMATCHED,
        TilePhase.MATCHED,
        TilePhase.SHOULD_ASK_TO_SEND,
        TilePhase.GET_DETAILS,
        TilePhase.GETTING_LOCATION,
    }
)

# Phases during which the tile is drawn as marked.
DRAWN_MATCHED_PHASES: frozenset[TilePhase] = frozenset(
    {TilePhase.MATCHED, TilePhase.GETTING_LOCATION, TilePhase.DETAILS_COMPLETE}
)

PERMISSION_GRANTED = "granted"
PERMISSION_PROMPT = "prompt"
PERMISSION_DENIED = "denied"
PERMISSION_UNKNOWN = "unknown"
PERMISSION_STATES: tuple[str, ...] = (PERMISSION_GRANTED, PERMISSION_PROMPT, PERMISSION_DENIED, PERMISSION_UNKNOWN)


@dataclass(frozen=True)
class TileSpec:
    tile_id: int
    alt: str
    image: str = ""
    free_square: bool = False
    is_add_your_own: bool = False

    @property
    def tile_ref(self) -> str:
        return self.alt


@dataclass(frozen=True)
class MatchDetails:
    matched: bool = False
    report_id: str | None = None
    detail: str | None = None


@dataclass(frozen=True)
class TileDetails:
    text_location: str = ""
    detail: str | None = None
    location: GeoLocation | None = None


@dataclass(frozen=True)
class TileSnapshot:
    phase: TilePhase
    report_id: str | None = None
    details: TileDetails = field(default_factory=TileDetails)
    send_reports: bool | None = None


@dataclass(frozen=True)
class TileEnvironment:
    """Everything outside the tile that a transition may read."""

    tile_index: int
    tile: TileSpec
    matched: MatchDetails
    send_reports: bool | None
    auto_location: bool
    location_permission: str
    new_report_id: Callable[[], str]


def initial_snapshot(matched: MatchDetails) -> TileSnapshot:
    phase = TilePhase.MATCHED if matched.matched else TilePhase.UNMATCHED
    return TileSnapshot(phase=phase, details=TileDetails(detail=matched.detail))


# Events


@dataclass(frozen=True)
class Clicked:
    pass


@dataclass(frozen=True)
class ConsentAnswered:
    send_reports: bool


@dataclass(frozen=True)
class DetailsReported:
    details: TileDetails


@dataclass(frozen=True)
class DetailsNotReported:
    details: TileDetails


@dataclass(frozen=True)
class DetailsCancelled:
    pass


@dataclass(frozen=True)
class PositionAcquired:
    location: GeoLocation


@dataclass(frozen=True)
class PositionFailed:
    reason: str = ""


TileEvent = Clicked | ConsentAnswered | DetailsReported | DetailsNotReported | DetailsCancelled | PositionAcquired | PositionFailed


# Effects


@dataclass(frozen=True)
class MarkPending:
    tile_index: int


@dataclass(frozen=True)
class AskToSendReports:
    tile_index: int


@dataclass(frozen=True)
class ShowDetailsDialog:
    tile_index: int
    details: TileDetails
    send_reports: bool | None


@dataclass(frozen=True)
class RequestLocation:
    tile_index: int


@dataclass(frozen=True)
class RememberSendReports:
    send_reports: bool


@dataclass(frozen=True)
class DisableAutoLocation:
    reason: str = ""


@dataclass(frozen=True)
class VoidPendingClick:
    tile_index: int


@dataclass(frozen=True)
class EnqueueReport:
    report_id: str
    tile_ref: str
    detail: str
    text_location: str
    location: GeoLocation | None


@dataclass(frozen=True)
class CancelReport:
    report_id: str


@dataclass(frozen=True)
class ToggleMatch:
    tile_index: int
    matched: bool
    report_id: str | None = None
    detail: str | None = None


@dataclass(frozen=True)
class WarnMissingDetail:
    tile_index: int
    tile_ref: str


TileEffect = (
    MarkPending
    | AskToSendReports
    | ShowDetailsDialog
    | RequestLocation
    | RememberSendReports
    | DisableAutoLocation
    | VoidPendingClick
    | EnqueueReport
    | CancelReport
    | ToggleMatch
    | WarnMissingDetail
)


@dataclass(frozen=True)
class TileTransition:
    snapshot: TileSnapshot
    effects: tuple[TileEffect, ...] = ()
    trail: tuple[TilePhase, ...] = ()
    ignored: bool = False
