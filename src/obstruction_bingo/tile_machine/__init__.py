"""Per-tile interaction machine for marking and unmarking bingo tiles."""

from .board import InMemoryMatchedTiles, MatchedTileStore, ReportingPreferences
from .controller import ConsentPrompt, DetailsDialog, LocationProvider, ReportQueue, TileController
from .states import (
    DRAWN_MATCHED_PHASES,
    WAITING_PHASES,
    MatchDetails,
    TileDetails,
    TileEnvironment,
    TileMachineError,
    TilePhase,
    TileSnapshot,
    TileSpec,
    TileTransition,
    initial_snapshot,
)
from .transitions import advance

__all__ = [
    "ConsentPrompt",
    "DetailsDialog",
    "DRAWN_MATCHED_PHASES",
    "InMemoryMatchedTiles",
    "LocationProvider",
    "MatchDetails",
    "MatchedTileStore",
    "ReportQueue",
    "ReportingPreferences",
    "TileController",
    "TileDetails",
    "TileEnvironment",
    "TileMachineError",
    "TilePhase",
    "TileSnapshot",
    "TileSpec",
    "TileTransition",
    "WAITING_PHASES",
    "advance",
    "initial_snapshot",
]
