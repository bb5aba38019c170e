"""Matched-tile store contract and reporting preferences."""

from __future__ import annotations

from dataclasses import dataclass
import threading
from typing import Protocol

from .states import MatchDetails


class MatchedTileStore(Protocol):
    def get(self, tile_index: int) -> MatchDetails:
        ...

    def mark_pending(self, tile_index: int) -> None:
        """A click was accepted and awaits resolution."""

    def toggle_match(
        self,
        tile_index: int,
        matched: bool,
        *,
        report_id: str | None = None,
        detail: str | None = None,
    ) -> None:
        """Record the final match/unmatch outcome."""

    def cancel_pending(self, tile_index: int) -> None:
        """Revert the pending state of an abandoned click."""


class InMemoryMatchedTiles:
    """Process-local matched-tile mapping keyed by tile index."""

    def __init__(self, initial: dict[int, MatchDetails] | None = None) -> None:
        self._lock = threading.Lock()
        self._tiles: dict[int, MatchDetails] = dict(initial or {})
        self._pending: set[int] = set()

    def get(self, tile_index: int) -> MatchDetails:
        with self._lock:
            return self._tiles.get(int(tile_index), MatchDetails())

    def is_pending(self, tile_index: int) -> bool:
        with self._lock:
            return int(tile_index) in self._pending

    def mark_pending(self, tile_index: int) -> None:
        with self._lock:
            self._pending.add(int(tile_index))

    def toggle_match(
        self,
        tile_index: int,
        matched: bool,
        *,
        report_id: str | None = None,
        detail: str | None = None,
    ) -> None:
        with self._lock:
            index = int(tile_index)
            self._pending.discard(index)
            if matched:
                self._tiles[index] = MatchDetails(matched=True, report_id=report_id, detail=detail)
            else:
                self._tiles[index] = MatchDetails(matched=False)

    def cancel_pending(self, tile_index: int) -> None:
        with self._lock:
            self._pending.discard(int(tile_index))

    def matched_indexes(self) -> list[int]:
        with self._lock:
            return sorted(index for index, details in self._tiles.items() if details.matched)


@dataclass
class ReportingPreferences:
    """User-level switches shared by every tile on the board."""

    send_reports: bool | None = None
    auto_location: bool = True
