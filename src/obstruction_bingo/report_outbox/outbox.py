"""Report outbox: enqueue and cancellation policy."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Protocol

from .contracts import GeoLocation, ReportContractError, cancel_record, found_record, utc_now
from .store import ReportStore


logger = logging.getLogger("obstruction_bingo.report_outbox.outbox")

CANCEL_DELETED = "DELETED"
CANCEL_COMPENSATED = "COMPENSATED"
CANCEL_ALREADY_QUEUED = "ALREADY_QUEUED"


class ReportOutboxError(ValueError):
    """Raised when outbox inputs are invalid."""


class DeliveryTrigger(Protocol):
    def schedule(self) -> None:
        """Arm the delivery timer if it is idle."""


@dataclass(frozen=True)
class CancelOutcome:
    report_id: str
    status: str

    @property
    def sent_compensation(self) -> bool:
        return self.status in {CANCEL_COMPENSATED, CANCEL_ALREADY_QUEUED}


class ReportOutbox:
    """Owns outbox records; the only writer besides delivery acknowledgement."""

    def __init__(
        self,
        store: ReportStore,
        *,
        trigger: DeliveryTrigger | None = None,
        now_fn: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self._trigger = trigger
        self._now_fn = now_fn

    def attach_trigger(self, trigger: DeliveryTrigger) -> None:
        self._trigger = trigger

    def enqueue(
        self,
        report_id: str,
        tile_ref: str,
        detail: str = "",
        text_location: str = "",
        location: GeoLocation | None = None,
    ) -> str:
        normalized_id = _normalize_report_id(report_id)
        try:
            record = found_record(
                uuid=normalized_id,
                created_at=self._now_fn(),
                tile_ref=str(tile_ref or "").strip(),
                detail=detail,
                text_location=text_location,
                location=location,
            )
        except ReportContractError as exc:
            raise ReportOutboxError(str(exc)) from exc
        if not self.store.insert_if_absent(record):
            raise ReportOutboxError(f"REPORT_ID_COLLISION:{normalized_id}")
        logger.debug("queued Found report %s for tile %r", normalized_id, record.payload.tile_ref)
        self._notify()
        return normalized_id

    def cancel(self, report_id: str) -> CancelOutcome:
        normalized_id = _normalize_report_id(report_id)
        # Deletion only succeeds while the record is unstamped, inside one transaction.
        if self.store.delete_unsent_found(normalized_id):
            logger.debug("report %s cancelled before any send", normalized_id)
            return CancelOutcome(report_id=normalized_id, status=CANCEL_DELETED)

        inserted = self.store.insert_if_absent(cancel_record(uuid=normalized_id, created_at=self._now_fn()))
        if inserted:
            logger.info("report %s already left the queue; queued Cancel", normalized_id)
            status = CANCEL_COMPENSATED
        else:
            logger.info("Cancel for report %s is already queued", normalized_id)
            status = CANCEL_ALREADY_QUEUED
        self._notify()
        return CancelOutcome(report_id=normalized_id, status=status)

    def _notify(self) -> None:
        if self._trigger is not None:
            self._trigger.schedule()


def _normalize_report_id(report_id: str) -> str:
    normalized = str(report_id or "").strip()
    if not normalized:
        raise ReportOutboxError("report_id must be non-empty")
    return normalized
