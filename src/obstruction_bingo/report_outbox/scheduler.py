"""Debounced delivery of mature outbox records to the collection endpoint."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import threading
from typing import Any, Protocol

from .contracts import build_wire_batch, utc_now
from .sink import ReportSink, ReportSinkResponseError, ReportTransportError
from .store import ReportStore


logger = logging.getLogger("obstruction_bingo.report_outbox.scheduler")

DEFAULT_DEBOUNCE_SECONDS = 60.0
DEFAULT_MIN_REPORT_AGE_SECONDS = 10.0
DEFAULT_SENDING_TIMEOUT_SECONDS = 30.0
DEFAULT_BACKLOG_DELAY_SECONDS = 1.0
DEFAULT_MAX_BATCH_SIZE = 100

DELIVERY_NOTHING_DUE = "NOTHING_DUE"
DELIVERY_ACKNOWLEDGED = "ACKNOWLEDGED"
DELIVERY_TRANSPORT_FAILED = "TRANSPORT_FAILED"
DELIVERY_RESPONSE_INVALID = "RESPONSE_INVALID"
DELIVERY_RESPONSE_INCOMPLETE = "RESPONSE_INCOMPLETE"
DELIVERY_FAILURES = {DELIVERY_TRANSPORT_FAILED, DELIVERY_RESPONSE_INVALID, DELIVERY_RESPONSE_INCOMPLETE}


class DeliverySchedulerError(ValueError):
    """Raised when scheduler settings are invalid."""


class TimerHandle(Protocol):
    def start(self) -> None:
        ...

    def cancel(self) -> None:
        ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


@dataclass(frozen=True)
class DeliveryCycleResult:
    status: str
    selected: int
    acknowledged: int
    remaining: int
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.status in DELIVERY_FAILURES

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "selected": self.selected,
            "acknowledged": self.acknowledged,
            "remaining": self.remaining,
            "error": self.error,
        }


def thread_timer(delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(delay_seconds, callback)
    timer.daemon = True
    return timer


class DeliveryScheduler:
    """Owns the single delivery timer; at most one timer is armed at a time."""

    def __init__(
        self,
        *,
        store: ReportStore,
        sink: ReportSink,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        min_report_age_seconds: float = DEFAULT_MIN_REPORT_AGE_SECONDS,
        sending_timeout_seconds: float = DEFAULT_SENDING_TIMEOUT_SECONDS,
        backlog_delay_seconds: float = DEFAULT_BACKLOG_DELAY_SECONDS,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        now_fn: Callable[[], datetime] = utc_now,
        timer_factory: TimerFactory = thread_timer,
    ) -> None:
        if debounce_seconds <= 0:
            raise DeliverySchedulerError("debounce_seconds must be > 0")
        if min_report_age_seconds < 0:
            raise DeliverySchedulerError("min_report_age_seconds must be >= 0")
        if sending_timeout_seconds <= 0:
            raise DeliverySchedulerError("sending_timeout_seconds must be > 0")
        if backlog_delay_seconds < 0 or backlog_delay_seconds > debounce_seconds:
            raise DeliverySchedulerError("backlog_delay_seconds must be within [0, debounce_seconds]")
        if max_batch_size < 1:
            raise DeliverySchedulerError("max_batch_size must be >= 1")
        self.store = store
        self.sink = sink
        self.debounce_seconds = float(debounce_seconds)
        self.min_report_age_seconds = float(min_report_age_seconds)
        self.sending_timeout_seconds = float(sending_timeout_seconds)
        self.backlog_delay_seconds = float(backlog_delay_seconds)
        self.max_batch_size = int(max_batch_size)
        self._now_fn = now_fn
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._timer: TimerHandle | None = None
        self._timer_token: object | None = None
        self._armed_delay: float | None = None
        self._stopped = False
        self._last_result: DeliveryCycleResult | None = None

    @property
    def is_armed(self) -> bool:
        with self._lock:
            return self._timer is not None

    @property
    def armed_delay(self) -> float | None:
        with self._lock:
            return self._armed_delay if self._timer is not None else None

    @property
    def last_result(self) -> DeliveryCycleResult | None:
        return self._last_result

    def start(self) -> None:
        """Resume delivery, arming the timer when records survived a restart."""
        with self._lock:
            self._stopped = False
        if self.store.count() > 0:
            self.schedule()

    def schedule(self) -> None:
        """Arm the debounce timer unless one is already armed."""
        self._arm(self.debounce_seconds, replace_later=False)

    def cancel(self) -> None:
        """Stop the scheduler and drop the armed timer; records stay queued."""
        with self._lock:
            self._stopped = True
            timer, self._timer = self._timer, None
            self._timer_token = None
            self._armed_delay = None
        if timer is not None:
            timer.cancel()

    def run_cycle(self) -> DeliveryCycleResult:
        with self._cycle_lock:
            result = self._deliver_once()
        self._last_result = result
        return result

    def _deliver_once(self) -> DeliveryCycleResult:
        now = self._now_fn()
        claimed = self.store.claim_deliverable(
            mature_before=now - timedelta(seconds=self.min_report_age_seconds),
            stale_sending_before=now - timedelta(seconds=self.sending_timeout_seconds),
            claimed_at=now,
            limit=self.max_batch_size,
        )
        if not claimed:
            return DeliveryCycleResult(
                status=DELIVERY_NOTHING_DUE,
                selected=0,
                acknowledged=0,
                remaining=self.store.count(),
            )

        batch = build_wire_batch(claimed)
        try:
            ack = self.sink.send_batch(batch)
        except ReportTransportError as exc:
            logger.warning("failed to send %d report(s): %s", len(batch), exc)
            return self._failed(DELIVERY_TRANSPORT_FAILED, selected=len(claimed), error=str(exc))
        except ReportSinkResponseError as exc:
            logger.error("collection endpoint returned an unusable response: %s", exc)
            return self._failed(DELIVERY_RESPONSE_INVALID, selected=len(claimed), error=str(exc))

        if ack.error:
            logger.error("collection endpoint error: %s", ack.error)
        if ack.debug_log:
            logger.debug("collection endpoint debug log: %s", ack.debug_log)
        if not ack.is_complete:
            logger.warning("collection endpoint response has no 'written' list; nothing purged")
            return self._failed(DELIVERY_RESPONSE_INCOMPLETE, selected=len(claimed), error="WRITTEN_MISSING")

        written = set(ack.written or ())
        batch_ids = {record.uuid for record in claimed}
        unexpected = sorted(written - batch_ids)
        if unexpected:
            logger.debug("ignoring acknowledgements for uuids outside the batch: %s", unexpected)
        acknowledged = self.store.delete_keys(record.key for record in claimed if record.uuid in written)
        remaining = self.store.count()
        logger.info(
            "delivered report batch: selected=%d acknowledged=%d remaining=%d",
            len(claimed),
            acknowledged,
            remaining,
        )
        return DeliveryCycleResult(
            status=DELIVERY_ACKNOWLEDGED,
            selected=len(claimed),
            acknowledged=acknowledged,
            remaining=remaining,
        )

    def _failed(self, status: str, *, selected: int, error: str) -> DeliveryCycleResult:
        return DeliveryCycleResult(
            status=status,
            selected=selected,
            acknowledged=0,
            remaining=self.store.count(),
            error=error[:256],
        )

    def _fire(self, token: object) -> None:
        with self._lock:
            if token is not self._timer_token:
                return
            self._timer = None
            self._timer_token = None
            self._armed_delay = None
            if self._stopped:
                return
        try:
            result = self.run_cycle()
        except Exception:
            logger.exception("report delivery cycle crashed")
            self._arm(self.debounce_seconds, replace_later=False)
            return

        if result.failed:
            self._arm(self.debounce_seconds, replace_later=False)
            return
        delay = self._backlog_delay()
        if delay is not None:
            self._arm(delay, replace_later=True)

    def _backlog_delay(self) -> float | None:
        horizon = self.store.pending_horizon()
        if horizon.is_empty:
            return None
        candidates: list[datetime] = []
        if horizon.oldest_unsent_created_at is not None:
            candidates.append(horizon.oldest_unsent_created_at + timedelta(seconds=self.min_report_age_seconds))
        if horizon.oldest_sending_since is not None:
            candidates.append(horizon.oldest_sending_since + timedelta(seconds=self.sending_timeout_seconds))
        wait = (min(candidates) - self._now_fn()).total_seconds()
        return min(self.debounce_seconds, max(self.backlog_delay_seconds, wait))

    def _arm(self, delay: float, *, replace_later: bool) -> None:
        stale: TimerHandle | None = None
        with self._lock:
            if self._stopped:
                return
            if self._timer is not None:
                if not replace_later or (self._armed_delay is not None and self._armed_delay <= delay):
                    return
                stale = self._timer
            token = object()
            timer = self._timer_factory(delay, lambda: self._fire(token))
            self._timer = timer
            self._timer_token = token
            self._armed_delay = delay
        if stale is not None:
            stale.cancel()
        timer.start()
