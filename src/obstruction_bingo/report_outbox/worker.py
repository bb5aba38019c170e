"""Report outbox delivery worker CLI."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import threading
from typing import Any

from obstruction_bingo.logging_utils import configure_logging, level_from_name

from .config import OutboxConfig, load_outbox_config
from .outbox import ReportOutbox
from .scheduler import DeliveryScheduler
from .sink import HttpReportSink, ReportSink
from .store import ReportStore, build_report_store, migrate_report_store


logger = logging.getLogger("obstruction_bingo.report_outbox.worker")


class OutboxRuntime:
    """Wires store, sink, scheduler and outbox for one process."""

    def __init__(self, config: OutboxConfig, *, sink: ReportSink | None = None) -> None:
        self.config = config
        self.store: ReportStore = build_report_store(config.store_dsn)
        self.sink: ReportSink = sink or HttpReportSink(
            endpoint_url=config.endpoint_url,
            sheet_id=config.sheet_id,
            timeout_seconds=config.request_timeout_seconds,
        )
        self.scheduler = DeliveryScheduler(
            store=self.store,
            sink=self.sink,
            debounce_seconds=config.debounce_seconds,
            min_report_age_seconds=config.min_report_age_seconds,
            sending_timeout_seconds=config.sending_timeout_seconds,
            backlog_delay_seconds=config.backlog_delay_seconds,
            max_batch_size=config.max_batch_size,
        )
        self.outbox = ReportOutbox(self.store, trigger=self.scheduler)

    def run_once(self) -> dict[str, Any]:
        result = self.scheduler.run_cycle()
        return {
            "delivery": result.as_dict(),
            "outbox_metrics": self.store.metrics().as_dict(),
        }

    def run_forever(self, stop_event: threading.Event | None = None) -> None:
        stop = stop_event or threading.Event()
        self.scheduler.start()
        logger.info("report outbox worker started: %s", json.dumps(self.config.as_dict(), sort_keys=True))
        try:
            while not stop.wait(self.config.debounce_seconds):
                logger.info(
                    "report outbox status: %s",
                    json.dumps(self.store.metrics().as_dict(), sort_keys=True, ensure_ascii=True),
                )
                # A previous process may have queued records; keep the timer alive for them.
                self.scheduler.start()
        finally:
            self.scheduler.cancel()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Obstruction report outbox worker")
    parser.add_argument("--profile", required=True, help="Path to outbox profile YAML")
    parser.add_argument("--migrate", action="store_true", help="Upgrade the store schema and exit")
    parser.add_argument("--once", action="store_true", help="Run one delivery cycle and exit")
    parser.add_argument("--log-level", default=None, help="Logging level (default INFO)")
    args = parser.parse_args(argv)

    configure_logging(level=level_from_name(args.log_level))
    config = load_outbox_config(Path(args.profile))

    if args.migrate:
        version = migrate_report_store(config.store_dsn)
        logger.info("report store %s at schema version %d", config.store_dsn, version)
        return

    runtime = OutboxRuntime(config)
    if args.once:
        payload = runtime.run_once()
        logger.info("report outbox tick: %s", json.dumps(payload, sort_keys=True, ensure_ascii=True))
        return
    try:
        runtime.run_forever()
    except KeyboardInterrupt:
        logger.info("report outbox worker stopped")


if __name__ == "__main__":
    main()
