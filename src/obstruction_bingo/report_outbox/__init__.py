"""Report outbox: durable queue of Found/Cancel records and their delivery."""

from .config import OutboxConfig, OutboxConfigError, build_outbox_config, load_outbox_config
from .contracts import (
    KIND_CANCEL,
    KIND_FOUND,
    RECORD_KINDS,
    GeoLocation,
    OutboxRecord,
    ReportContractError,
    SinkAcknowledgement,
    build_wire_batch,
    cancel_record,
    found_record,
)
from .ids import PushIdGenerator, new_report_id, push_id_timestamp_ms
from .outbox import (
    CANCEL_ALREADY_QUEUED,
    CANCEL_COMPENSATED,
    CANCEL_DELETED,
    CancelOutcome,
    ReportOutbox,
    ReportOutboxError,
)
from .scheduler import (
    DELIVERY_ACKNOWLEDGED,
    DELIVERY_NOTHING_DUE,
    DELIVERY_RESPONSE_INCOMPLETE,
    DELIVERY_RESPONSE_INVALID,
    DELIVERY_TRANSPORT_FAILED,
    DeliveryCycleResult,
    DeliveryScheduler,
    DeliverySchedulerError,
)
from .sink import HttpReportSink, ReportSink, ReportSinkResponseError, ReportTransportError
from .store import (
    SCHEMA_VERSION,
    OutboxMetrics,
    PendingHorizon,
    PostgresReportStore,
    ReportStore,
    ReportStoreError,
    ReportStoreSchemaError,
    SqliteReportStore,
    build_report_store,
    migrate_report_store,
)

__all__ = [
    "CANCEL_ALREADY_QUEUED",
    "CANCEL_COMPENSATED",
    "CANCEL_DELETED",
    "CancelOutcome",
    "DELIVERY_ACKNOWLEDGED",
    "DELIVERY_NOTHING_DUE",
    "DELIVERY_RESPONSE_INCOMPLETE",
    "DELIVERY_RESPONSE_INVALID",
    "DELIVERY_TRANSPORT_FAILED",
    "DeliveryCycleResult",
    "DeliveryScheduler",
    "DeliverySchedulerError",
    "GeoLocation",
    "HttpReportSink",
    "KIND_CANCEL",
    "KIND_FOUND",
    "OutboxConfig",
    "OutboxConfigError",
    "OutboxMetrics",
    "OutboxRecord",
    "PendingHorizon",
    "PostgresReportStore",
    "PushIdGenerator",
    "RECORD_KINDS",
    "ReportContractError",
    "ReportOutbox",
    "ReportOutboxError",
    "ReportSink",
    "ReportSinkResponseError",
    "ReportStore",
    "ReportStoreError",
    "ReportStoreSchemaError",
    "ReportTransportError",
    "SCHEMA_VERSION",
    "SinkAcknowledgement",
    "SqliteReportStore",
    "build_outbox_config",
    "build_report_store",
    "build_wire_batch",
    "cancel_record",
    "found_record",
    "load_outbox_config",
    "migrate_report_store",
    "new_report_id",
    "push_id_timestamp_ms",
]
