"""Report outbox record contracts and wire projection."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


KIND_FOUND = "Found"
KIND_CANCEL = "Cancel"
RECORD_KINDS: tuple[str, ...] = (KIND_FOUND, KIND_CANCEL)

WIRE_FIELDS: tuple[str, ...] = (
    "uuid",
    "type",
    "tile",
    "details",
    "textLocation",
    "latitude",
    "longitude",
    "accuracy",
)


class ReportContractError(ValueError):
    """Raised when outbox records or wire payloads violate the report contract."""


@dataclass(frozen=True)
class GeoLocation:
    latitude: float
    longitude: float
    # 95% confidence radius in meters, as reported by the device.
    accuracy: float | None = None

    def __post_init__(self) -> None:
        for name in ("latitude", "longitude"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
                raise ReportContractError(f"{name} must be a finite number")
        if self.accuracy is not None:
            if not isinstance(self.accuracy, (int, float)) or not math.isfinite(self.accuracy) or self.accuracy < 0:
                raise ReportContractError("accuracy must be a finite non-negative number")

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "GeoLocation":
        if not isinstance(payload, dict):
            raise ReportContractError("location must be a mapping")
        try:
            latitude = float(payload["latitude"])
            longitude = float(payload["longitude"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ReportContractError(f"location requires numeric latitude/longitude: {exc}") from exc
        accuracy_raw = payload.get("accuracy")
        accuracy = None if accuracy_raw is None else float(accuracy_raw)
        return cls(latitude=latitude, longitude=longitude, accuracy=accuracy)


@dataclass(frozen=True)
class FoundPayload:
    tile_ref: str
    detail: str = ""
    text_location: str = ""
    latitude: float | None = None
    longitude: float | None = None
    accuracy: float | None = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class OutboxRecord:
    uuid: str
    kind: str
    created_at: datetime
    sending_since: datetime | None = None
    payload: FoundPayload | None = None

    def __post_init__(self) -> None:
        if not str(self.uuid or "").strip():
            raise ReportContractError("uuid must be non-empty")
        if self.kind not in RECORD_KINDS:
            raise ReportContractError(f"unknown record kind: {self.kind!r}")
        if self.kind == KIND_FOUND and self.payload is None:
            raise ReportContractError("Found records require a payload")
        if self.kind == KIND_CANCEL and self.payload is not None:
            raise ReportContractError("Cancel records carry no payload")
        _require_aware(self.created_at, field_name="created_at")
        if self.sending_since is not None:
            _require_aware(self.sending_since, field_name="sending_since")

    @property
    def key(self) -> tuple[str, str]:
        return (self.uuid, self.kind)

    @property
    def is_unsent(self) -> bool:
        return self.sending_since is None

    def stamped(self, at: datetime) -> "OutboxRecord":
        return replace(self, sending_since=at)

    def as_wire(self) -> dict[str, Any]:
        """Project the record onto the collection endpoint's JSON shape."""
        if self.kind == KIND_CANCEL or self.payload is None:
            return {"uuid": self.uuid, "type": self.kind}
        return {
            "uuid": self.uuid,
            "type": self.kind,
            "tile": self.payload.tile_ref,
            "details": self.payload.detail,
            "textLocation": self.payload.text_location,
            "latitude": self.payload.latitude,
            "longitude": self.payload.longitude,
            "accuracy": self.payload.accuracy,
        }


def found_record(
    *,
    uuid: str,
    created_at: datetime,
    tile_ref: str,
    detail: str = "",
    text_location: str = "",
    location: GeoLocation | None = None,
) -> OutboxRecord:
    if not str(tile_ref or "").strip():
        raise ReportContractError("tile_ref must be non-empty")
    if location is None:
        payload = FoundPayload(tile_ref=tile_ref, detail=detail or "", text_location=text_location or "")
    else:
        payload = FoundPayload(
            tile_ref=tile_ref,
            detail=detail or "",
            text_location="",
            latitude=float(location.latitude),
            longitude=float(location.longitude),
            accuracy=None if location.accuracy is None else float(location.accuracy),
        )
    return OutboxRecord(uuid=uuid, kind=KIND_FOUND, created_at=created_at, payload=payload)


def cancel_record(*, uuid: str, created_at: datetime) -> OutboxRecord:
    return OutboxRecord(uuid=uuid, kind=KIND_CANCEL, created_at=created_at)


def build_wire_batch(records: list[OutboxRecord]) -> list[dict[str, Any]]:
    return [record.as_wire() for record in records]


class SinkAcknowledgement(BaseModel):
    """Collection endpoint response body."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    written: Optional[list[str]] = None
    debug_log: Optional[list[Any]] = Field(default=None, alias="debugLog")
    error: Optional[Any] = None

    @field_validator("written")
    @classmethod
    def _strip_uuids(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        return [str(item).strip() for item in value if str(item).strip()]

    @property
    def is_complete(self) -> bool:
        return self.written is not None


def to_utc_text(value: datetime) -> str:
    _require_aware(value, field_name="timestamp")
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_utc_text(value: str, *, field_name: str) -> datetime:
    text = str(value or "").strip()
    if not text:
        raise ReportContractError(f"{field_name} must be non-empty")
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ReportContractError(f"{field_name} must be an ISO-8601 UTC timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        raise ReportContractError(f"{field_name} must include timezone information")
    return parsed.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _require_aware(value: datetime, *, field_name: str) -> None:
    if not isinstance(value, datetime):
        raise ReportContractError(f"{field_name} must be a datetime")
    if value.tzinfo is None:
        raise ReportContractError(f"{field_name} must be timezone-aware")
