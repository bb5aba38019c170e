"""Report outbox profile loader."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import re
from typing import Any

import yaml

from .scheduler import (
    DEFAULT_BACKLOG_DELAY_SECONDS,
    DEFAULT_DEBOUNCE_SECONDS,
    DEFAULT_MAX_BATCH_SIZE,
    DEFAULT_MIN_REPORT_AGE_SECONDS,
    DEFAULT_SENDING_TIMEOUT_SECONDS,
)


DEFAULT_STORE_DSN = "runs/obstruction_bingo/report_outbox/outbox.sqlite"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 20.0
SHEET_ENVIRONMENTS: tuple[str, ...] = ("production", "test")
_ENV_PATTERN = re.compile(r"^\$\{([^}:]+)(?::-([^}]*))?\}$")


class OutboxConfigError(ValueError):
    """Raised when the outbox profile is invalid."""


@dataclass(frozen=True)
class OutboxConfig:
    profile_path: Path | None
    store_dsn: str
    endpoint_url: str
    sheet_id: str | None
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    min_report_age_seconds: float = DEFAULT_MIN_REPORT_AGE_SECONDS
    sending_timeout_seconds: float = DEFAULT_SENDING_TIMEOUT_SECONDS
    backlog_delay_seconds: float = DEFAULT_BACKLOG_DELAY_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE

    def as_dict(self) -> dict[str, Any]:
        return {
            "profile_path": None if self.profile_path is None else str(self.profile_path),
            "store_dsn": self.store_dsn,
            "endpoint_url": self.endpoint_url,
            "sheet_id": self.sheet_id,
            "debounce_seconds": self.debounce_seconds,
            "min_report_age_seconds": self.min_report_age_seconds,
            "sending_timeout_seconds": self.sending_timeout_seconds,
            "backlog_delay_seconds": self.backlog_delay_seconds,
            "request_timeout_seconds": self.request_timeout_seconds,
            "max_batch_size": self.max_batch_size,
        }


def load_outbox_config(profile_path: Path) -> OutboxConfig:
    try:
        payload = yaml.safe_load(Path(profile_path).read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise OutboxConfigError(f"OUTBOX_PROFILE_UNREADABLE:{profile_path}:{exc}") from exc
    if not isinstance(payload, dict):
        raise OutboxConfigError("outbox profile must be a mapping")
    outbox = payload.get("outbox")
    if outbox is None:
        outbox = {}
    if not isinstance(outbox, dict):
        raise OutboxConfigError("'outbox' must be a mapping")
    return build_outbox_config(outbox, profile_path=Path(profile_path))


def build_outbox_config(outbox: dict[str, Any], *, profile_path: Path | None = None) -> OutboxConfig:
    endpoint_url = _text(outbox.get("endpoint_url") or os.getenv("OUTBOX_ENDPOINT_URL"))
    if not endpoint_url:
        raise OutboxConfigError("outbox.endpoint_url (or OUTBOX_ENDPOINT_URL) is required")
    if not endpoint_url.startswith(("http://", "https://")):
        raise OutboxConfigError(f"outbox.endpoint_url must be an http(s) URL: {endpoint_url!r}")

    store_dsn = _text(outbox.get("store_dsn") or os.getenv("OUTBOX_STORE_DSN")) or DEFAULT_STORE_DSN

    debounce = _positive_float(outbox, "debounce_seconds", "OUTBOX_DEBOUNCE_SECONDS", DEFAULT_DEBOUNCE_SECONDS)
    backlog_delay = _float_at_least(
        outbox, "backlog_delay_seconds", "OUTBOX_BACKLOG_DELAY_SECONDS", DEFAULT_BACKLOG_DELAY_SECONDS, minimum=0.0
    )
    if backlog_delay > debounce:
        raise OutboxConfigError("backlog_delay_seconds must not exceed debounce_seconds")
    max_batch_size = int(
        _float_at_least(outbox, "max_batch_size", "OUTBOX_MAX_BATCH_SIZE", DEFAULT_MAX_BATCH_SIZE, minimum=1.0)
    )

    return OutboxConfig(
        profile_path=profile_path,
        store_dsn=store_dsn,
        endpoint_url=endpoint_url,
        sheet_id=_resolve_sheet_id(outbox),
        debounce_seconds=debounce,
        min_report_age_seconds=_float_at_least(
            outbox, "min_report_age_seconds", "OUTBOX_MIN_REPORT_AGE_SECONDS", DEFAULT_MIN_REPORT_AGE_SECONDS, minimum=0.0
        ),
        sending_timeout_seconds=_positive_float(
            outbox, "sending_timeout_seconds", "OUTBOX_SENDING_TIMEOUT_SECONDS", DEFAULT_SENDING_TIMEOUT_SECONDS
        ),
        backlog_delay_seconds=backlog_delay,
        request_timeout_seconds=_positive_float(
            outbox, "request_timeout_seconds", "OUTBOX_REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS
        ),
        max_batch_size=max_batch_size,
    )


def _resolve_sheet_id(outbox: dict[str, Any]) -> str | None:
    explicit = _text(outbox.get("sheet_id") or os.getenv("OUTBOX_SHEET_ID"))
    if explicit:
        return explicit
    sheets = outbox.get("sheets")
    if sheets is None:
        return None
    if not isinstance(sheets, dict):
        raise OutboxConfigError("outbox.sheets must be a mapping of environment to sheet id")
    environment = (_text(outbox.get("environment") or os.getenv("OUTBOX_ENVIRONMENT")) or "production").lower()
    if environment not in SHEET_ENVIRONMENTS:
        known = ",".join(SHEET_ENVIRONMENTS)
        raise OutboxConfigError(f"unknown outbox environment '{environment}' (known: {known})")
    sheet_id = _text(sheets.get(environment))
    if not sheet_id:
        raise OutboxConfigError(f"outbox.sheets has no sheet id for environment '{environment}'")
    return sheet_id


def _positive_float(outbox: dict[str, Any], key: str, env_key: str, default: float) -> float:
    value = _number(outbox, key, env_key, default)
    if value <= 0:
        raise OutboxConfigError(f"outbox.{key} must be > 0")
    return value


def _float_at_least(outbox: dict[str, Any], key: str, env_key: str, default: float, *, minimum: float) -> float:
    value = _number(outbox, key, env_key, default)
    if value < minimum:
        raise OutboxConfigError(f"outbox.{key} must be >= {minimum:g}")
    return value


def _number(outbox: dict[str, Any], key: str, env_key: str, default: float) -> float:
    raw = _resolve_env_token(outbox.get(key))
    if raw in (None, ""):
        raw = os.getenv(env_key)
    if raw in (None, ""):
        return float(default)
    if isinstance(raw, bool):
        raise OutboxConfigError(f"outbox.{key} must be numeric")
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise OutboxConfigError(f"outbox.{key} must be numeric: {raw!r}") from exc


def _text(value: Any) -> str:
    resolved = _resolve_env_token(value)
    return str(resolved or "").strip()


def _resolve_env_token(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    token = value.strip()
    match = _ENV_PATTERN.fullmatch(token)
    if not match:
        return value
    key = match.group(1)
    default = match.group(2) or ""
    return os.getenv(key, default)
