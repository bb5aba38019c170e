"""Collection endpoint transport for report batches."""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any, Protocol

from pydantic import ValidationError
import requests

from .contracts import SinkAcknowledgement


class ReportTransportError(RuntimeError):
    """Raised when a batch could not be delivered (network or HTTP status)."""


class ReportSinkResponseError(ValueError):
    """Raised when the endpoint answered with a body that is not an acknowledgement."""


class ReportSink(Protocol):
    def send_batch(self, batch: list[dict[str, Any]]) -> SinkAcknowledgement:
        """Deliver one batch and return the endpoint acknowledgement."""


@dataclass
class HttpReportSink:
    endpoint_url: str
    sheet_id: str | None = None
    timeout_seconds: float = 20.0
    session: requests.Session | None = None

    def __post_init__(self) -> None:
        if not str(self.endpoint_url or "").strip():
            raise ReportTransportError("endpoint_url must be non-empty")
        if self.timeout_seconds <= 0:
            raise ReportTransportError("timeout_seconds must be > 0")
        self._session = self.session or requests.Session()

    def send_batch(self, batch: list[dict[str, Any]]) -> SinkAcknowledgement:
        params: dict[str, str] = {}
        if self.sheet_id:
            params["sheet"] = self.sheet_id
        body = json.dumps(batch, ensure_ascii=True, separators=(",", ":"))
        # text/plain keeps the request "simple" for the spreadsheet script endpoint.
        headers = {"Content-Type": "text/plain;charset=utf-8"}
        try:
            response = self._session.post(
                self.endpoint_url,
                params=params,
                data=body.encode("utf-8"),
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.Timeout as exc:
            raise ReportTransportError("REPORT_SINK_TIMEOUT") from exc
        except requests.RequestException as exc:
            raise ReportTransportError(f"REPORT_SINK_UNREACHABLE:{str(exc)[:256]}") from exc

        if response.status_code >= 400:
            raise ReportTransportError(f"REPORT_SINK_HTTP_{response.status_code}:{_response_text(response)}")
        return parse_acknowledgement(response)

    def close(self) -> None:
        self._session.close()


def parse_acknowledgement(response: Any) -> SinkAcknowledgement:
    try:
        body = response.json()
    except ValueError as exc:
        raise ReportSinkResponseError(f"REPORT_SINK_INVALID_JSON:{exc}") from exc
    if not isinstance(body, dict):
        raise ReportSinkResponseError("REPORT_SINK_INVALID_SHAPE")
    try:
        return SinkAcknowledgement.model_validate(body)
    except ValidationError as exc:
        raise ReportSinkResponseError(f"REPORT_SINK_INVALID_ACK:{exc.error_count()} errors") from exc


def _response_text(response: Any) -> str:
    value = getattr(response, "text", "")
    text = str(value or "").strip()
    return text[:256]
