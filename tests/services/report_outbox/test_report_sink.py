from __future__ import annotations

import json
from typing import Any

import pytest
import requests

from obstruction_bingo.report_outbox.contracts import SinkAcknowledgement
from obstruction_bingo.report_outbox.sink import (
    HttpReportSink,
    ReportSinkResponseError,
    ReportTransportError,
)


class _FakeResponse:
    def __init__(self, *, status_code: int = 200, body: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._body = body
        self.text = text or (json.dumps(body) if body is not None else "")

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("Expecting value")
        return self._body


class _FakeSession:
    def __init__(self, *, response: _FakeResponse | None = None, error: Exception | None = None) -> None:
        self.response = response or _FakeResponse(body={"written": []})
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def post(self, url: str, **kwargs: Any) -> _FakeResponse:
        self.calls.append({"url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return self.response

    def close(self) -> None:
        self.closed = True


_BATCH = [
    {"uuid": "r-1", "type": "Found", "tile": "Scooter", "details": "", "textLocation": "Main St",
     "latitude": None, "longitude": None, "accuracy": None},
    {"uuid": "r-0", "type": "Cancel"},
]


def test_send_batch_posts_json_with_sheet_parameter() -> None:
    session = _FakeSession(response=_FakeResponse(body={"written": ["r-1", "r-0"], "debugLog": ["ok"]}))
    sink = HttpReportSink(
        endpoint_url="https://collect.example.test/exec",
        sheet_id="sheet-prod",
        timeout_seconds=7.5,
        session=session,  # type: ignore[arg-type]
    )
    ack = sink.send_batch(_BATCH)

    assert ack.written == ["r-1", "r-0"]
    assert ack.debug_log == ["ok"]
    assert ack.is_complete
    call = session.calls[0]
    assert call["url"] == "https://collect.example.test/exec"
    assert call["params"] == {"sheet": "sheet-prod"}
    assert call["timeout"] == 7.5
    assert json.loads(call["data"].decode("utf-8")) == _BATCH
    assert call["headers"]["Content-Type"].startswith("text/plain")


def test_send_batch_without_sheet_sends_no_params() -> None:
    session = _FakeSession()
    sink = HttpReportSink(endpoint_url="https://collect.example.test/exec", session=session)  # type: ignore[arg-type]
    sink.send_batch(_BATCH)
    assert session.calls[0]["params"] == {}


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (requests.Timeout("slow"), "REPORT_SINK_TIMEOUT"),
        (requests.ConnectionError("offline"), "REPORT_SINK_UNREACHABLE"),
    ],
)
def test_network_errors_become_transport_errors(error: Exception, code: str) -> None:
    sink = HttpReportSink(
        endpoint_url="https://collect.example.test/exec",
        session=_FakeSession(error=error),  # type: ignore[arg-type]
    )
    with pytest.raises(ReportTransportError, match=code):
        sink.send_batch(_BATCH)


def test_http_error_status_is_a_transport_error() -> None:
    session = _FakeSession(response=_FakeResponse(status_code=503, text="unavailable"))
    sink = HttpReportSink(endpoint_url="https://collect.example.test/exec", session=session)  # type: ignore[arg-type]
    with pytest.raises(ReportTransportError, match="REPORT_SINK_HTTP_503:unavailable"):
        sink.send_batch(_BATCH)


def test_non_json_body_is_a_response_error() -> None:
    session = _FakeSession(response=_FakeResponse(text="<html>login</html>"))
    sink = HttpReportSink(endpoint_url="https://collect.example.test/exec", session=session)  # type: ignore[arg-type]
    with pytest.raises(ReportSinkResponseError, match="REPORT_SINK_INVALID_JSON"):
        sink.send_batch(_BATCH)


def test_non_object_body_is_a_response_error() -> None:
    session = _FakeSession(response=_FakeResponse(body=["r-1"]))
    sink = HttpReportSink(endpoint_url="https://collect.example.test/exec", session=session)  # type: ignore[arg-type]
    with pytest.raises(ReportSinkResponseError, match="REPORT_SINK_INVALID_SHAPE"):
        sink.send_batch(_BATCH)


def test_acknowledgement_without_written_is_incomplete() -> None:
    ack = SinkAcknowledgement.model_validate({"error": "sheet locked"})
    assert ack.is_complete is False
    assert ack.error == "sheet locked"
    assert SinkAcknowledgement.model_validate({"written": [" r-1 ", ""]}).written == ["r-1"]


def test_close_releases_session() -> None:
    session = _FakeSession()
    sink = HttpReportSink(endpoint_url="https://collect.example.test/exec", session=session)  # type: ignore[arg-type]
    sink.close()
    assert session.closed


def test_sink_rejects_bad_settings() -> None:
    with pytest.raises(ReportTransportError):
        HttpReportSink(endpoint_url="")
    with pytest.raises(ReportTransportError):
        HttpReportSink(endpoint_url="https://collect.example.test/exec", timeout_seconds=0)
