import logging

import pytest

pytest.importorskip("httpx")
from fastapi.testclient import TestClient
from opentelemetry import trace
from prometheus_client import CollectorRegistry

import payauth.wiring as wiring
from payauth.context import background
from payauth.instrument import Metrics
from payauth.service import AuthorisationService


class _CaptureHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def captured_logger():
    logger = logging.getLogger("payauth.test.wiring")
    logger.handlers.clear()
    handler = _CaptureHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger, handler


@pytest.fixture
def counting_service(monkeypatch):
    calls = []

    class _CountingAuthorisationService(AuthorisationService):
        def authorise(self, ctx, request):
            calls.append(request)
            return super().authorise(ctx, request)

    monkeypatch.setattr(wiring, "AuthorisationService", _CountingAuthorisationService)
    return calls


def _client(logger, metrics=None):
    handler, returned_logger = wiring.wire_up(
        background(),
        100.0,
        trace.NoOpTracer(),
        "payment",
        metrics=metrics,
        logger=logger,
    )
    assert returned_logger is logger
    return TestClient(handler)


def test_scenario_amount_below_threshold_is_approved(captured_logger, counting_service):
    logger, handler = captured_logger
    response = _client(logger).post("/paymentAuth", json={"amount": 50.0})
    assert response.status_code == 200
    assert response.json()["decision"] == "approved"
    assert len(counting_service) == 1
    entries = [r for r in handler.records if r.getMessage() == "authorise"]
    assert len(entries) == 1
    assert entries[0].kv["decision"] == "approved"


def test_scenario_amount_above_threshold_is_declined(captured_logger, counting_service):
    logger, _ = captured_logger
    response = _client(logger).post("/paymentAuth", json={"amount": 150.0})
    assert response.status_code == 200
    assert response.json()["decision"] == "declined"
    assert response.json()["authorised"] is False


def test_scenario_negative_amount_is_invalid(captured_logger, counting_service):
    logger, _ = captured_logger
    response = _client(logger).post("/paymentAuth", json={"amount": -5})
    assert response.status_code == 400
    body = response.json()
    assert body["kind"] == "invalid_request"
    assert "invalid payment amount" in body["error"]


def test_scenario_malformed_json_never_reaches_decision(captured_logger, counting_service):
    logger, _ = captured_logger
    response = _client(logger).post(
        "/paymentAuth",
        content=b'{"amount": ',
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["kind"] == "decode_error"
    assert counting_service == []


def test_requests_are_instrumented_by_route(captured_logger):
    logger, _ = captured_logger
    metrics = Metrics.create(CollectorRegistry())
    client = _client(logger, metrics=metrics)
    client.post("/paymentAuth", json={"amount": 10.0})
    client.post("/paymentAuth", json={"amount": -1.0})
    client.get("/does/not/exist")

    registry = metrics.registry
    assert registry.get_sample_value(
        "http_request_duration_seconds_count",
        {"method": "POST", "path": "paymentauth", "status_code": "200", "is_websocket": "false"},
    ) == 1.0
    assert registry.get_sample_value(
        "http_request_duration_seconds_count",
        {"method": "POST", "path": "paymentauth", "status_code": "400", "is_websocket": "false"},
    ) == 1.0
    assert registry.get_sample_value(
        "http_request_duration_seconds_count",
        {"method": "GET", "path": "other", "status_code": "404", "is_websocket": "false"},
    ) == 1.0
    assert registry.get_sample_value("http_request_active", {"method": "POST", "path": "paymentauth"}) == 0.0


def test_metrics_route_exposes_injected_collectors(captured_logger):
    logger, _ = captured_logger
    metrics = Metrics.create(CollectorRegistry())
    client = _client(logger, metrics=metrics)
    client.post("/paymentAuth", json={"amount": 10.0})
    text = client.get("/metrics").text
    assert "http_request_duration_seconds_bucket" in text
    assert "http_request_size_bytes_bucket" in text
    assert 'path="paymentauth"' in text


def test_wire_up_builds_default_logger_and_metrics():
    handler, logger = wiring.wire_up(background(), 100.0, trace.NoOpTracer(), "payment")
    assert logger.name == "payauth"
    response = TestClient(handler).post("/paymentAuth", json={"amount": 1.0})
    assert response.status_code == 200
