"""
End-to-end tests for the HTTP surface.

The TestClient context manager runs startup/shutdown, so the controller's
dispatch loop is live while requests are made.
"""

import time

import pytest
from fastapi.testclient import TestClient

from logdrain import metrics
from logdrain.app import create_app
from logdrain.signature import SignatureVerifier

from helpers import SECRET, VERIFY, RecordingSink

BODY = b'[{"source":"lambda","message":"ok","timestamp":1}, {"source":"unknown-kind","x":1}]'


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def sink():
    return RecordingSink("memory")


@pytest.fixture
def client(settings, counters, sink):
    app = create_app(settings, sinks=[sink], counters=counters)
    with TestClient(app) as c:
        yield c


def _sign(body: bytes) -> str:
    return SignatureVerifier(SECRET).sign(body)


class TestIngest:
    def test_signed_delivery_reaches_sink(self, client, counters, sink):
        resp = client.post("/vercel", content=BODY, headers={"x-vercel-signature": _sign(BODY)})
        assert resp.status_code == 200
        assert resp.headers["x-vercel-verify"] == VERIFY
        assert counters.get(metrics.RECORDS_ENQUEUED) == 1
        assert counters.get(metrics.ELEMENT_DECODE_FAILED) == 1
        assert _wait_for(lambda: len(sink.received) == 1)
        assert sink.received[0].message == "ok"

    def test_signature_over_other_bytes_still_acked(self, client, counters, sink):
        other = BODY.replace(b'"ok"', b'"ko"')
        resp = client.post("/vercel", content=BODY, headers={"x-vercel-signature": _sign(other)})
        assert resp.status_code == 200
        assert resp.headers["x-vercel-verify"] == VERIFY
        assert counters.get(metrics.SIGNATURE_MISMATCH) == 1
        assert counters.get(metrics.RECORDS_ENQUEUED) == 0
        time.sleep(0.05)
        assert sink.received == []

    def test_missing_signature_acked(self, client, counters):
        resp = client.post("/vercel", content=BODY)
        assert resp.status_code == 200
        assert counters.get(metrics.SIGNATURE_MISSING) == 1

    def test_invalid_json_acked(self, client, counters):
        body = b"this is not json"
        resp = client.post("/vercel", content=body, headers={"x-vercel-signature": _sign(body)})
        assert resp.status_code == 200
        assert counters.get(metrics.PAYLOAD_DECODE_FAILED) == 1

    def test_deeply_nested_body_acked(self, client, counters):
        body = b"[" * 100000 + b"]" * 100000
        resp = client.post("/vercel", content=body, headers={"x-vercel-signature": _sign(body)})
        assert resp.status_code == 200
        assert resp.headers["x-vercel-verify"] == VERIFY
        assert counters.get(metrics.PAYLOAD_DECODE_FAILED) == 1

    def test_failing_sink_does_not_affect_response(self, settings, counters):
        bad = RecordingSink("bad", fail=True)
        good = RecordingSink("good")
        body = b'[{"source":"edge","message":"m","timestamp":2}]'
        with TestClient(create_app(settings, sinks=[bad, good], counters=counters)) as c:
            resp = c.post("/vercel", content=body, headers={"x-vercel-signature": _sign(body)})
            assert resp.status_code == 200
            assert _wait_for(lambda: counters.get(metrics.SINK_DELIVERY_FAILED, sink="bad") == 1)
            assert _wait_for(lambda: len(good.received) == 1)


class TestOtherRoutes:
    def test_root_and_health(self, client):
        assert client.post("/").status_code == 200
        assert client.get("/health").status_code == 200

    def test_metrics_prefixed(self, client):
        client.post("/vercel", content=BODY)
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        lines = resp.text.splitlines()
        assert "drain_signature_missing_total 1.0" in lines
        assert "drain_queue_depth 0.0" in lines

    def test_metrics_keep_sink_label(self, client, counters):
        counters.inc(metrics.SINK_DELIVERY_FAILED, 3, sink="memory")
        lines = client.get("/metrics").text.splitlines()
        assert 'drain_sink_delivery_failed_total{sink="memory"} 3.0' in lines

    def test_metrics_count_requests_by_route(self, client):
        client.post("/vercel", content=BODY)
        client.get("/nowhere")
        text = client.get("/metrics").text
        assert 'drain_http_requests_total{method="POST",path="/vercel",status="200"} 1.0' in text
        assert 'drain_http_requests_total{method="GET",path="unmatched",status="404"} 1.0' in text
        assert 'drain_http_requests_duration_seconds_count{method="POST",path="/vercel"} 1.0' in text

    def test_metrics_disabled(self, settings, counters):
        settings.enable_metrics = False
        with TestClient(create_app(settings, sinks=[], counters=counters)) as c:
            assert c.get("/metrics").status_code == 404


def test_sinks_closed_on_shutdown(settings, counters, sink):
    with TestClient(create_app(settings, sinks=[sink], counters=counters)):
        assert sink.initialized
    assert sink.closed


def test_sink_init_failure_aborts_startup(settings, counters):
    app = create_app(settings, sinks=[RecordingSink("x", fail_init=True)], counters=counters)
    with pytest.raises(Exception):
        with TestClient(app):
            pass
