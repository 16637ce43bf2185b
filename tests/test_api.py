"""Tests for the HTTP and WebSocket endpoints."""

from datetime import timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from activity_rollup.aggregators.registry import AggregatorRegistry
from activity_rollup.aggregators.variants import ACTIVITY, LOGIN, activity_aggregator, login_aggregator
from activity_rollup.api.boundaries import create_boundaries_router
from activity_rollup.api.events import create_events_router
from activity_rollup.api.ws_events import create_event_stream_router
from activity_rollup.core.interval_resolver import IntervalResolver
from activity_rollup.domain.enums import Granularity
from activity_rollup.services.processing import EventAggregationService
from activity_rollup.store.memory_store import InMemoryAggregationStore

from tests.test_event import _BASE, _valid_event
from tests.test_memory_store import UnavailableStore


def _ts(minutes: int) -> str:
    return (_BASE + timedelta(minutes=minutes)).isoformat()


def _client(login_store=None) -> TestClient:
    resolver = IntervalResolver()
    registry = AggregatorRegistry()
    registry.register(login_aggregator(login_store or InMemoryAggregationStore(LOGIN), resolver))
    registry.register(activity_aggregator(InMemoryAggregationStore(ACTIVITY), resolver))
    service = EventAggregationService(registry, resolver, [Granularity.TEN_MINUTE])

    app = FastAPI()
    app.include_router(create_events_router(service))
    app.include_router(create_event_stream_router(service))
    app.include_router(create_boundaries_router(service))
    return TestClient(app)


@pytest.fixture
def client() -> TestClient:
    return _client()


class TestEventsEndpoint:
    def test_batch_is_aggregated(self, client: TestClient) -> None:
        resp = client.post("/api/events", json=[
            _valid_event(timestamp=_ts(2), participant_id="user1"),
            _valid_event(timestamp=_ts(7), participant_id="user2"),
            _valid_event(timestamp=_ts(8), event_type="logout"),
        ])
        assert resp.status_code == 200
        body = resp.json()
        assert body["events_received"] == 3
        assert body["events_aggregated"] == 2
        assert body["events_ignored"] == 1
        assert body["records_written"] == 2

    def test_invalid_event_rejects_batch(self, client: TestClient) -> None:
        resp = client.post("/api/events", json=[
            _valid_event(),
            _valid_event(participant_id=""),
        ])
        assert resp.status_code == 422

    def test_unavailable_store_is_503(self) -> None:
        store = UnavailableStore()
        store.available = False
        resp = _client(login_store=store).post("/api/events", json=[_valid_event()])
        assert resp.status_code == 503


class TestBoundariesEndpoint:
    def test_closes_bucket_before_instant(self, client: TestClient) -> None:
        client.post("/api/events", json=[_valid_event(timestamp=_ts(2))])
        resp = client.post("/api/boundaries/ten_minute", params={"at": "2026-01-01T00:10:00Z"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["bucket"] == "ten_minute@2026-01-01T00:00:00"
        reports = {r["aggregator"]: r for r in body["reports"]}
        assert reports[LOGIN]["completed"] == 1
        assert reports[ACTIVITY]["completed"] == 0

    def test_repeat_call_completes_nothing(self, client: TestClient) -> None:
        client.post("/api/events", json=[_valid_event(timestamp=_ts(2))])
        params = {"at": "2026-01-01T00:10:00Z"}
        client.post("/api/boundaries/ten_minute", params=params)
        body = client.post("/api/boundaries/ten_minute", params=params).json()
        assert all(r["completed"] == 0 for r in body["reports"])

    def test_unknown_granularity_rejected(self, client: TestClient) -> None:
        resp = client.post("/api/boundaries/fortnight")
        assert resp.status_code == 422


class TestEventStream:
    def test_event_acknowledged(self, client: TestClient) -> None:
        raw = _valid_event(timestamp=_ts(2))
        with client.websocket_connect("/ws/events") as ws:
            ws.send_json(raw)
            ack = ws.receive_json()
        assert ack == {"status": "accepted", "event_id": raw["event_id"], "aggregators": 1}

    def test_invalid_event_keeps_connection(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/events") as ws:
            ws.send_json({"event_type": "login"})
            err = ws.receive_json()
            ws.send_json(_valid_event(event_type="logout"))
            ack = ws.receive_json()
        assert err["status"] == "error"
        assert err["reason"] == "invalid_event"
        assert ack["status"] == "accepted"
        assert ack["aggregators"] == 0

    def test_store_error_reported(self) -> None:
        store = UnavailableStore()
        store.available = False
        with _client(login_store=store).websocket_connect("/ws/events") as ws:
            ws.send_json(_valid_event())
            err = ws.receive_json()
        assert err["reason"] == "store_error"

    def test_stream_moving_past_buckets_still_accepts_late_events(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/events") as ws:
            for minute, user in ((2, "user1"), (14, "user2"), (5, "late")):
                ws.send_json(_valid_event(timestamp=_ts(minute), participant_id=user))
                assert ws.receive_json()["status"] == "accepted"
        body = client.post(
            "/api/boundaries/ten_minute", params={"at": "2026-01-01T00:10:00Z"}
        ).json()
        reports = {r["aggregator"]: r for r in body["reports"]}
        assert reports[LOGIN]["completed"] == 1
