"""Unit tests for request tracing and provenance."""

import uuid

import pytest
from fastapi.testclient import TestClient

from recommender.config import AlgorithmParams, AppConfig
from recommender.factory import save_model
from service.app import create_app
from service.middleware import MAX_TRACES, TraceStore, get_request_context, get_request_id


class TestTraceStore:
    """Tests for the bounded trace store."""

    def test_store_and_retrieve_trace(self):
        traces = TraceStore()
        request_id = str(uuid.uuid4())
        traces.put(request_id, {"model_version": "v1", "latency_ms": 5})

        retrieved = traces.get(request_id)
        assert retrieved["model_version"] == "v1"
        assert "stored_at" in retrieved  # Automatically added

    def test_get_nonexistent_trace(self):
        assert TraceStore().get(str(uuid.uuid4())) is None

    def test_trace_store_lru_eviction(self):
        traces = TraceStore()
        for i in range(MAX_TRACES + 100):
            traces.put(f"request_{i}", {"index": i})

        assert len(traces) == MAX_TRACES
        assert traces.get("request_0") is None
        assert traces.get("request_99") is None
        assert traces.get(f"request_{MAX_TRACES + 50}") is not None

    def test_clear(self):
        traces = TraceStore(max_traces=3)
        traces.put("a", {})
        traces.clear()
        assert len(traces) == 0

    def test_no_context_outside_request(self):
        assert get_request_context() == {}
        assert get_request_id() is None


class TestProvenanceIntegration:
    """Request IDs and traces through the API."""

    @pytest.fixture
    def client(self, tmp_path, toy_model, store):
        save_model(toy_model, tmp_path / "v1" / "ecomm")
        config = AppConfig(
            algorithm=AlgorithmParams(app_name="ecomm", unseen_only=False, rank=2),
            registry=str(tmp_path),
            model_version="v1",
        )
        return TestClient(create_app(config=config, store=store))

    def test_response_has_request_id_header(self, client):
        response = client.post("/queries.json", json={"user": "u1", "num": 1})
        assert response.status_code == 200
        assert len(response.headers["x-request-id"]) > 0

    def test_custom_request_id_header_preserved(self, client):
        custom_id = "custom-request-12345"
        response = client.post("/queries.json", json={"user": "u1", "num": 1},
                               headers={"X-Request-ID": custom_id})
        assert response.headers["x-request-id"] == custom_id

    def test_trace_endpoint_retrieves_stored_trace(self, client):
        response = client.post("/queries.json", json={"user": "nobody", "num": 2})
        request_id = response.headers["x-request-id"]

        trace_response = client.get(f"/trace/{request_id}")
        assert trace_response.status_code == 200
        trace = trace_response.json()["trace"]
        assert trace["request_id"] == request_id
        assert trace["model_version"] == "v1"
        assert trace["strategy"] == "default_popularity"
        assert trace["user"] == "nobody"
        assert trace["num_items"] == 2
        assert isinstance(trace["latency_ms"], int)

    def test_trace_endpoint_404_for_nonexistent_id(self, client):
        response = client.get(f"/trace/{uuid.uuid4()}")
        assert response.status_code == 404
        assert "not found" in response.json()["detail"].lower()
