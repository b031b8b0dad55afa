import time
from concurrent.futures import ThreadPoolExecutor

from fastapi.testclient import TestClient
from pymongo.errors import OperationFailure

import app as app_module
from conftest import FakeStore
from errors import UpstreamServiceFailure


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "version": "1.0.0"}


def test_status(client):
    body = client.get("/ai/status").json()
    assert body["provider"] == "ollama"
    assert body["model"] == "fake-model"
    assert body["max_limit"] == 100
    assert "$where" in body["blocked_operators"]


def test_collections(client):
    assert client.get("/collections").json() == {"collections": [{"name": "users", "count": 2}]}


class TestGenerateEndpoint:
    def test_ok(self, client, llm):
        llm.text = '{"query": {"name": "Jens"}}'
        resp = client.post("/ai/generate", json={"natural": "users named Jens", "mode": "find", "collection": "users"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["kind"] == "find"
        assert body["query"]["filter"] == {"Name": "Jens"}
        assert body["limit"] == 50

    def test_missing_natural(self, client):
        resp = client.post("/ai/generate", json={"mode": "find"})
        assert resp.status_code == 422
        assert resp.json()["error"] == "InvalidInput"

    def test_bad_mode(self, client):
        resp = client.post("/ai/generate", json={"natural": "x", "mode": "delete"})
        assert resp.status_code == 422
        assert resp.json()["ok"] is False

    def test_upstream_failure(self, client, llm):
        llm.error = UpstreamServiceFailure("Text-generation service timed out after 30s")
        resp = client.post("/ai/generate", json={"natural": "x", "mode": "find"})
        assert resp.status_code == 502
        assert resp.json() == {
            "ok": False,
            "error": "UpstreamServiceFailure",
            "detail": "Text-generation service timed out after 30s",
        }

    def test_invalid_model_output(self, client, llm):
        llm.text = "no json here"
        resp = client.post("/ai/generate", json={"natural": "x", "mode": "find"})
        assert resp.status_code == 500
        assert resp.json()["error"] == "InvalidModelOutput"

    def test_dangerous(self, client, llm):
        llm.text = '{"pipeline": [{"$match": {"$where": "sleep(1000)"}}]}'
        resp = client.post("/ai/generate", json={"natural": "x", "mode": "aggregate"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "DangerousOperator"

    def test_empty_after_sanitization(self, client, llm):
        llm.text = '{"query": {"bio": {"$regex": ""}}}'
        resp = client.post("/ai/generate", json={"natural": "users with bio", "mode": "find"})
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] == "EmptyAfterSanitization"
        assert "hint" in body


class TestRunEndpoint:
    def test_find(self, client, users):
        resp = client.post("/ai/run", json={"collection": "users", "query": {"Name": "Jens"}, "limit": 1})
        assert resp.status_code == 200
        assert len(resp.json()) == 1
        assert users.find_calls[0][1]["limit"] == 1

    def test_pipeline_capped(self, client, users):
        resp = client.post("/ai/run", json={"collection": "users", "pipeline": [{"$match": {}}], "limit": 10})
        assert resp.status_code == 200
        assert users.aggregate_calls[0][0][-1] == {"$limit": 10}

    def test_missing_collection(self, client):
        resp = client.post("/ai/run", json={"query": {}})
        assert resp.status_code == 422
        assert resp.json()["error"] == "InvalidInput"

    def test_nothing_to_run(self, client):
        resp = client.post("/ai/run", json={"collection": "users"})
        assert resp.status_code == 422

    def test_execution_failure(self, client, users):
        users.error = OperationFailure("unknown operator: $foo")
        resp = client.post("/ai/run", json={"collection": "users", "query": {"$foo": 1}})
        assert resp.status_code == 500
        assert resp.json()["error"] == "ExecutionFailure"


class TestLifecycle:
    def test_pipeline_built_once_under_concurrent_requests(self, monkeypatch):
        built = []

        class SlowStore(FakeStore):
            def __init__(self, settings):
                time.sleep(0.05)
                built.append(self)
                super().__init__()

        monkeypatch.setattr(app_module, "_pipeline", None)
        monkeypatch.setattr(app_module, "DocumentStore", SlowStore)
        with ThreadPoolExecutor(max_workers=8) as pool:
            pipelines = list(pool.map(lambda _: app_module.get_pipeline(), range(8)))
        assert len(built) == 1
        assert all(p is pipelines[0] for p in pipelines)

    def test_store_closed_on_shutdown(self, monkeypatch, query_pipeline, store):
        monkeypatch.setattr(app_module, "_pipeline", query_pipeline)
        with TestClient(app_module.app):
            assert not store.closed
        assert store.closed
