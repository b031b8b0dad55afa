import pytest
from fastapi.testclient import TestClient

from app import app, get_pipeline
from config import Settings
from pipeline import QueryPipeline


# Fake document store: records every driver call it receives
class FakeCursor:
    def __init__(self, docs):
        self.docs = list(docs)

    def limit(self, n):
        return FakeCursor(self.docs[:n])

    def __iter__(self):
        return iter(self.docs)


class FakeCollection:
    def __init__(self, docs=None, error=None):
        self.docs = list(docs or [])
        self.error = error
        self.find_calls = []
        self.aggregate_calls = []

    def find(self, filter=None, **kwargs):
        if self.error:
            raise self.error
        self.find_calls.append((filter, kwargs))
        docs = self.docs[:kwargs["limit"]] if "limit" in kwargs else self.docs
        return FakeCursor(docs)

    def aggregate(self, pipeline, **kwargs):
        if self.error:
            raise self.error
        self.aggregate_calls.append((pipeline, kwargs))
        return iter(self.docs)


class FakeStore:
    def __init__(self, collections=None):
        self.collections = collections or {}
        self.closed = False

    def close(self):
        self.closed = True

    def collection(self, name, database=None):
        return self.collections.setdefault(name, FakeCollection())

    def list_collections(self, database=None):
        return sorted(
            ({"name": name, "count": len(coll.docs)} for name, coll in self.collections.items()),
            key=lambda c: c["name"],
        )


# Fake text-generation service
class FakeLLM:
    model_name = "fake-model"

    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.text


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def users():
    return FakeCollection(docs=[
        {"_id": "a1", "Name": "Jens", "Email": "jens@example.com"},
        {"_id": "a2", "Name": "Ada", "Email": "ada@example.com"},
    ])


@pytest.fixture
def store(users):
    return FakeStore({"users": users})


@pytest.fixture
def llm():
    return FakeLLM('{"query": {}}')


@pytest.fixture
def query_pipeline(settings, store, llm):
    return QueryPipeline(settings, store, llm)


@pytest.fixture
def client(query_pipeline):
    app.dependency_overrides[get_pipeline] = lambda: query_pipeline
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
