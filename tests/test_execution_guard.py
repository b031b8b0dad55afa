import pytest
from bson import ObjectId
from pymongo.errors import OperationFailure

from conftest import FakeCollection
from errors import ExecutionFailure
from execution_guard import CASE_INSENSITIVE_COLLATION, ExecutionGuard
from query_spec import AggregateSpec, FindSpec

HEX_ID = "5f1d7f3b9c1e4a2b3c4d5e6f"


@pytest.fixture
def guard(settings):
    return ExecutionGuard(settings)


def test_limit_stage_always_appended(guard):
    coll = FakeCollection()
    guard.run(coll, AggregateSpec(pipeline=[{"$match": {}}], limit=10))
    pipeline, kwargs = coll.aggregate_calls[0]
    assert pipeline == [{"$match": {}}, {"$limit": 10}]
    assert kwargs == {"allowDiskUse": True}


def test_existing_limit_is_still_capped(guard):
    coll = FakeCollection()
    guard.run(coll, AggregateSpec(pipeline=[{"$limit": 5000}], limit=100))
    pipeline, _ = coll.aggregate_calls[0]
    assert pipeline[-1] == {"$limit": 100}


def test_cap_pipeline_copies():
    pipeline = [{"$match": {}}]
    capped = ExecutionGuard.cap_pipeline(pipeline, 3)
    assert capped == [{"$match": {}}, {"$limit": 3}]
    assert pipeline == [{"$match": {}}]


def test_find_with_collation_and_options(guard):
    coll = FakeCollection()
    spec = FindSpec(filter={"_id": {"$oid": HEX_ID}}, projection={"Name": 1}, sort={"Name": -1}, limit=7)
    guard.run(coll, spec)
    flt, kwargs = coll.find_calls[0]
    assert flt == {"_id": ObjectId(HEX_ID)}
    assert kwargs["limit"] == 7
    assert kwargs["projection"] == {"Name": 1}
    assert kwargs["sort"] == [("Name", -1)]
    assert kwargs["collation"] is CASE_INSENSITIVE_COLLATION


def test_find_without_collation(guard):
    coll = FakeCollection()
    guard.run(coll, FindSpec(filter={}, limit=5), ci=False)
    _, kwargs = coll.find_calls[0]
    assert "collation" not in kwargs
    assert "projection" not in kwargs
    assert "sort" not in kwargs


def test_limit_reclamped(settings):
    settings = settings.model_copy(update={"max_limit": 20})
    coll = FakeCollection()
    ExecutionGuard(settings).run(coll, FindSpec(filter={}, limit=50))
    assert coll.find_calls[0][1]["limit"] == 20


def test_results_encoded(guard):
    coll = FakeCollection(docs=[{"_id": ObjectId(HEX_ID), "name": "Jens"}])
    assert guard.run(coll, FindSpec(filter={}, limit=5)) == [{"_id": HEX_ID, "name": "Jens"}]


def test_driver_error_becomes_execution_failure(guard):
    coll = FakeCollection(error=OperationFailure("unknown operator: $foo"))
    with pytest.raises(ExecutionFailure) as exc:
        guard.run(coll, FindSpec(filter={"$foo": 1}, limit=5))
    assert "unknown operator" in exc.value.detail
