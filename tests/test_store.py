import json
from pathlib import Path

import pytest

from prism_lib.errors import StoreConfigurationError
from prism_lib.records import Project, Rule, SubscriptionRecord, TranscriptDocument
from prism_lib.store import MemoryStore, MongoStore, open_store


class FakeMongoClient:
    instances: list["FakeMongoClient"] = []

    def __init__(self, uri: str, **options) -> None:
        self.uri = uri
        self.options = options
        self.closed = False
        FakeMongoClient.instances.append(self)

    def __getitem__(self, name: str):
        return {"projects": f"{name}.projects"}

    def close(self) -> None:
        self.closed = True


def test_memory_collection_filters_sorts_and_counts() -> None:
    store = MemoryStore(
        {
            "rules": [
                {"_id": "r1", "projectId": "p1", "priority": 3},
                {"_id": "r2", "projectId": "p1", "priority": 1},
                {"_id": "r3", "projectId": "p2", "priority": 2},
            ]
        }
    )
    rules = store.collection("rules")

    found = rules.find({"projectId": "p1"}, sort=[("priority", 1)])

    assert [doc["_id"] for doc in found] == ["r2", "r1"]
    assert rules.count({"projectId": {"$in": ["p1", "p2"]}}) == 3
    assert rules.find_one({"projectId": "p3"}) is None
    assert store.calls["rules"] == 3


def test_memory_collection_returns_copies() -> None:
    store = MemoryStore({"projects": [{"_id": "p1", "name": "Demo"}]})

    store.collection("projects").find_one({"_id": "p1"})["name"] = "Changed"

    assert store.collection("projects").find_one({"_id": "p1"})["name"] == "Demo"


def test_memory_collection_update_requires_set() -> None:
    collection = MemoryStore().collection("projects")
    doc_id = collection.insert_one({"name": "Demo"})

    assert collection.update_one({"_id": doc_id}, {"$set": {"name": "Renamed"}}) is True
    assert collection.find_one({"_id": doc_id})["name"] == "Renamed"
    with pytest.raises(ValueError):
        collection.update_one({"_id": doc_id}, {"name": "oops"})


def test_open_store_requires_uri() -> None:
    with pytest.raises(StoreConfigurationError, match="MONGODB_URI"):
        open_store(None, "prism")


def test_open_store_rejects_unknown_scheme() -> None:
    with pytest.raises(StoreConfigurationError):
        open_store("postgres://localhost/db", "prism")


def test_open_store_loads_file_fixture(tmp_path: Path) -> None:
    fixture = tmp_path / "store.json"
    fixture.write_text(json.dumps({"projects": [{"_id": "p1", "slug": "demo"}]}), encoding="utf-8")

    store = open_store(fixture.as_uri(), "prism")

    assert store.collection("projects").find_one({"slug": "demo"})["_id"] == "p1"


def test_open_store_returns_mongo_store_without_connecting() -> None:
    store = open_store("mongodb://localhost:27017", "prism")

    assert isinstance(store, MongoStore)


def test_mongo_store_creates_client_once_and_closes() -> None:
    FakeMongoClient.instances.clear()
    store = MongoStore("mongodb://example", "prism", client_factory=FakeMongoClient)

    store.collection("projects")
    store.collection("projects")
    store.close()

    assert len(FakeMongoClient.instances) == 1
    client = FakeMongoClient.instances[0]
    assert client.options["retryWrites"] is False
    assert client.closed is True


def test_records_fail_closed_on_malformed_documents() -> None:
    assert Project.from_document({"_id": "p1", "userId": "u1"}) is None
    assert TranscriptDocument.from_document({"_id": "t1", "projectId": "p1", "transcriptText": 42}) is None
    assert Rule.from_document({"_id": "r1", "projectId": "p1", "name": "x", "content": "y", "category": "vibes"}) is None
    assert SubscriptionRecord.from_document({"userId": "u1", "tier": "gold", "status": "active"}) is None


def test_rule_defaults() -> None:
    rule = Rule.from_document(
        {"_id": "r1", "projectId": "p1", "name": "Naming", "content": "Use kebab-case", "category": "custom"}
    )

    assert rule is not None
    assert rule.priority == 50
    assert rule.is_active is True
