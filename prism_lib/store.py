"""Document store collaborators.

Every read goes through the small ``Collection`` surface below (find, find_one,
count, insert_one, update_one by filter). ``MemoryStore`` backs tests and
``file://`` fixtures; ``MongoStore`` talks to MongoDB / Cosmos DB and opens its
client at most once per process.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Protocol, Sequence, Tuple
from urllib.parse import unquote, urlparse

from .errors import StoreConfigurationError
from .fileio import read_json

LOGGER = logging.getLogger("prism.store")

PROJECTS = "projects"
TRANSCRIPTS = "videoTranscripts"
RULES = "rules"
SUBSCRIPTIONS = "subscriptions"

Filter = Mapping[str, Any]
SortSpec = Sequence[Tuple[str, int]]


class Collection(Protocol):
    def find(self, filter: Filter, *, limit: int | None = None, sort: SortSpec | None = None) -> List[Dict[str, Any]]: ...

    def find_one(self, filter: Filter) -> Dict[str, Any] | None: ...

    def count(self, filter: Filter) -> int: ...

    def insert_one(self, document: Mapping[str, Any]) -> str: ...

    def update_one(self, filter: Filter, update: Mapping[str, Any]) -> bool: ...


class DocumentStore(Protocol):
    def collection(self, name: str) -> Collection: ...

    def close(self) -> None: ...


def _matches(document: Mapping[str, Any], filter: Filter) -> bool:
    for key, expected in filter.items():
        actual = document.get(key)
        if isinstance(expected, Mapping):
            if set(expected) - {"$in"}:
                raise ValueError(f"Unsupported filter operator(s) for {key}: {sorted(expected)}")
            if actual not in list(expected["$in"]):
                return False
        elif actual != expected:
            return False
    return True


def _sort_key(spec: SortSpec):
    def key(document: Mapping[str, Any]):
        parts = []
        for field_name, _direction in spec:
            value = document.get(field_name)
            parts.append((value is None, value))
        return parts

    return key


class MemoryCollection:
    """List-backed collection with equality and ``$in`` filters."""

    def __init__(self, name: str, documents: Iterable[Mapping[str, Any]] = (), *, calls: Counter | None = None) -> None:
        self.name = name
        self._documents: List[Dict[str, Any]] = [dict(doc) for doc in documents]
        self._calls = calls if calls is not None else Counter()
        self._lock = threading.Lock()

    def find(self, filter: Filter, *, limit: int | None = None, sort: SortSpec | None = None) -> List[Dict[str, Any]]:
        self._calls[self.name] += 1
        with self._lock:
            found = [copy.deepcopy(doc) for doc in self._documents if _matches(doc, filter)]
        if sort:
            # Stable multi-key sort, applied from the least significant key.
            for field_name, direction in reversed(list(sort)):
                found.sort(key=_sort_key([(field_name, direction)]), reverse=direction < 0)
        if limit is not None and limit > 0:
            found = found[:limit]
        return found

    def find_one(self, filter: Filter) -> Dict[str, Any] | None:
        found = self.find(filter, limit=1)
        return found[0] if found else None

    def count(self, filter: Filter) -> int:
        self._calls[self.name] += 1
        with self._lock:
            return sum(1 for doc in self._documents if _matches(doc, filter))

    def insert_one(self, document: Mapping[str, Any]) -> str:
        self._calls[self.name] += 1
        stored = dict(document)
        stored.setdefault("_id", uuid.uuid4().hex)
        with self._lock:
            self._documents.append(stored)
        return str(stored["_id"])

    def update_one(self, filter: Filter, update: Mapping[str, Any]) -> bool:
        self._calls[self.name] += 1
        changes = update.get("$set")
        if not isinstance(changes, Mapping):
            raise ValueError("update_one expects a {'$set': {...}} document")
        with self._lock:
            for doc in self._documents:
                if _matches(doc, filter):
                    doc.update(changes)
                    return True
        return False


class MemoryStore:
    def __init__(self, data: Mapping[str, Iterable[Mapping[str, Any]]] | None = None) -> None:
        self.calls: Counter = Counter()
        self._collections: Dict[str, MemoryCollection] = {}
        for name, documents in (data or {}).items():
            self._collections[name] = MemoryCollection(name, documents, calls=self.calls)

    @classmethod
    def from_json_file(cls, path: Path) -> "MemoryStore":
        payload = read_json(path)
        if payload is None:
            raise StoreConfigurationError(f"Store fixture {path} does not exist")
        if not isinstance(payload, dict):
            raise StoreConfigurationError(f"Store fixture {path} must map collection names to document lists")
        return cls({str(name): list(docs or []) for name, docs in payload.items()})

    def collection(self, name: str) -> MemoryCollection:
        if name not in self._collections:
            self._collections[name] = MemoryCollection(name, calls=self.calls)
        return self._collections[name]

    def close(self) -> None:
        return None


class MongoCollection:
    def __init__(self, collection: Any) -> None:
        self._collection = collection

    @staticmethod
    def _normalize_filter(filter: Filter) -> Dict[str, Any]:
        from bson import ObjectId

        normalized = dict(filter)
        raw_id = normalized.get("_id")
        if isinstance(raw_id, str) and ObjectId.is_valid(raw_id):
            normalized["_id"] = ObjectId(raw_id)
        return normalized

    @staticmethod
    def _stringify(document: Dict[str, Any]) -> Dict[str, Any]:
        if "_id" in document:
            document["_id"] = str(document["_id"])
        return document

    def find(self, filter: Filter, *, limit: int | None = None, sort: SortSpec | None = None) -> List[Dict[str, Any]]:
        cursor = self._collection.find(self._normalize_filter(filter))
        if sort:
            cursor = cursor.sort(list(sort))
        if limit is not None and limit > 0:
            cursor = cursor.limit(limit)
        return [self._stringify(doc) for doc in cursor]

    def find_one(self, filter: Filter) -> Dict[str, Any] | None:
        document = self._collection.find_one(self._normalize_filter(filter))
        return self._stringify(document) if document is not None else None

    def count(self, filter: Filter) -> int:
        return int(self._collection.count_documents(self._normalize_filter(filter)))

    def insert_one(self, document: Mapping[str, Any]) -> str:
        result = self._collection.insert_one(dict(document))
        return str(result.inserted_id)

    def update_one(self, filter: Filter, update: Mapping[str, Any]) -> bool:
        result = self._collection.update_one(self._normalize_filter(filter), dict(update))
        return bool(result.matched_count)


class MongoStore:
    """MongoDB-backed store; the client is created lazily, once."""

    def __init__(self, uri: str, database_name: str, *, client_factory: Any = None) -> None:
        self._uri = uri
        self._database_name = database_name
        self._client_factory = client_factory
        self._client: Any = None
        self._lock = threading.Lock()

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        with self._lock:
            if self._client is None:
                factory = self._client_factory
                if factory is None:
                    from pymongo import MongoClient

                    factory = MongoClient
                # Cosmos DB does not support retryable writes.
                self._client = factory(self._uri, retryWrites=False, maxPoolSize=10, minPoolSize=1, maxIdleTimeMS=30000)
                LOGGER.info("Connected to document store database=%s", self._database_name)
        return self._client

    def collection(self, name: str) -> MongoCollection:
        return MongoCollection(self._get_client()[self._database_name][name])

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
                LOGGER.info("Document store connection closed")


def open_store(uri: str | None, database_name: str) -> DocumentStore:
    if not uri:
        raise StoreConfigurationError(
            "MONGODB_URI is not set. Pass it (or COSMOS_CONNECTION_STRING) in the MCP server env."
        )
    scheme = urlparse(uri).scheme.lower()
    if scheme in ("mongodb", "mongodb+srv"):
        return MongoStore(uri, database_name)
    if scheme == "file":
        parsed = urlparse(uri)
        return MemoryStore.from_json_file(Path(unquote(parsed.netloc + parsed.path)))
    raise StoreConfigurationError(f"Unsupported store URI scheme {scheme or '<none>'!r}")
