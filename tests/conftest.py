from __future__ import annotations

import copy
from collections import defaultdict
from typing import Any, Callable, Dict, List, Mapping, Optional

import jwt
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from dreamers_api.config import load_config
from dreamers_api.main import create_app

TEST_SECRET = "test-nextauth"

TEST_ENV = {
    "ZOOM_WEBHOOK_SECRET": "test-zoom",
    "GOOGLE_DRIVE_SERVICE_ACCOUNT_KEY": "test-drive",
    "MONGODB_URI": "mongodb://localhost:27017/test",
    "NEXTAUTH_SECRET": TEST_SECRET,
    "APP_ENV": "test",
}


def _matches(document: Mapping[str, Any], query: Mapping[str, Any]) -> bool:
    for key, condition in query.items():
        value = document.get(key)
        if isinstance(condition, dict):
            if "$gte" in condition and (value is None or value < condition["$gte"]):
                return False
            if "$lte" in condition and (value is None or value > condition["$lte"]):
                return False
        elif value != condition:
            return False
    return True


def _project(document: Dict[str, Any], projection: Optional[Mapping[str, int]]) -> Dict[str, Any]:
    if not projection:
        return document
    keys = {key for key, flag in projection.items() if flag} | {"_id"}
    return {key: value for key, value in document.items() if key in keys}


class FakeStore:
    """In-memory stand-in for MongoStore that records every call."""

    def __init__(self) -> None:
        self.collections: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.calls: List[tuple] = []
        self.indexes: List[tuple] = []
        self.error: Optional[Exception] = None
        self.acknowledge_inserts = True
        self.ping_ms = 4.0
        self.closed = False

    def seed(self, collection: str, *documents: Dict[str, Any]) -> List[ObjectId]:
        ids = []
        for document in documents:
            stored = copy.deepcopy(document)
            stored.setdefault("_id", ObjectId())
            self.collections[collection].append(stored)
            ids.append(stored["_id"])
        return ids

    def get(self, collection: str, document_id: ObjectId) -> Optional[Dict[str, Any]]:
        for document in self.collections[collection]:
            if document["_id"] == document_id:
                return document
        return None

    def _record(self, *call: Any) -> None:
        self.calls.append(call)
        if self.error is not None:
            raise self.error

    def calls_for(self, operation: str, collection: Optional[str] = None) -> List[tuple]:
        return [
            call
            for call in self.calls
            if call[0] == operation and (collection is None or call[1] == collection)
        ]

    async def find_one(self, collection, filter, *, projection=None):
        self._record("find_one", collection, dict(filter), projection)
        for document in self.collections[collection]:
            if _matches(document, filter):
                return _project(copy.deepcopy(document), projection)
        return None

    async def find(self, collection, filter, *, projection=None, sort=None, limit=0):
        self._record("find", collection, dict(filter), projection, sort, limit)
        rows = [copy.deepcopy(doc) for doc in self.collections[collection] if _matches(doc, filter)]
        for key, direction in reversed(list(sort or [])):
            rows.sort(key=lambda row: row.get(key), reverse=direction < 0)
        if limit:
            rows = rows[:limit]
        return [_project(row, projection) for row in rows]

    async def insert_one(self, collection, document):
        self._record("insert_one", collection, copy.deepcopy(dict(document)))
        if not self.acknowledge_inserts:
            return None
        return self.seed(collection, dict(document))[0]

    async def update_one(self, collection, filter, update):
        self._record("update_one", collection, dict(filter), copy.deepcopy(dict(update)))
        for document in self.collections[collection]:
            if _matches(document, filter):
                document.update(copy.deepcopy(update.get("$set", {})))
                for key in update.get("$unset", {}):
                    document.pop(key, None)
                return 1
        return 0

    async def create_index(self, collection, keys, *, name):
        self._record("create_index", collection, list(keys), name)
        self.indexes.append((collection, list(keys), name))
        return name

    async def ping(self):
        self._record("ping")
        return self.ping_ms

    async def close(self):
        self.closed = True


def make_token(role: Optional[str] = "pro", *, secret: str = TEST_SECRET, **claims: Any) -> str:
    payload: Dict[str, Any] = {"sub": "user-1", "email": "user@example.com", **claims}
    if role is not None:
        payload["role"] = role
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def environ() -> Dict[str, str]:
    return dict(TEST_ENV)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def make_client(environ, store) -> Callable[..., TestClient]:
    def factory(env: Optional[Dict[str, str]] = None, **overrides: str) -> TestClient:
        config_env = {**environ, **overrides}
        app = create_app(load_config(config_env), store=store, environ=env or config_env)
        return TestClient(app)

    return factory


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


@pytest.fixture
def token_factory() -> Callable[..., str]:
    return make_token


@pytest.fixture
def auth_headers() -> Callable[..., Dict[str, str]]:
    def factory(role: Optional[str] = "pro", **claims: Any) -> Dict[str, str]:
        return {"Authorization": f"Bearer {make_token(role, **claims)}"}

    return factory
