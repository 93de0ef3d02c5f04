import os
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import AutoReconnect, DuplicateKeyError

# Sätt miljön innan app importeras: ingen autentisering, ingen schemaläggare
os.environ.setdefault("AUTH_MODE", "off")
os.environ["ORPHAN_SWEEP_ENABLED"] = "false"
os.environ.pop("BLOCKLIST_SHA256", None)
os.environ.pop("ALERT_WEBHOOK_URL", None)

from scanvault.main import app, _upload_request_times  # noqa: E402


def _matches(document: dict, query: dict) -> bool:
    for key, expected in query.items():
        value = document.get(key)
        if isinstance(expected, dict) and "$lt" in expected:
            if value is None or not value < expected["$lt"]:
                return False
        elif value != expected:
            return False
    return True


class FakeCursor:
    def __init__(self, items):
        self.items = list(items)

    def sort(self, key, direction=1):
        self.items.sort(key=lambda item: item.get(key), reverse=direction == -1)
        return self

    def limit(self, count):
        self.items = self.items[:count]
        return self

    def __aiter__(self):
        self._iter = iter(self.items)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    """Minimal async stand-in for a Motor collection."""

    def __init__(self, unique_fields=()):
        self.documents: dict = {}
        self.unique_fields = unique_fields
        # Number of upcoming inserts that fail before writing.
        self.fail_inserts = 0
        # Number of upcoming inserts that write but still report a failure (lost ack).
        self.fail_after_write = 0
        self.insert_calls = 0
        # Number of upcoming find_one calls that fail.
        self.fail_reads = 0

    async def insert_one(self, document):
        self.insert_calls += 1
        # A pending lost ack is consumed before outright failures.
        if self.fail_inserts and not self.fail_after_write:
            self.fail_inserts -= 1
            raise AutoReconnect("simulated connection loss")
        if document["_id"] in self.documents:
            raise DuplicateKeyError("duplicate _id")
        for field in self.unique_fields:
            value = document.get(field)
            if value is not None and any(d.get(field) == value for d in self.documents.values()):
                raise DuplicateKeyError(f"duplicate {field}")
        self.documents[document["_id"]] = dict(document)
        if self.fail_after_write:
            self.fail_after_write -= 1
            raise AutoReconnect("simulated lost acknowledgement")
        return SimpleNamespace(inserted_id=document["_id"])

    async def find_one(self, query, projection=None):
        if self.fail_reads:
            self.fail_reads -= 1
            raise AutoReconnect("simulated read failure")
        for document in self.documents.values():
            if _matches(document, query):
                return dict(document)
        return None

    def find(self, query=None, projection=None):
        query = query or {}
        return FakeCursor(dict(d) for d in self.documents.values() if _matches(d, query))

    async def delete_one(self, query):
        for key, document in list(self.documents.items()):
            if _matches(document, query):
                del self.documents[key]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def create_index(self, *_args, **_kwargs):
        return "index"


class FakeDB:
    def __init__(self):
        self.uploads = FakeCollection(unique_fields=("storage_path",))
        self.encrypted_objects = FakeCollection()


@pytest.fixture
def fake_db():
    return FakeDB()


@pytest.fixture
def storage_dir(tmp_path):
    return tmp_path / "objects"


@pytest.fixture
def client(fake_db, storage_dir, monkeypatch):
    async def no_indexes(*_args, **_kwargs):
        return None

    monkeypatch.setattr("scanvault.main.get_db", lambda: fake_db)
    monkeypatch.setattr("scanvault.routers.admin.get_db", lambda: fake_db)
    monkeypatch.setattr("scanvault.main.ensure_indexes", no_indexes)
    monkeypatch.setattr("scanvault.main.STORAGE_BACKEND", "local")
    monkeypatch.setattr("scanvault.main.STORAGE_DIR", str(storage_dir))
    monkeypatch.setenv("AUTH_MODE", "off")
    _upload_request_times.clear()
    with TestClient(app) as test_client:
        yield test_client
