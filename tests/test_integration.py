"""
Integrationstester för ScanVault mot riktig MongoDB-instans.

Kräver att MongoDB körs lokalt på mongodb://localhost:27017
(eller via MONGODB_TEST_URI-miljövariabeln).

Kör med:
    pytest -m integration
    pytest -m integration -v --tb=short

Hoppas över om MongoDB inte är tillgänglig.
"""

import os

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from scanvault.db import ensure_indexes
from scanvault.errors import AuditLogError
from scanvault.models import UploadRecord
from scanvault.services.audit_log import AuditLog
from scanvault.services.crypto import open_sealed
from scanvault.services.object_store import MongoObjectStore

# ─── Konfiguration ────────────────────────────────────────────────────────────

MONGODB_TEST_URI = os.getenv("MONGODB_TEST_URI", "mongodb://localhost:27017")
TEST_DB_NAME = "scanvault_test"
DIGEST = "b94d27b9934d3e08a52e52d7da7dabfac484efe37a5380ee9088f7ace2efcde9"

pytestmark = pytest.mark.integration


# ─── Fixtures ─────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def test_db():
    """Ger en ren test-databas för varje test."""
    client = AsyncIOMotorClient(MONGODB_TEST_URI, serverSelectionTimeoutMS=2000)
    db = client[TEST_DB_NAME]
    try:
        await client.admin.command("ping")
    except PyMongoError:
        client.close()
        pytest.skip("MongoDB not available")
    await db.uploads.drop()
    await db.encrypted_objects.drop()
    await ensure_indexes(db)
    yield db
    await db.uploads.drop()
    await db.encrypted_objects.drop()
    client.close()


# ─── Tester ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_mongo_store_refuses_overwrite(test_db):
    from scanvault.errors import ObjectCollisionError

    store = MongoObjectStore(test_db)
    await store.put("alice/a.enc", b"first")
    with pytest.raises(ObjectCollisionError):
        await store.put("alice/a.enc", b"second")
    assert await store.get("alice/a.enc") == b"first"


@pytest.mark.asyncio
async def test_unique_storage_path_index_blocks_second_clean_record(test_db):
    log = AuditLog(test_db)
    path = f"alice/{DIGEST}_a.txt.enc"
    record = UploadRecord(
        username="alice", filename="a.txt", file_size=11, sha256=DIGEST, status="clean", storage_path=path
    )
    await log.append(record)
    await log.append(record)  # retried insert of the same record

    other = UploadRecord(
        username="alice", filename="a.txt", file_size=11, sha256=DIGEST, status="clean", storage_path=path
    )
    with pytest.raises(AuditLogError):
        await log.append(other)

    # Malicious records have no storage_path and never conflict.
    for _ in range(2):
        await log.append(
            UploadRecord(username="bob", filename="x", file_size=1, sha256=DIGEST, status="malicious")
        )
    assert await test_db.uploads.count_documents({}) == 3


@pytest.mark.asyncio
async def test_list_records_reads_back_utc_datetimes(test_db):
    log = AuditLog(test_db)
    await log.append(
        UploadRecord(username="bob", filename="x", file_size=1, sha256=DIGEST, status="malicious")
    )
    [record] = await log.list_records(10)
    assert record.created_at.tzinfo is not None


def test_scan_endpoint_with_mongo_backend(monkeypatch):
    """Hela flödet via HTTP med riktig MongoDB (synkron TestClient, egen klient)."""
    from pymongo import MongoClient

    sync_client = MongoClient(MONGODB_TEST_URI, serverSelectionTimeoutMS=2000)
    try:
        sync_client.admin.command("ping")
    except PyMongoError:
        pytest.skip("MongoDB not available")
    sync_db = sync_client[TEST_DB_NAME]
    sync_db.uploads.drop()
    sync_db.encrypted_objects.drop()

    monkeypatch.setenv("MONGODB_URI", f"{MONGODB_TEST_URI.rstrip('/')}/{TEST_DB_NAME}")
    from scanvault import db as db_module
    db_module._mongo_uri.cache_clear()
    db_module.get_mongo_client.cache_clear()

    from scanvault.main import _upload_request_times, app

    monkeypatch.setattr("scanvault.main.STORAGE_BACKEND", "mongo")
    _upload_request_times.clear()
    try:
        with TestClient(app) as client:
            r = client.post(
                "/scan",
                files={"file": ("hello.txt", b"hello world", "text/plain")},
                data={"username": "alice"},
            )
            assert r.status_code == 200
            body = r.json()
            stored = sync_db.encrypted_objects.find_one({"_id": body["storage_path"]})
            assert open_sealed(body["encryption_key"], bytes(stored["blob"])) == b"hello world"
            assert sync_db.uploads.count_documents({"storage_path": body["storage_path"]}) == 1
    finally:
        sync_db.uploads.drop()
        sync_db.encrypted_objects.drop()
        sync_client.close()
        db_module._mongo_uri.cache_clear()
        db_module.get_mongo_client.cache_clear()
