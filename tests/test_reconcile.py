from datetime import UTC, datetime, timedelta

import pytest

from scanvault.models import UploadRecord
from scanvault.services.audit_log import AuditLog
from scanvault.services.object_store import MongoObjectStore
from scanvault.services.reconcile import reconcile_orphans, run_orphan_sweep

DIGEST = "b94d27b9934d3e08a52e52d7da7dabfac484efe37a5380ee9088f7ace2efcde9"


def _age(fake_db, path, hours):
    fake_db.encrypted_objects.documents[path]["created_at"] = datetime.now(UTC) - timedelta(hours=hours)


@pytest.mark.asyncio
async def test_reconcile_removes_only_old_unrecorded_objects(fake_db):
    store = MongoObjectStore(fake_db)
    audit_log = AuditLog(fake_db)

    recorded = f"alice/{DIGEST}_kept.txt.enc"
    orphan = f"alice/{DIGEST}_orphan.txt.enc"
    in_flight = f"alice/{DIGEST}_fresh.txt.enc"
    for path in (recorded, orphan, in_flight):
        await store.put(path, b"blob")
    _age(fake_db, recorded, 2)
    _age(fake_db, orphan, 2)

    await audit_log.append(
        UploadRecord(
            username="alice",
            filename="kept.txt",
            file_size=4,
            sha256=DIGEST,
            status="clean",
            storage_path=recorded,
        )
    )

    removed = await reconcile_orphans(store, audit_log, grace_seconds=600)

    assert removed == [orphan]
    assert set(fake_db.encrypted_objects.documents) == {recorded, in_flight}
    # Audit records are never touched.
    assert len(fake_db.uploads.documents) == 1


@pytest.mark.asyncio
async def test_reconcile_with_nothing_to_do(fake_db):
    assert await reconcile_orphans(MongoObjectStore(fake_db), AuditLog(fake_db)) == []


@pytest.mark.asyncio
async def test_run_orphan_sweep_uses_configured_backend(fake_db, monkeypatch):
    store = MongoObjectStore(fake_db)
    await store.put("bob/orphan.enc", b"blob")
    _age(fake_db, "bob/orphan.enc", 24)

    monkeypatch.setattr("scanvault.services.reconcile.get_db", lambda: fake_db)
    monkeypatch.setattr("scanvault.services.reconcile.STORAGE_BACKEND", "mongo")

    await run_orphan_sweep()
    assert fake_db.encrypted_objects.documents == {}


@pytest.mark.asyncio
async def test_run_orphan_sweep_never_raises(monkeypatch):
    def broken_db():
        raise RuntimeError("mongo down")

    monkeypatch.setattr("scanvault.services.reconcile.get_db", broken_db)
    await run_orphan_sweep()
