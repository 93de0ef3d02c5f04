from datetime import UTC, datetime, timedelta
import logging

from scanvault.config import ORPHAN_GRACE_SECONDS, STORAGE_BACKEND, STORAGE_DIR
from scanvault.db import get_db
from scanvault.errors import ObjectStoreError
from scanvault.services.audit_log import AuditLog
from scanvault.services.object_store import ObjectStore, build_object_store

logger = logging.getLogger("scanvault.reconcile")


async def reconcile_orphans(
    store: ObjectStore,
    audit_log: AuditLog,
    grace_seconds: int = ORPHAN_GRACE_SECONDS,
    now: datetime | None = None,
) -> list[str]:
    """
    Delete stored objects that never received an audit record.

    Only objects older than grace_seconds are considered, so commits still
    in flight are left alone. Returns the deleted paths.
    """
    cutoff = (now or datetime.now(UTC)) - timedelta(seconds=grace_seconds)
    removed = []
    for path in await store.list_older_than(cutoff):
        if await audit_log.has_storage_path(path):
            continue
        try:
            if await store.delete(path):
                removed.append(path)
                logger.warning("Orphan object removed: %s", path)
        except ObjectStoreError:
            logger.exception("Failed to remove orphan object %s", path)
    return removed


async def run_orphan_sweep() -> None:
    """Scheduler entry point."""
    try:
        db = get_db()
        store = build_object_store(db, STORAGE_BACKEND, STORAGE_DIR)
        removed = await reconcile_orphans(store, AuditLog(db))
        logger.info("Orphan sweep finished: removed=%d", len(removed))
    except Exception:
        logger.exception("Orphan sweep failed")
