"""
Scan orchestration: hash -> classify -> [encrypt -> store] -> log.

States:
  RECEIVED -> HASHED -> CLASSIFIED -> REJECTED                      (malicious)
                                   -> ENCRYPTING -> STORED -> LOGGED (clean)
  FAILED is reachable from any step on an infrastructure error.

An audit record is written only once the verdict is final, and for clean
uploads only after the object store accepted the blob.
"""

from enum import Enum
import asyncio
import logging

from scanvault.config import (
    AUDIT_APPEND_ATTEMPTS,
    AUDIT_RETRY_DELAY_SECONDS,
    MAX_FILE_SIZE_BYTES,
)
from scanvault.errors import (
    AuditLogError,
    CipherError,
    InfrastructureError,
    ObjectStoreError,
    ValidationError,
)
from scanvault.models import CleanScanResponse, MaliciousScanResponse, ScanResponse, UploadRecord
from scanvault.scanner import ThreatDetector, compute_digest
from scanvault.services.audit_log import AuditLog
from scanvault.services.crypto import seal
from scanvault.services.object_store import ObjectStore, storage_path_for

logger = logging.getLogger("scanvault.pipeline")


class ScanState(str, Enum):
    RECEIVED = "received"
    HASHED = "hashed"
    CLASSIFIED = "classified"
    REJECTED = "rejected"
    ENCRYPTING = "encrypting"
    STORED = "stored"
    LOGGED = "logged"
    FAILED = "failed"


class ScanPipeline:
    def __init__(
        self,
        detector: ThreatDetector,
        store: ObjectStore,
        audit_log: AuditLog,
        max_size: int = MAX_FILE_SIZE_BYTES,
        append_attempts: int = AUDIT_APPEND_ATTEMPTS,
        retry_delay: float = AUDIT_RETRY_DELAY_SECONDS,
    ):
        self.detector = detector
        self.store = store
        self.audit_log = audit_log
        self.max_size = max_size
        self.append_attempts = max(1, append_attempts)
        self.retry_delay = retry_delay

    def _validate(self, identity: str | None, content: bytes | None) -> None:
        if not identity or content is None:
            raise ValidationError("Missing file or username", status_code=400)
        if len(content) > self.max_size:
            raise ValidationError(
                f"File too large (max {self.max_size} bytes)", status_code=413
            )

    async def scan(
        self, identity: str | None, filename: str, content: bytes | None
    ) -> ScanResponse:
        self._validate(identity, content)
        state = ScanState.RECEIVED

        try:
            digest = await asyncio.to_thread(compute_digest, content)
        except Exception as exc:
            raise InfrastructureError("Hashing failed", stage=state) from exc
        state = ScanState.HASHED
        logger.info("Scanning file=%s sha256=%s size=%d user=%s", filename, digest, len(content), identity)

        detection = self.detector.classify(digest, content)
        state = ScanState.CLASSIFIED

        if detection.is_malicious:
            record = UploadRecord(
                username=identity,
                filename=filename,
                file_size=len(content),
                sha256=digest,
                status="malicious",
            )
            await self._append(record, state)
            logger.warning(
                "Upload rejected: file=%s sha256=%s reason=%s user=%s",
                filename, digest, detection.reason, identity,
            )
            return MaliciousScanResponse(sha256=digest, reason=detection.reason)

        state = ScanState.ENCRYPTING
        try:
            sealed = await asyncio.to_thread(seal, content)
        except CipherError as exc:
            exc.stage = state
            raise

        path = storage_path_for(identity, digest, filename)
        # A client abort must not cut the commit between store and log.
        await asyncio.shield(
            self._commit(path, sealed.blob, identity, filename, digest, len(content))
        )

        logger.info("Upload accepted: file=%s sha256=%s path=%s user=%s", filename, digest, path, identity)
        return CleanScanResponse(
            sha256=digest,
            storage_path=path,
            encryption_key=sealed.key.hex(),
        )

    async def _commit(
        self, path: str, blob: bytes, identity: str, filename: str, digest: str, size: int
    ) -> None:
        try:
            await self.store.put(path, blob)
        except ObjectStoreError as exc:
            exc.stage = ScanState.ENCRYPTING
            raise

        # Built after the put so created_at marks the append; retries reuse it.
        record = UploadRecord(
            username=identity,
            filename=filename,
            file_size=size,
            sha256=digest,
            status="clean",
            storage_path=path,
        )
        try:
            await self._append(record, ScanState.STORED)
        except InfrastructureError:
            if await self._record_landed(record):
                logger.warning(
                    "Audit record %s was written despite append errors; keeping %s",
                    record.record_id, path,
                )
                return
            raise

    async def _append(self, record: UploadRecord, stage: ScanState) -> None:
        last_error: Exception | None = None
        for attempt in range(1, self.append_attempts + 1):
            try:
                await self.audit_log.append(record)
                return
            except AuditLogError as exc:
                last_error = exc
                logger.warning(
                    "Audit append failed (attempt %d/%d) for sha256=%s: %s",
                    attempt, self.append_attempts, record.sha256, exc,
                )
                if attempt < self.append_attempts and self.retry_delay:
                    await asyncio.sleep(self.retry_delay)
        raise AuditLogError("Audit log unavailable", stage=stage) from last_error

    async def _record_landed(self, record: UploadRecord) -> bool:
        """
        Settle a failed clean append. Returns True if the record is in the log.

        The object is deleted only when the log confirms the record is absent.
        If the log cannot be read the object stays for the orphan sweep.
        """
        try:
            landed = await self.audit_log.has_record(record.record_id)
        except AuditLogError:
            logger.exception(
                "Could not confirm audit record %s; %s left for orphan sweep",
                record.record_id, record.storage_path,
            )
            return False
        if not landed:
            await self._discard(record.storage_path)
        return landed

    async def _discard(self, path: str) -> None:
        try:
            removed = await self.store.delete(path)
            logger.warning("Removed unrecorded object %s (removed=%s)", path, removed)
        except ObjectStoreError:
            logger.exception("Failed to remove unrecorded object %s; left for orphan sweep", path)
