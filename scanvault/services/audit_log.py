import logging

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from scanvault.errors import AuditLogError
from scanvault.models import UploadRecord

logger = logging.getLogger("scanvault.audit")


class AuditLog:
    """Append-only record of scan outcomes, stored in the uploads collection."""

    def __init__(self, db):
        self._uploads = db.uploads

    async def append(self, record: UploadRecord) -> None:
        try:
            await self._uploads.insert_one(record.to_document())
        except DuplicateKeyError as exc:
            # A retried insert whose first attempt landed is not an error.
            if await self.has_record(record.record_id):
                logger.info("Audit record %s already written", record.record_id)
                return
            raise AuditLogError(f"Conflicting audit record for {record.storage_path!r}") from exc
        except PyMongoError as exc:
            raise AuditLogError(f"Failed to append audit record: {exc}") from exc

    async def has_record(self, record_id: str) -> bool:
        try:
            return await self._uploads.find_one({"_id": record_id}, {"_id": 1}) is not None
        except PyMongoError as exc:
            raise AuditLogError(f"Failed to read audit record: {exc}") from exc

    async def list_records(self, limit: int) -> list[UploadRecord]:
        cursor = self._uploads.find({}).sort("created_at", DESCENDING).limit(limit)
        return [UploadRecord.from_document(document) async for document in cursor]

    async def has_storage_path(self, path: str) -> bool:
        document = await self._uploads.find_one({"storage_path": path}, {"_id": 1})
        return document is not None
