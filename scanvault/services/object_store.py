"""
Write-once storage for sealed uploads.

Two backends, selected with STORAGE_BACKEND:
  local – files under STORAGE_DIR, created with os.link so an existing
          object is never replaced
  mongo – documents in the encrypted_objects collection keyed by path
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
import asyncio
import contextlib
import logging
import os
import tempfile

from pymongo.errors import DuplicateKeyError, PyMongoError

from scanvault.errors import ObjectCollisionError, ObjectStoreError

logger = logging.getLogger("scanvault.storage")

OBJECT_SUFFIX = ".enc"


def storage_path_for(identity: str, digest: str, filename: str) -> str:
    return f"{identity}/{digest}_{filename}{OBJECT_SUFFIX}"


class ObjectStore(ABC):
    @abstractmethod
    async def put(self, path: str, blob: bytes) -> None:
        """Store blob at path. Raise ObjectCollisionError if path is taken."""
        ...

    @abstractmethod
    async def get(self, path: str) -> bytes:
        """Return the blob at path. Raise FileNotFoundError if missing."""
        ...

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Remove the object. Return False if nothing was there."""
        ...

    @abstractmethod
    async def list_older_than(self, cutoff: datetime) -> list[str]:
        """Paths of objects created before cutoff."""
        ...


class LocalObjectStore(ObjectStore):
    def __init__(self, root: str | Path):
        self._root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if not target.is_relative_to(self._root):
            raise ObjectStoreError(f"Storage path escapes root: {path!r}")
        return target

    def _put_sync(self, path: str, blob: bytes) -> None:
        target = self._resolve(path)
        tmp_name = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".", suffix=".part")
            with os.fdopen(fd, "wb") as fh:
                fh.write(blob)
                fh.flush()
                os.fsync(fh.fileno())
            # link() fails atomically when the target exists; concurrent writers get exactly one winner.
            os.link(tmp_name, target)
        except FileExistsError:
            raise ObjectCollisionError(path)
        except OSError as exc:
            raise ObjectStoreError(f"Failed to write {path!r}: {exc}") from exc
        finally:
            if tmp_name is not None:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(tmp_name)

    def _get_sync(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    def _delete_sync(self, path: str) -> bool:
        try:
            self._resolve(path).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise ObjectStoreError(f"Failed to delete {path!r}: {exc}") from exc

    def _list_sync(self, cutoff: datetime) -> list[str]:
        if not self._root.exists():
            return []
        threshold = cutoff.timestamp()
        paths = []
        for item in self._root.rglob(f"*{OBJECT_SUFFIX}"):
            if item.name.startswith(".") or not item.is_file():
                continue
            if item.stat().st_mtime < threshold:
                paths.append(item.relative_to(self._root).as_posix())
        return sorted(paths)

    async def put(self, path: str, blob: bytes) -> None:
        await asyncio.to_thread(self._put_sync, path, blob)

    async def get(self, path: str) -> bytes:
        return await asyncio.to_thread(self._get_sync, path)

    async def delete(self, path: str) -> bool:
        return await asyncio.to_thread(self._delete_sync, path)

    async def list_older_than(self, cutoff: datetime) -> list[str]:
        return await asyncio.to_thread(self._list_sync, cutoff)


class MongoObjectStore(ObjectStore):
    """Sealed blobs are at most a few MiB, well under the 16 MiB BSON limit."""

    def __init__(self, db):
        self._objects = db.encrypted_objects

    async def put(self, path: str, blob: bytes) -> None:
        try:
            await self._objects.insert_one(
                {
                    "_id": path,
                    "blob": blob,
                    "size": len(blob),
                    "created_at": datetime.now(UTC),
                }
            )
        except DuplicateKeyError:
            raise ObjectCollisionError(path)
        except PyMongoError as exc:
            raise ObjectStoreError(f"Failed to write {path!r}: {exc}") from exc

    async def get(self, path: str) -> bytes:
        document = await self._objects.find_one({"_id": path}, {"blob": 1})
        if document is None:
            raise FileNotFoundError(path)
        return bytes(document["blob"])

    async def delete(self, path: str) -> bool:
        try:
            result = await self._objects.delete_one({"_id": path})
        except PyMongoError as exc:
            raise ObjectStoreError(f"Failed to delete {path!r}: {exc}") from exc
        return result.deleted_count == 1

    async def list_older_than(self, cutoff: datetime) -> list[str]:
        cursor = self._objects.find({"created_at": {"$lt": cutoff}}, {"_id": 1}).sort("_id", 1)
        return [document["_id"] async for document in cursor]


def build_object_store(db, backend: str, root: str | Path) -> ObjectStore:
    if backend == "local":
        return LocalObjectStore(root)
    if backend == "mongo":
        return MongoObjectStore(db)
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")
