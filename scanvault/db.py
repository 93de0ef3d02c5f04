from functools import lru_cache
import os

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import ConfigurationError


@lru_cache
def _mongo_uri() -> str:
    return os.getenv("MONGODB_URI", "mongodb://localhost:27017/scanvault")


@lru_cache
def get_mongo_client() -> AsyncIOMotorClient:
    # Singleton – Motor manages its own connection pool internally.
    return AsyncIOMotorClient(_mongo_uri())


def get_db():
    client = get_mongo_client()
    try:
        # Preferred: database name in URI path (e.g. ...mongodb.net/scanvault)
        return client.get_default_database()
    except ConfigurationError:
        # Fallback for URIs without db path.
        return client.get_database(os.getenv("MONGO_DB", "scanvault"))


async def ensure_indexes(db=None):
    """
    Indexes for the audit log and the mongo object store.

    The uploads collection is append-only, so unlike a cache it carries no
    TTL index. storage_path is unique among clean records.
    """
    db = db if db is not None else get_db()
    await db.uploads.create_index("sha256")
    await db.uploads.create_index("created_at")
    await db.uploads.create_index(
        "storage_path",
        unique=True,
        partialFilterExpression={"storage_path": {"$type": "string"}},
        name="uploads_storage_path_unique",
    )
    await db.encrypted_objects.create_index("created_at")
