"""
MongoDB access for the Storefront API.

One AsyncMongoClient is created at startup and kept for the life of the
process. Route handlers never touch the module globals directly: they
receive the database through the `get_db` dependency, which tests override.
"""
import logging
import os
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import DESCENDING, AsyncMongoClient
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

client: Optional[AsyncMongoClient] = None
db = None
indexes_ready = False

# (collection, field) pairs that must stay unique
UNIQUE_INDEXES = [
    ("user", "email"),
    ("subscriber", "email"),
]


async def init_db(url: Optional[str] = None, name: Optional[str] = None) -> None:
    """Create the shared client and check that the server answers.

    A failed ping is logged, not raised: the API still starts and every
    request that needs the store fails on its own. The unique indexes are
    then built by the first request that finds the server up.
    """
    global client, db, indexes_ready
    url = url or os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    name = name or os.getenv("DATABASE_NAME", "storefront")
    indexes_ready = False

    try:
        client = AsyncMongoClient(url, tz_aware=True)
        db = client[name]
        await client.admin.command("ping")
        logger.info("MongoDB connected (database=%s)", name)
        await ensure_indexes(db)
        indexes_ready = True
    except PyMongoError as e:
        logger.error("MongoDB connection error: %s", e)


async def ensure_indexes(database) -> None:
    for collection, field in UNIQUE_INDEXES:
        await database[collection].create_index(field, unique=True)


async def get_db():
    global indexes_ready
    if db is None:
        raise RuntimeError("Database not initialized")
    if not indexes_ready:
        try:
            await ensure_indexes(db)
            indexes_ready = True
            logger.info("Unique indexes created")
        except PyMongoError as e:
            logger.warning("Unique indexes still missing: %s", e)
    return db


def _to_document(data: BaseModel) -> Dict[str, Any]:
    # fields the client never sent stay out of the document; explicit nulls are kept
    doc = data.model_dump(by_alias=True)
    for name, field in type(data).model_fields.items():
        if name not in data.model_fields_set and getattr(data, name) is None:
            doc.pop(field.alias or name, None)
    return doc


async def create_document(database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Insert one document and return it with the `_id` the store assigned."""
    if isinstance(data, BaseModel):
        doc = _to_document(data)
    else:
        doc = dict(data)
    result = await database[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


async def get_documents(
    database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    newest_first_by: Optional[str] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if newest_first_by:
        # _id breaks ties between documents stamped in the same millisecond
        cursor = cursor.sort([(newest_first_by, DESCENDING), ("_id", DESCENDING)])
    return await cursor.to_list()
