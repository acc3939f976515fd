import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING

from .config import Settings

logger = logging.getLogger(__name__)


def create_client(settings: Settings) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(settings.mongodb_uri)


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    messages = db['messages']
    await messages.create_index([('sender', ASCENDING), ('receiver', ASCENDING), ('created_at', ASCENDING)])
    await messages.create_index([('receiver', ASCENDING), ('sender', ASCENDING), ('created_at', ASCENDING)])
    await messages.create_index([('room', ASCENDING), ('created_at', ASCENDING)])
    await db['rooms'].create_index('members')
    logger.info('[DB] indexes ensured on %s', db.name)


async def ping(db: AsyncIOMotorDatabase) -> bool:
    """Quick connectivity check used by the health endpoint."""
    try:
        await db.list_collection_names()
    except Exception as e:
        logger.warning('[DB] ping failed: %s', e)
        return False
    return True
