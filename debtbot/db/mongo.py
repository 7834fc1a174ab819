import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from debtbot.core.config import settings

logger = logging.getLogger(__name__)


class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URI)
    mongodb.db = mongodb.client[settings.MONGODB_DB]

    await create_indexes()
    logger.info("Connected to MongoDB: %s", settings.MONGODB_DB)

async def close_mongo_connection():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
        mongodb.client = None
        mongodb.db = None
    logger.info("Disconnected from MongoDB")

async def create_indexes():
    """Create database indexes."""
    records = mongodb.db[settings.RECORDS_COLLECTION]
    # Handle lookups when linking a counterpart by @username
    await records.create_index("settings.username")
    await records.create_index("settings.reminders_enabled")

def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    return mongodb.db
