"""Database connection setup for MongoDB and Redis."""
import logging
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError
import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.config import settings
from shared.exceptions import PersistenceError, QueueError

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """Owns the MongoDB and Redis clients of one process."""

    def __init__(self, mongo_url: Optional[str] = None, redis_url: Optional[str] = None):
        self.mongo_url = mongo_url or settings.mongo_url
        self.redis_url = redis_url or settings.redis_url
        self.mongo_client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None
        self.redis: Optional[redis.Redis] = None

    async def connect(self):
        """
        Connect to both stores and verify they answer.

        Raises PersistenceError or QueueError; callers treat either as fatal.
        """
        await self.init_mongo()
        await self.init_redis()

    async def init_mongo(self) -> AsyncIOMotorDatabase:
        """Initialize MongoDB connection."""
        if self.mongo_client is None:
            self.mongo_client = AsyncIOMotorClient(self.mongo_url)
            self.db = self.mongo_client[settings.mongo_db_name]
            try:
                await self.mongo_client.admin.command("ping")
                await self._setup_indexes()
            except PyMongoError as e:
                raise PersistenceError(f"MongoDB unavailable at {self.mongo_url}: {e}") from e
            logger.info("MongoDB connected successfully")
        return self.db

    async def _setup_indexes(self):
        """Set up MongoDB indexes for reconciliation and history queries."""
        # Natural key of a job posting
        await self.db.jobs.create_index(
            [("external_id", ASCENDING), ("source_url", ASCENDING)],
            unique=True
        )
        await self.db.jobs.create_index("source_url")

        await self.db.import_runs.create_index([("started_at", DESCENDING)])
        await self.db.import_runs.create_index(
            [("source_url", ASCENDING), ("started_at", DESCENDING)]
        )

    async def init_redis(self) -> redis.Redis:
        """Initialize Redis connection."""
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                decode_responses=True
            )
            try:
                await self.redis.ping()
            except RedisError as e:
                raise QueueError(f"Redis unavailable at {self.redis_url}: {e}") from e
            logger.info("Redis connected successfully")
        return self.redis

    async def close(self):
        """Close all database connections."""
        if self.mongo_client:
            self.mongo_client.close()
            self.mongo_client = None
            self.db = None
        if self.redis:
            await self.redis.aclose()
            self.redis = None
