"""
ReelStage MongoDB Database Client Module

Async MongoDB connection management for the ReelStage video record store
using Motor. Provides:
- Connection pooling with configurable pool sizes
- Connection retry with exponential backoff at startup
- Health checks using the MongoDB ping command
- Accessors and indexes for the ``videos`` collection
- Startup/shutdown helpers for the FastAPI lifespan
"""

import asyncio
import logging

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from app.config import Settings


logger = logging.getLogger(__name__)

VIDEOS_COLLECTION = "videos"

CONNECT_MAX_RETRIES = 3
CONNECT_INITIAL_DELAY_SECONDS = 1.0


class DatabaseClient:
    """
    Async MongoDB client wrapper with connection pooling and lifecycle management.

    Example usage:
        ```python
        db_client = DatabaseClient(settings)
        await db_client.connect()

        videos = db_client.get_videos_collection()
        await videos.find_one({"_id": video_id})

        await db_client.close()
        ```
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._mongodb_uri = settings.mongodb_uri
        self._db_name = settings.mongodb_db_name
        self._min_pool_size = settings.mongodb_min_pool_size
        self._max_pool_size = settings.mongodb_max_pool_size
        self._client: AsyncIOMotorClient | None = None
        self._database: AsyncIOMotorDatabase | None = None

        logger.info(
            "DatabaseClient initialized with pool size %d-%d for database: %s",
            self._min_pool_size,
            self._max_pool_size,
            self._db_name,
        )

    async def connect(self) -> bool:
        """
        Establish the MongoDB connection, retrying with exponential backoff.

        Returns:
            bool: True if connection successful, False after all retries fail.
        """
        retry_delay = CONNECT_INITIAL_DELAY_SECONDS

        for attempt in range(1, CONNECT_MAX_RETRIES + 1):
            try:
                logger.info(
                    "Attempting MongoDB connection (attempt %d/%d) to %s",
                    attempt,
                    CONNECT_MAX_RETRIES,
                    self._db_name,
                )

                self._client = AsyncIOMotorClient(
                    self._mongodb_uri,
                    minPoolSize=self._min_pool_size,
                    maxPoolSize=self._max_pool_size,
                    serverSelectionTimeoutMS=5000,
                    uuidRepresentation="standard",
                )
                self._database = self._client[self._db_name]

                await self._client.admin.command("ping")

                logger.info("Successfully connected to MongoDB database: %s", self._db_name)
                return True

            except (ServerSelectionTimeoutError, ConnectionFailure):
                logger.exception(
                    "MongoDB connection failure (attempt %d/%d)", attempt, CONNECT_MAX_RETRIES
                )
                if attempt < CONNECT_MAX_RETRIES:
                    logger.warning("Retrying in %.1f seconds...", retry_delay)
                    await asyncio.sleep(retry_delay)
                    retry_delay *= 2

        logger.error(
            "Failed to connect to MongoDB after %d attempts. "
            "Check connection URI and server availability.",
            CONNECT_MAX_RETRIES,
        )
        return False

    async def close(self) -> None:
        """Close the Motor client. Safe to call when not connected."""
        if self._client is None:
            logger.warning("MongoDB close called but no active connection exists")
            return

        self._client.close()
        self._client = None
        self._database = None
        logger.info("MongoDB connection closed for database: %s", self._db_name)

    async def ping(self) -> bool:
        """
        Health check using MongoDB admin ping command.

        Returns:
            bool: True if ping successful, False on failure.
        """
        if self._client is None:
            return False

        try:
            await self._client.admin.command("ping")
            return True
        except PyMongoError:
            logger.exception("MongoDB ping failed")
            return False

    def get_database(self) -> AsyncIOMotorDatabase:
        """
        Get the database instance for direct operations.

        Raises:
            RuntimeError: If not connected to MongoDB.
        """
        if self._database is None:
            raise RuntimeError(
                "MongoDB database not available. Call connect() first or check connection status."
            )
        return self._database

    def get_videos_collection(self) -> AsyncIOMotorCollection:
        """
        Get the videos collection.

        Documents are keyed by the video UUID string and carry the owner's
        ``user_id`` plus the ``video_url`` storage reference once uploaded.
        """
        return self.get_database()[VIDEOS_COLLECTION]

    async def create_indexes(self) -> None:
        """Create indexes used by the owner listing query."""
        videos = self.get_videos_collection()
        await videos.create_index("user_id", background=True)
        await videos.create_index([("user_id", 1), ("created_at", -1)], background=True)
        logger.info("Created indexes on %s collection", VIDEOS_COLLECTION)


class _DatabaseClientContainer:
    """Container for database client singleton to avoid global statements."""

    client: DatabaseClient | None = None


_container = _DatabaseClientContainer()


async def init_db(settings: Settings) -> DatabaseClient:
    """
    Initialize the process-wide database client.

    Called from the FastAPI lifespan. Connects, creates indexes and stores
    the client for ``get_db_client``.

    Raises:
        RuntimeError: If connection to MongoDB fails after all retries.
    """
    if _container.client is not None:
        logger.warning("Database client already initialized, returning existing instance")
        return _container.client

    client = DatabaseClient(settings)
    if not await client.connect():
        raise RuntimeError(
            "Failed to establish MongoDB connection. "
            "Check mongodb_uri configuration and server availability."
        )

    await client.create_indexes()
    _container.client = client
    logger.info("MongoDB database client initialization complete")
    return client


async def close_db() -> None:
    """Close the process-wide database client, if any."""
    if _container.client is not None:
        await _container.client.close()
        _container.client = None


def get_db_client() -> DatabaseClient:
    """
    Get the process-wide database client.

    Raises:
        RuntimeError: If database client has not been initialized.
    """
    if _container.client is None:
        raise RuntimeError(
            "Database client not initialized. Call init_db() first during application startup."
        )
    return _container.client
