"""
MongoDB utilities for async catalog operations.
Handles connection, indexing, identifier parsing and document serialization.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import structlog
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, TEXT
from pymongo.errors import ConnectionFailure, DuplicateKeyError

from catalog.exceptions import BackendUnavailable, ConflictFailure

logger = structlog.get_logger(__name__)

COLLECTIONS = ("books", "authors", "publishers", "reviews", "users")


def to_object_id(value: Any) -> Optional[ObjectId]:
    """
    Parse an identifier into an ObjectId.

    Returns None for anything that is not a 24-character hex string so callers
    can treat malformed identifiers as "not found".
    """
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and len(value) == 24 and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize_document(value: Any) -> Any:
    """Convert a stored document into JSON-ready data (``_id`` becomes ``id``)."""
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            result["id" if key == "_id" else key] = serialize_document(item)
        return result
    if isinstance(value, list):
        return [serialize_document(item) for item in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def to_storage(value: Any) -> Any:
    """
    Convert dumped model data into BSON-ready values.

    Enums become their values and aware datetimes become naive UTC, matching
    what the driver returns on reads.
    """
    if isinstance(value, dict):
        return {key: to_storage(item) for key, item in value.items()}
    if isinstance(value, list):
        return [to_storage(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@contextmanager
def storage_guard(operation: str, conflict_message: Optional[str] = None):
    """
    Translate driver errors into catalog errors.

    Lost connections become BackendUnavailable and unique index violations
    become ConflictFailure.
    """
    try:
        yield
    except DuplicateKeyError as e:
        logger.warning("Unique index violated", operation=operation, error=str(e))
        raise ConflictFailure(message=conflict_message or "Duplicate value for a unique field") from e
    except ConnectionFailure as e:
        logger.error("Database unreachable", operation=operation, error=str(e))
        raise BackendUnavailable(details={"operation": operation}) from e


class MongoDBManager:
    """
    Async MongoDB manager for the catalog collections.
    Handles connection, indexing and collection access.
    """

    def __init__(
        self,
        connection_url: str,
        database_name: str,
        server_selection_timeout_ms: int = 5000
    ):
        """
        Initialize MongoDB manager.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
            server_selection_timeout_ms: How long the driver waits for a server
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None

    @classmethod
    def from_database(cls, database: AsyncIOMotorDatabase) -> "MongoDBManager":
        """Wrap an already opened database handle."""
        manager = cls(connection_url="", database_name=database.name)
        manager.database = database
        return manager

    async def connect(self) -> None:
        """
        Establish connection to MongoDB and ensure indexes.

        The client and database handles are kept even when the ping fails so
        that later operations surface BackendUnavailable instead of crashing.
        """
        self.client = AsyncIOMotorClient(
            self.connection_url,
            serverSelectionTimeoutMS=self.server_selection_timeout_ms
        )
        self.database = self.client[self.database_name]

        try:
            await self.client.admin.command("ping")
        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise

        logger.info("Successfully connected to MongoDB", database=self.database_name)
        await self.create_indexes()

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    def collection(self, name: str) -> AsyncIOMotorCollection:
        if self.database is None:
            raise BackendUnavailable(details={"collection": name})
        return self.database[name]

    @property
    def books(self) -> AsyncIOMotorCollection:
        return self.collection("books")

    @property
    def authors(self) -> AsyncIOMotorCollection:
        return self.collection("authors")

    @property
    def publishers(self) -> AsyncIOMotorCollection:
        return self.collection("publishers")

    @property
    def reviews(self) -> AsyncIOMotorCollection:
        return self.collection("reviews")

    @property
    def users(self) -> AsyncIOMotorCollection:
        return self.collection("users")

    async def create_indexes(self) -> None:
        """
        Create indexes for text search, filtering and uniqueness.
        Optimized for the list query patterns of each resource.
        """
        try:
            # Books
            await self.books.create_index([("title", TEXT), ("description", TEXT)])
            await self.books.create_index("isbn", unique=True, sparse=True)
            await self.books.create_index([("author", ASCENDING), ("publication_date", DESCENDING)])
            await self.books.create_index("publisher")
            await self.books.create_index("genres")
            await self.books.create_index([("average_rating", DESCENDING)])
            await self.books.create_index([("created_at", DESCENDING)])

            # Authors
            await self.authors.create_index([
                ("first_name", TEXT), ("last_name", TEXT), ("pen_name", TEXT), ("bio", TEXT)
            ])
            await self.authors.create_index("genres")
            await self.authors.create_index("nationality")
            await self.authors.create_index("status")
            await self.authors.create_index([("birth_date", DESCENDING)])

            # Publishers
            await self.publishers.create_index([("name", TEXT), ("description", TEXT)])
            await self.publishers.create_index("genres")
            await self.publishers.create_index("status")
            await self.publishers.create_index([("founded_year", DESCENDING)])

            # Reviews: one review per reviewer and target
            await self.reviews.create_index(
                [("reviewer", ASCENDING), ("target.kind", ASCENDING), ("target.id", ASCENDING)],
                unique=True
            )
            await self.reviews.create_index([("target.id", ASCENDING), ("created_at", DESCENDING)])
            await self.reviews.create_index([("reviewer", ASCENDING), ("created_at", DESCENDING)])
            await self.reviews.create_index([("rating", DESCENDING)])
            await self.reviews.create_index("status")
            await self.reviews.create_index([("helpful", DESCENDING)])

            # Users
            await self.users.create_index("external_id", unique=True)
            await self.users.create_index("email", unique=True)
            await self.users.create_index("role")

            logger.info("Successfully created MongoDB indexes")

        except Exception as e:
            logger.error("Failed to create indexes", error=str(e))
            raise

    async def ping(self) -> bool:
        """Return True when the database answers a ping."""
        if self.database is None:
            return False
        try:
            await self.database.command("ping")
            return True
        except ConnectionFailure as e:
            logger.warning("Database ping failed", error=str(e))
            return False

    async def get_database_stats(self) -> Dict[str, int]:
        """
        Count documents in every catalog collection.

        Returns:
            Mapping of collection name to document count
        """
        stats = {}
        with storage_guard("get_database_stats"):
            for name in COLLECTIONS:
                stats[name] = await self.collection(name).count_documents({})
        return stats
