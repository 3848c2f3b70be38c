"""
Service facade for the FastAPI application.

Bundles the entity services around one MongoDBManager so route handlers
only need a single global.
"""

from typing import Dict

import structlog

from catalog.authors import AuthorService
from catalog.books import BookService
from catalog.database import MongoDBManager
from catalog.exceptions import BackendUnavailable
from catalog.publishers import PublisherService
from catalog.ratings import AggregateMaintainer
from catalog.repository import CatalogRepository
from catalog.reviews import ReviewService
from catalog.users import UserService

logger = structlog.get_logger(__name__)


class APIDatabaseService:
    """Database services for API operations."""

    def __init__(self, db_manager: MongoDBManager):
        self.db_manager = db_manager
        self.repository = CatalogRepository(db_manager)
        self.maintainer = AggregateMaintainer(db_manager)

        shared = {"repository": self.repository, "maintainer": self.maintainer}
        self.books = BookService(db_manager, **shared)
        self.authors = AuthorService(db_manager, **shared)
        self.publishers = PublisherService(db_manager, **shared)
        self.reviews = ReviewService(db_manager, **shared)
        self.users = UserService(db_manager, **shared)

    async def health_check(self) -> Dict:
        """
        Perform database health check.

        Returns:
            Dictionary with health status and collection counts
        """
        if not await self.db_manager.ping():
            return {"status": "unhealthy", "error": "Database not reachable"}

        try:
            counts = await self.db_manager.get_database_stats()
        except BackendUnavailable as e:
            logger.error("Database health check failed", error=e.message)
            return {"status": "unhealthy", "error": e.message}

        return {"status": "healthy", "collections": counts}
