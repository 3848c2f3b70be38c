"""
Publisher catalog operations.
"""

from typing import Any, Dict, List, Mapping, Optional

import structlog
from pymongo import ASCENDING, DESCENDING

from catalog.authors import parse_genre
from catalog.books import present_book
from catalog.database import storage_guard, to_object_id
from catalog.models import PublisherCreate, PublisherStatus, PublisherUpdate, QueryResult
from catalog.query_builder import PopulateSpec
from catalog.service import CatalogService, new_document, split_changes, utcnow

logger = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("name",)


def present_publisher(document: Dict[str, Any]) -> Dict[str, Any]:
    """Add the computed ``age`` (years since founding)."""
    founded = document.get("founded_year")
    document["age"] = utcnow().year - founded if founded else None
    return document


class PublisherService(CatalogService):
    """CRUD, listing and statistics for publishers."""

    collection_name = "publishers"
    label = "Publisher"

    async def list_publishers(self, params: Mapping[str, Any]) -> QueryResult:
        return await self.repository.query_list("publishers", params, presenter=present_publisher)

    async def get_publisher(self, publisher_id: str) -> Dict[str, Any]:
        document = await self._load(publisher_id)
        return await self.repository.present(document, presenter=present_publisher)

    async def list_publishers_by_genre(self, genre: str) -> List[Dict[str, Any]]:
        """Active publishers of a genre, by name."""
        genre_value = parse_genre(genre).value
        return await self.repository.find_all(
            "publishers",
            {"genres": genre_value, "status": PublisherStatus.ACTIVE.value},
            [("name", ASCENDING), ("_id", ASCENDING)],
            presenter=present_publisher,
        )

    async def list_publisher_books(self, publisher_id: str) -> List[Dict[str, Any]]:
        """Books of one publisher, newest publication first."""
        publisher = await self._load(publisher_id)
        return await self.repository.find_all(
            "books",
            {"publisher": publisher["_id"]},
            [("publication_date", DESCENDING), ("_id", DESCENDING)],
            populate=(PopulateSpec("author", "authors", ("first_name", "last_name")),),
            presenter=present_book,
        )

    async def create_publisher(self, payload: PublisherCreate, user_id: Optional[str] = None) -> Dict[str, Any]:
        document = new_document(payload)
        document["books_published"] = 0
        created_by = to_object_id(user_id)
        if created_by is not None:
            document["created_by"] = created_by

        publisher_id = await self._insert(document)
        logger.info("Publisher created", publisher_id=str(publisher_id), name=document["name"])
        return await self.repository.present(document, presenter=present_publisher)

    async def update_publisher(self, publisher_id: str, payload: PublisherUpdate) -> Dict[str, Any]:
        existing = await self._load(publisher_id)
        to_set, to_unset = split_changes(payload, REQUIRED_FIELDS)
        updated = await self._apply_update(existing["_id"], to_set, to_unset)
        logger.info("Publisher updated", publisher_id=publisher_id, fields=sorted({**to_set, **to_unset}))
        return await self.repository.present(updated, presenter=present_publisher)

    async def delete_publisher(self, publisher_id: str) -> Dict[str, int]:
        """
        Delete a publisher and detach it from its books.

        Returns:
            Number of books whose publisher reference was removed
        """
        existing = await self._load(publisher_id)
        object_id = existing["_id"]

        with storage_guard("delete_publisher"):
            await self.collection.delete_one({"_id": object_id})
            books = await self.db_manager.books.update_many(
                {"publisher": object_id},
                {"$unset": {"publisher": ""}, "$set": {"updated_at": utcnow()}},
            )

        logger.info("Publisher deleted", publisher_id=publisher_id, books_detached=books.modified_count)
        return {"books_detached": books.modified_count}

    async def get_publisher_stats(self, publisher_id: str) -> Dict[str, Any]:
        """Book count and mean rating of the rated books for one publisher."""
        publisher = await self._load(publisher_id)
        with storage_guard("publisher_stats"):
            books = await self.db_manager.books.find(
                {"publisher": publisher["_id"]}, {"average_rating": 1, "rating_count": 1}
            ).to_list(length=None)
        ratings = [book["average_rating"] for book in books if book.get("rating_count", 0) > 0]
        return {
            "id": str(publisher["_id"]),
            "name": publisher["name"],
            "books_count": len(books),
            "average_rating": sum(ratings) / len(ratings) if ratings else None,
            "genres": publisher.get("genres", []),
        }
