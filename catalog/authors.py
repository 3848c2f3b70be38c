"""
Author catalog operations.
"""

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import structlog
from pymongo import ASCENDING

from catalog.database import storage_guard, to_object_id
from catalog.exceptions import ConflictFailure, ValidationFailure
from catalog.models import AuthorCreate, AuthorStatus, AuthorUpdate, Genre, QueryResult, TargetKind
from catalog.service import CatalogService, new_document, split_changes, utcnow

logger = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("first_name", "last_name")


def age_in_years(born: datetime, on: datetime) -> int:
    """Whole years between two dates, not counting an unreached birthday."""
    years = on.year - born.year
    if (on.month, on.day) < (born.month, born.day):
        years -= 1
    return years


def present_author(document: Dict[str, Any]) -> Dict[str, Any]:
    """Add ``full_name``, ``age`` and ``is_alive``."""
    now = utcnow()
    birth = document.get("birth_date")
    death = document.get("death_date")
    document["full_name"] = f"{document.get('first_name', '')} {document.get('last_name', '')}".strip()
    document["age"] = age_in_years(birth, now) if birth else None
    document["is_alive"] = death is None or death > now
    return document


def parse_genre(value: str) -> Genre:
    try:
        return Genre(value)
    except ValueError as e:
        raise ValidationFailure("genre", f"'{value}' is not a known genre") from e


class AuthorService(CatalogService):
    """CRUD, listing and statistics for authors."""

    collection_name = "authors"
    label = "Author"

    async def list_authors(self, params: Mapping[str, Any]) -> QueryResult:
        return await self.repository.query_list("authors", params, presenter=present_author)

    async def get_author(self, author_id: str) -> Dict[str, Any]:
        document = await self._load(author_id)
        return await self.repository.present(document, presenter=present_author)

    async def list_authors_by_genre(self, genre: str) -> List[Dict[str, Any]]:
        """Living or active authors writing in a genre, by last then first name."""
        genre_value = parse_genre(genre).value
        return await self.repository.find_all(
            "authors",
            {"genres": genre_value, "status": {"$ne": AuthorStatus.DECEASED.value}},
            [("last_name", ASCENDING), ("first_name", ASCENDING), ("_id", ASCENDING)],
            presenter=present_author,
        )

    async def create_author(self, payload: AuthorCreate, user_id: Optional[str] = None) -> Dict[str, Any]:
        document = new_document(payload)
        document.update(books_published=0, average_rating=0.0, rating_count=0)
        created_by = to_object_id(user_id)
        if created_by is not None:
            document["created_by"] = created_by

        author_id = await self._insert(document)
        logger.info("Author created", author_id=str(author_id))
        return await self.repository.present(document, presenter=present_author)

    async def update_author(self, author_id: str, payload: AuthorUpdate) -> Dict[str, Any]:
        """
        Apply a partial update.

        Raises:
            NotFound: If the author does not exist
            ValidationFailure: If the resulting death date precedes the birth date
        """
        existing = await self._load(author_id)
        to_set, to_unset = split_changes(payload, REQUIRED_FIELDS)

        birth = to_set.get("birth_date", None if "birth_date" in to_unset else existing.get("birth_date"))
        death = to_set.get("death_date", None if "death_date" in to_unset else existing.get("death_date"))
        if birth is not None and death is not None and death < birth:
            raise ValidationFailure("death_date", "Death date cannot be before birth date")

        updated = await self._apply_update(existing["_id"], to_set, to_unset)
        logger.info("Author updated", author_id=author_id, fields=sorted({**to_set, **to_unset}))
        return await self.repository.present(updated, presenter=present_author)

    async def delete_author(self, author_id: str) -> Dict[str, int]:
        """
        Delete an author and the reviews about them.

        Raises:
            NotFound: If the author does not exist
            ConflictFailure: While books still reference the author
        """
        existing = await self._load(author_id)
        object_id = existing["_id"]

        with storage_guard("delete_author"):
            book_count = await self.db_manager.books.count_documents({"author": object_id})
            if book_count:
                raise ConflictFailure(
                    message="Author still has books; delete or reassign them first",
                    details={"books": book_count},
                )
            await self.collection.delete_one({"_id": object_id})
            reviews = await self.db_manager.reviews.delete_many(
                {"target.kind": TargetKind.AUTHOR.value, "target.id": object_id}
            )

        logger.info("Author deleted", author_id=author_id, reviews_deleted=reviews.deleted_count)
        return {"reviews_deleted": reviews.deleted_count}

    async def get_author_stats(self, author_id: str) -> Dict[str, Any]:
        """Book count and mean rating of the rated books for one author."""
        author = await self._load(author_id)
        with storage_guard("author_stats"):
            books = await self.db_manager.books.find(
                {"author": author["_id"]}, {"average_rating": 1, "rating_count": 1}
            ).to_list(length=None)

        # unrated books carry a placeholder 0.0 and stay out of the mean
        ratings = [book["average_rating"] for book in books if book.get("rating_count", 0) > 0]
        return {
            "id": str(author["_id"]),
            "full_name": f"{author['first_name']} {author['last_name']}",
            "books_count": len(books),
            "average_rating": sum(ratings) / len(ratings) if ratings else None,
            "genres": author.get("genres", []),
            "nationality": author.get("nationality"),
        }
