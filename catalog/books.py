"""
Book catalog operations.
"""

from typing import Any, Dict, List, Mapping, Optional

import structlog
from pymongo import DESCENDING

from catalog.database import storage_guard, to_object_id
from catalog.exceptions import ConflictFailure, NotFound
from catalog.models import BookCreate, BookUpdate, QueryResult, TargetKind
from catalog.query_builder import BOOKS, PopulateSpec
from catalog.service import CatalogService, new_document, split_changes, utcnow

logger = structlog.get_logger(__name__)

ISBN_CONFLICT = "A book with this ISBN already exists"
REQUIRED_FIELDS = ("title", "author", "publication_date")


def present_book(document: Dict[str, Any]) -> Dict[str, Any]:
    """Add the computed ``age`` (whole years since publication)."""
    published = document.get("publication_date")
    document["age"] = utcnow().year - published.year if published else None
    return document


class BookService(CatalogService):
    """CRUD and listing for books."""

    collection_name = "books"
    label = "Book"

    async def list_books(self, params: Mapping[str, Any]) -> QueryResult:
        return await self.repository.query_list("books", params, presenter=present_book)

    async def get_book(self, book_id: str) -> Dict[str, Any]:
        document = await self._load(book_id)
        return await self.repository.present(document, BOOKS.populate, present_book)

    async def list_books_by_author(self, author_id: str) -> List[Dict[str, Any]]:
        """All books of one author, newest publication first."""
        object_id = to_object_id(author_id)
        if object_id is None:
            raise NotFound("Author", author_id)
        return await self.repository.find_all(
            "books",
            {"author": object_id},
            [("publication_date", DESCENDING), ("_id", DESCENDING)],
            populate=(PopulateSpec("publisher", "publishers", ("name",)),),
            presenter=present_book,
        )

    async def create_book(self, payload: BookCreate, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a book.

        Raises:
            NotFound: If the author or publisher does not exist
            ConflictFailure: If the ISBN is already used
        """
        document = new_document(payload)
        document["author"] = await self._require_reference("authors", payload.author, "Author")
        if payload.publisher:
            document["publisher"] = await self._require_reference("publishers", payload.publisher, "Publisher")
        if payload.isbn:
            await self._check_isbn(payload.isbn)

        document.update(average_rating=0.0, rating_count=0)
        created_by = to_object_id(user_id)
        if created_by is not None:
            document["created_by"] = created_by

        book_id = await self._insert(document, ISBN_CONFLICT)
        logger.info("Book created", book_id=str(book_id), title=document["title"])

        await self.maintainer.on_book_mutation(document)
        return await self.get_book(str(book_id))

    async def update_book(self, book_id: str, payload: BookUpdate) -> Dict[str, Any]:
        """
        Apply a partial update.

        Raises:
            NotFound: If the book, or a newly referenced author or publisher, does not exist
            ConflictFailure: If the new ISBN is already used by another book
        """
        existing = await self._load(book_id)
        to_set, to_unset = split_changes(payload, REQUIRED_FIELDS)

        if "author" in to_set:
            to_set["author"] = await self._require_reference("authors", to_set["author"], "Author")
        if "publisher" in to_set:
            to_set["publisher"] = await self._require_reference("publishers", to_set["publisher"], "Publisher")
        if to_set.get("isbn") and to_set["isbn"] != existing.get("isbn"):
            await self._check_isbn(to_set["isbn"], exclude_id=existing["_id"])

        updated = await self._apply_update(existing["_id"], to_set, to_unset, ISBN_CONFLICT)
        logger.info("Book updated", book_id=book_id, fields=sorted({**to_set, **to_unset}))

        if {"author", "publisher"} & ({*to_set, *to_unset}):
            await self.maintainer.on_book_mutation(updated, previous=existing)
        return await self.repository.present(updated, BOOKS.populate, present_book)

    async def delete_book(self, book_id: str) -> Dict[str, int]:
        """
        Delete a book together with its reviews and any user references to it.

        Returns:
            Counts of the removed dependent records
        """
        existing = await self._load(book_id)
        object_id = existing["_id"]

        with storage_guard("delete_book"):
            await self.collection.delete_one({"_id": object_id})
            reviews = await self.db_manager.reviews.delete_many(
                {"target.kind": TargetKind.BOOK.value, "target.id": object_id}
            )
            users = await self.db_manager.users.update_many(
                {"$or": [{"favorites": object_id}, {"reading_history.book": object_id}]},
                {"$pull": {"favorites": object_id, "reading_history": {"book": object_id}}},
            )

        logger.info(
            "Book deleted",
            book_id=book_id,
            reviews_deleted=reviews.deleted_count,
            users_updated=users.modified_count,
        )
        await self.maintainer.on_book_mutation(existing)
        return {"reviews_deleted": reviews.deleted_count, "users_updated": users.modified_count}

    async def _check_isbn(self, isbn: str, exclude_id=None) -> None:
        query: Dict[str, Any] = {"isbn": isbn}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        with storage_guard("check_isbn"):
            duplicate = await self.collection.find_one(query, {"_id": 1})
        if duplicate is not None:
            raise ConflictFailure(message=ISBN_CONFLICT, details={"isbn": isbn})
