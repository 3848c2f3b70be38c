"""
User accounts, favorites and reading history.

Users are created on first sign-in from the profile handed over by the
external identity provider; there is no password handling here.
"""

from typing import Any, Dict, Optional

import structlog
from pymongo import ReturnDocument

from catalog.database import storage_guard, to_object_id
from catalog.exceptions import ConflictFailure, NotFound
from catalog.models import (
    IdentityProfile, Preferences, ReadingProgressUpdate, ReadingStatus, UserRole,
)
from catalog.service import CatalogService, utcnow

logger = structlog.get_logger(__name__)

EMAIL_CONFLICT = "Another account already uses this email"


class UserService(CatalogService):
    """Account lookup and per-user library state."""

    collection_name = "users"
    label = "User"

    async def find_or_create(self, profile: IdentityProfile) -> Dict[str, Any]:
        """
        Return the user for an identity profile, creating it on first sign-in.

        Name and picture are refreshed from the profile and ``last_login`` is
        stamped on every call.

        Raises:
            ConflictFailure: If the email belongs to a different identity
        """
        now = utcnow()
        with storage_guard("find_user"):
            user = await self.collection.find_one_and_update(
                {"external_id": profile.external_id},
                {"$set": {
                    "name": profile.name,
                    "picture": profile.picture,
                    "last_login": now,
                    "updated_at": now,
                }},
                return_document=ReturnDocument.AFTER,
            )
        if user is not None:
            return user

        with storage_guard("find_user_by_email"):
            taken = await self.collection.find_one({"email": profile.email}, {"_id": 1})
        if taken is not None:
            raise ConflictFailure(message=EMAIL_CONFLICT, details={"email": profile.email})

        document = {
            **profile.model_dump(),
            "role": UserRole.READER.value,
            "is_active": True,
            "last_login": now,
            "preferences": Preferences().model_dump(),
            "favorites": [],
            "reading_history": [],
        }
        user_id = await self._insert(document, EMAIL_CONFLICT)
        logger.info("User created", user_id=str(user_id), external_id=profile.external_id)
        return document

    async def get_user(self, user_id: Any) -> Dict[str, Any]:
        return await self._load(user_id)

    async def get_profile(self, user_id: Any) -> Dict[str, Any]:
        user = await self._load(user_id)
        return await self.repository.present(user)

    async def set_role(self, email: str, role: UserRole) -> Dict[str, Any]:
        """Change the role of the user with the given email."""
        with storage_guard("set_role"):
            user = await self.collection.find_one_and_update(
                {"email": email.strip().lower()},
                {"$set": {"role": role.value, "updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        if user is None:
            raise NotFound(self.label, email)
        logger.info("User role changed", user_id=str(user["_id"]), role=role.value)
        return user

    async def add_favorite(self, user_id: Any, book_id: str) -> Dict[str, Any]:
        book = await self._require_reference("books", book_id, "Book")
        return await self._modify(user_id, {"$addToSet": {"favorites": book}})

    async def remove_favorite(self, user_id: Any, book_id: str) -> Dict[str, Any]:
        book = to_object_id(book_id)
        if book is None:
            raise NotFound("Book", book_id)
        return await self._modify(user_id, {"$pull": {"favorites": book}})

    async def update_reading_history(
        self, user_id: Any, book_id: str, progress: ReadingProgressUpdate
    ) -> Dict[str, Any]:
        """
        Insert or update the reading history entry for one book.

        ``started_at`` is stamped the first time the book is being read and
        ``finished_at`` when it is marked read, which also forces progress to 100.
        """
        book = await self._require_reference("books", book_id, "Book")
        user = await self._load(user_id)
        now = utcnow()

        history = list(user.get("reading_history", []))
        entry: Optional[Dict[str, Any]] = next((item for item in history if item.get("book") == book), None)
        if entry is None:
            entry = {"book": book, "started_at": None, "finished_at": None}
            history.append(entry)

        entry["status"] = progress.status.value
        entry["progress"] = progress.progress
        if progress.status != ReadingStatus.WANT_TO_READ and entry.get("started_at") is None:
            entry["started_at"] = now
        if progress.status == ReadingStatus.READ:
            entry["progress"] = 100
            entry["finished_at"] = entry.get("finished_at") or now
        else:
            entry["finished_at"] = None

        return await self._modify(user["_id"], {"$set": {"reading_history": history}})

    async def get_user_stats(self, user_id: Any) -> Dict[str, Any]:
        """Review and reading counts for one user."""
        user = await self._load(user_id)
        with storage_guard("user_stats"):
            rows = await self.db_manager.reviews.aggregate([
                {"$match": {"reviewer": user["_id"]}},
                {"$group": {"_id": None, "count": {"$sum": 1}, "average": {"$avg": "$rating"}}},
            ]).to_list(length=1)

        history = user.get("reading_history", [])
        by_status = {status.value: 0 for status in ReadingStatus}
        for entry in history:
            by_status[entry.get("status", ReadingStatus.WANT_TO_READ.value)] += 1

        return {
            "reviews_written": rows[0]["count"] if rows else 0,
            "average_rating_given": rows[0]["average"] if rows else None,
            "favorites": len(user.get("favorites", [])),
            "books_read": by_status[ReadingStatus.READ.value],
            "currently_reading": by_status[ReadingStatus.CURRENTLY_READING.value],
            "want_to_read": by_status[ReadingStatus.WANT_TO_READ.value],
        }

    async def _modify(self, user_id: Any, update: Dict[str, Any]) -> Dict[str, Any]:
        object_id = to_object_id(user_id)
        if object_id is None:
            raise NotFound(self.label, user_id)
        update.setdefault("$set", {})["updated_at"] = utcnow()
        with storage_guard("modify_user"):
            user = await self.collection.find_one_and_update(
                {"_id": object_id}, update, return_document=ReturnDocument.AFTER
            )
        if user is None:
            raise NotFound(self.label, user_id)
        return await self.repository.present(user)
