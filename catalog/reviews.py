"""
Review operations.

Every committed create, update or delete hands the review to the
AggregateMaintainer so the rating summary of the reviewed book or author
stays equal to the mean and count of its Published reviews.
"""

from typing import Any, Dict, List, Mapping

import structlog
from pymongo import DESCENDING, ReturnDocument

from catalog.database import storage_guard, to_object_id
from catalog.exceptions import ConflictFailure, NotFound, PermissionDenied
from catalog.models import (
    ChangeKind, QueryResult, ReviewCreate, ReviewStats, ReviewStatus,
    ReviewTarget, ReviewUpdate, TargetKind, UserRole,
)
from catalog.query_builder import REVIEWS, PopulateSpec
from catalog.service import CatalogService, new_document, split_changes, utcnow

logger = structlog.get_logger(__name__)

DUPLICATE_REVIEW = "You have already reviewed this item"
REQUIRED_FIELDS = ("title", "content", "rating", "target", "status")
# Statuses a non-moderator may choose when writing a review
AUTHOR_STATUSES = (ReviewStatus.PUBLISHED.value, ReviewStatus.PENDING.value)

TARGET_LABELS = {TargetKind.BOOK: "Book", TargetKind.AUTHOR: "Author"}


def is_moderator(actor: Mapping[str, Any]) -> bool:
    return actor.get("role") == UserRole.ADMIN.value


def parse_target(kind: str, target_id: str) -> ReviewTarget:
    """
    Build a target from path parameters.

    Raises:
        NotFound: If the kind is unknown or the id is malformed
    """
    try:
        target_kind = TargetKind(kind)
    except ValueError as e:
        raise NotFound("Review target", kind) from e
    if to_object_id(target_id) is None:
        raise NotFound(TARGET_LABELS[target_kind], target_id)
    return ReviewTarget(kind=target_kind, id=target_id)


class ReviewService(CatalogService):
    """CRUD, moderation and statistics for reviews."""

    collection_name = "reviews"
    label = "Review"

    async def list_reviews(self, params: Mapping[str, Any]) -> QueryResult:
        return await self.repository.query_list("reviews", params)

    async def get_review(self, review_id: str) -> Dict[str, Any]:
        document = await self._load(review_id)
        return await self.repository.present(document, REVIEWS.populate)

    async def list_target_reviews(self, target: ReviewTarget) -> List[Dict[str, Any]]:
        """Published reviews of one book or author, newest first."""
        return await self.repository.find_all(
            "reviews",
            {
                "target.kind": target.kind.value,
                "target.id": to_object_id(target.id),
                "status": ReviewStatus.PUBLISHED.value,
            },
            [("created_at", DESCENDING), ("_id", DESCENDING)],
            populate=(PopulateSpec("reviewer", "users", ("name",)),),
        )

    async def create_review(self, payload: ReviewCreate, actor: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Create a review written by ``actor``.

        Raises:
            NotFound: If the target does not exist
            ConflictFailure: If the actor already reviewed the target
            PermissionDenied: If a non-moderator picks a moderation status
        """
        target = payload.target
        await self._require_reference(target.collection_name, target.id, TARGET_LABELS[target.kind])
        if payload.status.value not in AUTHOR_STATUSES and not is_moderator(actor):
            raise PermissionDenied(message="Only moderators can set this review status")
        await self._check_duplicate(actor["_id"], target)

        document = new_document(payload)
        document.update(target=target.to_document(), reviewer=actor["_id"], helpful=0)
        review_id = await self._insert(document, DUPLICATE_REVIEW)
        logger.info(
            "Review created",
            review_id=str(review_id),
            kind=target.kind.value,
            target_id=target.id,
            rating=document["rating"],
        )

        await self.maintainer.on_review_mutation(document, ChangeKind.CREATE)
        return await self.repository.present(document, REVIEWS.populate)

    async def update_review(
        self, review_id: str, payload: ReviewUpdate, actor: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """
        Update a review. Owners edit content; status changes are moderation
        and are recorded with the moderator and time.

        Raises:
            NotFound: If the review or a new target does not exist
            PermissionDenied: If the actor is neither owner nor moderator, or
                a non-moderator changes the status
            ConflictFailure: If moving the review would duplicate another one
        """
        existing = await self._load(review_id)
        self._check_access(existing, actor)
        to_set, to_unset = split_changes(payload, REQUIRED_FIELDS)
        previous_target = ReviewTarget.from_document(existing["target"])

        moderated = "moderation_reason" in to_set or (
            "status" in to_set and to_set["status"] != existing.get("status")
        )
        if moderated:
            if not is_moderator(actor):
                raise PermissionDenied(message="Only moderators can change review status")
            to_set.update(moderated_by=actor["_id"], moderated_at=utcnow())

        if "target" in to_set:
            target = payload.target
            if target != previous_target:
                await self._require_reference(target.collection_name, target.id, TARGET_LABELS[target.kind])
                await self._check_duplicate(existing["reviewer"], target, exclude_id=existing["_id"])
            to_set["target"] = target.to_document()

        updated = await self._apply_update(existing["_id"], to_set, to_unset, DUPLICATE_REVIEW)
        logger.info(
            "Review updated",
            review_id=review_id,
            fields=sorted({**to_set, **to_unset}),
            moderated=moderated,
        )

        await self.maintainer.on_review_mutation(updated, ChangeKind.UPDATE, previous_target)
        return await self.repository.present(updated, REVIEWS.populate)

    async def delete_review(self, review_id: str, actor: Mapping[str, Any]) -> None:
        existing = await self._load(review_id)
        self._check_access(existing, actor)

        with storage_guard("delete_review"):
            await self.collection.delete_one({"_id": existing["_id"]})
        logger.info("Review deleted", review_id=review_id)

        await self.maintainer.on_review_mutation(existing, ChangeKind.DELETE)

    async def mark_helpful(self, review_id: str) -> Dict[str, Any]:
        """Increment the helpful-vote counter."""
        object_id = to_object_id(review_id)
        if object_id is None:
            raise NotFound(self.label, review_id)
        with storage_guard("mark_helpful"):
            document = await self.collection.find_one_and_update(
                {"_id": object_id},
                {"$inc": {"helpful": 1}},
                projection={"helpful": 1},
                return_document=ReturnDocument.AFTER,
            )
        if document is None:
            raise NotFound(self.label, review_id)
        return {"id": review_id, "helpful": document["helpful"]}

    async def get_review_stats(self, target: ReviewTarget) -> ReviewStats:
        """Average, count and per-star distribution of a target's Published reviews."""
        pipeline = [
            {"$match": {
                "target.kind": target.kind.value,
                "target.id": to_object_id(target.id),
                "status": ReviewStatus.PUBLISHED.value,
            }},
            {"$group": {"_id": "$rating", "count": {"$sum": 1}}},
        ]
        with storage_guard("review_stats"):
            rows = await self.collection.aggregate(pipeline).to_list(length=None)

        stats = ReviewStats()
        for row in rows:
            stats.rating_distribution[str(row["_id"])] = row["count"]
        stats.total_reviews = sum(row["count"] for row in rows)
        if stats.total_reviews:
            stats.average_rating = sum(row["_id"] * row["count"] for row in rows) / stats.total_reviews
        return stats

    def _check_access(self, review: Mapping[str, Any], actor: Mapping[str, Any]) -> None:
        if review.get("reviewer") != actor["_id"] and not is_moderator(actor):
            raise PermissionDenied(message="Not authorized to modify this review")

    async def _check_duplicate(self, reviewer, target: ReviewTarget, exclude_id=None) -> None:
        query: Dict[str, Any] = {
            "reviewer": reviewer,
            "target.kind": target.kind.value,
            "target.id": to_object_id(target.id),
        }
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        with storage_guard("check_duplicate_review"):
            duplicate = await self.collection.find_one(query, {"_id": 1})
        if duplicate is not None:
            raise ConflictFailure(message=DUPLICATE_REVIEW, details={"kind": target.kind.value, "id": target.id})
