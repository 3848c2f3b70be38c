"""
Aggregate maintenance for denormalized catalog fields.

Books and authors store ``average_rating``/``rating_count`` computed from
their Published reviews; authors and publishers store ``books_published``
computed from the books referencing them. Every value is always recomputed
from the source documents rather than adjusted incrementally, so status
changes (Published <-> Hidden) and target changes are handled the same way
as creations and deletions.

Recomputation triggered by a mutation never fails that mutation: errors are
logged and reported in the returned outcomes.
"""

from typing import Any, Dict, List, Optional, Tuple

import structlog
from bson import ObjectId
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

from catalog.database import MongoDBManager, to_object_id
from catalog.exceptions import AggregationFailure, BackendUnavailable
from catalog.models import ChangeKind, RatingSummary, ReviewStatus, ReviewTarget, TargetKind

logger = structlog.get_logger(__name__)

BOOK_COUNT_FIELDS = {"authors": "author", "publishers": "publisher"}


class AggregationOutcome(BaseModel):
    """Result of one recomputation attempt."""
    collection: str = Field(..., description="Collection holding the aggregate")
    entity_id: str = Field(..., description="Entity whose aggregate was recomputed")
    success: bool = Field(True)
    summary: Optional[Dict[str, Any]] = Field(None, description="Values written on success")
    error: Optional[str] = Field(None, description="Failure reason")


class AggregateMaintainer:
    """Recomputes rating summaries and book counts from source documents."""

    def __init__(self, db_manager: MongoDBManager):
        self.db_manager = db_manager
        self.logger = logger.bind(component="aggregate_maintainer")

    # Ratings

    def _rating_pipeline(self, match: Dict[str, Any], group_key: Any) -> List[Dict[str, Any]]:
        return [
            {"$match": {**match, "status": ReviewStatus.PUBLISHED.value}},
            {"$group": {
                "_id": group_key,
                "average_rating": {"$avg": "$rating"},
                "rating_count": {"$sum": 1},
            }},
        ]

    async def recompute_rating(self, target: ReviewTarget) -> RatingSummary:
        """
        Recompute and store the rating summary of one book or author.

        Args:
            target: The reviewed entity

        Returns:
            The summary written onto the entity; 0/0 when it has no Published reviews

        Raises:
            AggregationFailure: If the id is malformed, the entity is missing
                or the database fails
        """
        object_id = to_object_id(target.id)
        if object_id is None:
            raise AggregationFailure(
                message=f"Malformed {target.kind.value} identifier",
                details={"kind": target.kind.value, "id": target.id},
            )

        pipeline = self._rating_pipeline(
            {"target.kind": target.kind.value, "target.id": object_id}, None
        )
        try:
            results = await self.db_manager.reviews.aggregate(pipeline).to_list(length=1)
            if results:
                summary = RatingSummary(
                    average_rating=float(results[0]["average_rating"]),
                    rating_count=results[0]["rating_count"],
                )
            else:
                summary = RatingSummary()

            update = await self.db_manager.collection(target.collection_name).update_one(
                {"_id": object_id}, {"$set": summary.model_dump()}
            )
        except (PyMongoError, BackendUnavailable) as e:
            raise AggregationFailure(
                message=f"Could not recompute rating: {e}",
                details={"kind": target.kind.value, "id": target.id},
            ) from e

        if update.matched_count == 0:
            raise AggregationFailure(
                message=f"Rated {target.kind.value} no longer exists",
                details={"kind": target.kind.value, "id": target.id},
            )

        self.logger.debug(
            "Rating recomputed",
            kind=target.kind.value,
            target_id=target.id,
            average_rating=summary.average_rating,
            rating_count=summary.rating_count,
        )
        return summary

    async def on_review_mutation(
        self,
        review: Dict[str, Any],
        change_kind: ChangeKind,
        previous_target: Optional[ReviewTarget] = None,
    ) -> List[AggregationOutcome]:
        """
        Refresh the aggregates a committed review mutation affects.

        The review's current target is always recomputed; on update, a
        different previous target is recomputed as well.

        Args:
            review: The stored review document (after the mutation; before it for deletes)
            change_kind: create, update or delete
            previous_target: Target before an update

        Returns:
            One outcome per recomputed target
        """
        targets = [ReviewTarget.from_document(review["target"])]
        if change_kind == ChangeKind.UPDATE and previous_target is not None and previous_target not in targets:
            targets.append(previous_target)

        outcomes = []
        for target in targets:
            outcomes.append(await self._recompute_rating_safely(target, review.get("_id"), change_kind))
        return outcomes

    async def _recompute_rating_safely(
        self, target: ReviewTarget, review_id: Any, change_kind: ChangeKind
    ) -> AggregationOutcome:
        try:
            summary = await self.recompute_rating(target)
        except AggregationFailure as e:
            self.logger.error(
                "Rating recomputation failed",
                kind=target.kind.value,
                target_id=target.id,
                review_id=str(review_id),
                change_kind=change_kind.value,
                error=e.message,
            )
            return AggregationOutcome(
                collection=target.collection_name, entity_id=target.id, success=False, error=e.message
            )
        return AggregationOutcome(
            collection=target.collection_name, entity_id=target.id, summary=summary.model_dump()
        )

    async def reconcile_ratings(self, kind: TargetKind) -> int:
        """
        Recompute the rating summary of every book or author in one pass.

        Args:
            kind: Which entity kind to reconcile

        Returns:
            Number of entities whose stored summary was corrected
        """
        pipeline = self._rating_pipeline({"target.kind": kind.value}, "$target.id")
        collection_name = "books" if kind == TargetKind.BOOK else "authors"

        try:
            rows = await self.db_manager.reviews.aggregate(pipeline).to_list(length=None)
            summaries = {
                row["_id"]: RatingSummary(
                    average_rating=float(row["average_rating"]), rating_count=row["rating_count"]
                )
                for row in rows
            }
            collection = self.db_manager.collection(collection_name)
            documents = await collection.find({}, {"average_rating": 1, "rating_count": 1}).to_list(length=None)

            corrected = 0
            for document in documents:
                summary = summaries.get(document["_id"], RatingSummary())
                if (document.get("average_rating"), document.get("rating_count")) != (
                    summary.average_rating, summary.rating_count
                ):
                    await collection.update_one({"_id": document["_id"]}, {"$set": summary.model_dump()})
                    corrected += 1
        except (PyMongoError, BackendUnavailable) as e:
            raise AggregationFailure(
                message=f"Could not reconcile {collection_name} ratings: {e}",
                details={"collection": collection_name},
            ) from e

        self.logger.info(
            "Ratings reconciled", collection=collection_name, checked=len(documents), corrected=corrected
        )
        return corrected

    # Book counts

    async def recompute_books_published(self, collection_name: str, entity_id: Any) -> int:
        """
        Recompute ``books_published`` for one author or publisher.

        Raises:
            AggregationFailure: If the id is malformed, the entity is missing
                or the database fails
        """
        object_id = to_object_id(entity_id)
        if object_id is None:
            raise AggregationFailure(
                message="Malformed identifier",
                details={"collection": collection_name, "id": str(entity_id)},
            )

        reference_field = BOOK_COUNT_FIELDS[collection_name]
        try:
            count = await self.db_manager.books.count_documents({reference_field: object_id})
            update = await self.db_manager.collection(collection_name).update_one(
                {"_id": object_id}, {"$set": {"books_published": count}}
            )
        except (PyMongoError, BackendUnavailable) as e:
            raise AggregationFailure(
                message=f"Could not recompute book count: {e}",
                details={"collection": collection_name, "id": str(entity_id)},
            ) from e

        if update.matched_count == 0:
            raise AggregationFailure(
                message="Counted entity no longer exists",
                details={"collection": collection_name, "id": str(entity_id)},
            )
        return count

    async def on_book_mutation(
        self, book: Dict[str, Any], previous: Optional[Dict[str, Any]] = None
    ) -> List[AggregationOutcome]:
        """
        Refresh ``books_published`` on every author and publisher the book
        references now or referenced before the mutation.
        """
        references: List[Tuple[str, ObjectId]] = []
        for document in (book, previous or {}):
            for collection_name, reference_field in BOOK_COUNT_FIELDS.items():
                reference = document.get(reference_field)
                if reference is not None and (collection_name, reference) not in references:
                    references.append((collection_name, reference))

        outcomes = []
        for collection_name, reference in references:
            try:
                count = await self.recompute_books_published(collection_name, reference)
            except AggregationFailure as e:
                self.logger.error(
                    "Book count recomputation failed",
                    collection=collection_name,
                    entity_id=str(reference),
                    book_id=str(book.get("_id")),
                    error=e.message,
                )
                outcomes.append(AggregationOutcome(
                    collection=collection_name, entity_id=str(reference), success=False, error=e.message
                ))
                continue
            outcomes.append(AggregationOutcome(
                collection=collection_name, entity_id=str(reference), summary={"books_published": count}
            ))
        return outcomes

    async def reconcile_books_published(self, collection_name: str) -> int:
        """
        Recompute ``books_published`` for every author or publisher.

        Returns:
            Number of entities whose stored count was corrected
        """
        reference_field = BOOK_COUNT_FIELDS[collection_name]
        pipeline = [
            {"$match": {reference_field: {"$ne": None}}},
            {"$group": {"_id": f"${reference_field}", "count": {"$sum": 1}}},
        ]
        try:
            rows = await self.db_manager.books.aggregate(pipeline).to_list(length=None)
            counts = {row["_id"]: row["count"] for row in rows}
            collection = self.db_manager.collection(collection_name)
            documents = await collection.find({}, {"books_published": 1}).to_list(length=None)

            corrected = 0
            for document in documents:
                count = counts.get(document["_id"], 0)
                if document.get("books_published") != count:
                    await collection.update_one({"_id": document["_id"]}, {"$set": {"books_published": count}})
                    corrected += 1
        except (PyMongoError, BackendUnavailable) as e:
            raise AggregationFailure(
                message=f"Could not reconcile {collection_name} book counts: {e}",
                details={"collection": collection_name},
            ) from e

        self.logger.info("Book counts reconciled", collection=collection_name, corrected=corrected)
        return corrected
