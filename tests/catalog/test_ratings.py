"""
Test cases for rating and book-count aggregate maintenance.
"""

import pytest
from bson import ObjectId

from catalog.exceptions import AggregationFailure
from catalog.models import (
    ChangeKind, ReviewCreate, ReviewStatus, ReviewTarget, ReviewUpdate, TargetKind,
)
from catalog.ratings import AggregateMaintainer


def book_target(book):
    return ReviewTarget(kind=TargetKind.BOOK, id=book["id"])


def review_payload(target, rating, status=ReviewStatus.PUBLISHED):
    return ReviewCreate(title="My take", content="Worth reading.", rating=rating, target=target, status=status)


async def stored(db_manager, collection_name, entity):
    return await db_manager.collection(collection_name).find_one({"_id": ObjectId(entity["id"])})


async def rating_of(db_manager, collection_name, entity):
    document = await stored(db_manager, collection_name, entity)
    return document["average_rating"], document["rating_count"]


class TestRatingMaintenance:
    """Ratings follow every review mutation."""

    async def test_new_book_starts_unrated(self, db_manager, book):
        assert await rating_of(db_manager, "books", book) == (0.0, 0)

    async def test_review_lifecycle(self, services, db_manager, book, reader, second_reader, admin):
        target = book_target(book)

        first = await services.reviews.create_review(review_payload(target, 4), reader)
        assert await rating_of(db_manager, "books", book) == (4.0, 1)

        second = await services.reviews.create_review(review_payload(target, 2), second_reader)
        assert await rating_of(db_manager, "books", book) == (3.0, 2)

        await services.reviews.update_review(first["id"], ReviewUpdate(status=ReviewStatus.HIDDEN), admin)
        assert await rating_of(db_manager, "books", book) == (2.0, 1)

        await services.reviews.update_review(first["id"], ReviewUpdate(status=ReviewStatus.PUBLISHED), admin)
        assert await rating_of(db_manager, "books", book) == (3.0, 2)

        await services.reviews.delete_review(second["id"], second_reader)
        assert await rating_of(db_manager, "books", book) == (4.0, 1)

        await services.reviews.delete_review(first["id"], reader)
        assert await rating_of(db_manager, "books", book) == (0.0, 0)

    async def test_rating_edit_is_reflected(self, services, db_manager, book, reader):
        review = await services.reviews.create_review(review_payload(book_target(book), 1), reader)
        await services.reviews.update_review(review["id"], ReviewUpdate(rating=5), reader)
        assert await rating_of(db_manager, "books", book) == (5.0, 1)

    async def test_pending_reviews_do_not_count(self, services, db_manager, book, reader):
        await services.reviews.create_review(
            review_payload(book_target(book), 5, ReviewStatus.PENDING), reader
        )
        assert await rating_of(db_manager, "books", book) == (0.0, 0)

    async def test_author_reviews_rate_the_author(self, services, db_manager, author, book, reader):
        target = ReviewTarget(kind=TargetKind.AUTHOR, id=author["id"])
        await services.reviews.create_review(review_payload(target, 3), reader)

        assert await rating_of(db_manager, "authors", author) == (3.0, 1)
        assert await rating_of(db_manager, "books", book) == (0.0, 0)

    async def test_target_change_recomputes_both(self, services, db_manager, author, book, reader):
        review = await services.reviews.create_review(review_payload(book_target(book), 5), reader)
        assert await rating_of(db_manager, "books", book) == (5.0, 1)

        new_target = ReviewTarget(kind=TargetKind.AUTHOR, id=author["id"])
        await services.reviews.update_review(review["id"], ReviewUpdate(target=new_target), reader)

        assert await rating_of(db_manager, "books", book) == (0.0, 0)
        assert await rating_of(db_manager, "authors", author) == (5.0, 1)


class TestAggregateMaintainer:
    """Test cases for AggregateMaintainer directly."""

    async def test_recompute_rating(self, db_manager, book):
        await db_manager.reviews.insert_many([
            {"target": {"kind": "book", "id": ObjectId(book["id"])}, "rating": 5, "status": "Published"},
            {"target": {"kind": "book", "id": ObjectId(book["id"])}, "rating": 4, "status": "Published"},
            {"target": {"kind": "book", "id": ObjectId(book["id"])}, "rating": 1, "status": "Flagged"},
        ])

        summary = await AggregateMaintainer(db_manager).recompute_rating(book_target(book))

        assert summary.average_rating == 4.5
        assert summary.rating_count == 2
        assert await rating_of(db_manager, "books", book) == (4.5, 2)

    async def test_malformed_identifier(self, db_manager):
        with pytest.raises(AggregationFailure):
            await AggregateMaintainer(db_manager).recompute_rating(ReviewTarget(kind=TargetKind.BOOK, id="nope"))

    async def test_missing_target(self, db_manager):
        target = ReviewTarget(kind=TargetKind.BOOK, id=str(ObjectId()))
        with pytest.raises(AggregationFailure):
            await AggregateMaintainer(db_manager).recompute_rating(target)

    async def test_database_unavailable(self, offline_db_manager):
        target = ReviewTarget(kind=TargetKind.BOOK, id=str(ObjectId()))
        with pytest.raises(AggregationFailure):
            await AggregateMaintainer(offline_db_manager).recompute_rating(target)

    async def test_mutation_hook_never_raises(self, db_manager):
        review = {"_id": ObjectId(), "target": {"kind": "author", "id": ObjectId()}}

        outcomes = await AggregateMaintainer(db_manager).on_review_mutation(review, ChangeKind.DELETE)

        assert len(outcomes) == 1
        assert outcomes[0].success is False
        assert outcomes[0].collection == "authors"
        assert outcomes[0].error

    async def test_unchanged_target_is_recomputed_once(self, db_manager, book):
        review = {"_id": ObjectId(), "target": {"kind": "book", "id": ObjectId(book["id"])}}

        outcomes = await AggregateMaintainer(db_manager).on_review_mutation(
            review, ChangeKind.UPDATE, previous_target=book_target(book)
        )

        assert [outcome.entity_id for outcome in outcomes] == [book["id"]]
        assert outcomes[0].summary == {"average_rating": 0.0, "rating_count": 0}

    async def test_reconcile_ratings(self, services, db_manager, book, reader):
        await services.reviews.create_review(review_payload(book_target(book), 4), reader)
        await db_manager.books.update_one(
            {"_id": ObjectId(book["id"])}, {"$set": {"average_rating": 1.0, "rating_count": 7}}
        )
        maintainer = AggregateMaintainer(db_manager)

        assert await maintainer.reconcile_ratings(TargetKind.BOOK) == 1
        assert await rating_of(db_manager, "books", book) == (4.0, 1)
        assert await maintainer.reconcile_ratings(TargetKind.BOOK) == 0


class TestBookCounts:
    """books_published follows book creation, reassignment and deletion."""

    async def test_counts_after_create(self, db_manager, author, publisher, book):
        assert (await stored(db_manager, "authors", author))["books_published"] == 1
        assert (await stored(db_manager, "publishers", publisher))["books_published"] == 1

    async def test_counts_after_delete(self, services, db_manager, author, publisher, book):
        await services.books.delete_book(book["id"])

        assert (await stored(db_manager, "authors", author))["books_published"] == 0
        assert (await stored(db_manager, "publishers", publisher))["books_published"] == 0

    async def test_reconcile_books_published(self, db_manager, author, book):
        await db_manager.authors.update_one({"_id": ObjectId(author["id"])}, {"$set": {"books_published": 9}})
        maintainer = AggregateMaintainer(db_manager)

        assert await maintainer.reconcile_books_published("authors") == 1
        assert (await stored(db_manager, "authors", author))["books_published"] == 1
        assert await maintainer.reconcile_books_published("publishers") == 0
