"""
Test cases for review writing, moderation and statistics.
"""

import pytest
from bson import ObjectId

from catalog.exceptions import ConflictFailure, NotFound, PermissionDenied, ValidationFailure
from catalog.models import ReviewCreate, ReviewStatus, ReviewTarget, ReviewUpdate, TargetKind
from catalog.reviews import DUPLICATE_REVIEW, parse_target


def payload(target, rating=4, status=ReviewStatus.PUBLISHED, title="Thoughtful"):
    return ReviewCreate(title=title, content="Still thinking about it.", rating=rating, target=target, status=status)


@pytest.fixture
def target(book):
    return ReviewTarget(kind=TargetKind.BOOK, id=book["id"])


class TestCreateReview:
    """Test cases for ReviewService.create_review."""

    async def test_create(self, services, target, reader):
        review = await services.reviews.create_review(payload(target), reader)

        assert review["rating"] == 4
        assert review["helpful"] == 0
        assert review["status"] == "Published"
        assert review["target"] == {"kind": "book", "id": target.id}
        assert review["reviewer"]["id"] == str(reader["_id"])

    async def test_one_review_per_target(self, services, target, reader):
        await services.reviews.create_review(payload(target), reader)

        with pytest.raises(ConflictFailure) as exc_info:
            await services.reviews.create_review(payload(target, rating=1), reader)
        assert exc_info.value.message == DUPLICATE_REVIEW
        assert exc_info.value.status_code == 409

    async def test_same_reader_may_review_book_and_author(self, services, target, author, reader):
        await services.reviews.create_review(payload(target), reader)
        author_target = ReviewTarget(kind=TargetKind.AUTHOR, id=author["id"])

        review = await services.reviews.create_review(payload(author_target), reader)
        assert review["target"]["kind"] == "author"

    async def test_missing_target(self, services, reader):
        ghost = ReviewTarget(kind=TargetKind.BOOK, id=str(ObjectId()))
        with pytest.raises(NotFound) as exc_info:
            await services.reviews.create_review(payload(ghost), reader)
        assert exc_info.value.resource == "Book"

    async def test_reader_cannot_create_hidden_review(self, services, target, reader):
        with pytest.raises(PermissionDenied):
            await services.reviews.create_review(payload(target, status=ReviewStatus.HIDDEN), reader)

    async def test_admin_may_create_flagged_review(self, services, target, admin):
        review = await services.reviews.create_review(payload(target, status=ReviewStatus.FLAGGED), admin)
        assert review["status"] == "Flagged"


class TestUpdateReview:
    """Test cases for ReviewService.update_review."""

    async def test_owner_edits_content(self, services, target, reader):
        review = await services.reviews.create_review(payload(target), reader)

        updated = await services.reviews.update_review(review["id"], ReviewUpdate(title="Second thoughts"), reader)

        assert updated["title"] == "Second thoughts"
        assert "moderated_by" not in updated

    async def test_other_reader_is_rejected(self, services, target, reader, second_reader):
        review = await services.reviews.create_review(payload(target), reader)

        with pytest.raises(PermissionDenied):
            await services.reviews.update_review(review["id"], ReviewUpdate(rating=1), second_reader)

    async def test_owner_cannot_moderate(self, services, target, reader):
        review = await services.reviews.create_review(payload(target), reader)

        with pytest.raises(PermissionDenied):
            await services.reviews.update_review(review["id"], ReviewUpdate(status=ReviewStatus.HIDDEN), reader)

    async def test_moderation_is_recorded(self, services, target, reader, admin):
        review = await services.reviews.create_review(payload(target), reader)

        updated = await services.reviews.update_review(
            review["id"],
            ReviewUpdate(status=ReviewStatus.FLAGGED, moderation_reason="Spoilers"),
            admin,
        )

        assert updated["status"] == "Flagged"
        assert updated["moderation_reason"] == "Spoilers"
        assert updated["moderated_by"] == str(admin["_id"])
        assert updated["moderated_at"]

    async def test_required_field_cannot_be_cleared(self, services, target, reader):
        review = await services.reviews.create_review(payload(target), reader)

        with pytest.raises(ValidationFailure) as exc_info:
            await services.reviews.update_review(review["id"], ReviewUpdate(title=None), reader)
        assert exc_info.value.field == "title"

    async def test_moving_onto_existing_review_conflicts(self, services, target, author, reader):
        author_target = ReviewTarget(kind=TargetKind.AUTHOR, id=author["id"])
        await services.reviews.create_review(payload(target), reader)
        review = await services.reviews.create_review(payload(author_target), reader)

        with pytest.raises(ConflictFailure):
            await services.reviews.update_review(review["id"], ReviewUpdate(target=target), reader)


class TestReviewQueries:
    """Test cases for deletion, helpful votes and statistics."""

    async def test_delete_by_admin(self, services, target, reader, admin):
        review = await services.reviews.create_review(payload(target), reader)

        await services.reviews.delete_review(review["id"], admin)

        with pytest.raises(NotFound):
            await services.reviews.get_review(review["id"])

    async def test_delete_by_stranger(self, services, target, reader, second_reader):
        review = await services.reviews.create_review(payload(target), reader)
        with pytest.raises(PermissionDenied):
            await services.reviews.delete_review(review["id"], second_reader)

    async def test_mark_helpful(self, services, target, reader):
        review = await services.reviews.create_review(payload(target), reader)

        await services.reviews.mark_helpful(review["id"])
        result = await services.reviews.mark_helpful(review["id"])

        assert result == {"id": review["id"], "helpful": 2}

    async def test_mark_helpful_unknown(self, services):
        with pytest.raises(NotFound):
            await services.reviews.mark_helpful(str(ObjectId()))

    async def test_target_reviews_are_published_only(self, services, target, reader, second_reader):
        await services.reviews.create_review(payload(target, rating=5), reader)
        await services.reviews.create_review(payload(target, status=ReviewStatus.PENDING), second_reader)

        reviews = await services.reviews.list_target_reviews(target)

        assert len(reviews) == 1
        assert reviews[0]["reviewer"]["name"] == "Rita Reader"

    async def test_stats(self, services, target, reader, second_reader, admin):
        await services.reviews.create_review(payload(target, rating=5), reader)
        await services.reviews.create_review(payload(target, rating=2), second_reader)
        await services.reviews.create_review(payload(target, rating=1, status=ReviewStatus.PENDING), admin)

        stats = await services.reviews.get_review_stats(target)

        assert stats.total_reviews == 2
        assert stats.average_rating == 3.5
        assert stats.rating_distribution == {"1": 0, "2": 1, "3": 0, "4": 0, "5": 1}

    async def test_stats_without_reviews(self, services, target):
        stats = await services.reviews.get_review_stats(target)
        assert stats.total_reviews == 0
        assert stats.average_rating == 0.0

    def test_parse_target(self):
        target_id = str(ObjectId())
        assert parse_target("author", target_id) == ReviewTarget(kind=TargetKind.AUTHOR, id=target_id)

        with pytest.raises(NotFound):
            parse_target("publisher", target_id)
        with pytest.raises(NotFound):
            parse_target("book", "123")
