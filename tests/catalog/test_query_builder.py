"""
Test cases for list query construction.
"""

import pytest
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING

from catalog.exceptions import ValidationFailure
from catalog.query_builder import AUTHORS, BOOKS, PUBLISHERS, REVIEWS, QueryBuilder


@pytest.fixture
def builder():
    return QueryBuilder()


class TestFilters:
    """Test cases for filter construction."""

    def test_no_params_matches_everything(self, builder):
        assert builder.build_filter(BOOKS, {}) == {}

    def test_blank_values_are_ignored(self, builder):
        params = {"genre": "", "status": "   ", "author": None, "search": ""}
        assert builder.build_filter(BOOKS, params) == {}

    def test_single_filter_is_not_wrapped(self, builder):
        assert builder.build_filter(BOOKS, {"genre": "Fantasy"}) == {"genres": "Fantasy"}

    def test_filters_are_combined_with_and(self, builder):
        author_id = ObjectId()
        query = builder.build_filter(BOOKS, {
            "genre": "Fantasy",
            "author": str(author_id),
            "language": "English",
        })

        assert query == {"$and": [
            {"author": author_id},
            {"genres": "Fantasy"},
            {"language": "English"},
        ]}

    def test_text_search_for_books(self, builder):
        query = builder.build_filter(BOOKS, {"search": " dragons "})
        assert query == {"$text": {"$search": "dragons"}}

    def test_text_search_is_combined_with_filters(self, builder):
        query = builder.build_filter(AUTHORS, {"search": "ursula", "status": "Active"})
        assert query["$text"] == {"$search": "ursula"}
        assert query["status"] == "Active"

    def test_regex_search_for_reviews_is_escaped(self, builder):
        query = builder.build_filter(REVIEWS, {"search": "(really)"})

        assert query == {"$or": [
            {"title": {"$regex": r"\(really\)", "$options": "i"}},
            {"content": {"$regex": r"\(really\)", "$options": "i"}},
        ]}

    def test_malformed_reference_matches_nothing(self, builder):
        query = builder.build_filter(BOOKS, {"author": "not-an-id"})
        assert query == {"author": {"$in": []}}

    def test_review_target_filter_constrains_kind(self, builder):
        book_id = ObjectId()
        query = builder.build_filter(REVIEWS, {"book": str(book_id)})
        assert query == {"target.kind": "book", "target.id": book_id}

    def test_nationality_is_case_insensitive_exact(self, builder):
        query = builder.build_filter(AUTHORS, {"nationality": "british"})
        assert query == {"nationality": {"$regex": "^british$", "$options": "i"}}

    def test_founded_after(self, builder):
        query = builder.build_filter(PUBLISHERS, {"foundedAfter": "1950"})
        assert query == {"founded_year": {"$gte": 1950}}

    def test_rating_filter(self, builder):
        assert builder.build_filter(REVIEWS, {"rating": "4"}) == {"rating": 4}

    def test_rating_out_of_range(self, builder):
        with pytest.raises(ValidationFailure) as exc_info:
            builder.build_filter(REVIEWS, {"rating": "6"})
        assert exc_info.value.field == "rating"
        assert exc_info.value.status_code == 400

    def test_non_integer_filter(self, builder):
        with pytest.raises(ValidationFailure):
            builder.build_filter(PUBLISHERS, {"foundedAfter": "long ago"})

    def test_unknown_params_are_ignored(self, builder):
        assert builder.build_filter(BOOKS, {"$where": "1 == 1", "foo": "bar"}) == {}


class TestSort:
    """Test cases for sort construction."""

    def test_default_sort_is_newest_first(self, builder):
        assert builder.build_sort(BOOKS, {}) == [("created_at", DESCENDING), ("_id", DESCENDING)]

    def test_allowed_field_ascending_by_default(self, builder):
        assert builder.build_sort(BOOKS, {"sortBy": "title"}) == [("title", ASCENDING), ("_id", ASCENDING)]

    def test_descending_order(self, builder):
        sort = builder.build_sort(BOOKS, {"sortBy": "average_rating", "sortOrder": "DESC"})
        assert sort == [("average_rating", DESCENDING), ("_id", DESCENDING)]

    def test_unknown_field_falls_back_to_default(self, builder):
        sort = builder.build_sort(BOOKS, {"sortBy": "password", "sortOrder": "asc"})
        assert sort == [("created_at", DESCENDING), ("_id", DESCENDING)]

    def test_publishers_sort_fields(self, builder):
        assert builder.build_sort(PUBLISHERS, {"sortBy": "founded_year"})[0] == ("founded_year", ASCENDING)
        assert builder.build_sort(PUBLISHERS, {"sortBy": "average_rating"})[0] == ("created_at", DESCENDING)


class TestPagination:
    """Test cases for page and limit parsing."""

    def test_defaults(self, builder):
        built = builder.build(BOOKS, {})
        assert (built.page, built.limit, built.skip) == (1, 10, 0)

    def test_skip(self, builder):
        built = builder.build(BOOKS, {"page": "3", "limit": "20"})
        assert built.skip == 40

    @pytest.mark.parametrize("raw,expected", [("0", 1), ("-2", 1), ("abc", 1), ("", 1), (None, 1), ("7", 7)])
    def test_page(self, builder, raw, expected):
        assert builder.parse_page(raw) == expected

    @pytest.mark.parametrize("raw,expected", [("0", 1), ("-5", 1), ("1000", 100), ("abc", 10), (None, 10), ("25", 25)])
    def test_limit_is_clamped(self, builder, raw, expected):
        assert builder.parse_limit(raw) == expected

    def test_custom_limits(self):
        builder = QueryBuilder(default_limit=5, max_limit=20)
        assert builder.parse_limit(None) == 5
        assert builder.parse_limit("50") == 20
