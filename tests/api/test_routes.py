"""
Tests for the FastAPI application.
"""

from unittest.mock import AsyncMock, patch

import jwt
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from api.auth import create_access_token
from api.config import config as api_config
from api.main import app
from catalog.exceptions import BackendUnavailable, ConflictFailure, NotFound, PermissionDenied
from catalog.models import Pagination, QueryResult, ReviewStats
from catalog.repository import DEGRADED_MESSAGE

USER_ID = ObjectId()


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def mock_db_service():
    """Mock database service with a signed-in reader."""
    mock = AsyncMock()
    mock.users.get_user.return_value = {"_id": USER_ID, "name": "Rita", "role": "reader", "is_active": True}
    with patch('api.main.db_service', mock):
        yield mock


@pytest.fixture
def auth_headers():
    token, _ = create_access_token(str(USER_ID), "reader")
    return {"Authorization": f"Bearer {token}"}


def page(items, current=1, total=1):
    return QueryResult(items=items, count=len(items), pagination=Pagination(current=current, total=total, count=len(items)))


def book_body(**overrides):
    body = {"title": "Dune", "author": str(ObjectId()), "publication_date": "1965-08-01T00:00:00"}
    body.update(overrides)
    return body


class TestGeneral:
    """Index, health and cross-cutting behaviour."""

    def test_index(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["endpoints"]["books"] == "/api/books"

    def test_health_check(self, client, mock_db_service):
        mock_db_service.health_check.return_value = {"status": "healthy", "collections": {}}

        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database_status"] == "healthy"
        assert "timestamp" in data
        assert "version" in data

    def test_health_without_database(self, client):
        with patch('api.main.db_service', None):
            response = client.get("/health")
        assert response.json()["status"] == "degraded"
        assert response.json()["database_status"] == "unavailable"

    def test_request_id_is_echoed(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    def test_unknown_route(self, client):
        response = client.get("/api/nothing-here")
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_unhandled_error(self, client, mock_db_service):
        mock_db_service.books.get_book.side_effect = RuntimeError("boom")

        response = client.get(f"/api/books/{ObjectId()}")

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Server Error", "code": "INTERNAL_ERROR"}

    def test_service_unavailable(self, client):
        with patch('api.main.db_service', None):
            response = client.get(f"/api/books/{ObjectId()}")
        assert response.status_code == 503
        assert response.json()["error"] == "Database not connected"


class TestAuthentication:
    """Bearer token handling."""

    def test_write_requires_token(self, client, mock_db_service):
        response = client.post("/api/books", json=book_body())

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"
        mock_db_service.books.create_book.assert_not_called()

    def test_invalid_token(self, client, mock_db_service):
        response = client.post("/api/books", json=book_body(), headers={"Authorization": "Bearer not.a.token"})
        assert response.status_code == 401

    def test_unknown_user(self, client, mock_db_service, auth_headers):
        mock_db_service.users.get_user.side_effect = NotFound("User", str(USER_ID))
        response = client.get("/auth/profile", headers=auth_headers)
        assert response.status_code == 401

    def test_deactivated_user(self, client, mock_db_service, auth_headers):
        mock_db_service.users.get_user.return_value = {"_id": USER_ID, "role": "reader", "is_active": False}
        response = client.get("/auth/profile", headers=auth_headers)
        assert response.status_code == 401

    def test_profile(self, client, mock_db_service, auth_headers):
        mock_db_service.users.get_profile.return_value = {"id": str(USER_ID), "name": "Rita"}

        response = client.get("/auth/profile", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["name"] == "Rita"

    def test_refresh(self, client, mock_db_service, auth_headers):
        response = client.post("/auth/refresh", headers=auth_headers)

        assert response.status_code == 200
        claims = jwt.decode(response.json()["token"], api_config.secret_key, algorithms=[api_config.algorithm])
        assert claims["sub"] == str(USER_ID)
        assert claims["role"] == "reader"

    def test_logout(self, client):
        response = client.post("/auth/logout")
        assert response.status_code == 200
        assert response.json()["message"] == "Logged out successfully"


class TestBookRoutes:
    """Book endpoints."""

    def test_list_passes_query_params(self, client, mock_db_service):
        mock_db_service.books.list_books.return_value = page([{"id": "1", "title": "Dune"}], current=2, total=3)

        response = client.get("/api/books?genre=Fantasy&sortBy=title&page=2&limit=1")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["count"] == 1
        assert data["pagination"] == {"current": 2, "total": 3, "count": 1}
        assert data["data"][0]["title"] == "Dune"
        mock_db_service.books.list_books.assert_awaited_once_with(
            {"genre": "Fantasy", "sortBy": "title", "page": "2", "limit": "1"}
        )

    def test_list_degraded(self, client, mock_db_service):
        mock_db_service.books.list_books.return_value = QueryResult.empty(message=DEGRADED_MESSAGE)

        data = client.get("/api/books").json()

        assert data["success"] is True
        assert data["data"] == []
        assert data["message"] == DEGRADED_MESSAGE

    def test_get_missing(self, client, mock_db_service):
        mock_db_service.books.get_book.side_effect = NotFound("Book", "abc")

        response = client.get("/api/books/abc")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "Book not found",
            "code": "NOT_FOUND",
            "details": {"resource": "Book", "id": "abc"},
        }

    def test_create(self, client, mock_db_service, auth_headers):
        mock_db_service.books.create_book.return_value = {"id": "b1", "title": "Dune"}

        response = client.post("/api/books", json=book_body(), headers=auth_headers)

        assert response.status_code == 201
        assert response.json()["data"]["id"] == "b1"
        payload, user_id = mock_db_service.books.create_book.call_args.args
        assert payload.title == "Dune"
        assert user_id == str(USER_ID)

    def test_create_validation_error(self, client, mock_db_service, auth_headers):
        response = client.post("/api/books", json={"author": str(ObjectId()), "pages": 0}, headers=auth_headers)

        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "VALIDATION_FAILED"
        fields = {error["field"] for error in data["details"]["errors"]}
        assert {"title", "publication_date", "pages"} <= fields

    def test_create_conflict(self, client, mock_db_service, auth_headers):
        mock_db_service.books.create_book.side_effect = ConflictFailure(message="A book with this ISBN already exists")

        response = client.post("/api/books", json=book_body(isbn="123"), headers=auth_headers)

        assert response.status_code == 409
        assert response.json()["code"] == "CONFLICT"

    def test_delete(self, client, mock_db_service, auth_headers):
        mock_db_service.books.delete_book.return_value = {"reviews_deleted": 2, "users_updated": 1}

        response = client.delete("/api/books/b1", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"] == {"reviews_deleted": 2, "users_updated": 1}


class TestCatalogRoutes:
    """Author, publisher and review endpoints."""

    def test_authors_by_genre(self, client, mock_db_service):
        mock_db_service.authors.list_authors_by_genre.return_value = [{"id": "a1"}, {"id": "a2"}]

        data = client.get("/api/authors/genre/Fantasy").json()

        assert data["count"] == 2
        mock_db_service.authors.list_authors_by_genre.assert_awaited_once_with("Fantasy")

    def test_per_parent_listing_degrades(self, client, mock_db_service):
        mock_db_service.publishers.list_publisher_books.side_effect = BackendUnavailable()

        response = client.get("/api/publishers/p1/books")

        assert response.status_code == 200
        assert response.json() == {"success": True, "count": 0, "data": [], "message": DEGRADED_MESSAGE}

    def test_author_death_before_birth_with_offset(self, client, mock_db_service, auth_headers):
        body = {
            "first_name": "A", "last_name": "B",
            "birth_date": "1950-01-01", "death_date": "1940-01-01T00:00:00Z",
        }

        response = client.post("/api/authors", json=body, headers=auth_headers)

        assert response.status_code == 400
        mock_db_service.authors.create_author.assert_not_called()

    def test_author_delete_conflict(self, client, mock_db_service, auth_headers):
        mock_db_service.authors.delete_author.side_effect = ConflictFailure(message="Author still has books")
        response = client.delete("/api/authors/a1", headers=auth_headers)
        assert response.status_code == 409

    def test_book_reviews_with_malformed_id(self, client, mock_db_service):
        response = client.get("/api/reviews/book/123")

        assert response.status_code == 404
        mock_db_service.reviews.list_target_reviews.assert_not_called()

    def test_review_stats(self, client, mock_db_service):
        stats = ReviewStats(average_rating=4.5, total_reviews=2)
        stats.rating_distribution.update({"4": 1, "5": 1})
        mock_db_service.reviews.get_review_stats.return_value = stats
        author_id = str(ObjectId())

        response = client.get(f"/api/reviews/author/{author_id}/stats")

        assert response.status_code == 200
        assert response.json()["data"]["rating_distribution"]["5"] == 1
        target = mock_db_service.reviews.get_review_stats.call_args.args[0]
        assert (target.kind.value, target.id) == ("author", author_id)

    def test_create_review_passes_actor(self, client, mock_db_service, auth_headers):
        mock_db_service.reviews.create_review.return_value = {"id": "r1"}
        body = {
            "title": "Great",
            "content": "Loved it",
            "rating": 5,
            "target": {"kind": "book", "id": str(ObjectId())},
        }

        response = client.post("/api/reviews", json=body, headers=auth_headers)

        assert response.status_code == 201
        payload, actor = mock_db_service.reviews.create_review.call_args.args
        assert payload.rating == 5
        assert actor["_id"] == USER_ID

    def test_review_rating_out_of_range(self, client, mock_db_service, auth_headers):
        body = {"title": "t", "content": "c", "rating": 9, "target": {"kind": "book", "id": str(ObjectId())}}
        response = client.post("/api/reviews", json=body, headers=auth_headers)
        assert response.status_code == 400

    def test_update_review_forbidden(self, client, mock_db_service, auth_headers):
        mock_db_service.reviews.update_review.side_effect = PermissionDenied(message="Not authorized to modify this review")

        response = client.put("/api/reviews/r1", json={"status": "Hidden"}, headers=auth_headers)

        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_mark_helpful(self, client, mock_db_service):
        mock_db_service.reviews.mark_helpful.return_value = {"id": "r1", "helpful": 3}
        response = client.post("/api/reviews/r1/helpful")
        assert response.json()["data"]["helpful"] == 3

    def test_reading_history(self, client, mock_db_service, auth_headers):
        mock_db_service.users.update_reading_history.return_value = {"id": str(USER_ID), "reading_history": []}

        response = client.put("/api/users/me/reading-history/b1", json={"status": "read"}, headers=auth_headers)

        assert response.status_code == 200
        _, book_id, progress = mock_db_service.users.update_reading_history.call_args.args
        assert book_id == "b1"
        assert progress.status.value == "read"
