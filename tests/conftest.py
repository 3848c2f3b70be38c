"""
Pytest configuration and shared fixtures.

Storage-level tests run against mongomock-motor, an in-memory stand-in for
the Motor client, so services execute their real queries and updates.
"""

import uuid
from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from mongomock_motor import AsyncMongoMockClient

from api.database import APIDatabaseService
from catalog.database import MongoDBManager
from catalog.models import (
    AuthorCreate, BookCreate, Genre, IdentityProfile, PublisherCreate, UserRole,
)


@pytest.fixture
def database():
    """Fresh in-memory database per test."""
    client = AsyncMongoMockClient()
    return client[f"literary_test_{uuid.uuid4().hex[:8]}"]


@pytest.fixture
def db_manager(database):
    return MongoDBManager.from_database(database)


@pytest.fixture
def offline_db_manager():
    """Manager whose database was never reached."""
    return MongoDBManager("mongodb://localhost:1", "literary_test")


@pytest.fixture
def services(db_manager):
    return APIDatabaseService(db_manager)


@pytest.fixture
def mock_mongodb_manager():
    """Create a mock MongoDB manager for testing."""
    manager = AsyncMock(spec=MongoDBManager)
    manager.ping.return_value = True
    manager.get_database_stats.return_value = {
        "books": 3, "authors": 2, "publishers": 1, "reviews": 4, "users": 2
    }
    return manager


@pytest.fixture
async def reader(services):
    """A signed-in reader."""
    return await services.users.find_or_create(IdentityProfile(
        external_id="google-reader",
        email="reader@example.com",
        name="Rita Reader",
    ))


@pytest.fixture
async def second_reader(services):
    return await services.users.find_or_create(IdentityProfile(
        external_id="google-second",
        email="second@example.com",
        name="Sam Second",
    ))


@pytest.fixture
async def admin(services):
    """A signed-in administrator (review moderator)."""
    await services.users.find_or_create(IdentityProfile(
        external_id="google-admin",
        email="admin@example.com",
        name="Ada Admin",
    ))
    return await services.users.set_role("admin@example.com", UserRole.ADMIN)


@pytest.fixture
async def author(services):
    """Sample author, as returned by the API."""
    return await services.authors.create_author(AuthorCreate(
        first_name="Ursula",
        last_name="Le Guin",
        birth_date=datetime(1929, 10, 21),
        death_date=datetime(2018, 1, 22),
        nationality="American",
        genres=[Genre.FANTASY, Genre.SCIENCE_FICTION],
    ))


@pytest.fixture
async def publisher(services):
    """Sample publisher, as returned by the API."""
    return await services.publishers.create_publisher(PublisherCreate(
        name="Ace Books",
        founded_year=1952,
        genres=[Genre.SCIENCE_FICTION, Genre.FANTASY],
    ))


@pytest.fixture
async def book(services, author, publisher):
    """Sample book, as returned by the API."""
    return await services.books.create_book(BookCreate(
        title="The Left Hand of Darkness",
        isbn="978-0-441-47812-5",
        author=author["id"],
        publisher=publisher["id"],
        publication_date=datetime(1969, 3, 1),
        genres=[Genre.SCIENCE_FICTION],
        pages=304,
    ))
