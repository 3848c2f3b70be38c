"""
FastAPI main application for the Literary Database API.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Awaitable, Dict, List, Optional

import structlog
from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from pymongo.errors import ConnectionFailure
from starlette.exceptions import HTTPException

from api.auth import authenticate, create_access_token, security
from api.config import config as api_config
from api.database import APIDatabaseService
from api.models import (
    CollectionResponse, ErrorResponse, HealthResponse, ItemResponse, ListResponse, TokenResponse,
)
from catalog import __version__
from catalog.database import MongoDBManager
from catalog.exceptions import BackendUnavailable, LibraryError
from catalog.models import (
    AuthorCreate, AuthorUpdate, BookCreate, BookUpdate, PublisherCreate, PublisherUpdate,
    ReadingProgressUpdate, ReviewCreate, ReviewUpdate, TargetKind,
)
from catalog.repository import DEGRADED_MESSAGE
from catalog.reviews import parse_target
from utilities.config import config
from utilities.logger import bind_request_context

# Setup logging
logger = structlog.get_logger(__name__)

# Global database service
db_service: Optional[APIDatabaseService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Literary Database API", version=__version__)

    global db_service
    db_manager = MongoDBManager(
        config.mongodb_url,
        config.mongodb_database,
        server_selection_timeout_ms=config.server_selection_timeout_ms,
    )
    try:
        await db_manager.connect()
        logger.info("Database connection established")
    except ConnectionFailure as e:
        # Keep serving: list reads degrade to empty pages and writes answer 503
        logger.warning("Starting without database", error=str(e))
    db_service = APIDatabaseService(db_manager)

    yield

    logger.info("Shutting down Literary Database API")
    await db_manager.disconnect()


# Create FastAPI application
app = FastAPI(
    title=api_config.api_title,
    description="""
    REST API over books, authors, publishers and reviews.

    ## Features

    * **Catalog**: Browse, search, filter, sort and paginate every resource
    * **Reviews**: One review per reader and book or author; ratings are kept in sync automatically
    * **Moderation**: Administrators hide, flag or republish reviews

    ## Authentication

    Write operations require a session token in the Authorization header:

    ```
    Authorization: Bearer your_token_here
    ```
    """,
    version=api_config.api_version,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=api_config.cors_origins,
    allow_credentials=api_config.cors_allow_credentials,
    allow_methods=api_config.cors_allow_methods,
    allow_headers=api_config.cors_allow_headers,
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag every log line of a request with a request id."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    bind_request_context(request_id=request_id, method=request.method, path=request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# Exception handlers
def error_response(status_code: int, error: str, code: str, details: Optional[Dict] = None, headers=None):
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, code=code, details=details or None).model_dump(exclude_none=True),
        headers=headers,
    )


@app.exception_handler(LibraryError)
async def library_exception_handler(request: Request, exc: LibraryError):
    """Translate catalog errors into the error envelope."""
    log = logger.warning if exc.status_code >= 500 else logger.info
    log("Request failed", code=exc.code, error=exc.message, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report body and path validation errors as a field list."""
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        ". ".join(f"{error['field']}: {error['message']}" for error in errors),
        "VALIDATION_FAILED",
        {"errors": errors},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    code = "UNAUTHORIZED" if exc.status_code == status.HTTP_401_UNAUTHORIZED else "HTTP_ERROR"
    return error_response(exc.status_code, str(exc.detail), code, headers=exc.headers)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Server Error",
        "INTERNAL_ERROR",
        {"detail": str(exc)} if api_config.debug else None,
    )


# Dependencies
def get_service() -> APIDatabaseService:
    if db_service is None:
        raise BackendUnavailable()
    return db_service


async def current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Dict[str, Any]:
    token = credentials.credentials if credentials else None
    return await authenticate(token, get_service().users)


async def collection_response(items: Awaitable[List[Dict[str, Any]]]) -> CollectionResponse:
    """Await a per-parent listing, degrading to an empty list without a database."""
    try:
        return CollectionResponse.from_items(await items)
    except BackendUnavailable:
        return CollectionResponse.from_items([], DEGRADED_MESSAGE)


# Service endpoints (no authentication required)
@app.get("/", tags=["Health"])
async def index():
    """Welcome message and endpoint index."""
    return {
        "success": True,
        "message": f"Welcome to the {api_config.api_title}",
        "version": api_config.api_version,
        "endpoints": {
            "books": "/api/books",
            "authors": "/api/authors",
            "publishers": "/api/publishers",
            "reviews": "/api/reviews",
            "users": "/api/users/me",
            "auth": "/auth/profile",
            "health": "/health",
            "docs": "/docs",
        },
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    db_status = "unavailable"
    if db_service:
        health_info = await db_service.health_check()
        db_status = health_info.get("status", "unknown")

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.utcnow(),
        version=api_config.api_version,
        database_status=db_status
    )


# Session endpoints
@app.get("/auth/profile", response_model=ItemResponse, tags=["Authentication"])
async def get_profile(user: Dict = Depends(current_user)):
    """Profile of the signed-in user."""
    return ItemResponse(data=await get_service().users.get_profile(user["_id"]))


@app.post("/auth/refresh", response_model=TokenResponse, tags=["Authentication"])
async def refresh_token(user: Dict = Depends(current_user)):
    """Issue a fresh token for the signed-in user."""
    token, expires_at = create_access_token(str(user["_id"]), user.get("role", "reader"))
    return TokenResponse(token=token, expires_at=expires_at)


@app.post("/auth/logout", response_model=ItemResponse, tags=["Authentication"])
async def logout():
    """Tokens are stateless; clients discard them."""
    return ItemResponse(message="Logged out successfully")


# User endpoints
@app.get("/api/users/me/stats", response_model=ItemResponse, tags=["Users"])
async def get_my_stats(user: Dict = Depends(current_user)):
    return ItemResponse(data=await get_service().users.get_user_stats(user["_id"]))


@app.post("/api/users/me/favorites/{book_id}", response_model=ItemResponse, tags=["Users"])
async def add_favorite(book_id: str, user: Dict = Depends(current_user)):
    return ItemResponse(data=await get_service().users.add_favorite(user["_id"], book_id))


@app.delete("/api/users/me/favorites/{book_id}", response_model=ItemResponse, tags=["Users"])
async def remove_favorite(book_id: str, user: Dict = Depends(current_user)):
    return ItemResponse(data=await get_service().users.remove_favorite(user["_id"], book_id))


@app.put("/api/users/me/reading-history/{book_id}", response_model=ItemResponse, tags=["Users"])
async def update_reading_history(book_id: str, progress: ReadingProgressUpdate, user: Dict = Depends(current_user)):
    return ItemResponse(data=await get_service().users.update_reading_history(user["_id"], book_id, progress))


# Books endpoints
@app.get("/api/books", response_model=ListResponse, tags=["Books"])
async def list_books(request: Request):
    """
    List books.

    - **search**: Full-text search over title and description
    - **author**, **publisher**: Filter by reference id
    - **genre**, **status**, **language**: Exact filters
    - **sortBy**: title, publication_date, average_rating, rating_count, price, pages, created_at
    - **sortOrder**: asc or desc
    - **page**, **limit**: Pagination (limit 1-100, default 10)
    """
    result = await get_service().books.list_books(dict(request.query_params))
    return ListResponse.from_result(result)


@app.get("/api/books/author/{author_id}", response_model=CollectionResponse, tags=["Books"])
async def list_books_by_author(author_id: str):
    return await collection_response(get_service().books.list_books_by_author(author_id))


@app.get("/api/books/{book_id}", response_model=ItemResponse, tags=["Books"])
async def get_book(book_id: str):
    return ItemResponse(data=await get_service().books.get_book(book_id))


@app.post("/api/books", response_model=ItemResponse, status_code=status.HTTP_201_CREATED, tags=["Books"])
async def create_book(payload: BookCreate, user: Dict = Depends(current_user)):
    return ItemResponse(data=await get_service().books.create_book(payload, str(user["_id"])))


@app.put("/api/books/{book_id}", response_model=ItemResponse, tags=["Books"])
async def update_book(book_id: str, payload: BookUpdate, user: Dict = Depends(current_user)):
    return ItemResponse(data=await get_service().books.update_book(book_id, payload))


@app.delete("/api/books/{book_id}", response_model=ItemResponse, tags=["Books"])
async def delete_book(book_id: str, user: Dict = Depends(current_user)):
    removed = await get_service().books.delete_book(book_id)
    return ItemResponse(data=removed, message="Book deleted successfully")


# Authors endpoints
@app.get("/api/authors", response_model=ListResponse, tags=["Authors"])
async def list_authors(request: Request):
    """
    List authors.

    - **search**: Full-text search over names and bio
    - **genre**, **status**: Exact filters
    - **nationality**: Case-insensitive exact match
    - **sortBy**: first_name, last_name, birth_date, average_rating, created_at
    """
    result = await get_service().authors.list_authors(dict(request.query_params))
    return ListResponse.from_result(result)


@app.get("/api/authors/genre/{genre}", response_model=CollectionResponse, tags=["Authors"])
async def list_authors_by_genre(genre: str):
    return await collection_response(get_service().authors.list_authors_by_genre(genre))


@app.get("/api/authors/{author_id}", response_model=ItemResponse, tags=["Authors"])
async def get_author(author_id: str):
    return ItemResponse(data=await get_service().authors.get_author(author_id))


@app.get("/api/authors/{author_id}/stats", response_model=ItemResponse, tags=["Authors"])
async def get_author_stats(author_id: str):
    return ItemResponse(data=await get_service().authors.get_author_stats(author_id))


@app.post("/api/authors", response_model=ItemResponse, status_code=status.HTTP_201_CREATED, tags=["Authors"])
async def create_author(payload: AuthorCreate, user: Dict = Depends(current_user)):
    return ItemResponse(data=await get_service().authors.create_author(payload, str(user["_id"])))


@app.put("/api/authors/{author_id}", response_model=ItemResponse, tags=["Authors"])
async def update_author(author_id: str, payload: AuthorUpdate, user: Dict = Depends(current_user)):
    return ItemResponse(data=await get_service().authors.update_author(author_id, payload))


@app.delete("/api/authors/{author_id}", response_model=ItemResponse, tags=["Authors"])
async def delete_author(author_id: str, user: Dict = Depends(current_user)):
    removed = await get_service().authors.delete_author(author_id)
    return ItemResponse(data=removed, message="Author deleted successfully")


# Publishers endpoints
@app.get("/api/publishers", response_model=ListResponse, tags=["Publishers"])
async def list_publishers(request: Request):
    """
    List publishers.

    - **search**: Full-text search over name and description
    - **genre**, **status**: Exact filters
    - **foundedAfter**: Founded in or after the given year
    - **sortBy**: name, founded_year, created_at
    """
    result = await get_service().publishers.list_publishers(dict(request.query_params))
    return ListResponse.from_result(result)


@app.get("/api/publishers/genre/{genre}", response_model=CollectionResponse, tags=["Publishers"])
async def list_publishers_by_genre(genre: str):
    return await collection_response(get_service().publishers.list_publishers_by_genre(genre))


@app.get("/api/publishers/{publisher_id}", response_model=ItemResponse, tags=["Publishers"])
async def get_publisher(publisher_id: str):
    return ItemResponse(data=await get_service().publishers.get_publisher(publisher_id))


@app.get("/api/publishers/{publisher_id}/books", response_model=CollectionResponse, tags=["Publishers"])
async def list_publisher_books(publisher_id: str):
    return await collection_response(get_service().publishers.list_publisher_books(publisher_id))


@app.get("/api/publishers/{publisher_id}/stats", response_model=ItemResponse, tags=["Publishers"])
async def get_publisher_stats(publisher_id: str):
    return ItemResponse(data=await get_service().publishers.get_publisher_stats(publisher_id))


@app.post("/api/publishers", response_model=ItemResponse, status_code=status.HTTP_201_CREATED, tags=["Publishers"])
async def create_publisher(payload: PublisherCreate, user: Dict = Depends(current_user)):
    return ItemResponse(data=await get_service().publishers.create_publisher(payload, str(user["_id"])))


@app.put("/api/publishers/{publisher_id}", response_model=ItemResponse, tags=["Publishers"])
async def update_publisher(publisher_id: str, payload: PublisherUpdate, user: Dict = Depends(current_user)):
    return ItemResponse(data=await get_service().publishers.update_publisher(publisher_id, payload))


@app.delete("/api/publishers/{publisher_id}", response_model=ItemResponse, tags=["Publishers"])
async def delete_publisher(publisher_id: str, user: Dict = Depends(current_user)):
    removed = await get_service().publishers.delete_publisher(publisher_id)
    return ItemResponse(data=removed, message="Publisher deleted successfully")


# Reviews endpoints
@app.get("/api/reviews", response_model=ListResponse, tags=["Reviews"])
async def list_reviews(request: Request):
    """
    List reviews.

    - **search**: Case-insensitive match in title or content
    - **book**, **author**, **reviewer**: Filter by reference id
    - **rating**: Exact rating 1-5
    - **status**: Moderation status
    - **sortBy**: title, rating, helpful, created_at
    """
    result = await get_service().reviews.list_reviews(dict(request.query_params))
    return ListResponse.from_result(result)


@app.get("/api/reviews/book/{book_id}", response_model=CollectionResponse, tags=["Reviews"])
async def list_book_reviews(book_id: str):
    target = parse_target(TargetKind.BOOK.value, book_id)
    return await collection_response(get_service().reviews.list_target_reviews(target))


@app.get("/api/reviews/author/{author_id}", response_model=CollectionResponse, tags=["Reviews"])
async def list_author_reviews(author_id: str):
    target = parse_target(TargetKind.AUTHOR.value, author_id)
    return await collection_response(get_service().reviews.list_target_reviews(target))


@app.get("/api/reviews/{kind}/{target_id}/stats", response_model=ItemResponse, tags=["Reviews"])
async def get_review_stats(kind: str, target_id: str):
    """Average, count and per-star distribution of Published reviews."""
    stats = await get_service().reviews.get_review_stats(parse_target(kind, target_id))
    return ItemResponse(data=stats.model_dump())


@app.get("/api/reviews/{review_id}", response_model=ItemResponse, tags=["Reviews"])
async def get_review(review_id: str):
    return ItemResponse(data=await get_service().reviews.get_review(review_id))


@app.post("/api/reviews", response_model=ItemResponse, status_code=status.HTTP_201_CREATED, tags=["Reviews"])
async def create_review(payload: ReviewCreate, user: Dict = Depends(current_user)):
    return ItemResponse(data=await get_service().reviews.create_review(payload, user))


@app.put("/api/reviews/{review_id}", response_model=ItemResponse, tags=["Reviews"])
async def update_review(review_id: str, payload: ReviewUpdate, user: Dict = Depends(current_user)):
    return ItemResponse(data=await get_service().reviews.update_review(review_id, payload, user))


@app.delete("/api/reviews/{review_id}", response_model=ItemResponse, tags=["Reviews"])
async def delete_review(review_id: str, user: Dict = Depends(current_user)):
    await get_service().reviews.delete_review(review_id, user)
    return ItemResponse(message="Review deleted successfully")


@app.post("/api/reviews/{review_id}/helpful", response_model=ItemResponse, tags=["Reviews"])
async def mark_review_helpful(review_id: str):
    return ItemResponse(data=await get_service().reviews.mark_helpful(review_id))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=api_config.host,
        port=api_config.port,
        reload=api_config.debug,
        log_level="info"
    )
