"""
Pydantic models for catalog entities.

Enumerations shared by several entities (genres, languages, statuses) are
declared once here and reused by every model that needs them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, Field, field_validator

URL_PATTERN = r"^https?://.+"
EMAIL_PATTERN = r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$"


class Genre(str, Enum):
    """Genre tags shared by books, authors and publishers."""
    FICTION = "Fiction"
    NON_FICTION = "Non-Fiction"
    MYSTERY = "Mystery"
    ROMANCE = "Romance"
    SCIENCE_FICTION = "Science Fiction"
    FANTASY = "Fantasy"
    BIOGRAPHY = "Biography"
    HISTORY = "History"
    SELF_HELP = "Self-Help"
    POETRY = "Poetry"
    DRAMA = "Drama"
    THRILLER = "Thriller"
    HORROR = "Horror"
    CHILDREN = "Children"
    YOUNG_ADULT = "Young Adult"
    PHILOSOPHY = "Philosophy"
    SCIENCE = "Science"
    TECHNOLOGY = "Technology"
    ACADEMIC = "Academic"
    OTHER = "Other"


class Language(str, Enum):
    """Languages for books and authors."""
    ENGLISH = "English"
    SPANISH = "Spanish"
    FRENCH = "French"
    GERMAN = "German"
    ITALIAN = "Italian"
    PORTUGUESE = "Portuguese"
    OTHER = "Other"


class BookFormat(str, Enum):
    """Physical or digital book format."""
    HARDCOVER = "Hardcover"
    PAPERBACK = "Paperback"
    EBOOK = "E-book"
    AUDIOBOOK = "Audiobook"


class BookStatus(str, Enum):
    """Book lifecycle status."""
    PUBLISHED = "Published"
    UPCOMING = "Upcoming"
    OUT_OF_PRINT = "Out of Print"
    CANCELLED = "Cancelled"


class AuthorStatus(str, Enum):
    """Author status."""
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    DECEASED = "Deceased"
    RETIRED = "Retired"


class PublisherStatus(str, Enum):
    """Publisher status."""
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    ACQUIRED = "Acquired"
    DEFUNCT = "Defunct"


class ReviewStatus(str, Enum):
    """Review moderation status. Only PUBLISHED reviews count towards ratings."""
    PUBLISHED = "Published"
    PENDING = "Pending"
    HIDDEN = "Hidden"
    FLAGGED = "Flagged"


class UserRole(str, Enum):
    """User roles. Admins act as review moderators."""
    READER = "reader"
    AUTHOR = "author"
    ADMIN = "admin"


class ReadingStatus(str, Enum):
    """Reading history entry status."""
    WANT_TO_READ = "want_to_read"
    CURRENTLY_READING = "currently_reading"
    READ = "read"


class TargetKind(str, Enum):
    """Kinds of entity a review can be about."""
    BOOK = "book"
    AUTHOR = "author"


class ChangeKind(str, Enum):
    """Kinds of review mutation that trigger aggregate maintenance."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def _current_year() -> int:
    return datetime.utcnow().year


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _dedupe(values: List[Any]) -> List[Any]:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def _normalize_isbn(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip().upper()
    return value or None


def _check_founded_year(value: Optional[int]) -> Optional[int]:
    if value is not None and value > _current_year():
        raise ValueError("Founded year cannot be in the future")
    return value


class ReviewTarget(BaseModel):
    """
    The single Book or Author a review is about.

    Stored as a ``{"kind": ..., "id": ObjectId}`` sub-document so a review
    can never point at both or neither.
    """
    kind: TargetKind = Field(..., description="Target entity kind")
    id: str = Field(..., description="Target entity identifier")

    model_config = {"frozen": True}

    @property
    def collection_name(self) -> str:
        return "books" if self.kind == TargetKind.BOOK else "authors"

    def to_document(self) -> Dict[str, Any]:
        """Storage form; callers must have validated the identifier."""
        return {"kind": self.kind.value, "id": ObjectId(self.id)}

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "ReviewTarget":
        return cls(kind=document["kind"], id=str(document["id"]))


# Shared sub-documents

class SocialMedia(BaseModel):
    """Social media handles or links."""
    twitter: Optional[str] = None
    facebook: Optional[str] = None
    instagram: Optional[str] = None
    linkedin: Optional[str] = None

    model_config = {"str_strip_whitespace": True}

    @field_validator("twitter", "facebook", "instagram", "linkedin")
    def lowercase_handles(cls, v):
        return v.lower() if v else v


class ContactFields(BaseModel):
    """Contact links shared by authors and publishers."""
    website: Optional[str] = Field(None, pattern=URL_PATTERN, description="Website URL")
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, description="Contact email")
    phone: Optional[str] = Field(None, description="Contact phone")

    model_config = {"str_strip_whitespace": True}

    @field_validator("website", "email", mode="before")
    def lowercase_contact(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


# Books

class BookCreate(BaseModel):
    """Payload for creating a book."""
    title: str = Field(..., min_length=1, max_length=200, description="Book title")
    isbn: Optional[str] = Field(None, description="Unique catalog identifier")
    description: Optional[str] = Field(None, max_length=2000)
    author: str = Field(..., description="Author identifier")
    publisher: Optional[str] = Field(None, description="Publisher identifier")
    publication_date: datetime = Field(..., description="Publication date")
    genres: List[Genre] = Field(default_factory=list)
    language: Language = Field(Language.ENGLISH)
    pages: Optional[int] = Field(None, ge=1)
    format: BookFormat = Field(BookFormat.PAPERBACK)
    price: Optional[float] = Field(None, ge=0)
    cover_image: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    status: BookStatus = Field(BookStatus.PUBLISHED)

    model_config = {"str_strip_whitespace": True}

    @field_validator("isbn")
    def normalize_isbn(cls, v):
        return _normalize_isbn(v)

    @field_validator("genres")
    def unique_genres(cls, v):
        return _dedupe(v)

    @field_validator("tags")
    def clean_tags(cls, v):
        return _dedupe([tag.strip() for tag in v if tag and tag.strip()])


class BookUpdate(BaseModel):
    """Partial update for a book. Derived rating fields are not writable."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    isbn: Optional[str] = None
    description: Optional[str] = Field(None, max_length=2000)
    author: Optional[str] = None
    publisher: Optional[str] = None
    publication_date: Optional[datetime] = None
    genres: Optional[List[Genre]] = None
    language: Optional[Language] = None
    pages: Optional[int] = Field(None, ge=1)
    format: Optional[BookFormat] = None
    price: Optional[float] = Field(None, ge=0)
    cover_image: Optional[str] = None
    tags: Optional[List[str]] = None
    status: Optional[BookStatus] = None

    model_config = {"str_strip_whitespace": True}

    @field_validator("isbn")
    def normalize_isbn(cls, v):
        return _normalize_isbn(v)

    @field_validator("genres")
    def unique_genres(cls, v):
        return _dedupe(v) if v is not None else v


# Authors

class Award(BaseModel):
    """Literary award."""
    name: str = Field(..., min_length=1)
    year: int = Field(..., ge=1000)
    description: Optional[str] = None

    model_config = {"str_strip_whitespace": True}

    @field_validator("year")
    def not_in_future(cls, v):
        if v > _current_year():
            raise ValueError("Award year cannot be in the future")
        return v


class AuthorCreate(ContactFields):
    """Payload for creating an author."""
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    pen_name: Optional[str] = Field(None, max_length=100)
    bio: Optional[str] = Field(None, max_length=2000)
    birth_date: Optional[datetime] = None
    death_date: Optional[datetime] = None
    nationality: Optional[str] = Field(None, max_length=50)
    profile_image: Optional[str] = None
    genres: List[Genre] = Field(default_factory=list)
    languages: List[Language] = Field(default_factory=list)
    awards: List[Award] = Field(default_factory=list)
    social_media: SocialMedia = Field(default_factory=SocialMedia)
    status: AuthorStatus = Field(AuthorStatus.ACTIVE)

    @field_validator("genres", "languages")
    def unique_values(cls, v):
        return _dedupe(v)

    @field_validator("death_date")
    def death_after_birth(cls, v, info):
        birth = info.data.get("birth_date")
        if v is not None and birth is not None and _naive_utc(v) < _naive_utc(birth):
            raise ValueError("Death date cannot be before birth date")
        return v


class AuthorUpdate(ContactFields):
    """Partial update for an author."""
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    pen_name: Optional[str] = Field(None, max_length=100)
    bio: Optional[str] = Field(None, max_length=2000)
    birth_date: Optional[datetime] = None
    death_date: Optional[datetime] = None
    nationality: Optional[str] = Field(None, max_length=50)
    profile_image: Optional[str] = None
    genres: Optional[List[Genre]] = None
    languages: Optional[List[Language]] = None
    awards: Optional[List[Award]] = None
    social_media: Optional[SocialMedia] = None
    status: Optional[AuthorStatus] = None


# Publishers

class Headquarters(BaseModel):
    """Publisher headquarters location."""
    city: Optional[str] = Field(None, max_length=50)
    country: Optional[str] = Field(None, max_length=50)

    model_config = {"str_strip_whitespace": True}


class Imprint(BaseModel):
    """Publisher imprint."""
    name: str = Field(..., min_length=1)
    description: Optional[str] = None

    model_config = {"str_strip_whitespace": True}


class PublisherCreate(ContactFields):
    """Payload for creating a publisher."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    founded_year: Optional[int] = Field(None, ge=1400)
    headquarters: Headquarters = Field(default_factory=Headquarters)
    logo: Optional[str] = None
    genres: List[Genre] = Field(default_factory=list)
    imprints: List[Imprint] = Field(default_factory=list)
    social_media: SocialMedia = Field(default_factory=SocialMedia)
    status: PublisherStatus = Field(PublisherStatus.ACTIVE)

    @field_validator("founded_year")
    def founded_not_in_future(cls, v):
        return _check_founded_year(v)

    @field_validator("genres")
    def unique_genres(cls, v):
        return _dedupe(v)


class PublisherUpdate(ContactFields):
    """Partial update for a publisher."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    founded_year: Optional[int] = Field(None, ge=1400)
    headquarters: Optional[Headquarters] = None
    logo: Optional[str] = None
    genres: Optional[List[Genre]] = None
    imprints: Optional[List[Imprint]] = None
    social_media: Optional[SocialMedia] = None
    status: Optional[PublisherStatus] = None

    @field_validator("founded_year")
    def founded_not_in_future(cls, v):
        return _check_founded_year(v)


# Reviews

class ReviewCreate(BaseModel):
    """Payload for creating a review. The reviewer comes from the session."""
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1, max_length=5000)
    rating: int = Field(..., ge=1, le=5, description="Rating from 1 to 5")
    target: ReviewTarget = Field(..., description="Reviewed book or author")
    status: ReviewStatus = Field(ReviewStatus.PUBLISHED)

    model_config = {"str_strip_whitespace": True}


class ReviewUpdate(BaseModel):
    """Partial update for a review."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, min_length=1, max_length=5000)
    rating: Optional[int] = Field(None, ge=1, le=5)
    target: Optional[ReviewTarget] = None
    status: Optional[ReviewStatus] = None
    moderation_reason: Optional[str] = Field(None, max_length=500)

    model_config = {"str_strip_whitespace": True}


class RatingSummary(BaseModel):
    """Denormalized rating aggregate stored on books and authors."""
    average_rating: float = Field(0.0, ge=0, le=5)
    rating_count: int = Field(0, ge=0)


class ReviewStats(BaseModel):
    """Rating statistics over the published reviews of one target."""
    average_rating: float = Field(0.0, ge=0, le=5)
    total_reviews: int = Field(0, ge=0)
    rating_distribution: Dict[str, int] = Field(
        default_factory=lambda: {str(star): 0 for star in range(1, 6)}
    )


# Users

class Notifications(BaseModel):
    email: bool = True
    push: bool = False


class Preferences(BaseModel):
    """User interface preferences."""
    theme: str = Field("light", pattern=r"^(light|dark)$")
    language: str = Field("en", pattern=r"^(en|es|fr|de|it|pt)$")
    notifications: Notifications = Field(default_factory=Notifications)


class IdentityProfile(BaseModel):
    """Profile handed over by the external identity provider."""
    external_id: str = Field(..., min_length=1, description="OAuth subject identifier")
    email: str = Field(..., pattern=EMAIL_PATTERN)
    name: str = Field(..., min_length=1, max_length=100)
    picture: Optional[str] = None

    model_config = {"str_strip_whitespace": True}

    @field_validator("email", mode="before")
    def lowercase_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class ReadingProgressUpdate(BaseModel):
    """Upsert payload for one reading history entry."""
    status: ReadingStatus = Field(ReadingStatus.WANT_TO_READ)
    progress: int = Field(0, ge=0, le=100)


# Query results

class Pagination(BaseModel):
    """Pagination metadata for list responses."""
    current: int = Field(..., ge=1, description="Current page number")
    total: int = Field(..., ge=0, description="Total number of pages")
    count: int = Field(..., ge=0, description="Items on this page")


class QueryResult(BaseModel):
    """One page of a list query."""
    items: List[Dict[str, Any]] = Field(default_factory=list)
    count: int = Field(0, ge=0)
    pagination: Pagination
    message: Optional[str] = None

    @classmethod
    def empty(cls, page: int = 1, message: Optional[str] = None) -> "QueryResult":
        return cls(items=[], count=0, pagination=Pagination(current=page, total=0, count=0), message=message)
