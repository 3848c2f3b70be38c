"""
List query construction shared by every listable resource.

A ResourceQuerySpec declares which request parameters a resource accepts and
how each one maps onto the stored documents. QueryBuilder turns a flat
mapping of optional request parameters into a MongoDB filter, a sort order
and a page window. All filters are combined with logical AND and sorting is
restricted to a per-resource allow-list, so client input can never inject
arbitrary query structure.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import structlog
from pymongo import ASCENDING, DESCENDING

from catalog.database import to_object_id
from catalog.exceptions import ValidationFailure

logger = structlog.get_logger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100

SEARCH_TEXT = "text"
SEARCH_REGEX = "regex"


@dataclass(frozen=True)
class ReferenceFilter:
    """Exact match on a stored ObjectId reference, plus fixed constraints."""
    field: str
    constraints: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IntegerFilter:
    """Integer-valued parameter compared with ``operator`` against ``field``."""
    field: str
    operator: str = "$eq"
    minimum: Optional[int] = None
    maximum: Optional[int] = None


@dataclass(frozen=True)
class PopulateSpec:
    """
    Reference resolved into a summary of the referenced document.

    ``when`` restricts population to documents whose field at ``when[0]``
    equals ``when[1]`` (used for the polymorphic review target).
    """
    field: str
    collection: str
    fields: Tuple[str, ...]
    into: Optional[str] = None
    when: Optional[Tuple[str, str]] = None

    @property
    def target_key(self) -> str:
        return self.into or self.field


@dataclass(frozen=True)
class ResourceQuerySpec:
    """Query configuration for one listable resource."""
    name: str
    collection: str
    search_mode: str
    text_fields: Tuple[str, ...]
    sort_fields: Tuple[str, ...]
    reference_filters: Mapping[str, ReferenceFilter] = field(default_factory=dict)
    membership_filters: Mapping[str, str] = field(default_factory=dict)
    exact_filters: Mapping[str, str] = field(default_factory=dict)
    case_insensitive_filters: Mapping[str, str] = field(default_factory=dict)
    integer_filters: Mapping[str, IntegerFilter] = field(default_factory=dict)
    default_sort: Tuple[str, int] = ("created_at", DESCENDING)
    projection: Optional[Tuple[str, ...]] = None
    populate: Tuple[PopulateSpec, ...] = ()


@dataclass
class BuiltQuery:
    """A filter document, sort order and page window ready for execution."""
    filter: Dict[str, Any]
    sort: List[Tuple[str, int]]
    page: int
    limit: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


BOOKS = ResourceQuerySpec(
    name="books",
    collection="books",
    search_mode=SEARCH_TEXT,
    text_fields=("title", "description"),
    reference_filters={
        "author": ReferenceFilter("author"),
        "publisher": ReferenceFilter("publisher"),
    },
    membership_filters={"genre": "genres"},
    exact_filters={"status": "status", "language": "language"},
    sort_fields=(
        "title", "publication_date", "average_rating", "rating_count",
        "price", "pages", "created_at",
    ),
    populate=(
        PopulateSpec("author", "authors", ("first_name", "last_name")),
        PopulateSpec("publisher", "publishers", ("name",)),
    ),
)

AUTHORS = ResourceQuerySpec(
    name="authors",
    collection="authors",
    search_mode=SEARCH_TEXT,
    text_fields=("first_name", "last_name", "pen_name", "bio"),
    membership_filters={"genre": "genres"},
    exact_filters={"status": "status"},
    case_insensitive_filters={"nationality": "nationality"},
    sort_fields=("first_name", "last_name", "birth_date", "average_rating", "created_at"),
    projection=(
        "first_name", "last_name", "pen_name", "nationality", "genres", "status",
        "birth_date", "death_date", "profile_image", "average_rating", "rating_count", "created_at",
    ),
)

PUBLISHERS = ResourceQuerySpec(
    name="publishers",
    collection="publishers",
    search_mode=SEARCH_TEXT,
    text_fields=("name", "description"),
    membership_filters={"genre": "genres"},
    exact_filters={"status": "status"},
    integer_filters={"foundedAfter": IntegerFilter("founded_year", "$gte")},
    sort_fields=("name", "founded_year", "created_at"),
)

REVIEWS = ResourceQuerySpec(
    name="reviews",
    collection="reviews",
    search_mode=SEARCH_REGEX,
    text_fields=("title", "content"),
    reference_filters={
        "book": ReferenceFilter("target.id", {"target.kind": "book"}),
        "author": ReferenceFilter("target.id", {"target.kind": "author"}),
        "reviewer": ReferenceFilter("reviewer"),
    },
    exact_filters={"status": "status"},
    integer_filters={"rating": IntegerFilter("rating", "$eq", minimum=1, maximum=5)},
    sort_fields=("title", "rating", "helpful", "created_at"),
    populate=(
        PopulateSpec("target.id", "books", ("title", "author"), into="book", when=("target.kind", "book")),
        PopulateSpec("target.id", "authors", ("first_name", "last_name"), into="author", when=("target.kind", "author")),
        PopulateSpec("reviewer", "users", ("name",)),
    ),
)

RESOURCE_SPECS: Dict[str, ResourceQuerySpec] = {
    spec.name: spec for spec in (BOOKS, AUTHORS, PUBLISHERS, REVIEWS)
}


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_int(value: Any) -> Optional[int]:
    cleaned = _clean(value)
    if cleaned is None:
        return None
    try:
        return int(cleaned)
    except ValueError:
        return None


class QueryBuilder:
    """Builds list queries from flat request parameters."""

    def __init__(self, default_limit: int = DEFAULT_LIMIT, max_limit: int = MAX_LIMIT):
        self.default_limit = default_limit
        self.max_limit = max_limit

    def build(self, spec: ResourceQuerySpec, params: Mapping[str, Any]) -> BuiltQuery:
        """
        Build the query for one resource.

        Args:
            spec: Resource query configuration
            params: Request parameters; absent or blank values mean "no constraint"

        Returns:
            BuiltQuery with filter, sort and page window

        Raises:
            ValidationFailure: If an integer filter is malformed or out of range
        """
        return BuiltQuery(
            filter=self.build_filter(spec, params),
            sort=self.build_sort(spec, params),
            page=self.parse_page(params.get("page")),
            limit=self.parse_limit(params.get("limit")),
        )

    def build_filter(self, spec: ResourceQuerySpec, params: Mapping[str, Any]) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        clauses: List[Dict[str, Any]] = []

        search = _clean(params.get("search"))
        if search:
            if spec.search_mode == SEARCH_TEXT:
                query["$text"] = {"$search": search}
            else:
                pattern = re.escape(search)
                clauses.append({
                    "$or": [{name: {"$regex": pattern, "$options": "i"}} for name in spec.text_fields]
                })

        for param, reference in spec.reference_filters.items():
            value = _clean(params.get(param))
            if value is None:
                continue
            object_id = to_object_id(value)
            clause = dict(reference.constraints)
            # Malformed identifiers resolve to nothing rather than a storage error
            clause[reference.field] = object_id if object_id is not None else {"$in": []}
            clauses.append(clause)

        for param, stored in spec.membership_filters.items():
            value = _clean(params.get(param))
            if value is not None:
                clauses.append({stored: value})

        for param, stored in spec.exact_filters.items():
            value = _clean(params.get(param))
            if value is not None:
                clauses.append({stored: value})

        for param, stored in spec.case_insensitive_filters.items():
            value = _clean(params.get(param))
            if value is not None:
                clauses.append({stored: {"$regex": f"^{re.escape(value)}$", "$options": "i"}})

        for param, integer_filter in spec.integer_filters.items():
            clause = self._integer_clause(param, integer_filter, params.get(param))
            if clause is not None:
                clauses.append(clause)

        if len(clauses) == 1:
            query.update(clauses[0])
        elif clauses:
            query["$and"] = clauses
        return query

    def _integer_clause(
        self, param: str, integer_filter: IntegerFilter, raw: Any
    ) -> Optional[Dict[str, Any]]:
        if _clean(raw) is None:
            return None
        value = _parse_int(raw)
        if value is None:
            raise ValidationFailure(param, "must be an integer")
        if integer_filter.minimum is not None and value < integer_filter.minimum:
            raise ValidationFailure(param, f"must be at least {integer_filter.minimum}")
        if integer_filter.maximum is not None and value > integer_filter.maximum:
            raise ValidationFailure(param, f"must be at most {integer_filter.maximum}")
        if integer_filter.operator == "$eq":
            return {integer_filter.field: value}
        return {integer_filter.field: {integer_filter.operator: value}}

    def build_sort(self, spec: ResourceQuerySpec, params: Mapping[str, Any]) -> List[Tuple[str, int]]:
        """
        Build the sort order.

        Unknown sort fields fall back to the resource default. ``_id`` is
        appended in the same direction so that equal sort keys still have a
        total order and pages never overlap.
        """
        sort_by = _clean(params.get("sortBy"))
        if sort_by in spec.sort_fields:
            order = _clean(params.get("sortOrder"))
            direction = DESCENDING if order is not None and order.lower() == "desc" else ASCENDING
            field_name = sort_by
        else:
            if sort_by is not None:
                logger.debug("Ignoring unknown sort field", resource=spec.name, sort_by=sort_by)
            field_name, direction = spec.default_sort
        return [(field_name, direction), ("_id", direction)]

    def parse_page(self, raw: Any) -> int:
        page = _parse_int(raw)
        if page is None or page < 1:
            return DEFAULT_PAGE
        return page

    def parse_limit(self, raw: Any) -> int:
        limit = _parse_int(raw)
        if limit is None:
            return self.default_limit
        return max(1, min(limit, self.max_limit))
