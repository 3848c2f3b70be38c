"""
Query execution for list endpoints.

Runs a BuiltQuery against its collection, resolves declared references into
summaries and shapes the page into a QueryResult. List reads degrade to an
empty page when the database is unreachable.
"""

import math
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import structlog
from bson import ObjectId

from catalog.database import MongoDBManager, serialize_document, storage_guard, to_object_id
from catalog.exceptions import BackendUnavailable, NotFound
from catalog.models import Pagination, QueryResult
from catalog.query_builder import RESOURCE_SPECS, PopulateSpec, QueryBuilder, ResourceQuerySpec

logger = structlog.get_logger(__name__)

DEGRADED_MESSAGE = "Database not connected - returning empty results"

Presenter = Callable[[Dict[str, Any]], Dict[str, Any]]


def get_path(document: Mapping[str, Any], path: str) -> Any:
    """Read a dotted path such as ``target.id`` from a document."""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


class CatalogRepository:
    """Executes list and lookup queries for the catalog collections."""

    def __init__(self, db_manager: MongoDBManager, query_builder: Optional[QueryBuilder] = None):
        self.db_manager = db_manager
        self.query_builder = query_builder or QueryBuilder()

    async def query_list(
        self,
        resource: str,
        params: Mapping[str, Any],
        presenter: Optional[Presenter] = None,
        base_filter: Optional[Dict[str, Any]] = None,
    ) -> QueryResult:
        """
        Fetch one page of a resource.

        Args:
            resource: Resource name (books, authors, publishers, reviews)
            params: Raw request parameters
            presenter: Optional hook adding computed fields to each document
            base_filter: Fixed constraint ANDed with the request filters

        Returns:
            QueryResult with items, page item count and pagination metadata
        """
        spec = RESOURCE_SPECS[resource]
        built = self.query_builder.build(spec, params)
        query = built.filter
        if base_filter:
            query = {"$and": [base_filter, query]} if query else dict(base_filter)

        try:
            with storage_guard(f"list_{resource}"):
                collection = self.db_manager.collection(spec.collection)
                total = await collection.count_documents(query)
                documents: List[Dict[str, Any]] = []
                # pages past the end never reach the driver; their skip may exceed an int64
                if built.skip < total:
                    projection = {name: 1 for name in spec.projection} if spec.projection else None
                    cursor = collection.find(query, projection).sort(built.sort).skip(built.skip).limit(built.limit)
                    documents = await cursor.to_list(length=built.limit)
                    await self.populate(documents, spec.populate)
        except BackendUnavailable:
            logger.warning("Returning degraded list result", resource=resource)
            return QueryResult.empty(page=built.page, message=DEGRADED_MESSAGE)

        items = [self._shape(document, presenter) for document in documents]
        return QueryResult(
            items=items,
            count=len(items),
            pagination=Pagination(
                current=built.page,
                total=math.ceil(total / built.limit),
                count=len(items),
            ),
        )

    async def find_all(
        self,
        resource: str,
        query: Dict[str, Any],
        sort: Sequence[tuple],
        populate: Sequence[PopulateSpec] = (),
        projection: Optional[Sequence[str]] = None,
        presenter: Optional[Presenter] = None,
    ) -> List[Dict[str, Any]]:
        """
        Unpaginated listing used by the per-parent endpoints.

        Raises:
            BackendUnavailable: If the database cannot be reached
        """
        spec = RESOURCE_SPECS[resource]
        with storage_guard(f"find_all_{resource}"):
            collection = self.db_manager.collection(spec.collection)
            fields = {name: 1 for name in projection} if projection else None
            documents = await collection.find(query, fields).sort(list(sort)).to_list(length=None)
            await self.populate(documents, populate)
        return [self._shape(document, presenter) for document in documents]

    async def get_document(self, collection_name: str, identifier: Any, label: str) -> Dict[str, Any]:
        """
        Load one raw document by id.

        Raises:
            NotFound: If the id is malformed or no document matches
        """
        object_id = to_object_id(identifier)
        if object_id is None:
            raise NotFound(label, identifier)
        with storage_guard(f"get_{collection_name}"):
            document = await self.db_manager.collection(collection_name).find_one({"_id": object_id})
        if document is None:
            raise NotFound(label, identifier)
        return document

    async def exists(self, collection_name: str, object_id: ObjectId) -> bool:
        with storage_guard(f"exists_{collection_name}"):
            document = await self.db_manager.collection(collection_name).find_one(
                {"_id": object_id}, {"_id": 1}
            )
        return document is not None

    async def populate(self, documents: List[Dict[str, Any]], specs: Sequence[PopulateSpec]) -> None:
        """
        Replace stored references with summaries of the referenced documents.

        One ``$in`` query is issued per reference field. Dangling references
        resolve to None.
        """
        for spec in specs:
            matching = [doc for doc in documents if self._applies(spec, doc)]
            ids = {get_path(doc, spec.field) for doc in matching}
            ids.discard(None)
            if not ids:
                continue

            projection = {name: 1 for name in spec.fields}
            cursor = self.db_manager.collection(spec.collection).find({"_id": {"$in": list(ids)}}, projection)
            found = {doc["_id"]: doc for doc in await cursor.to_list(length=None)}

            for doc in matching:
                reference = get_path(doc, spec.field)
                if reference is not None:
                    doc[spec.target_key] = found.get(reference)

    async def present(
        self,
        document: Dict[str, Any],
        populate: Sequence[PopulateSpec] = (),
        presenter: Optional[Presenter] = None,
    ) -> Dict[str, Any]:
        """Populate and serialize a single document."""
        with storage_guard("present"):
            await self.populate([document], populate)
        return self._shape(document, presenter)

    @staticmethod
    def _applies(spec: PopulateSpec, document: Mapping[str, Any]) -> bool:
        if spec.when is None:
            return True
        path, expected = spec.when
        return get_path(document, path) == expected

    @staticmethod
    def _shape(document: Dict[str, Any], presenter: Optional[Presenter]) -> Dict[str, Any]:
        if presenter is not None:
            document = presenter(document)
        return serialize_document(document)
