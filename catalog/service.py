"""
Shared plumbing for the entity services.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Tuple

import structlog
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import BaseModel

from catalog.database import MongoDBManager, storage_guard, to_object_id, to_storage
from catalog.exceptions import NotFound, ValidationFailure
from catalog.ratings import AggregateMaintainer
from catalog.repository import CatalogRepository

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.utcnow()


def new_document(payload: BaseModel) -> Dict[str, Any]:
    """Storage form of a create payload; unset optional fields are omitted."""
    return {key: value for key, value in to_storage(payload.model_dump()).items() if value is not None}


def split_changes(
    payload: BaseModel, required: Iterable[str] = ()
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """
    Turn a partial update payload into ``$set`` and ``$unset`` documents.

    Fields explicitly set to null are removed from the stored document,
    except required fields, which cannot be cleared.

    Raises:
        ValidationFailure: If a required field is set to null
    """
    to_set: Dict[str, Any] = {}
    to_unset: Dict[str, str] = {}
    for key, value in to_storage(payload.model_dump(exclude_unset=True)).items():
        if value is None:
            if key in required:
                raise ValidationFailure(key, "cannot be empty")
            to_unset[key] = ""
        else:
            to_set[key] = value
    return to_set, to_unset


class CatalogService:
    """Base class for services owning one collection."""

    collection_name: str = ""
    label: str = ""

    def __init__(
        self,
        db_manager: MongoDBManager,
        repository: Optional[CatalogRepository] = None,
        maintainer: Optional[AggregateMaintainer] = None,
    ):
        self.db_manager = db_manager
        self.repository = repository or CatalogRepository(db_manager)
        self.maintainer = maintainer or AggregateMaintainer(db_manager)

    @property
    def collection(self) -> AsyncIOMotorCollection:
        return self.db_manager.collection(self.collection_name)

    async def _load(self, identifier: Any) -> Dict[str, Any]:
        return await self.repository.get_document(self.collection_name, identifier, self.label)

    async def _require_reference(self, collection_name: str, identifier: Any, label: str) -> ObjectId:
        """
        Resolve a referenced entity id.

        Raises:
            NotFound: If the id is malformed or nothing matches
        """
        object_id = to_object_id(identifier)
        if object_id is None or not await self.repository.exists(collection_name, object_id):
            raise NotFound(label, identifier)
        return object_id

    async def _insert(self, document: Dict[str, Any], conflict_message: Optional[str] = None) -> ObjectId:
        now = utcnow()
        document.setdefault("created_at", now)
        document.setdefault("updated_at", now)
        with storage_guard(f"insert_{self.collection_name}", conflict_message):
            result = await self.collection.insert_one(document)
        document["_id"] = result.inserted_id
        return result.inserted_id

    async def _apply_update(
        self,
        object_id: ObjectId,
        to_set: Dict[str, Any],
        to_unset: Optional[Dict[str, str]] = None,
        conflict_message: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Write the changes and return the updated document."""
        update: Dict[str, Any] = {"$set": {**to_set, "updated_at": utcnow()}}
        if to_unset:
            update["$unset"] = to_unset
        with storage_guard(f"update_{self.collection_name}", conflict_message):
            await self.collection.update_one({"_id": object_id}, update)
            document = await self.collection.find_one({"_id": object_id})
        if document is None:
            raise NotFound(self.label, str(object_id))
        return document
