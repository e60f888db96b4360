import logging
from functools import wraps
from typing import Generic, TypeVar, Any, Dict, List, Optional, Tuple
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError
from pharmastock.errors import PersistenceFailure
from pharmastock.models.base import MongoModel, to_bson

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=MongoModel)


def persistence_guard(func):
    """
    Translate driver errors into PersistenceFailure so callers only ever
    see the core's typed failures.
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as e:
            logger.error(f"{func.__qualname__} failed: {e}")
            raise PersistenceFailure(f"Store operation failed: {e}") from e
    return wrapper


class BaseRepository(Generic[T]):
    def __init__(self, collection: AsyncIOMotorCollection, model_cls: type[T]):
        self.collection = collection
        self.model_cls = model_cls

    @persistence_guard
    async def get_by_field(self, field: str, value: Any) -> Optional[T]:
        """Get a document by a specific field."""
        doc = await self.collection.find_one({field: value})
        return self.model_cls.from_mongo(doc) if doc else None

    @persistence_guard
    async def list(self,
                   filter: Optional[Dict[str, Any]] = None,
                   sort: Optional[List[Tuple[str, int]]] = None,
                   skip: int = 0,
                   limit: int = 0) -> List[T]:
        """List documents with optional filter, sort and pagination (limit 0 = all)."""
        cursor = self.collection.find(to_bson(filter or {}))
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        docs = await cursor.to_list(length=limit or None)
        return [self.model_cls.from_mongo(doc) for doc in docs]

    @persistence_guard
    async def create(self, model: T) -> T:
        """Create a new document."""
        data = model.to_mongo()
        result = await self.collection.insert_one(data)
        model.id = str(result.inserted_id)
        return model
