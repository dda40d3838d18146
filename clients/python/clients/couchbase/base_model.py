import uuid
from datetime import datetime, timezone
from typing import Optional, TypeVar, Generic, List, ClassVar
from pydantic import BaseModel
from couchbase.exceptions import DocumentNotFoundException
from couchbase.options import ReplaceOptions
from .keyspace import Keyspace, get_keyspace

class BaseCouchbaseEntityData(BaseModel):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by_user_id: Optional[str] = None

DataT = TypeVar("DataT", bound=BaseCouchbaseEntityData)
T = TypeVar("T", bound="BaseModelCouchbase")

class BaseModelCouchbase(BaseModel, Generic[DataT]):
    id: str
    data: DataT
    cas: Optional[int] = None

    _collection_name: ClassVar[str] = ""

    @staticmethod
    def to_document(data: DataT) -> dict:
        """Serialize entity data for storage (datetimes, decimals and enums as JSON)."""
        return data.model_dump(mode='json')

    @classmethod
    def from_rows(cls: type[T], rows: List[dict]) -> List[T]:
        """Build entities from ``SELECT META().id, * FROM ...`` query rows."""
        return [
            cls(id=row["id"], data=row[cls._collection_name])
            for row in rows if row.get(cls._collection_name)
        ]

    @classmethod
    def get_keyspace(cls) -> Keyspace:
        if not cls._collection_name:
            raise ValueError(f"_collection_name not set for {cls.__name__}")
        return get_keyspace(cls._collection_name)

    @classmethod
    async def get(cls: type[T], id: str) -> Optional[T]:
        try:
            collection = await cls.get_keyspace().get_collection()
            result = await collection.get(id)
            data = result.content_as[dict]
            return cls(id=id, data=data, cas=result.cas)
        except DocumentNotFoundException:
            return None

    @classmethod
    async def create(cls: type[T], data: DataT, key: Optional[str] = None, user_id: Optional[str] = None) -> T:
        if key is None:
            key = str(uuid.uuid4())

        now = datetime.now(timezone.utc)
        if data.created_at is None:
            data.created_at = now
        data.updated_at = now

        if user_id:
            data.created_by_user_id = user_id

        doc = cls.to_document(data)
        result = await cls.get_keyspace().insert(doc, key=key)
        return cls(id=key, data=data, cas=result.cas)

    @classmethod
    async def update(cls: type[T], item: T) -> T:
        """Replace the stored document, guarded by ``item.cas`` when present.

        Raises ``CASMismatchException`` if the document changed since it was read.
        """
        collection = await cls.get_keyspace().get_collection()

        item.data.updated_at = datetime.now(timezone.utc)

        doc = cls.to_document(item.data)
        if item.cas:
            result = await collection.replace(item.id, doc, ReplaceOptions(cas=item.cas))
        else:
            result = await collection.replace(item.id, doc)
        item.cas = result.cas
        return item
