from decimal import Decimal, DecimalException
from enum import Enum
from typing import Annotated, Any, Dict, Type, TypeVar
from pydantic import BaseModel, BeforeValidator, Field, ConfigDict
from bson import Decimal128, ObjectId

# Helper to handle ObjectId as string
PyObjectId = Annotated[str, BeforeValidator(str)]


def _decimal_from_bson(value: Any) -> Any:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return value


# Money is kept as Decimal in memory and Decimal128 in Mongo
Money = Annotated[Decimal, BeforeValidator(_decimal_from_bson)]


def fits_decimal128(value: Decimal) -> bool:
    """True when `value` converts to Decimal128 without rounding or overflow."""
    try:
        Decimal128(value)
    except DecimalException:
        return False
    return True

T = TypeVar("T", bound="MongoModel")


def to_bson(value: Any) -> Any:
    """Recursively convert values BSON cannot encode natively."""
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_bson(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_bson(v) for v in value]
    return value


class MongoModel(BaseModel):
    """
    Base model for MongoDB documents with _id handling and serialization helpers.
    """
    id: PyObjectId | None = Field(default=None, alias="_id")

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        json_encoders={
            ObjectId: str
        }
    )

    @classmethod
    def from_mongo(cls: Type[T], data: Dict[str, Any]) -> T:
        """Convert MongoDB document to Pydantic model."""
        if not data:
            return None
        data = dict(data)
        id = data.pop("_id", None)
        return cls(id=id, **data)

    def to_mongo(self, exclude_none: bool = False) -> Dict[str, Any]:
        """Convert Pydantic model to MongoDB document."""
        data = self.model_dump(by_alias=True, exclude_none=exclude_none)
        if data.get("_id") is None:
            data.pop("_id", None)
        return to_bson(data)
