"""
Database Schemas for the leatherworking tracker (MongoDB)

Each model describes the request body for one collection. Collection name is
the lowercase of the entity name. Fields are camelCase on the wire and in the
stored documents.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, List, NewType, Optional

from bson import ObjectId
from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    PlainSerializer,
    StringConstraints,
)
from pydantic.alias_generators import to_camel


def _reference(label: str) -> AfterValidator:
    def check(value: str) -> str:
        if not ObjectId.is_valid(value):
            raise ValueError(f"Valid {label} ID is required")
        return value

    return AfterValidator(check)


_as_object_id = PlainSerializer(lambda v: ObjectId(v))

# Typed references: validated as ObjectId strings, stored as ObjectIds
CustomerId = Annotated[NewType("CustomerId", str), _reference("customer"), _as_object_id]
ProductId = Annotated[NewType("ProductId", str), _reference("product"), _as_object_id]
MaterialId = Annotated[NewType("MaterialId", str), _reference("material"), _as_object_id]

RequiredStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

# largest integer BSON can store
MAX_INT64 = 2**63 - 1


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class ProjectStatus(str, Enum):
    PLANNING = "Planning"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    ON_HOLD = "On Hold"


class DocumentIn(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        use_enum_values=True,
        validate_default=True,
        allow_inf_nan=False,
    )

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


# Customers
class CustomerIn(DocumentIn):
    name: RequiredStr
    email: EmailStr
    phone: Optional[str] = None
    address: Optional[str] = None


# Materials
class MaterialIn(DocumentIn):
    name: RequiredStr
    type: RequiredStr
    quantity: float = Field(..., ge=0)
    unit: RequiredStr
    price: float = Field(..., ge=0)
    supplier: Optional[str] = None
    notes: Optional[str] = None


# Products
class ProductMaterial(DocumentIn):
    material_id: MaterialId
    quantity: int = Field(..., ge=1, le=MAX_INT64)


class ProductIn(DocumentIn):
    name: RequiredStr
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    category: Optional[str] = None
    stock: int = Field(..., ge=0, le=MAX_INT64)
    materials: List[ProductMaterial] = Field(default_factory=list)


# Orders
class OrderItem(DocumentIn):
    product_id: ProductId
    quantity: int = Field(..., ge=1, le=MAX_INT64)


class OrderIn(DocumentIn):
    customer_id: CustomerId
    items: List[OrderItem]
    status: OrderStatus = OrderStatus.PENDING
    total_amount: float = Field(..., ge=0)
    notes: Optional[str] = None


class OrderStatusUpdate(DocumentIn):
    status: OrderStatus


# Projects
class ProjectMaterial(DocumentIn):
    material_id: MaterialId
    quantity: float = Field(..., ge=0)


class ProjectIn(DocumentIn):
    name: RequiredStr
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.PLANNING
    materials: List[ProjectMaterial] = Field(default_factory=list)
    estimated_completion_date: Optional[datetime] = None
    notes: Optional[str] = None


class ProjectStatusUpdate(DocumentIn):
    status: ProjectStatus
