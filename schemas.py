"""
Database Schemas for the SmartShop POS

Each Pydantic model stored by the local store lives in a MongoDB collection
named after the lowercase class name. Fields are snake_case in Python and
camelCase on the wire, the shape backup files have always used.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def as_utc(value: datetime) -> datetime:
    """Naive datetimes coming back from storage are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Product(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    brand: Optional[str] = None
    description: str = ""
    purchase_price: float = Field(0, ge=0)
    selling_price: float = Field(0, ge=0)
    stock: int = Field(0, ge=0)
    image_url: str = ""
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class ProductCreate(CamelModel):
    name: str = ""
    brand: Optional[str] = None
    description: str = ""
    purchase_price: float = Field(0, ge=0)
    selling_price: float = Field(0, ge=0)
    stock: int = Field(0, ge=0)
    image_url: str = ""


class ProductUpdate(CamelModel):
    name: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    purchase_price: Optional[float] = Field(None, ge=0)
    selling_price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    add_stock: Optional[int] = Field(None, ge=0, description="units received, added on top of stock")
    image_url: Optional[str] = None


class CustomerInfo(CamelModel):
    model_config = ConfigDict(frozen=True)

    full_name: str = ""
    address: str = ""
    id_card: str = ""


class Sale(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    product_id: str
    product_name: str
    quantity: int = Field(..., ge=1)
    selling_price: float
    purchase_price: float
    total_amount: float
    timestamp: datetime
    customer: Optional[CustomerInfo] = None

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class Settings(CamelModel):
    shop_name: str = "SmartShop"
    currency: str = "VND"
    require_customer_name: bool = True
    low_stock_threshold: int = Field(5, ge=0)
    walk_in_label: str = "Khách lẻ"


class Snapshot(CamelModel):
    version: str
    timestamp: datetime
    products: List[Product]
    sales: List[Sale]


class Report(CamelModel):
    sales: List[Sale]
    revenue: float
    cost: Optional[float] = None
    profit: Optional[float] = None
    count: int


class CatalogStats(CamelModel):
    count: int
    total_items: int
    investment: float
    low_stock: List[str] = Field(default_factory=list, description="ids of products below the low-stock threshold")


class SoldProduct(CamelModel):
    id: str
    name: str


class CandidateProduct(CamelModel):
    id: str
    name: str
    price: float


class ScanResult(CamelModel):
    product_id: Optional[str] = None
    confidence: float = 0.0
    suggested_name: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None

    @field_validator("product_id", "suggested_name", "brand", mode="before")
    @classmethod
    def _blank_is_absent(cls, value):
        if isinstance(value, str) and value.strip().lower() in ("", "null", "none"):
            return None
        return value


class ScanOutcome(CamelModel):
    kind: Literal["product", "suggestion", "not_recognized"]
    confidence: float = 0.0
    product: Optional[Product] = None
    suggested_name: Optional[str] = None
    brand: Optional[str] = None
