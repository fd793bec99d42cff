"""Pydantic schemas used by the API and the backup document."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TransactionType = Literal["in", "out", "adjustment"]


class CamelModel(BaseModel):
    """Base model exposing camelCase field names on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CategoryBase(CamelModel):
    name: str = Field(..., min_length=1)
    description: str | None = None


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None


class CategoryOut(CategoryBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime


class UserBase(CamelModel):
    username: str = Field(..., min_length=1)
    full_name: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1, description='Free-form role; "admin" grants administration.')
    is_active: bool = True


class UserCreate(UserBase):
    pass


class UserUpdate(CamelModel):
    username: str | None = Field(default=None, min_length=1)
    full_name: str | None = Field(default=None, min_length=1)
    role: str | None = Field(default=None, min_length=1)
    is_active: bool | None = None


class UserOut(UserBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime


class ItemBase(CamelModel):
    name: str = Field(..., min_length=1)
    sku: str = Field(..., min_length=1, description="Stock keeping unit identifier.")
    description: str | None = None
    category_id: int | None = None
    quantity: int = Field(0, ge=0)
    unit_price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    location: str | None = None
    min_stock_level: int = Field(5, ge=0)
    status: str = "active"
    rented_count: int = Field(0, ge=0)
    broken_count: int = Field(0, ge=0)
    rentable: bool = True
    expirable: bool = False
    expiration_date: datetime | None = None


class ItemCreate(ItemBase):
    pass


class ItemUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1)
    sku: str | None = Field(default=None, min_length=1)
    description: str | None = None
    category_id: int | None = None
    quantity: int | None = Field(default=None, ge=0)
    unit_price: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    location: str | None = None
    min_stock_level: int | None = Field(default=None, ge=0)
    status: str | None = None
    rented_count: int | None = Field(default=None, ge=0)
    broken_count: int | None = Field(default=None, ge=0)
    rentable: bool | None = None
    expirable: bool | None = None
    expiration_date: datetime | None = None


class ItemOut(ItemBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    updated_at: datetime


class ItemWithCategoryOut(ItemOut):
    category_name: str = "Uncategorized"


class StockMovement(CamelModel):
    quantity: int = Field(..., gt=0)
    user_id: int | None = Field(
        default=None, description="User performing the move; defaults to the first admin."
    )


class TransactionCreate(CamelModel):
    type: TransactionType
    quantity: int = Field(..., ge=0)
    user_id: int | None = None
    item_id: int | None = None
    notes: str | None = None


class TransactionOut(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    quantity: int
    user_id: int
    item_id: int | None = None
    notes: str | None = None
    created_at: datetime


class TransactionItemRef(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    sku: str


class TransactionUserRef(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    username: str


class TransactionWithDetailsOut(TransactionOut):
    """Activity log entry with the item and user it refers to, when they still exist."""

    item: TransactionItemRef | None = None
    user: TransactionUserRef | None = None


class DashboardStats(CamelModel):
    total_items: int
    total_value: Decimal
    low_stock_count: int
    today_transactions: int


class ExpiresThreshold(CamelModel):
    expires_soon_threshold: int


class ImportSummary(CamelModel):
    categories_imported: int
    users_imported: int
    items_imported: int


class ImportResult(CamelModel):
    message: str = "Backup imported successfully"
    imported: ImportSummary


class BackupDocument(CamelModel):
    items: list[ItemOut]
    categories: list[CategoryOut]
    users: list[UserOut]
    transactions: list[TransactionOut]
    export_date: datetime


class HealthStatus(BaseModel):
    status: Literal["ok"] = "ok"
    environment: str


__all__ = [
    "TransactionType",
    "CategoryCreate",
    "CategoryUpdate",
    "CategoryOut",
    "UserCreate",
    "UserUpdate",
    "UserOut",
    "ItemCreate",
    "ItemUpdate",
    "ItemOut",
    "ItemWithCategoryOut",
    "StockMovement",
    "TransactionCreate",
    "TransactionOut",
    "TransactionItemRef",
    "TransactionUserRef",
    "TransactionWithDetailsOut",
    "DashboardStats",
    "ExpiresThreshold",
    "ImportSummary",
    "ImportResult",
    "BackupDocument",
    "HealthStatus",
]
