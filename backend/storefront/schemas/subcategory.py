from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import Field

from storefront.schemas.category import CategorySummary
from storefront.schemas.common import CamelModel


class SubcategoryCreate(CamelModel):
    name: str = Field(min_length=1, max_length=120)
    slug: str | None = Field(default=None, max_length=140)
    category_id: int
    description: str | None = None
    image_url: str | None = None
    meta_title: str | None = Field(default=None, max_length=160)
    meta_description: str | None = Field(default=None, max_length=320)
    sort_order: int = 0
    is_active: bool = True


class SubcategoryUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    slug: str | None = Field(default=None, max_length=140)
    description: str | None = None
    image_url: str | None = None
    meta_title: str | None = Field(default=None, max_length=160)
    meta_description: str | None = Field(default=None, max_length=320)
    sort_order: int | None = None
    is_active: bool | None = None


class SubcategoryQuery(CamelModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    search: str | None = None
    category_id: int | None = None
    is_active: bool | None = None
    sort_by: Literal["name", "created_at", "sort_order"] = "sort_order"
    sort_order: Literal["asc", "desc"] = "asc"
    include_product_count: bool = False


class SubcategoryOut(CamelModel):
    id: int
    name: str
    slug: str
    description: str | None = None
    image_url: str | None = None
    meta_title: str | None = None
    meta_description: str | None = None
    sort_order: int
    is_active: bool
    category_id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    category: CategorySummary | None = None
    # Populated only when counts were requested; never inferred from the row shape.
    product_count: int | None = None


class SortOrderUpdate(CamelModel):
    id: int
    sort_order: int


class BulkSortOrderIn(CamelModel):
    updates: list[SortOrderUpdate]


class BulkSortOrderOut(CamelModel):
    updated: int
