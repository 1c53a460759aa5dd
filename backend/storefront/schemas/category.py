from __future__ import annotations

from datetime import datetime

from pydantic import Field

from storefront.schemas.common import CamelModel


class CategoryCreate(CamelModel):
    name: str = Field(min_length=1, max_length=120)
    slug: str | None = Field(default=None, max_length=140)
    description: str | None = None
    image_url: str | None = None
    sort_order: int = 0
    is_active: bool = True


class CategoryUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    slug: str | None = Field(default=None, max_length=140)
    description: str | None = None
    image_url: str | None = None
    sort_order: int | None = None
    is_active: bool | None = None


class CategoryOut(CamelModel):
    id: int
    name: str
    slug: str
    description: str | None = None
    image_url: str | None = None
    sort_order: int
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None
    # Populated only when the caller asks for it.
    subcategory_count: int | None = None


class CategorySummary(CamelModel):
    id: int
    name: str
    slug: str
