from __future__ import annotations

import logging
import math
from typing import Iterable

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from storefront.core.errors import ConflictError, NotFoundError, ValidationError
from storefront.core.slug import generate_slug
from storefront.models.category import Category
from storefront.models.product import Product
from storefront.models.subcategory import Subcategory
from storefront.schemas.subcategory import (
    SortOrderUpdate,
    SubcategoryCreate,
    SubcategoryOut,
    SubcategoryQuery,
    SubcategoryUpdate,
)

logger = logging.getLogger(__name__)

# Sent as null on update means "leave unchanged".
NON_NULLABLE_FIELDS = ("sort_order", "is_active")

_SORT_COLUMNS = {
    "name": Subcategory.name,
    "created_at": Subcategory.created_at,
    "sort_order": Subcategory.sort_order,
}


def _product_counts(db: Session, subcategory_ids: Iterable[int], *, active_only: bool = True) -> dict[int, int]:
    ids = list(subcategory_ids)
    if not ids:
        return {}
    qry = db.query(Product.subcategory_id, func.count(Product.id)).filter(Product.subcategory_id.in_(ids))
    if active_only:
        qry = qry.filter(Product.is_active.is_(True))
    return {sub_id: int(n) for sub_id, n in qry.group_by(Product.subcategory_id).all()}


def to_out(subcategory: Subcategory, product_count: int | None = None) -> SubcategoryOut:
    out = SubcategoryOut.model_validate(subcategory)
    if product_count is None:
        return out
    return out.model_copy(update={"product_count": product_count})


def _get_active_category(db: Session, category_id: int) -> Category:
    category = (
        db.query(Category)
        .filter(Category.id == category_id, Category.is_active.is_(True))
        .first()
    )
    if not category:
        raise NotFoundError(f"Category with ID {category_id} not found or inactive")
    return category


def get_subcategory(db: Session, subcategory_id: int) -> Subcategory:
    subcategory = db.get(Subcategory, subcategory_id)
    if not subcategory:
        raise NotFoundError(f"Subcategory with ID {subcategory_id} not found")
    return subcategory


def _find_conflict(
    db: Session,
    *,
    category_id: int,
    name: str | None,
    slug: str | None,
    exclude_id: int | None = None,
) -> None:
    clauses = []
    if name:
        clauses.append(func.lower(Subcategory.name) == name.lower())
    if slug:
        clauses.append(Subcategory.slug == slug)
    if not clauses:
        return

    qry = db.query(Subcategory).filter(Subcategory.category_id == category_id, or_(*clauses))
    if exclude_id is not None:
        qry = qry.filter(Subcategory.id != exclude_id)
    existing = qry.first()
    if not existing:
        return

    if name and existing.name.lower() == name.lower():
        raise ConflictError("Subcategory with this name already exists in this category")
    raise ConflictError("Subcategory with this slug already exists in this category")


def create_subcategory(db: Session, payload: SubcategoryCreate) -> Subcategory:
    data = payload.model_dump()
    name = data.pop("name").strip()
    slug = generate_slug(data.pop("slug") or name)
    if not slug:
        raise ValidationError("Subcategory slug cannot be empty")
    category_id = data.pop("category_id")

    _get_active_category(db, category_id)
    _find_conflict(db, category_id=category_id, name=name, slug=slug)

    subcategory = Subcategory(name=name, slug=slug, category_id=category_id, **data)
    db.add(subcategory)
    db.commit()
    db.refresh(subcategory)
    logger.info("Created subcategory id=%s category_id=%s", subcategory.id, category_id)
    return subcategory


def list_subcategories(db: Session, query: SubcategoryQuery) -> dict:
    qry = db.query(Subcategory)

    if query.is_active is not None:
        qry = qry.filter(Subcategory.is_active.is_(query.is_active))
    if query.category_id is not None:
        qry = qry.filter(Subcategory.category_id == query.category_id)
    if query.search:
        term = query.search.strip()
        if term:
            like = f"%{term}%"
            qry = qry.filter(or_(Subcategory.name.ilike(like), Subcategory.description.ilike(like)))

    total = qry.count()

    column = _SORT_COLUMNS[query.sort_by]
    ordering = column.desc() if query.sort_order == "desc" else column.asc()
    rows = (
        qry.options(joinedload(Subcategory.category))
        .order_by(ordering, Subcategory.id.asc())
        .offset((query.page - 1) * query.limit)
        .limit(query.limit)
        .all()
    )

    counts = _product_counts(db, [r.id for r in rows]) if query.include_product_count else None
    data = [to_out(r, counts.get(r.id, 0) if counts is not None else None) for r in rows]

    total_pages = math.ceil(total / query.limit)
    return {
        "data": data,
        "total": total,
        "page": query.page,
        "limit": query.limit,
        "total_pages": total_pages,
        "has_next_page": query.page < total_pages,
        "has_prev_page": query.page > 1,
    }


def list_by_category(db: Session, category_id: int) -> list[SubcategoryOut]:
    _get_active_category(db, category_id)

    rows = (
        db.query(Subcategory)
        .filter(Subcategory.category_id == category_id, Subcategory.is_active.is_(True))
        .order_by(Subcategory.sort_order.asc(), Subcategory.id.asc())
        .all()
    )
    counts = _product_counts(db, [r.id for r in rows])
    return [to_out(r, counts.get(r.id, 0)) for r in rows]


def get_subcategory_detail(db: Session, subcategory_id: int) -> SubcategoryOut:
    subcategory = get_subcategory(db, subcategory_id)
    counts = _product_counts(db, [subcategory.id])
    return to_out(subcategory, counts.get(subcategory.id, 0))


def update_subcategory(db: Session, subcategory_id: int, payload: SubcategoryUpdate) -> Subcategory:
    subcategory = get_subcategory(db, subcategory_id)

    data = payload.model_dump(exclude_unset=True)
    for field in NON_NULLABLE_FIELDS:
        if field in data and data[field] is None:
            data.pop(field)
    name = (data.pop("name", None) or "").strip() or None
    provided_slug = data.pop("slug", None)
    slug = generate_slug(provided_slug) if provided_slug else (generate_slug(name) if name else None)
    if (provided_slug or name) and not slug:
        raise ValidationError("Subcategory slug cannot be empty")

    _find_conflict(
        db,
        category_id=subcategory.category_id,
        name=name,
        slug=slug,
        exclude_id=subcategory.id,
    )

    if name:
        subcategory.name = name
    if slug:
        subcategory.slug = slug
    for k, v in data.items():
        if isinstance(v, str):
            v = v.strip()
        setattr(subcategory, k, v)

    db.commit()
    db.refresh(subcategory)
    return subcategory


def remove_subcategory(db: Session, subcategory_id: int) -> str:
    """
    Soft delete; refused while any product (active or not) still points at it.
    """
    subcategory = get_subcategory(db, subcategory_id)

    product_count = _product_counts(db, [subcategory.id], active_only=False).get(subcategory.id, 0)
    if product_count > 0:
        raise ConflictError(
            f"Cannot delete subcategory '{subcategory.name}' because it has {product_count} products"
        )

    subcategory.is_active = False
    db.commit()
    logger.info("Deactivated subcategory id=%s", subcategory.id)
    return f"Subcategory '{subcategory.name}' has been successfully deactivated"


def bulk_update_sort_order(db: Session, category_id: int, updates: list[SortOrderUpdate]) -> int:
    if not updates:
        raise ValidationError("Category ID and updates array are required")

    if db.get(Category, category_id) is None:
        raise NotFoundError(f"Category with ID {category_id} not found")

    requested_ids = [u.id for u in updates]
    rows = (
        db.query(Subcategory)
        .filter(Subcategory.id.in_(requested_ids), Subcategory.category_id == category_id)
        .all()
    )
    by_id = {r.id: r for r in rows}
    invalid = [str(u.id) for u in updates if u.id not in by_id]
    if invalid:
        raise ValidationError(f"Invalid subcategory IDs: {', '.join(invalid)}")

    # One transaction: either every sort order lands or none do.
    try:
        for u in updates:
            by_id[u.id].sort_order = u.sort_order
        db.commit()
    except Exception:
        db.rollback()
        raise

    return len(updates)


def set_subcategory_image(db: Session, subcategory: Subcategory, url: str, public_id: str) -> Subcategory:
    subcategory.image_url = url
    subcategory.image_public_id = public_id
    db.commit()
    db.refresh(subcategory)
    return subcategory
