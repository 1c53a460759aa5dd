from __future__ import annotations

import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from storefront.core.errors import ConflictError, NotFoundError, ValidationError
from storefront.core.slug import generate_slug
from storefront.models.category import Category
from storefront.models.subcategory import Subcategory
from storefront.schemas.category import CategoryCreate, CategoryOut, CategoryUpdate

logger = logging.getLogger(__name__)

# Sent as null on update means "leave unchanged".
NON_NULLABLE_FIELDS = ("sort_order", "is_active")


def get_category(db: Session, category_id: int) -> Category:
    category = db.get(Category, category_id)
    if not category:
        raise NotFoundError(f"Category with ID {category_id} not found")
    return category


def _ensure_unique(db: Session, *, name: str | None, slug: str | None, exclude_id: int | None = None) -> None:
    clauses = []
    if name:
        clauses.append(func.lower(Category.name) == name.lower())
    if slug:
        clauses.append(Category.slug == slug)
    if not clauses:
        return

    qry = db.query(Category).filter(or_(*clauses))
    if exclude_id is not None:
        qry = qry.filter(Category.id != exclude_id)
    existing = qry.first()
    if not existing:
        return
    if name and existing.name.lower() == name.lower():
        raise ConflictError("Category with this name already exists")
    raise ConflictError("Category with this slug already exists")


def _active_subcategory_counts(db: Session, category_ids: list[int]) -> dict[int, int]:
    if not category_ids:
        return {}
    rows = (
        db.query(Subcategory.category_id, func.count(Subcategory.id))
        .filter(Subcategory.category_id.in_(category_ids), Subcategory.is_active.is_(True))
        .group_by(Subcategory.category_id)
        .all()
    )
    return {cat_id: int(n) for cat_id, n in rows}


def create_category(db: Session, payload: CategoryCreate) -> Category:
    data = payload.model_dump()
    name = data.pop("name").strip()
    slug = generate_slug(data.pop("slug") or name)
    if not slug:
        raise ValidationError("Category slug cannot be empty")

    _ensure_unique(db, name=name, slug=slug)

    category = Category(name=name, slug=slug, **data)
    db.add(category)
    db.commit()
    db.refresh(category)
    logger.info("Created category id=%s slug=%s", category.id, category.slug)
    return category


def list_categories(
    db: Session,
    *,
    is_active: bool | None = None,
    include_subcategory_count: bool = False,
) -> list[CategoryOut]:
    qry = db.query(Category)
    if is_active is not None:
        qry = qry.filter(Category.is_active.is_(is_active))
    rows = qry.order_by(Category.sort_order.asc(), Category.name.asc()).all()

    counts = _active_subcategory_counts(db, [r.id for r in rows]) if include_subcategory_count else None
    out: list[CategoryOut] = []
    for r in rows:
        item = CategoryOut.model_validate(r)
        if counts is not None:
            item = item.model_copy(update={"subcategory_count": counts.get(r.id, 0)})
        out.append(item)
    return out


def update_category(db: Session, category_id: int, payload: CategoryUpdate) -> Category:
    category = get_category(db, category_id)

    data = payload.model_dump(exclude_unset=True)
    for field in NON_NULLABLE_FIELDS:
        if field in data and data[field] is None:
            data.pop(field)
    name = (data.pop("name", None) or "").strip() or None
    provided_slug = data.pop("slug", None)
    slug = generate_slug(provided_slug) if provided_slug else (generate_slug(name) if name else None)
    if (provided_slug or name) and not slug:
        raise ValidationError("Category slug cannot be empty")

    _ensure_unique(db, name=name, slug=slug, exclude_id=category.id)

    if name:
        category.name = name
    if slug:
        category.slug = slug
    for k, v in data.items():
        setattr(category, k, v)

    db.commit()
    db.refresh(category)
    return category


def remove_category(db: Session, category_id: int) -> str:
    category = get_category(db, category_id)

    active_children = _active_subcategory_counts(db, [category.id]).get(category.id, 0)
    if active_children:
        raise ConflictError(
            f"Cannot delete category '{category.name}' because it has {active_children} active subcategories"
        )

    category.is_active = False
    db.commit()
    logger.info("Deactivated category id=%s", category.id)
    return f"Category '{category.name}' has been successfully deactivated"


def set_category_image(db: Session, category: Category, url: str, public_id: str) -> Category:
    category.image_url = url
    category.image_public_id = public_id
    db.commit()
    db.refresh(category)
    return category
