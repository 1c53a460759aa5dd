import logging
from typing import Literal

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.orm import Session

from storefront.core.database import get_db
from storefront.core.errors import ValidationError
from storefront.dependencies.admin import require_admin_user
from storefront.schemas.common import Envelope, MessageOut, Paginated, ok
from storefront.schemas.subcategory import (
    BulkSortOrderIn,
    BulkSortOrderOut,
    SubcategoryCreate,
    SubcategoryOut,
    SubcategoryQuery,
    SubcategoryUpdate,
)
from storefront.services import subcategories as subcategory_service
from storefront.services.media import CloudinaryClient, get_media_client, read_image_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subcategories", tags=["subcategories"])


@router.post(
    "",
    response_model=Envelope[SubcategoryOut],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_user)],
)
def create_subcategory(payload: SubcategoryCreate, db: Session = Depends(get_db)):
    subcategory = subcategory_service.create_subcategory(db, payload)
    return ok("Subcategory created successfully", subcategory_service.to_out(subcategory))


@router.get("", response_model=Paginated[SubcategoryOut])
def list_subcategories(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: str | None = None,
    category_id: int | None = Query(default=None, alias="categoryId"),
    is_active: bool | None = Query(default=None, alias="isActive"),
    sort_by: Literal["name", "created_at", "sort_order"] = Query(default="sort_order", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query(default="asc", alias="sortOrder"),
    include_product_count: bool = Query(default=False, alias="includeProductCount"),
    db: Session = Depends(get_db),
):
    query = SubcategoryQuery(
        page=page,
        limit=limit,
        search=search,
        category_id=category_id,
        is_active=is_active,
        sort_by=sort_by,
        sort_order=sort_order,
        include_product_count=include_product_count,
    )
    return subcategory_service.list_subcategories(db, query)


@router.get("/category/{category_id}", response_model=Envelope[list[SubcategoryOut]])
def list_subcategories_by_category(category_id: int, db: Session = Depends(get_db)):
    items = subcategory_service.list_by_category(db, category_id)
    return ok("Subcategories retrieved successfully", items)


@router.patch(
    "/category/{category_id}/sort-order",
    response_model=Envelope[BulkSortOrderOut],
    dependencies=[Depends(require_admin_user)],
)
def bulk_update_sort_order(category_id: int, payload: BulkSortOrderIn, db: Session = Depends(get_db)):
    updated = subcategory_service.bulk_update_sort_order(db, category_id, payload.updates)
    return ok("Sort order updated successfully", {"updated": updated})


@router.get("/{subcategory_id}", response_model=Envelope[SubcategoryOut])
def get_subcategory(subcategory_id: int, db: Session = Depends(get_db)):
    return ok("Subcategory retrieved successfully", subcategory_service.get_subcategory_detail(db, subcategory_id))


@router.patch(
    "/{subcategory_id}",
    response_model=Envelope[SubcategoryOut],
    dependencies=[Depends(require_admin_user)],
)
def update_subcategory(subcategory_id: int, payload: SubcategoryUpdate, db: Session = Depends(get_db)):
    subcategory = subcategory_service.update_subcategory(db, subcategory_id, payload)
    return ok("Subcategory updated successfully", subcategory_service.to_out(subcategory))


@router.delete("/{subcategory_id}", response_model=MessageOut, dependencies=[Depends(require_admin_user)])
def delete_subcategory(subcategory_id: int, db: Session = Depends(get_db)):
    return ok(subcategory_service.remove_subcategory(db, subcategory_id))


@router.post(
    "/{subcategory_id}/image",
    response_model=Envelope[SubcategoryOut],
    dependencies=[Depends(require_admin_user)],
)
def upload_subcategory_image(
    subcategory_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    media: CloudinaryClient = Depends(get_media_client),
):
    subcategory = subcategory_service.get_subcategory(db, subcategory_id)
    data = read_image_upload(file)

    previous_public_id = subcategory.image_public_id
    uploaded = media.upload_subcategory_image(data, subcategory.category.slug, subcategory.slug)
    subcategory = subcategory_service.set_subcategory_image(db, subcategory, uploaded.url, uploaded.public_id)

    if previous_public_id and previous_public_id != uploaded.public_id:
        try:
            media.delete_image(previous_public_id)
        except ValidationError as exc:
            logger.warning("Old subcategory image %s was not removed: %s", previous_public_id, exc)

    return ok("Subcategory image uploaded successfully", subcategory_service.to_out(subcategory))
