import logging

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.orm import Session

from storefront.core.database import get_db
from storefront.core.errors import ValidationError
from storefront.dependencies.admin import require_admin_user
from storefront.schemas.category import CategoryCreate, CategoryOut, CategoryUpdate
from storefront.schemas.common import Envelope, MessageOut, ok
from storefront.services import categories as category_service
from storefront.services.media import CloudinaryClient, get_media_client, read_image_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/categories", tags=["categories"])


@router.post(
    "",
    response_model=Envelope[CategoryOut],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_user)],
)
def create_category(payload: CategoryCreate, db: Session = Depends(get_db)):
    category = category_service.create_category(db, payload)
    return ok("Category created successfully", category)


@router.get("", response_model=Envelope[list[CategoryOut]])
def list_categories(
    is_active: bool | None = Query(default=None, alias="isActive"),
    include_subcategory_count: bool = Query(default=False, alias="includeSubcategoryCount"),
    db: Session = Depends(get_db),
):
    items = category_service.list_categories(
        db,
        is_active=is_active,
        include_subcategory_count=include_subcategory_count,
    )
    return ok("Categories retrieved successfully", items)


@router.get("/{category_id}", response_model=Envelope[CategoryOut])
def get_category(category_id: int, db: Session = Depends(get_db)):
    return ok("Category retrieved successfully", category_service.get_category(db, category_id))


@router.patch("/{category_id}", response_model=Envelope[CategoryOut], dependencies=[Depends(require_admin_user)])
def update_category(category_id: int, payload: CategoryUpdate, db: Session = Depends(get_db)):
    category = category_service.update_category(db, category_id, payload)
    return ok("Category updated successfully", category)


@router.delete("/{category_id}", response_model=MessageOut, dependencies=[Depends(require_admin_user)])
def delete_category(category_id: int, db: Session = Depends(get_db)):
    return ok(category_service.remove_category(db, category_id))


@router.post(
    "/{category_id}/image",
    response_model=Envelope[CategoryOut],
    dependencies=[Depends(require_admin_user)],
)
def upload_category_image(
    category_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    media: CloudinaryClient = Depends(get_media_client),
):
    category = category_service.get_category(db, category_id)
    data = read_image_upload(file)

    previous_public_id = category.image_public_id
    uploaded = media.upload_category_image(data, category.slug)
    category = category_service.set_category_image(db, category, uploaded.url, uploaded.public_id)

    if previous_public_id and previous_public_id != uploaded.public_id:
        try:
            media.delete_image(previous_public_id)
        except ValidationError as exc:
            logger.warning("Old category image %s was not removed: %s", previous_public_id, exc)

    return ok("Category image uploaded successfully", category)
