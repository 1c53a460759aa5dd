from __future__ import annotations

import pytest

from storefront.core.errors import ConflictError, NotFoundError, ValidationError
from storefront.models.category import Category
from storefront.models.product import Product
from storefront.models.subcategory import Subcategory
from storefront.schemas.subcategory import SortOrderUpdate, SubcategoryCreate, SubcategoryQuery
from storefront.services import subcategories as service
from storefront.services.media import UploadResult, get_media_client


def _add_product(db_session, sub, *, is_active=True, name="Item"):
    db_session.add(Product(subcategory_id=sub.id, name=name, is_active=is_active))
    db_session.commit()


# -----------------------------
# Service
# -----------------------------
def test_create_defaults_slug_from_name(db_session, category):
    sub = service.create_subcategory(db_session, SubcategoryCreate(name="  T-Shirts & Tops ", category_id=category.id))
    assert sub.name == "T-Shirts & Tops"
    assert sub.slug == "t-shirts-tops"
    assert sub.is_active is True


def test_create_in_inactive_category_is_404(db_session, category):
    category.is_active = False
    db_session.commit()
    with pytest.raises(NotFoundError):
        service.create_subcategory(db_session, SubcategoryCreate(name="Shirts", category_id=category.id))


def test_create_conflicts_within_category_only(db_session, category, make_subcategory):
    make_subcategory(category, "Shirts")

    with pytest.raises(ConflictError, match="name already exists"):
        service.create_subcategory(db_session, SubcategoryCreate(name="SHIRTS", category_id=category.id))
    with pytest.raises(ConflictError, match="slug already exists"):
        service.create_subcategory(
            db_session, SubcategoryCreate(name="Button Downs", slug="shirts", category_id=category.id)
        )

    other = Category(name="Outlet", slug="outlet")
    db_session.add(other)
    db_session.commit()
    sub = service.create_subcategory(db_session, SubcategoryCreate(name="Shirts", category_id=other.id))
    assert sub.slug == "shirts"


def test_list_paginates_and_reports_pages(db_session, category, make_subcategory):
    for i in range(25):
        make_subcategory(category, f"Sub {i:02d}", sort_order=i)

    page = service.list_subcategories(db_session, SubcategoryQuery(page=3, limit=10))
    assert page["total"] == 25
    assert page["total_pages"] == 3
    assert page["page"] == 3
    assert len(page["data"]) == 5
    assert page["has_next_page"] is False
    assert page["has_prev_page"] is True
    assert [s.name for s in page["data"]] == [f"Sub {i:02d}" for i in range(20, 25)]

    first = service.list_subcategories(db_session, SubcategoryQuery(page=1, limit=10))
    assert first["has_next_page"] is True
    assert first["has_prev_page"] is False


def test_list_empty_has_zero_pages(db_session):
    page = service.list_subcategories(db_session, SubcategoryQuery())
    assert page["total"] == 0
    assert page["total_pages"] == 0
    assert page["data"] == []
    assert page["has_next_page"] is False


def test_list_search_matches_name_or_description(db_session, category, make_subcategory):
    make_subcategory(category, "Denim Jackets")
    make_subcategory(category, "Coats", description="Wool and DENIM blends")
    make_subcategory(category, "Socks")

    page = service.list_subcategories(db_session, SubcategoryQuery(search="denim", sort_by="name"))
    assert [s.name for s in page["data"]] == ["Coats", "Denim Jackets"]


def test_list_filters_and_sorts_desc(db_session, category, make_subcategory):
    make_subcategory(category, "Alpha", sort_order=1)
    make_subcategory(category, "Beta", sort_order=2)
    make_subcategory(category, "Gamma", sort_order=3, is_active=False)

    page = service.list_subcategories(
        db_session,
        SubcategoryQuery(is_active=True, category_id=category.id, sort_by="sort_order", sort_order="desc"),
    )
    assert [s.name for s in page["data"]] == ["Beta", "Alpha"]
    assert page["data"][0].category.slug == "clothing"


def test_product_count_only_when_requested(db_session, category, make_subcategory):
    sub = make_subcategory(category, "Shirts")
    _add_product(db_session, sub)
    _add_product(db_session, sub, name="Hidden", is_active=False)

    without = service.list_subcategories(db_session, SubcategoryQuery())
    assert without["data"][0].product_count is None

    with_counts = service.list_subcategories(db_session, SubcategoryQuery(include_product_count=True))
    assert with_counts["data"][0].product_count == 1


def test_list_by_category_only_active_in_sort_order(db_session, category, make_subcategory):
    b = make_subcategory(category, "B", sort_order=2)
    make_subcategory(category, "A", sort_order=1)
    make_subcategory(category, "Gone", sort_order=0, is_active=False)
    _add_product(db_session, b)

    items = service.list_by_category(db_session, category.id)
    assert [s.name for s in items] == ["A", "B"]
    assert [s.product_count for s in items] == [0, 1]


def test_list_by_inactive_category_is_404(db_session, category):
    category.is_active = False
    db_session.commit()
    with pytest.raises(NotFoundError):
        service.list_by_category(db_session, category.id)


def test_remove_refuses_when_products_exist(db_session, category, make_subcategory):
    sub = make_subcategory(category, "Shirts")
    _add_product(db_session, sub, is_active=False)

    with pytest.raises(ConflictError, match="has 1 products"):
        service.remove_subcategory(db_session, sub.id)
    db_session.refresh(sub)
    assert sub.is_active is True


def test_remove_soft_deletes(db_session, category, make_subcategory):
    sub = make_subcategory(category, "Shirts")
    message = service.remove_subcategory(db_session, sub.id)
    assert message == "Subcategory 'Shirts' has been successfully deactivated"
    db_session.refresh(sub)
    assert sub.is_active is False
    # Row is kept.
    assert db_session.get(Subcategory, sub.id) is not None


def test_remove_missing_is_404(db_session):
    with pytest.raises(NotFoundError):
        service.remove_subcategory(db_session, 12345)


def test_bulk_sort_order_applies_all(db_session, category, make_subcategory):
    a = make_subcategory(category, "A", sort_order=0)
    b = make_subcategory(category, "B", sort_order=1)

    updated = service.bulk_update_sort_order(
        db_session,
        category.id,
        [SortOrderUpdate(id=a.id, sort_order=5), SortOrderUpdate(id=b.id, sort_order=3)],
    )
    assert updated == 2
    db_session.refresh(a)
    db_session.refresh(b)
    assert (a.sort_order, b.sort_order) == (5, 3)


def test_bulk_sort_order_is_all_or_nothing(db_session, category, make_subcategory):
    a = make_subcategory(category, "A", sort_order=0)
    other = Category(name="Outlet", slug="outlet")
    db_session.add(other)
    db_session.commit()
    foreign = make_subcategory(other, "Foreign", sort_order=0)

    with pytest.raises(ValidationError, match=f"Invalid subcategory IDs: {foreign.id}, 999"):
        service.bulk_update_sort_order(
            db_session,
            category.id,
            [
                SortOrderUpdate(id=a.id, sort_order=9),
                SortOrderUpdate(id=foreign.id, sort_order=9),
                SortOrderUpdate(id=999, sort_order=9),
            ],
        )
    db_session.refresh(a)
    assert a.sort_order == 0


def test_bulk_sort_order_validates_input(db_session, category):
    with pytest.raises(ValidationError):
        service.bulk_update_sort_order(db_session, category.id, [])
    with pytest.raises(NotFoundError):
        service.bulk_update_sort_order(db_session, 999, [SortOrderUpdate(id=1, sort_order=1)])


# -----------------------------
# HTTP
# -----------------------------
def test_http_create_and_get(client, admin_headers, category):
    res = client.post(
        "/subcategories",
        json={"name": "Polo Shirts", "categoryId": category.id, "metaTitle": "Polos"},
        headers=admin_headers,
    )
    assert res.status_code == 201
    created = res.json()["data"]
    assert created["slug"] == "polo-shirts"
    assert created["category"] == {"id": category.id, "name": "Clothing", "slug": "clothing"}

    res = client.get(f"/subcategories/{created['id']}")
    assert res.status_code == 200
    assert res.json()["data"]["productCount"] == 0
    assert res.json()["data"]["metaTitle"] == "Polos"


def test_http_writes_require_admin(client, customer_headers, category, make_subcategory):
    sub = make_subcategory(category, "Shirts")
    assert client.post(
        "/subcategories", json={"name": "X", "categoryId": category.id}, headers=customer_headers
    ).status_code == 403
    assert client.patch(f"/subcategories/{sub.id}", json={"name": "Y"}, headers=customer_headers).status_code == 403
    assert client.delete(f"/subcategories/{sub.id}", headers=customer_headers).status_code == 403


def test_http_list_uses_camel_case_params(client, category, make_subcategory):
    for i in range(3):
        make_subcategory(category, f"Sub {i}", sort_order=i)

    res = client.get(
        "/subcategories",
        params={"page": 1, "limit": 2, "sortBy": "sort_order", "sortOrder": "desc", "includeProductCount": "true"},
    )
    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 3
    assert body["totalPages"] == 2
    assert body["hasNextPage"] is True
    assert [s["name"] for s in body["data"]] == ["Sub 2", "Sub 1"]
    assert body["data"][0]["productCount"] == 0


def test_http_list_rejects_bad_limit(client):
    res = client.get("/subcategories", params={"limit": 500})
    assert res.status_code == 422


def test_http_update_conflict(client, admin_headers, category, make_subcategory):
    make_subcategory(category, "Shirts")
    pants = make_subcategory(category, "Pants")
    res = client.patch(f"/subcategories/{pants.id}", json={"name": "shirts"}, headers=admin_headers)
    assert res.status_code == 409


def test_http_update_regenerates_slug(client, admin_headers, category, make_subcategory):
    pants = make_subcategory(category, "Pants")
    res = client.patch(f"/subcategories/{pants.id}", json={"name": "Chino Pants"}, headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["data"]["slug"] == "chino-pants"


def test_http_update_null_flags_leave_values_unchanged(client, admin_headers, category, make_subcategory):
    sub = make_subcategory(category, "Pants", sort_order=4)
    res = client.patch(
        f"/subcategories/{sub.id}",
        json={"sortOrder": None, "isActive": None, "metaTitle": None},
        headers=admin_headers,
    )
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["sortOrder"] == 4
    assert data["isActive"] is True
    assert data["metaTitle"] is None


def test_http_update_rejects_slug_that_normalises_to_empty(client, admin_headers, category, make_subcategory):
    pants = make_subcategory(category, "Pants")
    res = client.patch(f"/subcategories/{pants.id}", json={"slug": "!!!"}, headers=admin_headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Subcategory slug cannot be empty"


def test_http_by_category_and_bulk_sort(client, admin_headers, category, make_subcategory):
    a = make_subcategory(category, "A", sort_order=0)
    b = make_subcategory(category, "B", sort_order=1)

    res = client.patch(
        f"/subcategories/category/{category.id}/sort-order",
        json={"updates": [{"id": a.id, "sortOrder": 2}, {"id": b.id, "sortOrder": 1}]},
        headers=admin_headers,
    )
    assert res.status_code == 200
    assert res.json()["data"] == {"updated": 2}

    res = client.get(f"/subcategories/category/{category.id}")
    assert [s["name"] for s in res.json()["data"]] == ["B", "A"]


def test_http_delete_returns_message(client, admin_headers, category, make_subcategory):
    sub = make_subcategory(category, "Shirts")
    res = client.delete(f"/subcategories/{sub.id}", headers=admin_headers)
    assert res.status_code == 200
    assert res.json() == {"success": True, "message": "Subcategory 'Shirts' has been successfully deactivated"}


def test_http_upload_image_uses_nested_folder(client, app, admin_headers, category, make_subcategory):
    sub = make_subcategory(category, "Rain Boots")
    calls = []

    class FakeMedia:
        def upload_subcategory_image(self, file, category_slug, subcategory_slug):
            calls.append((category_slug, subcategory_slug))
            return UploadResult(url="https://res.cloudinary.com/demo/image/upload/v1/x.jpg", public_id="x")

        def delete_image(self, public_id):
            raise AssertionError("nothing to delete")

    app.dependency_overrides[get_media_client] = lambda: FakeMedia()
    res = client.post(
        f"/subcategories/{sub.id}/image",
        files={"file": ("boots.webp", b"RIFF....WEBP", "image/webp")},
        headers=admin_headers,
    )
    assert res.status_code == 200
    assert calls == [("clothing", "rain-boots")]
    assert res.json()["data"]["imageUrl"] == "https://res.cloudinary.com/demo/image/upload/v1/x.jpg"
