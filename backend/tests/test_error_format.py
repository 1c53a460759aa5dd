from __future__ import annotations


def _assert_error_shape(res, status: int):
    assert res.status_code == status
    data = res.json()
    assert data["success"] is False
    assert data["statusCode"] == status
    assert isinstance(data.get("message"), str) and data["message"]


def test_error_shape_401_missing_token(client):
    res = client.get("/auth/me")
    _assert_error_shape(res, 401)
    assert res.json()["message"] == "Missing Authorization header"


def test_error_shape_401_invalid_refresh(client):
    _assert_error_shape(client.post("/auth/refresh-token", json={"refreshToken": "x"}), 401)


def test_error_shape_403_admin_only(client, customer_headers):
    _assert_error_shape(client.post("/categories", json={"name": "Hats"}, headers=customer_headers), 403)


def test_error_shape_404(client):
    _assert_error_shape(client.get("/subcategories/424242"), 404)


def test_error_shape_409(client, admin_headers, category):
    _assert_error_shape(client.post("/categories", json={"name": "Clothing"}, headers=admin_headers), 409)


def test_error_shape_400_service_validation(client):
    _assert_error_shape(client.post("/auth/register", json={"email": "a@example.com", "password": "abc"}), 400)


def test_error_shape_422_request_validation(client):
    res = client.post("/auth/login", json={"email": "not-an-email", "password": "x"})
    _assert_error_shape(res, 422)
    errors = res.json()["errors"]
    assert isinstance(errors, list) and errors
    assert errors[0]["loc"][-1] == "email"


def test_unknown_route_uses_envelope(client):
    _assert_error_shape(client.get("/nope"), 404)


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}
