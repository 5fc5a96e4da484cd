import pytest
from bson import ObjectId

import auth
from auth import ADMIN_COOKIE, TOKEN_COOKIE, issue_token
from errors import ConfigurationError

ADMIN_EMAIL = "admin@threadline.shop"
ADMIN_PASSWORD = "s3cret-admin"


def test_admin_login_sets_cookie(client):
    resp = client.post("/api/admin/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    assert resp.json() == {"message": "Login successful"}
    token = resp.cookies.get(ADMIN_COOKIE)
    assert auth.decode_token(token)["role"] == "admin"


def test_admin_login_rejects_bad_credentials(client):
    resp = client.post("/api/admin/login", json={"email": ADMIN_EMAIL, "password": "wrong"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid credentials"


def test_admin_login_disabled_without_configured_credentials(client, monkeypatch):
    monkeypatch.delenv("ADMIN_PASSWORD")
    resp = client.post("/api/admin/login", json={"email": ADMIN_EMAIL, "password": ""})
    assert resp.status_code == 401


def test_shopper_token_is_not_admin(client, shopper, product_payload):
    client.cookies.set(ADMIN_COOKIE, client.cookies.get(TOKEN_COOKIE))
    assert client.post("/api/products", json=product_payload()).status_code == 401


def test_register_issues_session(client, db):
    resp = client.post(
        "/api/users/register",
        json={"fullname": "Noor Das", "email": "Noor@Example.com", "password": "hunter22"},
    )
    assert resp.status_code == 201
    user = resp.json()["user"]
    assert user["email"] == "noor@example.com"
    assert "password" not in user

    stored = db["user"].find_one({"email": "noor@example.com"})
    assert stored["password"] != "hunter22"
    assert auth.verify_password("hunter22", stored["password"])

    me = client.get("/api/users/me")
    assert me.status_code == 200
    assert me.json()["user"]["id"] == str(stored["_id"])


def test_register_duplicate_email_case_insensitive(client, shopper):
    resp = client.post(
        "/api/users/register",
        json={"fullname": "Asha Again", "email": "ASHA@example.com", "password": "hunter22"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Email already registered"


def test_register_validates_email(client):
    resp = client.post("/api/users/register", json={"fullname": "X", "email": "nope", "password": "hunter22"})
    assert resp.status_code == 400


def test_login_and_logout(client, shopper):
    client.cookies.clear()
    resp = client.post("/api/users/login", json={"email": "asha@example.com", "password": "hunter22"})
    assert resp.status_code == 200
    assert client.get("/api/users/me").json()["user"]["email"] == "asha@example.com"

    client.post("/api/users/logout")
    client.cookies.clear()
    assert client.get("/api/users/me").status_code == 401


def test_login_wrong_password(client, shopper):
    resp = client.post("/api/users/login", json={"email": "asha@example.com", "password": "nope-nope"})
    assert resp.status_code == 401


def test_bearer_header_accepted(client, shopper):
    token = client.cookies.get(TOKEN_COOKIE)
    client.cookies.clear()
    resp = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200


def test_tampered_token_rejected(client):
    client.cookies.set(TOKEN_COOKIE, issue_token({"email": "a@example.com"}) + "x")
    assert client.get("/api/users/me").status_code == 401


def test_profile_round_trip(client, shopper):
    resp = client.get("/api/users/profile")
    assert resp.status_code == 200
    assert resp.json()["name"] == "Asha Rao"
    assert resp.json()["address"]["zipCode"] == ""

    resp = client.put(
        "/api/users/profile",
        json={"phone": "98200 00000", "address": {"street": "1 MG Road", "city": "Pune", "zipCode": "411001"}},
    )
    assert resp.status_code == 200
    assert resp.json()["phone"] == "98200 00000"
    assert resp.json()["address"]["city"] == "Pune"
    assert resp.json()["address"]["zipCode"] == "411001"
    assert resp.json()["name"] == "Asha Rao"


def test_profile_unknown_user(client):
    client.cookies.set(TOKEN_COOKIE, issue_token({"id": str(ObjectId()), "email": "ghost@example.com"}))
    assert client.get("/api/users/profile").status_code == 404


def test_decode_rejects_garbage():
    assert auth.decode_token("not-a-token") is None
    assert auth.decode_token(None) is None


def test_missing_secret(monkeypatch):
    monkeypatch.delenv("JWT_SECRET")
    with pytest.raises(ConfigurationError):
        issue_token({"email": "a@example.com"})


def test_password_hashing():
    hashed = auth.hash_password("correct horse")
    assert auth.verify_password("correct horse", hashed)
    assert not auth.verify_password("wrong horse", hashed)
    assert not auth.verify_password("anything", "identity-provider-no-password")
