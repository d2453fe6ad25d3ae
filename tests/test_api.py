import time

import jwt
import pytest
from fastapi.testclient import TestClient

from library_app.api import create_app
from library_app.config import settings
from library_app.tokens import create_access_token

BOOK = {"title": "Laskar Pelangi", "author": "Andrea Hirata", "quantity": 2, "category": "Novel"}


def _bearer(user, **kwargs):
    return {"Authorization": f"Bearer {create_access_token(user, **kwargs)}"}


@pytest.fixture
def client(db_file):
    with TestClient(create_app(db_file)) as test_client:
        yield test_client


@pytest.fixture
def admin_headers():
    return {"X-API-Key": settings.api_key}


@pytest.fixture
def member_headers(member):
    return _bearer(member)


@pytest.fixture
def book_id(client, admin_headers):
    response = client.post("/books", headers=admin_headers, json=BOOK)
    assert response.status_code == 201
    return response.json()["id"]


def _loan(client, headers, book_id, **extra):
    payload = {"book_id": book_id, "loan_date": "2024-01-01", "due_date": "2024-01-15", **extra}
    return client.post("/loans", headers=headers, json=payload)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_register_and_login(client):
    payload = {"name": "Dewi Lestari", "email": "dewi@perpus.id", "password": "supernova",
               "confirm_password": "supernova"}
    response = client.post("/auth/register", json=payload)
    assert response.status_code == 201
    assert response.json()["role"] == "user"
    assert "password" not in response.json()

    again = client.post("/auth/register", json=payload)
    assert again.status_code == 409
    assert again.json()["error"] == "Conflict"

    login = client.post("/auth/login", json={"email": "dewi@perpus.id", "password": "supernova"})
    assert login.status_code == 200
    assert login.json()["token_type"] == "bearer"
    assert login.json()["user"]["email"] == "dewi@perpus.id"
    token = login.json()["access_token"]
    profile = client.get("/profile", headers={"Authorization": f"Bearer {token}"})
    assert profile.json()["name"] == "Dewi Lestari"
    bad = client.post("/auth/login", json={"email": "dewi@perpus.id", "password": "wrong"})
    assert bad.status_code == 401
    assert bad.json() == {"error": "Unauthorized", "detail": "Invalid email or password"}


def test_books_are_public(client, book_id):
    assert [b["id"] for b in client.get("/books").json()] == [book_id]
    assert client.get(f"/books/{book_id}").json()["title"] == "Laskar Pelangi"
    assert client.get(f"/books/{book_id}/availability").json() == {"available": 2, "quantity": 2, "status": "active"}
    assert client.get("/categories").json() == ["Novel"]


def test_book_not_found_error_shape(client):
    response = client.get("/books/999")
    assert response.status_code == 404
    assert response.json() == {"error": "NotFound", "detail": "Book 999 not found"}


def test_add_book_requires_admin(client, member_headers):
    assert client.post("/books", json=BOOK).status_code == 401
    assert client.post("/books", headers=member_headers, json=BOOK).status_code == 403
    assert client.post("/books", headers={"X-API-Key": "invalid-key"}, json=BOOK).status_code == 403


def test_add_book_invalid_body(client, admin_headers):
    response = client.post("/books", headers=admin_headers, json={"title": "No author"})
    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


def test_update_and_delete_book(client, admin_headers, book_id):
    response = client.put(f"/books/{book_id}", headers=admin_headers, json={"quantity": 3})
    assert response.status_code == 200
    assert response.json()["available"] == 3

    assert client.delete(f"/books/{book_id}", headers=admin_headers).status_code == 200
    assert client.get(f"/books/{book_id}").status_code == 404


def test_missing_or_bad_token_is_unauthorized(client, member):
    assert client.get("/profile").status_code == 401
    assert client.get("/profile", headers={"Authorization": "Bearer not-a-token"}).status_code == 401
    assert client.get("/profile", headers=_bearer(member, expires_minutes=-1)).json() == {
        "error": "Unauthorized", "detail": "Token expired",
    }

    forged = jwt.encode({"sub": str(member.id), "exp": int(time.time()) + 3600}, "wrong-secret", algorithm="HS256")
    response = client.get("/profile", headers={"Authorization": f"Bearer {forged}"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token"


def test_identity_header_alone_grants_nothing(client, admin, member, member_headers, book_id):
    loan_id = _loan(client, member_headers, book_id).json()["id"]
    spoofed = {"X-User-Email": admin.email}

    assert client.post(f"/loans/{loan_id}/approve", headers=spoofed).status_code == 401
    assert client.get("/users", headers=spoofed).status_code == 401
    assert client.put(f"/users/{member.id}", headers=spoofed, json={"role": "admin"}).status_code == 401

    assert client.get(f"/loans/{loan_id}", headers=member_headers).json()["status"] == "pending"
    assert client.get("/profile", headers=member_headers).json()["role"] == "user"


def test_admin_token_can_approve(client, admin, member_headers, book_id):
    loan_id = _loan(client, member_headers, book_id).json()["id"]
    response = client.post(f"/loans/{loan_id}/approve", headers=_bearer(admin))
    assert response.status_code == 200
    assert response.json()["status"] == "approved"


def test_token_of_deleted_user_is_unauthorized(client, identity, other_member):
    headers = _bearer(other_member)
    identity.delete_user(other_member.id)
    assert client.get("/profile", headers=headers).status_code == 401


def test_loan_lifecycle(client, admin_headers, member_headers, member, book_id):
    response = _loan(client, member_headers, book_id)
    assert response.status_code == 201
    loan = response.json()
    assert loan["status"] == "pending"
    assert loan["user_id"] == member.id

    # Members cannot approve
    assert client.post(f"/loans/{loan['id']}/approve", headers=member_headers).status_code == 403

    approved = client.post(f"/loans/{loan['id']}/approve", headers=admin_headers)
    assert approved.json()["status"] == "approved"
    assert client.get(f"/books/{book_id}/availability").json()["available"] == 1

    returned = client.post(f"/loans/{loan['id']}/return", headers=admin_headers, json={"return_date": "2024-01-18"})
    assert returned.status_code == 200
    assert returned.json()["status"] == "returned"
    assert returned.json()["fine"] == 15000
    assert client.get(f"/books/{book_id}/availability").json()["available"] == 2

    again = client.post(f"/loans/{loan['id']}/return", headers=admin_headers)
    assert again.status_code == 409
    assert again.json()["error"] == "InvalidTransition"


def test_loan_request_on_behalf_of_another_user(client, admin_headers, member_headers, member, other_member, book_id):
    assert _loan(client, member_headers, book_id, user=other_member.email).status_code == 403

    response = _loan(client, admin_headers, book_id, user=member.email)
    assert response.status_code == 201
    assert response.json()["user_id"] == member.id

    # The service key has no account of its own
    assert _loan(client, admin_headers, book_id).status_code == 400


def test_loan_request_validation(client, member_headers, book_id):
    assert _loan(client, member_headers, str(book_id)).status_code == 422
    assert _loan(client, member_headers, book_id, due_date="2023-12-01").status_code == 422
    assert _loan(client, member_headers, 999).status_code == 404


def test_reject_requires_reason(client, admin_headers, member_headers, book_id):
    loan_id = _loan(client, member_headers, book_id).json()["id"]

    missing = client.post(f"/loans/{loan_id}/reject", headers=admin_headers, json={})
    assert missing.status_code == 400
    assert missing.json()["error"] == "ValidationError"

    rejected = client.post(f"/loans/{loan_id}/reject", headers=admin_headers, json={"reason": "Rusak"})
    assert rejected.json()["status"] == "rejected"
    assert rejected.json()["rejection_reason"] == "Rusak"


def test_update_loan_status_form(client, admin_headers, member_headers, book_id):
    loan_id = _loan(client, member_headers, book_id).json()["id"]

    response = client.put(f"/loans/{loan_id}", headers=admin_headers, json={"status": "approved"})
    assert response.json()["status"] == "approved"

    response = client.put(f"/loans/{loan_id}", headers=admin_headers, json={"status": "pending"})
    assert response.status_code == 409


def test_members_only_see_their_own_loans(client, admin_headers, member_headers, other_member, book_id):
    mine = _loan(client, member_headers, book_id).json()
    theirs = _loan(client, _bearer(other_member), book_id).json()

    listed = client.get("/loans", headers=member_headers).json()
    assert [loan["id"] for loan in listed] == [mine["id"]]
    assert listed[0]["title"] == "Laskar Pelangi"

    assert client.get("/loans", headers=member_headers, params={"user": other_member.email}).status_code == 403
    assert client.get(f"/loans/{theirs['id']}", headers=member_headers).status_code == 403
    assert client.get(f"/loans/{mine['id']}", headers=member_headers).status_code == 200

    everything = client.get("/loans", headers=admin_headers).json()
    assert {loan["id"] for loan in everything} == {mine["id"], theirs["id"]}
    approved = client.get("/loans", headers=admin_headers, params={"status": "approved"}).json()
    assert approved == []


def test_fine_preview(client):
    response = client.get("/fines/calculate", params={"due_date": "2024-01-15", "return_date": "2024-01-18"})
    assert response.status_code == 200
    assert response.json()["days_overdue"] == 3
    assert response.json()["fine"] == 15000


def test_wishlist_endpoints(client, member_headers, book_id):
    assert client.post("/wishlist", headers=member_headers, json={"book_id": book_id}).status_code == 201
    assert client.post("/wishlist", headers=member_headers, json={"book_id": book_id}).status_code == 409
    assert [item["book_id"] for item in client.get("/wishlist", headers=member_headers).json()] == [book_id]
    assert client.delete(f"/wishlist/{book_id}", headers=member_headers).status_code == 200
    assert client.delete(f"/wishlist/{book_id}", headers=member_headers).status_code == 404
    assert client.get("/wishlist").status_code == 401


def test_profile_and_users(client, admin_headers, member_headers, member):
    assert client.get("/profile", headers=member_headers).json()["email"] == member.email
    updated = client.put("/profile", headers=member_headers, json={"name": "Budi Baru"})
    assert updated.json()["name"] == "Budi Baru"

    assert client.get("/users", headers=member_headers).status_code == 403
    emails = [u["email"] for u in client.get("/users", headers=admin_headers).json()]
    assert emails == [member.email]

    created = client.post(
        "/users", headers=admin_headers,
        json={"name": "Rina Pustakawan", "email": "rina@perpus.id", "password": "123456", "role": "admin"},
    )
    assert created.status_code == 201
    assert created.json()["role"] == "admin"


def test_stats_and_reports(client, admin_headers, member_headers, book_id):
    _loan(client, member_headers, book_id)

    assert client.get("/stats", headers=member_headers).json()["active_loans"] == 1
    admin_stats = client.get("/stats", headers=admin_headers).json()
    assert admin_stats["pending_loans"] == 1
    assert admin_stats["total_books"] == 1

    assert client.get("/reports", headers=member_headers).status_code == 403
    report = client.get("/reports", headers=admin_headers).json()
    assert report["overdue_count"] == 0
    assert report["top_users"][0]["loan_count"] == 1
