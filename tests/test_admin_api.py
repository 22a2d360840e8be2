import pytest

import backoffice
from conftest import Recorder, make_user
from errors import RuleViolation
from models import User
from sql_db import SessionLocal


def load(user_id):
    with SessionLocal() as s:
        return s.get(User, user_id)


def test_block_and_unblock_customer(admin_client, admin, customer):
    resp = admin_client.patch(f"/api/admin/users/{customer.id}/block", json={"reason": "Too many fake orders"})
    assert resp.status_code == 200

    user = load(customer.id)
    assert user.is_blocked is True
    assert user.blocked_reason == "Too many fake orders"
    assert user.blocked_by == admin.id
    assert user.blocked_at is not None

    assert admin_client.patch(f"/api/admin/users/{customer.id}/block", json={}).status_code == 400

    resp = admin_client.patch(f"/api/admin/users/{customer.id}/unblock")
    assert resp.status_code == 200
    user = load(customer.id)
    assert (user.is_blocked, user.blocked_reason, user.blocked_at, user.blocked_by) == (False, None, None, None)

    assert admin_client.patch(f"/api/admin/users/{customer.id}/unblock").status_code == 400


def test_default_block_reason(admin_client, customer):
    admin_client.patch(f"/api/admin/users/{customer.id}/block", json={})
    assert load(customer.id).blocked_reason == "Blocked by admin"


def test_block_reason_length(admin_client, customer):
    resp = admin_client.patch(f"/api/admin/users/{customer.id}/block", json={"reason": "no"})
    assert resp.status_code == 400
    assert load(customer.id).is_blocked is False


@pytest.mark.parametrize("method,path,body", [
    ("patch", "/api/admin/users/{id}/block", {"reason": "Just because"}),
    ("patch", "/api/admin/users/{id}/unblock", None),
    ("put", "/api/admin/users/{id}", {"role": "customer"}),
    ("delete", "/api/admin/users/{id}", None),
])
def test_admins_are_protected_from_other_admins(admin_client, other_admin, method, path, body):
    resp = getattr(admin_client, method)(path.format(id=other_admin.id), json=body)

    assert resp.status_code == 400
    assert resp.get_json()["reason"] == "admin_target"
    user = load(other_admin.id)
    assert user is not None
    assert user.role == "admin"
    assert user.is_blocked is False


@pytest.mark.parametrize("method,path,message", [
    ("patch", "/api/admin/users/{id}/block", "You cannot block yourself"),
    ("delete", "/api/admin/users/{id}", "You cannot delete yourself"),
    ("put", "/api/admin/users/{id}", "Use /api/admin/profile to edit your own profile"),
])
def test_admin_cannot_act_on_self(admin_client, admin, method, path, message):
    resp = getattr(admin_client, method)(path.format(id=admin.id), json={})
    assert resp.status_code == 400
    assert resp.get_json()["message"] == message
    assert load(admin.id) is not None


def test_self_protection_is_security_logged(db, admin, monkeypatch):
    recorder = Recorder()
    monkeypatch.setattr(backoffice, "security_event", recorder)

    with pytest.raises(RuleViolation):
        backoffice.delete_user(db, admin.id, admin.id)

    assert recorder.events[0][1]["reason"] == "self_delete"


def test_update_user(admin_client, customer, other_customer):
    resp = admin_client.put(f"/api/admin/users/{customer.id}", json={
        "full_name": "Alice Renamed", "is_verified": True, "address": {"city": "Galle"},
    })
    assert resp.status_code == 200
    user = load(customer.id)
    assert user.full_name == "Alice Renamed"
    assert user.is_verified is True
    assert user.address["city"] == "Galle"

    resp = admin_client.put(f"/api/admin/users/{customer.id}", json={"email": other_customer.email})
    assert resp.status_code == 409

    resp = admin_client.put(f"/api/admin/users/{customer.id}", json={"role": "superuser"})
    assert resp.status_code == 400

    assert admin_client.put("/api/admin/users/" + "0" * 24, json={}).status_code == 404


def test_delete_customer(admin_client, customer):
    assert admin_client.delete(f"/api/admin/users/{customer.id}").status_code == 200
    assert load(customer.id) is None
    assert admin_client.get(f"/api/admin/users/{customer.id}").status_code == 404


def test_list_users_filters_and_pagination(admin_client, admin, customer, other_customer):
    make_user("dana@shop.com", full_name="Dana Blocked", is_blocked=True, blocked_reason="spam")

    data = admin_client.get("/api/admin/users?role=customer").get_json()
    assert data["pagination"]["total"] == 3

    data = admin_client.get("/api/admin/users?is_blocked=true").get_json()
    assert [u["email"] for u in data["users"]] == ["dana@shop.com"]

    data = admin_client.get("/api/admin/users?is_blocked=false&role=customer").get_json()
    assert data["pagination"]["total"] == 2

    data = admin_client.get("/api/admin/users?search=ALICE").get_json()
    assert [u["email"] for u in data["users"]] == ["alice@example.com"]

    data = admin_client.get("/api/admin/users?search=customer").get_json()
    assert data["pagination"]["total"] == 2

    data = admin_client.get("/api/admin/users?limit=2&page=2").get_json()
    assert data["pagination"] == {"total": 4, "page": 2, "limit": 2, "pages": 2}
    assert len(data["users"]) == 2

    assert "password_hash" not in data["users"][0]


def test_search_treats_wildcards_literally(admin_client, customer):
    data = admin_client.get("/api/admin/users?search=%25").get_json()
    assert data["users"] == []


def test_admin_profile(admin_client, admin, customer):
    profile = admin_client.get("/api/admin/profile").get_json()["profile"]
    assert profile["email"] == admin.email

    resp = admin_client.put("/api/admin/profile", json={"full_name": "Head Admin", "role": "customer"})
    assert resp.status_code == 200
    user = load(admin.id)
    assert user.full_name == "Head Admin"
    assert user.role == "admin"

    resp = admin_client.put("/api/admin/profile", json={"email": customer.email})
    assert resp.status_code == 409

    resp = admin_client.put("/api/admin/profile", json={"full_name": "X"})
    assert resp.status_code == 400
