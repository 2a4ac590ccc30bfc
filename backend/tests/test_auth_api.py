"""
Account API tests: signup, own profile and admin account management.

Covers:
- Signup creates exactly one account per subject (201, then 400).
- Email is validated and lower-cased; role defaults to student.
- `PUT /api/auth/me` only touches self-mutable fields; role changes are 400.
- Admin-only routes: list, update role, delete.
"""
from __future__ import annotations

import pytest

from utils.identity import bearer, register

pytestmark = pytest.mark.anyio("asyncio")


@pytest.mark.anyio
async def test_signup_then_duplicate_returns_400(app, accounts, client_for):
    body = {"email": "a@x.com", "firebase_uid": "u1", "role": "student"}
    async with client_for(app) as client:
        first = await client.post("/api/auth/signup", json=body)
        second = await client.post("/api/auth/signup", json=body)

    assert first.status_code == 201
    assert first.json()["success"] is True
    assert first.json()["data"]["role"] == "student"
    assert first.json()["data"]["firebase_uid"] == "u1"
    assert second.status_code == 400
    assert second.json() == {"success": False, "message": "User already exists"}
    assert len(accounts.list(limit=100)) == 1


@pytest.mark.anyio
async def test_signup_defaults_role_and_normalises_email(app, client_for):
    async with client_for(app) as client:
        r = await client.post("/api/auth/signup", json={"email": "Mixed.Case@Example.COM", "firebase_uid": "u2"})
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["role"] == "student"
    assert data["email"] == "mixed.case@example.com"
    assert r.headers.get("Cache-Control") == "private, no-store"


@pytest.mark.anyio
async def test_signup_rejects_invalid_email_and_role(app, accounts, client_for):
    async with client_for(app) as client:
        bad_email = await client.post("/api/auth/signup", json={"email": "not-an-email", "firebase_uid": "u3"})
        bad_role = await client.post("/api/auth/signup", json={"email": "b@x.com", "firebase_uid": "u3", "role": "owner"})
        missing_uid = await client.post("/api/auth/signup", json={"email": "b@x.com"})

    for r in (bad_email, bad_role, missing_uid):
        assert r.status_code == 400
        body = r.json()
        assert body["success"] is False
        assert body["message"] == "Validation failed"
        assert body["errors"]
    assert {e["field"] for e in bad_role.json()["errors"]} == {"role"}
    assert accounts.find_by_firebase_uid("u3") is None


@pytest.mark.anyio
async def test_signup_with_token_binding_requires_matching_subject(app, settings, verifier, accounts, client_for, monkeypatch):
    monkeypatch.setenv("SIGNUP_REQUIRE_TOKEN", "true")
    body = {"email": "c@x.com", "firebase_uid": "u4"}
    async with client_for(app) as client:
        no_token = await client.post("/api/auth/signup", json=body)
        other = await client.post("/api/auth/signup", json=body, headers=bearer(verifier.issue("someone-else")))
        own = await client.post("/api/auth/signup", json=body, headers=bearer(verifier.issue("u4")))

    assert no_token.status_code == 401
    assert no_token.json()["message"] == "No token provided"
    assert other.status_code == 403
    assert own.status_code == 201
    assert accounts.find_by_firebase_uid("u4") is not None


@pytest.mark.anyio
async def test_me_returns_attached_account(app, accounts, verifier, client_for):
    account, headers = register(accounts, verifier, "u5", role="teacher")
    async with client_for(app) as client:
        r = await client.get("/api/auth/me", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["id"] == account.id
    assert r.json()["data"]["role"] == "teacher"


@pytest.mark.anyio
async def test_me_without_local_account_is_404_not_401(app, verifier, client_for):
    async with client_for(app) as client:
        r = await client.get("/api/auth/me", headers=bearer(verifier.issue("ghost")))
    assert r.status_code == 404
    assert r.json()["message"] == "User not found in database"


@pytest.mark.anyio
async def test_update_me_changes_email(app, accounts, verifier, client_for):
    account, headers = register(accounts, verifier, "u6")
    async with client_for(app) as client:
        r = await client.put("/api/auth/me", json={"email": "NEW@x.com"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["email"] == "new@x.com"
    assert accounts.get(account.id).email == "new@x.com"


@pytest.mark.anyio
async def test_update_me_rejects_role_and_subject_changes(app, accounts, verifier, client_for):
    account, headers = register(accounts, verifier, "u7")
    async with client_for(app) as client:
        role = await client.put("/api/auth/me", json={"role": "admin", "email": "z@x.com"}, headers=headers)
        uid = await client.put("/api/auth/me", json={"firebase_uid": "other"}, headers=headers)
        unknown = await client.put("/api/auth/me", json={"nickname": "x"}, headers=headers)
        empty = await client.put("/api/auth/me", json={}, headers=headers)

    assert role.status_code == 400
    assert role.json()["errors"] == [{"field": "role", "msg": "not updatable by caller"}]
    assert uid.status_code == 400
    assert unknown.status_code == 400
    assert empty.status_code == 400
    stored = accounts.get(account.id)
    assert stored.role == "student"
    assert stored.email == "u7@example.com"
    assert stored.firebase_uid == "u7"


@pytest.mark.anyio
async def test_list_users_is_admin_only(app, accounts, verifier, client_for):
    _, student = register(accounts, verifier, "s1")
    _, teacher = register(accounts, verifier, "t1", role="teacher")
    _, admin = register(accounts, verifier, "a1", role="admin")
    async with client_for(app) as client:
        r_student = await client.get("/api/auth/users", headers=student)
        r_teacher = await client.get("/api/auth/users", headers=teacher)
        r_admin = await client.get("/api/auth/users", headers=admin)
        r_filtered = await client.get("/api/auth/users", params={"role": "teacher"}, headers=admin)
        r_paged = await client.get("/api/auth/users", params={"limit": 1, "offset": 1}, headers=admin)

    assert r_student.status_code == 403
    assert r_student.json()["message"] == "Insufficient permissions"
    assert r_teacher.status_code == 403
    assert r_admin.status_code == 200
    assert len(r_admin.json()["data"]) == 3
    assert [u["firebase_uid"] for u in r_filtered.json()["data"]] == ["t1"]
    assert [u["firebase_uid"] for u in r_paged.json()["data"]] == ["t1"]


@pytest.mark.anyio
async def test_admin_changes_role_and_it_applies_on_next_request(app, accounts, verifier, client_for):
    target, target_headers = register(accounts, verifier, "s2")
    _, admin = register(accounts, verifier, "a2", role="admin")
    async with client_for(app) as client:
        before = await client.get("/api/auth/users", headers=target_headers)
        r = await client.put(f"/api/auth/users/{target.id}", json={"role": "admin"}, headers=admin)
        after = await client.get("/api/auth/users", headers=target_headers)
        uid = await client.put(f"/api/auth/users/{target.id}", json={"firebase_uid": "x"}, headers=admin)
        bad_role = await client.put(f"/api/auth/users/{target.id}", json={"role": "root"}, headers=admin)
        missing = await client.put("/api/auth/users/999", json={"role": "teacher"}, headers=admin)

    assert before.status_code == 403
    assert r.status_code == 200
    assert r.json()["data"]["role"] == "admin"
    assert after.status_code == 200
    assert uid.status_code == 400
    assert bad_role.status_code == 400
    assert missing.status_code == 404


@pytest.mark.anyio
async def test_admin_delete_user(app, accounts, verifier, client_for):
    target, _ = register(accounts, verifier, "s3")
    _, student = register(accounts, verifier, "s4")
    _, admin = register(accounts, verifier, "a3", role="admin")
    async with client_for(app) as client:
        denied = await client.delete(f"/api/auth/users/{target.id}", headers=student)
        ok = await client.delete(f"/api/auth/users/{target.id}", headers=admin)
        again = await client.delete(f"/api/auth/users/{target.id}", headers=admin)
        bad_id = await client.delete("/api/auth/users/abc", headers=admin)

    assert denied.status_code == 403
    assert ok.status_code == 200
    assert ok.json() == {"success": True, "message": "User deleted successfully"}
    assert again.status_code == 404
    assert bad_id.status_code == 400
    assert accounts.get(target.id) is None


@pytest.mark.anyio
async def test_deleting_accounts_drops_enrollments_and_clears_course_owner(app, accounts, verifier, client_for):
    teacher, teacher_headers = register(accounts, verifier, "t9", role="teacher")
    learner, learner_headers = register(accounts, verifier, "s9")
    _, admin = register(accounts, verifier, "a9", role="admin")
    course = {"title": "Business English", "description": "Meetings", "level": "B2", "category": "general"}
    async with client_for(app) as client:
        created = await client.post("/api/courses", json=course, headers=teacher_headers)
        course_id = created.json()["data"]["id"]
        await client.post(f"/api/courses/{course_id}/enroll", headers=learner_headers)

        del_learner = await client.delete(f"/api/auth/users/{learner.id}", headers=admin)
        del_teacher = await client.delete(f"/api/auth/users/{teacher.id}", headers=admin)
        roster = await client.get(f"/api/courses/{course_id}/enrollments", headers=admin)
        listing = await client.get("/api/courses")
        detail = await client.get(f"/api/courses/{course_id}")

    assert del_learner.status_code == 200
    assert del_teacher.status_code == 200
    assert roster.status_code == 200
    assert roster.json()["data"] == []
    assert listing.json()["data"][0]["enrollment_count"] == 0
    assert detail.json()["data"]["teacher_id"] is None
    assert detail.json()["data"]["teacher_email"] is None
