"""
Course API tests: public catalogue, creation, owner/admin update and delete.

Covers:
- Catalogue and detail are public; list results carry `enrollment_count`.
- Only teachers and admins create courses; the caller becomes the owner.
- Update/delete of an unknown id is 404 for every role.
- Update/delete by a non-owner non-admin is 403, even with a valid body.
- `teacher_id` is admin-mutable and must name an instructor account.
"""
from __future__ import annotations

import pytest

from utils.identity import register

pytestmark = pytest.mark.anyio("asyncio")

COURSE = {"title": "Medical English", "description": "Clinical vocabulary", "level": "B1", "category": "medical"}


@pytest.mark.anyio
async def test_teacher_creates_course_and_owns_it(app, accounts, verifier, client_for):
    teacher, headers = register(accounts, verifier, "t1", role="teacher", email="t1@school.org")
    async with client_for(app) as client:
        r = await client.post("/api/courses", json={**COURSE, "title": "  Medical English  "}, headers=headers)
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["title"] == "Medical English"
    assert data["teacher_id"] == teacher.id
    assert data["teacher_email"] == "t1@school.org"
    assert r.headers.get("Cache-Control") == "private, no-store"


@pytest.mark.anyio
async def test_create_requires_instructor_role_and_valid_fields(app, accounts, verifier, client_for):
    _, student = register(accounts, verifier, "s1")
    _, admin = register(accounts, verifier, "a1", role="admin")
    async with client_for(app) as client:
        r_anon = await client.post("/api/courses", json=COURSE)
        r_student = await client.post("/api/courses", json=COURSE, headers=student)
        r_admin = await client.post("/api/courses", json=COURSE, headers=admin)
        r_level = await client.post("/api/courses", json={**COURSE, "level": "C2"}, headers=admin)
        r_category = await client.post("/api/courses", json={**COURSE, "category": "law"}, headers=admin)
        r_blank = await client.post("/api/courses", json={**COURSE, "title": "   "}, headers=admin)
        r_long = await client.post("/api/courses", json={**COURSE, "title": "x" * 201}, headers=admin)

    assert r_anon.status_code == 401
    assert r_student.status_code == 403
    assert r_admin.status_code == 201
    for r, field in ((r_level, "level"), (r_category, "category"), (r_blank, "title"), (r_long, "title")):
        assert r.status_code == 400
        assert r.json()["errors"][0]["field"] == field


@pytest.mark.anyio
async def test_catalogue_is_public_with_filters(app, accounts, courses, verifier, client_for):
    teacher, _ = register(accounts, verifier, "t2", role="teacher")
    learner, _ = register(accounts, verifier, "s2")
    c1 = courses.create_course(title="Anatomy Basics", description="Body parts", level="A1", category="medical", teacher_id=teacher.id)
    courses.create_course(title="Bridges", description="Structural terms", level="B2", category="engineering", teacher_id=teacher.id)
    courses.create_course(title="Small Talk", description="Everyday anatomy jokes", level="A1", category="general", teacher_id=teacher.id)
    courses.enroll(c1.id, learner.id)

    async with client_for(app) as client:
        everything = await client.get("/api/courses")
        by_level = await client.get("/api/courses", params={"level": "A1"})
        by_category = await client.get("/api/courses", params={"category": "engineering"})
        by_search = await client.get("/api/courses", params={"search": "anatomy"})
        paged = await client.get("/api/courses", params={"limit": 1, "offset": 1})
        bad_level = await client.get("/api/courses", params={"level": "Z1"})
        detail = await client.get(f"/api/courses/{c1.id}")
        missing = await client.get("/api/courses/999")

    assert everything.status_code == 200
    items = everything.json()["data"]
    assert [c["title"] for c in items] == ["Anatomy Basics", "Bridges", "Small Talk"]
    assert items[0]["enrollment_count"] == 1
    assert items[1]["enrollment_count"] == 0
    assert {c["title"] for c in by_level.json()["data"]} == {"Anatomy Basics", "Small Talk"}
    assert [c["title"] for c in by_category.json()["data"]] == ["Bridges"]
    assert {c["title"] for c in by_search.json()["data"]} == {"Anatomy Basics", "Small Talk"}
    assert [c["title"] for c in paged.json()["data"]] == ["Bridges"]
    assert bad_level.status_code == 400
    assert detail.status_code == 200
    assert detail.json()["data"]["id"] == c1.id
    assert missing.status_code == 404
    assert missing.json()["message"] == "Course not found"


@pytest.mark.anyio
async def test_update_and_delete_unknown_course_is_404_for_every_role(app, accounts, verifier, client_for):
    _, student = register(accounts, verifier, "s3")
    _, teacher = register(accounts, verifier, "t3", role="teacher")
    _, admin = register(accounts, verifier, "a3", role="admin")
    async with client_for(app) as client:
        for headers in (student, teacher, admin):
            r_put = await client.put("/api/courses/4242", json={"title": "New"}, headers=headers)
            r_del = await client.delete("/api/courses/4242", headers=headers)
            assert r_put.status_code == 404
            assert r_put.json()["message"] == "Course not found"
            assert r_del.status_code == 404


@pytest.mark.anyio
async def test_non_owner_cannot_update_or_delete(app, accounts, courses, verifier, client_for):
    owner, _ = register(accounts, verifier, "t4", role="teacher")
    _, other = register(accounts, verifier, "t5", role="teacher")
    _, student = register(accounts, verifier, "s4")
    course = courses.create_course(teacher_id=owner.id, **COURSE)
    async with client_for(app) as client:
        r_put = await client.put(f"/api/courses/{course.id}", json={"title": "Valid title"}, headers=other)
        r_del = await client.delete(f"/api/courses/{course.id}", headers=other)
        r_student = await client.put(f"/api/courses/{course.id}", json={"title": "Valid title"}, headers=student)

    assert r_put.status_code == 403
    assert r_put.json()["message"] == "Not authorized to update this course"
    assert r_del.status_code == 403
    assert r_del.json()["message"] == "Not authorized to delete this course"
    assert r_student.status_code == 403
    assert courses.get_course(course.id).title == COURSE["title"]


@pytest.mark.anyio
async def test_owner_updates_descriptive_fields_only(app, accounts, courses, verifier, client_for):
    owner, headers = register(accounts, verifier, "t6", role="teacher")
    other, _ = register(accounts, verifier, "t7", role="teacher")
    course = courses.create_course(teacher_id=owner.id, **COURSE)
    async with client_for(app) as client:
        ok = await client.put(f"/api/courses/{course.id}", json={"title": "Advanced", "level": "C1"}, headers=headers)
        reassign = await client.put(f"/api/courses/{course.id}", json={"teacher_id": other.id}, headers=headers)
        unknown = await client.put(f"/api/courses/{course.id}", json={"price": 10}, headers=headers)
        null = await client.put(f"/api/courses/{course.id}", json={"title": None}, headers=headers)
        bad_level = await client.put(f"/api/courses/{course.id}", json={"level": "D1"}, headers=headers)

    assert ok.status_code == 200
    assert ok.json()["data"]["title"] == "Advanced"
    assert ok.json()["data"]["level"] == "C1"
    assert reassign.status_code == 400
    assert reassign.json()["errors"] == [{"field": "teacher_id", "msg": "not updatable by caller"}]
    assert unknown.status_code == 400
    assert null.status_code == 400
    assert bad_level.status_code == 400
    stored = courses.get_course(course.id)
    assert stored.teacher_id == owner.id
    assert stored.level == "C1"


@pytest.mark.anyio
async def test_admin_reassigns_owner_to_instructor_only(app, accounts, courses, verifier, client_for):
    owner, _ = register(accounts, verifier, "t8", role="teacher")
    successor, _ = register(accounts, verifier, "t9", role="teacher")
    learner, _ = register(accounts, verifier, "s5")
    _, admin = register(accounts, verifier, "a4", role="admin")
    course = courses.create_course(teacher_id=owner.id, **COURSE)
    async with client_for(app) as client:
        to_student = await client.put(f"/api/courses/{course.id}", json={"teacher_id": learner.id}, headers=admin)
        to_nobody = await client.put(f"/api/courses/{course.id}", json={"teacher_id": 999}, headers=admin)
        to_teacher = await client.put(f"/api/courses/{course.id}", json={"teacher_id": successor.id, "title": "Renamed"}, headers=admin)

    assert to_student.status_code == 400
    assert to_nobody.status_code == 400
    assert to_teacher.status_code == 200
    assert to_teacher.json()["data"]["teacher_id"] == successor.id
    assert to_teacher.json()["data"]["title"] == "Renamed"


@pytest.mark.anyio
async def test_owner_and_admin_delete(app, accounts, courses, verifier, client_for):
    owner, owner_headers = register(accounts, verifier, "t10", role="teacher")
    _, admin = register(accounts, verifier, "a5", role="admin")
    mine = courses.create_course(teacher_id=owner.id, **COURSE)
    theirs = courses.create_course(teacher_id=owner.id, **COURSE)
    async with client_for(app) as client:
        r_owner = await client.delete(f"/api/courses/{mine.id}", headers=owner_headers)
        r_admin = await client.delete(f"/api/courses/{theirs.id}", headers=admin)
        r_again = await client.delete(f"/api/courses/{mine.id}", headers=owner_headers)

    assert r_owner.status_code == 200
    assert r_owner.json() == {"success": True, "message": "Course deleted successfully"}
    assert r_admin.status_code == 200
    assert r_again.status_code == 404
    assert courses.get_course(mine.id) is None


@pytest.mark.anyio
async def test_non_integer_course_id_is_400(app, accounts, verifier, client_for):
    _, admin = register(accounts, verifier, "a6", role="admin")
    async with client_for(app) as client:
        r = await client.put("/api/courses/abc", json={"title": "x"}, headers=admin)
        r_get = await client.get("/api/courses/abc")
    assert r.status_code == 400
    assert r_get.status_code == 400
