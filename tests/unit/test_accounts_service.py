"""Unit tests for account registration and cohort search."""

from datetime import UTC, datetime

import pytest

from classvote.core.errors import DuplicateAccount
from classvote.core.security import verify_password
from classvote.services import accounts as account_service

STRONG_PASSWORD = "Ballot#Box2024"


async def register(repo, **overrides):
    fields = {
        "usn": "1rv24cs050",
        "name": "New Student",
        "email": "New.Student@College.edu",
        "password": STRONG_PASSWORD,
        "admission_year": datetime.now(UTC).year - 1,
        "branch": "cse",
        "section": "a",
    }
    fields.update(overrides)
    return await account_service.register_student(repo, **fields)


class TestRegisterStudent:
    @pytest.mark.asyncio
    async def test_register_normalizes_and_hashes(self, repo):
        student = await register(repo)

        assert student["usn"] == "1RV24CS050"
        assert student["email"] == "new.student@college.edu"
        assert "password_hash" not in student

        stored = repo.students[student["id"]]
        assert stored["password_hash"] != STRONG_PASSWORD
        assert stored["password_hash"].startswith("$argon2")
        assert verify_password(STRONG_PASSWORD, stored["password_hash"])

    @pytest.mark.asyncio
    async def test_duplicate_email_is_rejected(self, repo, cohort):
        with pytest.raises(DuplicateAccount) as exc_info:
            await register(repo, email=cohort[0]["email"].upper())

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "A student with this email already exists"

    @pytest.mark.asyncio
    async def test_duplicate_usn_is_rejected(self, repo, cohort):
        with pytest.raises(DuplicateAccount) as exc_info:
            await register(repo, usn=cohort[0]["usn"].lower())

        assert exc_info.value.message == "A student with this USN already exists"
        assert len(repo.students) == len(cohort)


class TestRegisterTeacher:
    @pytest.mark.asyncio
    async def test_register_teacher(self, repo):
        teacher = await account_service.register_teacher(
            repo, name="Ravi Kumar", email=" Ravi@College.edu ", password=STRONG_PASSWORD
        )

        assert teacher == {
            "id": teacher["id"],
            "name": "Ravi Kumar",
            "email": "ravi@college.edu",
        }
        stored = repo.teachers[teacher["id"]]
        assert verify_password(STRONG_PASSWORD, stored["password_hash"])

    @pytest.mark.asyncio
    async def test_duplicate_teacher_email_is_rejected(self, repo, teacher):
        with pytest.raises(DuplicateAccount):
            await account_service.register_teacher(
                repo, name="Someone", email=teacher["email"], password=STRONG_PASSWORD
            )


class TestSearchStudents:
    @pytest.mark.asyncio
    async def test_search_is_scoped_to_cohort(self, repo, cohort, outsider):
        results = await account_service.search_students(repo, "CSE", "A")

        assert [s["usn"] for s in results] == sorted(s["usn"] for s in cohort)
        assert outsider["id"] not in {s["id"] for s in results}
        assert set(results[0]) == {"id", "name", "usn", "admission_year"}

    @pytest.mark.asyncio
    async def test_search_by_name_or_usn_fragment(self, repo, cohort):
        by_name = await account_service.search_students(repo, "cse", "a", query="student 3")
        by_usn = await account_service.search_students(repo, "cse", "a", query="cs004")

        assert [s["id"] for s in by_name] == [cohort[2]["id"]]
        assert [s["id"] for s in by_usn] == [cohort[3]["id"]]

    @pytest.mark.asyncio
    async def test_search_filters_admission_year(self, repo, cohort, now):
        assert await account_service.search_students(
            repo, "cse", "a", admission_year=now.year - 2
        ) == []
        assert len(
            await account_service.search_students(repo, "cse", "a", admission_year=now.year - 1)
        ) == len(cohort)

    @pytest.mark.asyncio
    async def test_search_limits(self, repo, password_hash, now):
        for n in range(60):
            await repo.create_student(
                usn=f"1RV24ME{n:03d}",
                name=f"Mech {n}",
                email=f"mech{n}@college.edu",
                password_hash=password_hash,
                admission_year=now.year - 1,
                branch="me",
                section="b",
            )

        unnamed = await account_service.search_students(repo, "me", "b")
        named = await account_service.search_students(repo, "me", "b", query="mech")

        assert len(unnamed) == account_service.SEARCH_LIMIT
        assert len(named) == account_service.NAMED_SEARCH_LIMIT
        assert named[0]["usn"] == "1RV24ME000"


def test_active_admission_years():
    today = datetime(2026, 6, 1, tzinfo=UTC)

    assert list(account_service.active_admission_years(today)) == [2023, 2024, 2025, 2026]
    assert account_service.is_active_student({"admission_year": 2023}, today)
    assert not account_service.is_active_student({"admission_year": 2022}, today)
