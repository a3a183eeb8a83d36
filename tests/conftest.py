"""
Pytest configuration and fixtures for the class voting backend tests.

This module provides:
- Test environment variables (set before the app is imported)
- In-memory repository and notifier fakes
- A seeded cohort: one teacher, students and a live election
- FastAPI test client wired to the fakes
- Authentication header helpers
"""

import os

# Settings are read at import time
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test_secret_key_for_testing_only"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SELF_REGISTRATION_ENABLED"] = "true"

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from classvote.core.events import EventBroker
from classvote.core.rate_limiting import InMemoryAttemptStore, LoginRateLimiter
from classvote.core.security import create_access_token, hash_password
from classvote.core.token_revocation import InMemoryRevokedTokenStore, TokenRevocationList
from classvote.services import elections as election_service
from fakes import InMemoryVotingRepository, RecordingNotifier

TEST_PASSWORD = "testpass123"


@pytest.fixture(scope="session")
def password_hash() -> str:
    """Argon2 hash of the shared test password, computed once."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture
def now() -> datetime:
    return datetime.now(UTC)


@pytest.fixture
def repo() -> InMemoryVotingRepository:
    return InMemoryVotingRepository()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def broker() -> EventBroker:
    return EventBroker()


@pytest.fixture
async def teacher(repo, password_hash) -> dict[str, Any]:
    return await repo.create_teacher(
        name="Asha Rao", email="asha.rao@college.edu", password_hash=password_hash
    )


@pytest.fixture
async def cohort(repo, password_hash, now) -> list[dict[str, Any]]:
    """Five students of CSE section A admitted last year."""
    students = []
    for n in range(1, 6):
        students.append(
            await repo.create_student(
                usn=f"1RV24CS{n:03d}",
                name=f"Student {n}",
                email=f"student{n}@college.edu",
                password_hash=password_hash,
                admission_year=now.year - 1,
                branch="cse",
                section="a",
            )
        )
    return students


@pytest.fixture
async def outsider(repo, password_hash, now) -> dict[str, Any]:
    """A student from another section."""
    return await repo.create_student(
        usn="1RV24EC001",
        name="Outsider",
        email="outsider@college.edu",
        password_hash=password_hash,
        admission_year=now.year - 1,
        branch="ece",
        section="b",
    )


@pytest.fixture
async def live_election(repo, teacher, cohort, now) -> dict[str, Any]:
    """An election that opened an hour ago and closes in an hour."""
    return await election_service.create_election(
        repo,
        teacher_id=teacher["id"],
        title="CSE-A Class Representative",
        branch="cse",
        section="a",
        start_time=now - timedelta(hours=1),
        end_time=now + timedelta(hours=1),
        candidate_ids=[cohort[0]["id"], cohort[1]["id"]],
        now=now - timedelta(hours=2),
    )


@pytest.fixture
def client(repo, notifier, broker):
    """FastAPI test client with the repository, notifier and broker replaced."""
    from fastapi.testclient import TestClient

    from classvote.api.deps import get_event_broker, get_notifier, get_repository
    from classvote.main import app

    app.dependency_overrides[get_repository] = lambda: repo
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_event_broker] = lambda: broker
    app.state.login_rate_limiter = LoginRateLimiter(
        InMemoryAttemptStore(), max_attempts=3, window_seconds=900
    )
    app.state.token_revocation = TokenRevocationList(InMemoryRevokedTokenStore())

    yield TestClient(app)

    app.dependency_overrides.clear()


def auth_headers_for(account: dict[str, Any], role: str) -> dict[str, str]:
    token, _, _ = create_access_token(account["id"], role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def teacher_headers(teacher) -> dict[str, str]:
    return auth_headers_for(teacher, "teacher")


@pytest.fixture
def student_headers(cohort) -> dict[str, str]:
    return auth_headers_for(cohort[2], "student")
