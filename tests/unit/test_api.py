"""API tests for the HTTP and WebSocket routes, backed by the in-memory repository."""

from datetime import UTC, datetime, timedelta

from classvote.core.events import VOTE_NEW
from conftest import TEST_PASSWORD, auth_headers_for


def login_student(client, identifier: str, password: str = TEST_PASSWORD):
    return client.post(
        "/auth/student/login", json={"identifier": identifier, "password": password}
    )


# ============================================
# AUTHENTICATION
# ============================================


class TestAuth:
    def test_student_login_by_email_and_usn(self, client, cohort):
        for identifier in (cohort[0]["email"], cohort[0]["usn"].lower()):
            response = login_student(client, identifier)

            assert response.status_code == 200
            data = response.json()["data"]
            assert data["token_type"] == "bearer"
            assert data["user"] == {
                "id": cohort[0]["id"],
                "name": cohort[0]["name"],
                "email": cohort[0]["email"],
                "role": "student",
            }

    def test_teacher_login_and_me(self, client, teacher):
        response = client.post(
            "/v1/auth/teacher/login",
            json={"email": teacher["email"].upper(), "password": TEST_PASSWORD},
        )
        assert response.status_code == 200
        token = response.json()["data"]["access_token"]

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["data"]["role"] == "teacher"

    def test_wrong_password_then_lockout(self, client, cohort):
        for _ in range(3):
            response = login_student(client, cohort[0]["email"], "wrong-password")
            assert response.status_code == 401
            assert response.json()["message"] == "Invalid credentials"

        response = login_student(client, cohort[0]["email"])
        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0

    def test_unknown_student_is_invalid_credentials(self, client, cohort):
        response = login_student(client, "nobody@college.edu")
        assert response.status_code == 401

    def test_expired_student_account(self, client, repo, password_hash):
        import asyncio

        student = asyncio.run(
            repo.create_student(
                usn="1RV18CS001",
                name="Alumnus",
                email="alumnus@college.edu",
                password_hash=password_hash,
                admission_year=datetime.now(UTC).year - 4,
                branch="cse",
                section="a",
            )
        )

        response = login_student(client, student["email"])
        assert response.status_code == 403
        assert response.json()["message"] == "This student account is no longer valid."

    def test_logout_revokes_token(self, client, teacher_headers):
        assert client.post("/auth/logout", headers=teacher_headers).status_code == 200

        response = client.get("/auth/me", headers=teacher_headers)
        assert response.status_code == 401
        assert response.json()["message"] == "Token has been revoked"

    def test_missing_and_garbage_tokens(self, client):
        assert client.get("/auth/me").status_code in (401, 403)
        response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


# ============================================
# REGISTRATION AND STUDENT SEARCH
# ============================================

STRONG_PASSWORD = "Ballot#Box2024"


class TestRegistration:
    def student_body(self, **overrides):
        body = {
            "usn": "1rv24cs050",
            "name": "New Student",
            "email": "new.student@college.edu",
            "password": STRONG_PASSWORD,
            "admissionYear": datetime.now(UTC).year - 1,
            "branch": "CSE",
            "section": "A",
        }
        body.update(overrides)
        return body

    def test_register_student_then_login(self, client):
        response = client.post("/v1/auth/register-student", json=self.student_body())

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["usn"] == "1RV24CS050"
        assert data["branch"] == "cse"
        assert data["section"] == "a"
        assert "password_hash" not in data

        login = login_student(client, "1RV24CS050", STRONG_PASSWORD)
        assert login.status_code == 200
        assert login.json()["data"]["user"]["id"] == data["id"]

    def test_duplicate_usn_is_bad_request(self, client, cohort):
        response = client.post(
            "/auth/register-student", json=self.student_body(usn=cohort[0]["usn"])
        )

        assert response.status_code == 400
        assert response.json()["errors"] == {"code": "duplicate_account"}

    def test_duplicate_teacher_email_is_bad_request(self, client, teacher):
        response = client.post(
            "/auth/register-teacher",
            json={"name": "Other", "email": teacher["email"], "password": STRONG_PASSWORD},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "A teacher with this email already exists"

    def test_register_teacher(self, client):
        response = client.post(
            "/auth/register-teacher",
            json={"name": "Ravi Kumar", "email": "ravi@college.edu", "password": STRONG_PASSWORD},
        )

        assert response.status_code == 201
        assert response.json()["data"]["email"] == "ravi@college.edu"

    def test_weak_password_and_bad_usn_are_rejected(self, client):
        response = client.post(
            "/auth/register-student",
            json=self.student_body(password="alllowercase", usn="CS-50"),
        )

        assert response.status_code == 422
        errors = response.json()["errors"]
        assert "body.password" in errors
        assert "body.usn" in errors

    def test_expired_admission_year_is_rejected(self, client):
        response = client.post(
            "/auth/register-student",
            json=self.student_body(admissionYear=datetime.now(UTC).year - 4),
        )
        assert response.status_code == 422

    def test_registration_disabled(self, client, monkeypatch):
        from classvote.core.config import settings

        monkeypatch.setattr(settings, "SELF_REGISTRATION_ENABLED", False)

        response = client.post("/auth/register-student", json=self.student_body())
        assert response.status_code == 403
        assert response.json()["message"] == "Registration is disabled"


class TestStudentSearch:
    def test_teacher_searches_one_cohort(self, client, teacher_headers, cohort, outsider):
        response = client.get(
            "/v1/students/search",
            params={"branch": "cse", "section": "a"},
            headers=teacher_headers,
        )

        assert response.status_code == 200
        ids = [s["id"] for s in response.json()["data"]]
        assert ids == [s["id"] for s in sorted(cohort, key=lambda s: s["usn"])]
        assert outsider["id"] not in ids

    def test_search_by_name(self, client, teacher_headers, cohort):
        response = client.get(
            "/students/search",
            params={"branch": "cse", "section": "a", "name": "Student 2"},
            headers=teacher_headers,
        )

        assert [s["usn"] for s in response.json()["data"]] == [cohort[1]["usn"]]

    def test_search_by_admission_year(self, client, teacher_headers, cohort, now):
        response = client.get(
            "/students/search",
            params={"branch": "cse", "section": "a", "admissionYear": now.year - 3},
            headers=teacher_headers,
        )
        assert response.json()["data"] == []

    def test_students_cannot_search(self, client, student_headers):
        response = client.get(
            "/students/search",
            params={"branch": "cse", "section": "a"},
            headers=student_headers,
        )
        assert response.status_code == 403


# ============================================
# ELECTIONS
# ============================================


class TestElectionRoutes:
    def election_body(self, cohort, **overrides):
        now = datetime.now(UTC)
        body = {
            "title": "CSE-A Class Representative",
            "branch": "cse",
            "section": "a",
            "start_time": (now + timedelta(minutes=5)).isoformat(),
            "end_time": (now + timedelta(hours=2)).isoformat(),
            "candidates": [cohort[0]["id"], cohort[1]["id"]],
        }
        body.update(overrides)
        return body

    def test_teacher_creates_election(self, client, cohort, teacher_headers):
        response = client.post("/elections", json=self.election_body(cohort), headers=teacher_headers)

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["branch"] == "cse"
        assert len(data["candidates"]) == 2

    def test_student_cannot_create_election(self, client, cohort, student_headers):
        response = client.post("/elections", json=self.election_body(cohort), headers=student_headers)
        assert response.status_code == 403

    def test_invalid_window_is_rejected(self, client, cohort, teacher_headers):
        now = datetime.now(UTC)
        body = self.election_body(
            cohort,
            start_time=(now + timedelta(hours=2)).isoformat(),
            end_time=(now + timedelta(hours=1)).isoformat(),
        )

        response = client.post("/elections", json=body, headers=teacher_headers)
        assert response.status_code == 422
        assert response.json()["errors"] == {"code": "invalid_election"}

    def test_student_and_teacher_lists(self, client, live_election, teacher_headers, student_headers):
        student_view = client.get("/elections/student", headers=student_headers).json()["data"]
        teacher_view = client.get("/elections/teacher", headers=teacher_headers).json()["data"]

        assert [e["id"] for e in student_view] == [live_election["id"]]
        assert "results" not in student_view[0]
        assert [e["id"] for e in teacher_view] == [live_election["id"]]
        assert "results" in teacher_view[0]

    def test_outsider_cannot_view_election(self, client, outsider, live_election):
        response = client.get(
            f"/elections/{live_election['id']}", headers=auth_headers_for(outsider, "student")
        )
        assert response.status_code == 403
        assert response.json()["errors"] == {"code": "forbidden"}

    def test_stop_election(self, client, live_election, teacher_headers, student_headers):
        response = client.post(f"/elections/{live_election['id']}/stop", headers=teacher_headers)
        assert response.status_code == 200

        again = client.post(f"/elections/{live_election['id']}/stop", headers=teacher_headers)
        assert again.status_code == 409

        ticket = client.post(
            "/tickets/request", json={"electionId": live_election["id"]}, headers=student_headers
        )
        assert ticket.status_code == 409
        assert ticket.json()["errors"] == {"code": "invalid_state"}

    def test_unknown_election_is_404(self, client, teacher_headers):
        response = client.get(
            "/elections/00000000-0000-0000-0000-000000000000", headers=teacher_headers
        )
        assert response.status_code == 404


# ============================================
# TICKETS & VOTING
# ============================================


class TestVotingFlow:
    def test_ticket_then_vote_then_replay(
        self, client, notifier, broker, cohort, live_election, student_headers
    ):
        queue = broker.subscribe()
        response = client.post(
            "/tickets/request", json={"electionId": live_election["id"]}, headers=student_headers
        )
        assert response.status_code == 200
        assert response.json()["data"]["expires_in_seconds"] == 300
        assert notifier.last_code() not in response.text

        vote = {
            "electionId": live_election["id"],
            "candidateId": cohort[0]["id"],
            "ticket": notifier.last_code(),
        }
        response = client.post("/vote", json=vote, headers=student_headers)
        assert response.status_code == 200
        assert len(response.json()["data"]["ballot_hash"]) == 64
        assert queue.get_nowait()["event"] == VOTE_NEW

        replay = client.post("/vote", json=vote, headers=student_headers)
        assert replay.status_code == 409
        assert replay.json()["errors"] == {"code": "already_voted"}

    def test_bad_ticket_and_bad_candidate(
        self, client, notifier, cohort, live_election, student_headers
    ):
        client.post(
            "/tickets/request", json={"electionId": live_election["id"]}, headers=student_headers
        )
        base = {"electionId": live_election["id"], "ticket": notifier.last_code()}

        wrong_candidate = client.post(
            "/vote", json={**base, "candidateId": cohort[4]["id"]}, headers=student_headers
        )
        assert wrong_candidate.status_code == 422
        assert wrong_candidate.json()["errors"] == {"code": "invalid_candidate"}

        wrong_ticket = client.post(
            "/vote",
            json={**base, "candidateId": "NOTA", "ticket": "FFFFFFFFFFFFFFFF"},
            headers=student_headers,
        )
        assert wrong_ticket.status_code == 400
        assert wrong_ticket.json()["errors"] == {"code": "invalid_ticket"}

    def test_delivery_failure_is_502(self, client, notifier, live_election, student_headers):
        notifier.fail = True

        response = client.post(
            "/tickets/request", json={"electionId": live_election["id"]}, headers=student_headers
        )
        assert response.status_code == 502
        assert response.json()["errors"] == {"code": "delivery_failed"}

    def test_teacher_cannot_request_ticket(self, client, live_election, teacher_headers):
        response = client.post(
            "/tickets/request", json={"electionId": live_election["id"]}, headers=teacher_headers
        )
        assert response.status_code == 403

    def test_malformed_vote_body(self, client, student_headers):
        response = client.post("/vote", json={"electionId": "nope"}, headers=student_headers)
        assert response.status_code == 422
        assert response.json()["message"] == "Validation failed"


# ============================================
# RESULTS, FEED & EVENTS
# ============================================


class TestResultsAndFeed:
    def test_results_visibility(self, client, live_election, teacher_headers, student_headers):
        teacher_view = client.get(
            f"/elections/{live_election['id']}/results", headers=teacher_headers
        )
        assert teacher_view.status_code == 200
        assert teacher_view.json()["data"]["turnout"]["eligible_voters"] == 5

        student_view = client.get(
            f"/elections/{live_election['id']}/results", headers=student_headers
        )
        assert student_view.status_code == 409

    def test_recent_transactions(self, client, notifier, cohort, live_election, student_headers):
        client.post(
            "/tickets/request", json={"electionId": live_election["id"]}, headers=student_headers
        )
        client.post(
            "/vote",
            json={
                "electionId": live_election["id"],
                "candidateId": "NOTA",
                "ticket": notifier.last_code(),
            },
            headers=student_headers,
        )

        response = client.get("/transactions/recent?limit=5", headers=student_headers)
        assert response.status_code == 200
        feed = response.json()["data"]
        assert len(feed) == 1
        assert feed[0]["election_title"] == live_election["title"]

    def test_event_stream(self, client, broker):
        with client.websocket_connect("/ws/events") as websocket:
            websocket.portal.call(broker.publish, VOTE_NEW, {"election_id": "e1"})
            message = websocket.receive_json()

        assert message["event"] == VOTE_NEW
        assert message["data"] == {"election_id": "e1"}
        assert broker.subscriber_count == 0


def test_health_without_database(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["checks"]["database"]["status"] == "unavailable"
    assert response.headers["X-Frame-Options"] == "DENY"
