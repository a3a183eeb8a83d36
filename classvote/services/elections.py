"""Election lifecycle rules and teacher/student election views.

Status is always derived from ``(now, start_time, end_time)``; it is never
read from storage.
"""

from datetime import UTC, datetime

from classvote.core.errors import Forbidden, InvalidElection, InvalidState, NotFound
from classvote.core.logging_config import audit_logger, get_logger
from classvote.services.eligibility import is_eligible
from classvote.services.repository import VotingRepository

logger = get_logger(__name__)

PENDING = "pending"
LIVE = "live"
CLOSED = "closed"


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def election_status(start_time: datetime, end_time: datetime, now: datetime) -> str:
    if now < start_time:
        return PENDING
    if now <= end_time:
        return LIVE
    return CLOSED


def require_live(election: dict, now: datetime) -> None:
    """Raise ``InvalidState`` unless ``start_time <= now <= end_time``."""
    status = election_status(election["start_time"], election["end_time"], now)
    if status == PENDING:
        raise InvalidState("Election has not started yet")
    if status == CLOSED:
        raise InvalidState("Election has ended")


def present_election(
    election: dict, now: datetime, include_results: bool = True
) -> dict:
    """Shape an election for API output.

    Students only see counts once the election has closed.
    """
    status = election_status(election["start_time"], election["end_time"], now)
    view = {
        "id": election["id"],
        "title": election["title"],
        "description": election.get("description") or "",
        "branch": election["branch"],
        "section": election["section"],
        "admission_year": election.get("admission_year"),
        "start_time": election["start_time"],
        "end_time": election["end_time"],
        "created_by": election["created_by"],
        "created_by_name": election.get("created_by_name"),
        "status": status,
        "candidates": [
            {"id": c["student_id"], "name": c["name"], "usn": c["usn"]}
            for c in election["candidates"]
        ],
    }
    if include_results or status == CLOSED:
        view["results"] = {c["student_id"]: c["votes"] for c in election["candidates"]}
        view["nota_votes"] = election.get("nota_votes", 0)
    return view


# ============================================
# TEACHER OPERATIONS
# ============================================


async def create_election(
    repo: VotingRepository,
    teacher_id: str,
    title: str,
    branch: str,
    section: str,
    start_time: datetime,
    end_time: datetime,
    candidate_ids: list[str],
    description: str = "",
    admission_year: int | None = None,
    now: datetime | None = None,
) -> dict:
    """Create an election for a cohort with candidates drawn from that cohort."""
    now = now or datetime.now(UTC)
    start_time = as_utc(start_time)
    end_time = as_utc(end_time)
    branch = branch.strip().lower()
    section = section.strip().lower()

    teacher = await repo.get_teacher(teacher_id)
    if not teacher:
        raise NotFound("Teacher not found")

    if start_time >= end_time:
        raise InvalidElection("Election start time must be before its end time")
    if end_time <= now:
        raise InvalidElection("Election end time must be in the future")
    if not candidate_ids:
        raise InvalidElection("An election needs at least one candidate")
    if len(set(candidate_ids)) != len(candidate_ids):
        raise InvalidElection("Candidates must not be listed twice")

    students = {s["id"]: s for s in await repo.get_students_by_ids(candidate_ids)}
    candidates = []
    for candidate_id in candidate_ids:
        student = students.get(str(candidate_id))
        if not student:
            raise InvalidElection(f"Candidate {candidate_id} is not a registered student")
        if student["branch"] != branch or student["section"] != section:
            raise InvalidElection(f"Candidate {student['usn']} is not in this cohort")
        candidates.append(
            {"student_id": student["id"], "name": student["name"], "usn": student["usn"]}
        )

    election = await repo.create_election(
        title=title,
        description=description,
        branch=branch,
        section=section,
        admission_year=admission_year,
        start_time=start_time,
        end_time=end_time,
        created_by=teacher_id,
        candidates=candidates,
    )
    logger.info(f"Election created: {election['title']} ({election['id']})")
    return election


async def stop_election(
    repo: VotingRepository,
    teacher_id: str,
    election_id: str,
    now: datetime | None = None,
) -> dict:
    """Close a live or pending election immediately by moving its end time to now."""
    now = now or datetime.now(UTC)

    election = await repo.get_election(election_id)
    if not election or election["created_by"] != str(teacher_id):
        raise NotFound("Election not found or you are not the creator")

    if election_status(election["start_time"], election["end_time"], now) == CLOSED:
        raise InvalidState("Election has already ended")

    stopped = await repo.close_election(election_id, teacher_id, now)
    if not stopped:
        raise InvalidState("Election has already ended")

    audit_logger.log_election_stopped(str(election_id), str(teacher_id))
    return stopped


async def list_elections_for_teacher(
    repo: VotingRepository, teacher_id: str, now: datetime | None = None
) -> list[dict]:
    now = now or datetime.now(UTC)
    elections = await repo.list_elections_by_creator(teacher_id)
    return [present_election(e, now) for e in elections]


# ============================================
# STUDENT OPERATIONS
# ============================================


async def _ticket_state(
    repo: VotingRepository, election: dict, student_id: str, now: datetime
) -> dict:
    """Per-student voting state for an election."""
    if await repo.find_used_ticket(election["id"], student_id):
        return {"user_voted": True, "has_active_ticket": False, "ticket_expires_at": None}

    ticket = await repo.find_unused_ticket(election["id"], student_id)
    live = election_status(election["start_time"], election["end_time"], now) == LIVE
    if ticket and live and now <= ticket["expires_at"]:
        return {
            "user_voted": False,
            "has_active_ticket": True,
            "ticket_expires_at": ticket["expires_at"],
        }
    return {"user_voted": False, "has_active_ticket": False, "ticket_expires_at": None}


async def list_elections_for_student(
    repo: VotingRepository, student_id: str, now: datetime | None = None
) -> list[dict]:
    """Elections in the student's cohort, with whether they voted."""
    now = now or datetime.now(UTC)
    student = await repo.get_student(student_id)
    if not student:
        raise NotFound("Student not found")

    elections = await repo.list_elections_for_cohort(student["branch"], student["section"])
    views = []
    for election in elections:
        view = present_election(election, now, include_results=False)
        view.update(await _ticket_state(repo, election, student["id"], now))
        views.append(view)
    return views


async def get_election_for_user(
    repo: VotingRepository,
    election_id: str,
    user_id: str,
    role: str,
    now: datetime | None = None,
) -> dict:
    """Single election view. Students must be eligible, teachers must own it."""
    now = now or datetime.now(UTC)
    election = await repo.get_election(election_id)
    if not election:
        raise NotFound("Election not found")

    if role == "teacher":
        if election["created_by"] != str(user_id):
            raise Forbidden("Not authorized for this election")
        return present_election(election, now)

    student = await repo.get_student(user_id)
    if not student or not is_eligible(student, election):
        raise Forbidden("Not authorized for this election")

    view = present_election(election, now, include_results=False)
    view.update(await _ticket_state(repo, election, student["id"], now))
    return view
