"""Student and teacher accounts: registration, validity and cohort search."""

from datetime import UTC, datetime

from classvote.core.errors import DuplicateAccount
from classvote.core.logging_config import audit_logger, get_logger
from classvote.core.security import hash_password
from classvote.services.repository import VotingRepository

logger = get_logger(__name__)

# Students can log in during the four years after admission
STUDENT_ACCOUNT_YEARS = 4

SEARCH_LIMIT = 50
NAMED_SEARCH_LIMIT = 10


def is_active_student(student: dict, today: datetime | None = None) -> bool:
    year = (today or datetime.now(UTC)).year
    return 0 <= year - student["admission_year"] < STUDENT_ACCOUNT_YEARS


def active_admission_years(today: datetime | None = None) -> range:
    """Admission years whose students currently hold valid accounts."""
    year = (today or datetime.now(UTC)).year
    return range(year - STUDENT_ACCOUNT_YEARS + 1, year + 1)


async def register_student(
    repo: VotingRepository,
    usn: str,
    name: str,
    email: str,
    password: str,
    admission_year: int,
    branch: str,
    section: str,
    gender: str | None = None,
) -> dict:
    """
    Create a student account.

    Raises:
        DuplicateAccount: the email or USN is taken
    """
    usn = usn.strip().upper()
    email = email.strip().lower()

    for identifier in (email, usn):
        existing = await repo.get_student_by_login(identifier)
        if existing:
            raise DuplicateAccount(
                "A student with this email already exists"
                if existing["email"] == email
                else "A student with this USN already exists"
            )

    student = await repo.create_student(
        usn=usn,
        name=name,
        email=email,
        password_hash=hash_password(password),
        admission_year=admission_year,
        branch=branch,
        section=section,
        gender=gender,
    )
    audit_logger.log_account_registered(student["id"], "student", email)
    return _public_account(student, ("usn", "admission_year", "branch", "section"))


async def register_teacher(
    repo: VotingRepository, name: str, email: str, password: str
) -> dict:
    """
    Create a teacher account.

    Raises:
        DuplicateAccount: the email is taken
    """
    email = email.strip().lower()
    if await repo.get_teacher_by_email(email):
        raise DuplicateAccount("A teacher with this email already exists")

    teacher = await repo.create_teacher(
        name=name, email=email, password_hash=hash_password(password)
    )
    audit_logger.log_account_registered(teacher["id"], "teacher", email)
    return _public_account(teacher)


async def search_students(
    repo: VotingRepository,
    branch: str,
    section: str,
    admission_year: int | None = None,
    query: str | None = None,
) -> list[dict]:
    """
    Find students of a cohort to put on a ballot.

    ``query`` matches a fragment of the name or USN, case-insensitively. A
    named search returns the first 10 matches, an unnamed one the first 50.
    """
    query = query.strip() if query else None
    students = await repo.search_students(
        branch.strip().lower(),
        section.strip().lower(),
        admission_year=admission_year,
        query=query or None,
        limit=NAMED_SEARCH_LIMIT if query else SEARCH_LIMIT,
    )
    return [
        {
            "id": s["id"],
            "name": s["name"],
            "usn": s["usn"],
            "admission_year": s["admission_year"],
        }
        for s in students
    ]


def _public_account(account: dict, extra: tuple[str, ...] = ()) -> dict:
    return {k: account[k] for k in ("id", "name", "email", *extra)}
