"""Voting ticket issuance.

A ticket is a single-use capability for one (election, student) pair. Only
its SHA-256 hash is stored; the plaintext code goes out by email and nowhere
else.
"""

from datetime import UTC, datetime, timedelta
from typing import Protocol
import hashlib
import secrets

from classvote.core.config import settings
from classvote.core.errors import AlreadyVoted, DeliveryFailed, Forbidden, NotFound
from classvote.core.logging_config import audit_logger, get_logger
from classvote.services.eligibility import is_eligible
from classvote.services.elections import require_live
from classvote.services.repository import VotingRepository

logger = get_logger(__name__)


class TicketNotifier(Protocol):
    async def send_voting_ticket(
        self, to_email: str, ticket_code: str, election_title: str
    ) -> bool: ...


def generate_ticket_code(length: int | None = None) -> str:
    """Random uppercase hex code. The default length carries 64 bits."""
    length = length or settings.TICKET_CODE_LENGTH
    return secrets.token_hex((length + 1) // 2)[:length].upper()


def hash_ticket_code(code: str) -> str:
    """Hash a ticket code for storage and lookup. Codes are case-insensitive."""
    return hashlib.sha256(code.strip().upper().encode()).hexdigest()


async def request_ticket(
    repo: VotingRepository,
    notifier: TicketNotifier,
    student_id: str,
    election_id: str,
    now: datetime | None = None,
) -> dict:
    """
    Issue a fresh ticket for a student and email it.

    Any unused ticket the student already holds for this election is
    invalidated. If the email cannot be sent, the new ticket is withdrawn and
    ``DeliveryFailed`` is raised.

    Raises:
        NotFound: unknown student or election
        Forbidden: student outside the election's cohort
        InvalidState: election not live
        AlreadyVoted: the student already consumed a ticket
        DeliveryFailed: the notifier reported failure
    """
    now = now or datetime.now(UTC)

    student = await repo.get_student(student_id)
    if not student:
        raise NotFound("Student not found")

    election = await repo.get_election(election_id)
    if not election:
        raise NotFound("Election not found")

    if not is_eligible(student, election):
        raise Forbidden("You are not eligible for this election")

    require_live(election, now)

    if await repo.find_used_ticket(election["id"], student["id"]):
        raise AlreadyVoted("You have already voted in this election")

    code = generate_ticket_code()
    ticket_hash = hash_ticket_code(code)
    expires_at = now + timedelta(minutes=settings.TICKET_TTL_MINUTES)

    ticket = await repo.replace_unused_ticket(
        election_id=election["id"],
        student_id=student["id"],
        ticket_hash=ticket_hash,
        email=student["email"].lower(),
        expires_at=expires_at,
        created_at=now,
    )

    # The ticket is committed before dispatch; no lock is held during the send
    try:
        delivered = await notifier.send_voting_ticket(
            student["email"], code, election["title"]
        )
    except Exception as e:
        logger.error(f"Ticket notifier raised for election {election['id']}: {e}")
        delivered = False

    if not delivered:
        await repo.delete_unused_ticket(ticket["id"], ticket_hash)
        audit_logger.log_ticket_delivery_failed(election["id"], student["id"])
        raise DeliveryFailed()

    audit_logger.log_ticket_issued(election["id"], student["id"], expires_at)
    return {
        "election_id": election["id"],
        "expires_at": expires_at,
        "expires_in_seconds": settings.TICKET_TTL_MINUTES * 60,
    }
