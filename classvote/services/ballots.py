"""Ballot casting.

``cast_vote`` runs as one unit of work. The ticket flip is a conditional
update on ``used = FALSE``, and only the caller that wins it records a
ballot and increments a tally. Any failure after the flip rolls all three
writes back together.
"""

from datetime import UTC, datetime
import hashlib
import json
import secrets

from classvote.core.errors import (
    AlreadyVoted,
    InvalidCandidate,
    InvalidTicket,
    NotFound,
    TallyUpdateFailed,
    TicketExpired,
    VotingError,
)
from classvote.core.events import RESULTS_UPDATED, VOTE_NEW, EventBroker
from classvote.core.logging_config import audit_logger
from classvote.services.elections import require_live
from classvote.services.repository import NOTA, VotingRepository
from classvote.services.tickets import hash_ticket_code


def generate_ballot_hash(election_id: str, candidate_id: str, cast_at: datetime) -> str:
    """Opaque ballot reference. The random nonce keeps it unlinkable to the voter."""
    message = json.dumps(
        {
            "election_id": election_id,
            "candidate_id": candidate_id,
            "cast_at": cast_at.isoformat(),
            "nonce": secrets.token_hex(16),
        },
        sort_keys=True,
    )
    return hashlib.sha256(message.encode()).hexdigest()


def validate_candidate(election: dict, candidate_id: str) -> None:
    if candidate_id == NOTA:
        return
    if candidate_id not in {c["student_id"] for c in election["candidates"]}:
        raise InvalidCandidate()


async def cast_vote(
    repo: VotingRepository,
    student_id: str,
    election_id: str,
    candidate_id: str,
    ticket_code: str,
    now: datetime | None = None,
    broker: EventBroker | None = None,
) -> dict:
    """
    Consume a ticket and record one ballot for ``candidate_id`` (or ``"NOTA"``).

    Raises:
        NotFound: unknown election
        InvalidState: election not live at ``now``
        InvalidCandidate: target not on the ballot
        InvalidTicket: no ticket with this code for the pair
        AlreadyVoted: ticket consumed, here or by a concurrent call
        TicketExpired: ``now`` is past the ticket's expiry
        TallyUpdateFailed: the tally increment did not apply
    """
    now = now or datetime.now(UTC)
    candidate_id = str(candidate_id).strip()
    candidate_id = NOTA if candidate_id.upper() == NOTA else candidate_id.lower()
    ticket_hash = hash_ticket_code(ticket_code)

    try:
        async with repo.transaction():
            election = await repo.get_election(election_id, lock=True)
            if not election:
                raise NotFound("Election not found")

            require_live(election, now)
            validate_candidate(election, candidate_id)

            ticket = await repo.find_ticket(election["id"], student_id, ticket_hash)
            if not ticket:
                raise InvalidTicket()
            if ticket["used"]:
                raise AlreadyVoted("This ticket has already been used")
            if now > ticket["expires_at"]:
                raise TicketExpired()

            if not await repo.mark_ticket_used(ticket["id"], now):
                raise AlreadyVoted("This ticket has already been used")

            ballot = await repo.insert_ballot(
                ballot_hash=generate_ballot_hash(election["id"], candidate_id, now),
                election_id=election["id"],
                student_id=student_id,
                candidate_id=candidate_id,
                cast_at=now,
            )

            if not await repo.increment_tally(election["id"], candidate_id):
                audit_logger.log_tally_alert(election["id"], candidate_id)
                raise TallyUpdateFailed()
    except VotingError as e:
        audit_logger.log_vote_rejected(str(election_id), str(student_id), e.code)
        raise

    audit_logger.log_vote_cast(ballot["election_id"], ballot["ballot_hash"])

    if broker is not None:
        broker.publish(VOTE_NEW, {"election_id": ballot["election_id"]})
        broker.publish(RESULTS_UPDATED, {"election_id": ballot["election_id"]})

    return {
        "ballot_hash": ballot["ballot_hash"],
        "election_id": ballot["election_id"],
        "cast_at": ballot["cast_at"],
    }
