"""Read-only tally projection, winners and turnout."""

from datetime import UTC, datetime

from classvote.core.errors import Forbidden, InvalidState, NotFound
from classvote.core.logging_config import get_logger
from classvote.services.elections import CLOSED, election_status
from classvote.services.eligibility import resolve_eligibility
from classvote.services.repository import NOTA, VotingRepository

logger = get_logger(__name__)


def compute_winners(tallies: dict[str, int]) -> list[str]:
    """Candidates tied at the highest count. Nobody wins with zero votes."""
    if not tallies:
        return []
    top = max(tallies.values())
    if top == 0:
        return []
    return [candidate_id for candidate_id, votes in tallies.items() if votes == top]


async def get_results(
    repo: VotingRepository, election_id: str, now: datetime | None = None
) -> dict:
    """Per-candidate and NOTA counts for an election."""
    now = now or datetime.now(UTC)
    election = await repo.get_election(election_id)
    if not election:
        raise NotFound("Election not found")

    tallies = {c["student_id"]: c["votes"] for c in election["candidates"]}
    nota_votes = election.get("nota_votes", 0)
    total_votes = sum(tallies.values()) + nota_votes
    total_ballots = await repo.count_ballots(election["id"])
    if total_votes != total_ballots:
        logger.error(
            f"Tally mismatch for election {election['id']}: "
            f"{total_votes} counted vs {total_ballots} ballots"
        )

    winners = compute_winners(tallies)
    eligible = await repo.count_cohort(election["branch"], election["section"])

    return {
        "election_id": election["id"],
        "title": election["title"],
        "status": election_status(election["start_time"], election["end_time"], now),
        "candidates": [
            {
                "id": c["student_id"],
                "name": c["name"],
                "usn": c["usn"],
                "votes": c["votes"],
            }
            for c in election["candidates"]
        ],
        "results": {**tallies, NOTA: nota_votes},
        "nota_votes": nota_votes,
        "total_votes": total_votes,
        "total_ballots": total_ballots,
        "winners": winners,
        "is_tie": len(winners) > 1,
        "turnout": {
            "eligible_voters": eligible,
            "votes_cast": total_ballots,
            "percentage": round(total_ballots / eligible * 100, 2) if eligible else 0.0,
        },
    }


async def get_results_for_user(
    repo: VotingRepository,
    election_id: str,
    user_id: str,
    role: str,
    now: datetime | None = None,
) -> dict:
    """Results as visible to a user.

    The creating teacher always sees them. Eligible students see them once the
    election has closed.
    """
    now = now or datetime.now(UTC)
    election = await repo.get_election(election_id)
    if not election:
        raise NotFound("Election not found")

    if role == "teacher":
        if election["created_by"] != str(user_id):
            raise Forbidden("Not authorized for this election")
    else:
        if not await resolve_eligibility(repo, user_id, election):
            raise Forbidden("Not authorized for this election")
        if election_status(election["start_time"], election["end_time"], now) != CLOSED:
            raise InvalidState("Results will be available once the election has closed")

    return await get_results(repo, election_id, now=now)


async def recent_transactions(repo: VotingRepository, limit: int = 10) -> list[dict]:
    """Latest ballot hashes with their election title, newest first."""
    ballots = await repo.recent_ballots(limit)
    return [
        {
            "ballot_hash": b["ballot_hash"],
            "election_title": b.get("election_title") or "Unknown Election",
            "timestamp": b["cast_at"],
        }
        for b in ballots
    ]
