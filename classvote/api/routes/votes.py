"""Ballot casting routes."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from classvote.api.deps import get_event_broker, get_repository, require_student
from classvote.core.events import EventBroker
from classvote.core.responses import success_response
from classvote.services import ballots as ballot_service
from classvote.services.repository import VotingRepository

router = APIRouter(tags=["Voting"])


class VoteRequest(BaseModel):
    """Cast vote request model. ``candidate_id`` is a candidate UUID or ``NOTA``."""

    election_id: UUID = Field(..., alias="electionId")
    candidate_id: str = Field(..., min_length=1, max_length=64, alias="candidateId")
    ticket: str = Field(..., min_length=1, max_length=64)

    model_config = {"populate_by_name": True}


@router.post("/vote")
async def cast_vote(
    body: VoteRequest,
    repo: Annotated[VotingRepository, Depends(get_repository)],
    broker: Annotated[EventBroker, Depends(get_event_broker)],
    current_user: Annotated[dict, Depends(require_student)],
):
    """Redeem a ticket for one ballot."""
    receipt = await ballot_service.cast_vote(
        repo,
        student_id=current_user["id"],
        election_id=str(body.election_id),
        candidate_id=body.candidate_id,
        ticket_code=body.ticket,
        broker=broker,
    )
    return success_response(data=receipt, message="Vote recorded successfully")
