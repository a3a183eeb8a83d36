"""Voting ticket routes."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from classvote.api.deps import get_notifier, get_repository, require_student
from classvote.core.responses import success_response
from classvote.services import tickets as ticket_service
from classvote.services.repository import VotingRepository
from classvote.services.tickets import TicketNotifier

router = APIRouter(prefix="/tickets", tags=["Tickets"])


class TicketRequest(BaseModel):
    election_id: UUID = Field(..., alias="electionId")

    model_config = {"populate_by_name": True}


@router.post("/request")
async def request_ticket(
    body: TicketRequest,
    repo: Annotated[VotingRepository, Depends(get_repository)],
    notifier: Annotated[TicketNotifier, Depends(get_notifier)],
    current_user: Annotated[dict, Depends(require_student)],
):
    """
    Issue a voting ticket and email it to the student.

    Requesting again replaces any unused ticket; the old code stops working.
    """
    ticket = await ticket_service.request_ticket(
        repo, notifier, current_user["id"], str(body.election_id)
    )
    return success_response(data=ticket, message="Voting ticket sent to your email")
