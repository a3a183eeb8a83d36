"""Public feed of recent ballot hashes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from classvote.api.deps import get_current_user, get_repository
from classvote.core.responses import success_response
from classvote.services import results as results_service
from classvote.services.repository import VotingRepository

router = APIRouter(prefix="/transactions", tags=["Transactions"])


@router.get("/recent")
async def recent_transactions(
    repo: Annotated[VotingRepository, Depends(get_repository)],
    current_user: Annotated[dict, Depends(get_current_user)],
    limit: int = Query(10, ge=1, le=100),
):
    transactions = await results_service.recent_transactions(repo, limit=limit)
    return success_response(data=transactions)
