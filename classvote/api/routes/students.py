"""Student lookup for teachers building a ballot."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from classvote.api.deps import get_repository, require_teacher
from classvote.core.responses import success_response
from classvote.services import accounts as account_service
from classvote.services.repository import VotingRepository

router = APIRouter(prefix="/students", tags=["Students"])


@router.get("/search")
async def search_students(
    repo: Annotated[VotingRepository, Depends(get_repository)],
    current_user: Annotated[dict, Depends(require_teacher)],
    branch: str = Query(..., min_length=1, max_length=50),
    section: str = Query(..., min_length=1, max_length=10),
    admission_year: int | None = Query(None, alias="admissionYear"),
    name: str | None = Query(None, max_length=100),
):
    """
    Search one cohort's students by name or USN fragment.

    Teacher only. Without ``name`` the first 50 students of the cohort are
    returned, ordered by USN.
    """
    students = await account_service.search_students(
        repo, branch, section, admission_year=admission_year, query=name
    )
    return success_response(data=students)
