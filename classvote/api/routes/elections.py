"""Election management and viewing routes."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from classvote.api.deps import get_current_user, get_repository, require_student, require_teacher
from classvote.core.responses import success_response
from classvote.services import elections as election_service
from classvote.services import results as results_service
from classvote.services.repository import VotingRepository

router = APIRouter(prefix="/elections", tags=["Elections"])


# ============================================
# PYDANTIC MODELS
# ============================================


class ElectionCreate(BaseModel):
    """Election create request model."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field("", max_length=2000)
    branch: str = Field(..., min_length=1, max_length=50)
    section: str = Field(..., min_length=1, max_length=10)
    admission_year: int | None = Field(None, ge=2000, le=2100)
    start_time: datetime
    end_time: datetime
    candidates: list[UUID] = Field(..., min_length=1)


# ============================================
# TEACHER ENDPOINTS
# ============================================


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_election(
    body: ElectionCreate,
    repo: Annotated[VotingRepository, Depends(get_repository)],
    current_user: Annotated[dict, Depends(require_teacher)],
):
    """Create an election for a branch and section."""
    election = await election_service.create_election(
        repo,
        teacher_id=current_user["id"],
        title=body.title,
        description=body.description,
        branch=body.branch,
        section=body.section,
        admission_year=body.admission_year,
        start_time=body.start_time,
        end_time=body.end_time,
        candidate_ids=[str(c) for c in body.candidates],
    )
    return success_response(data=election, message="Election created successfully")


@router.get("/teacher")
async def list_teacher_elections(
    repo: Annotated[VotingRepository, Depends(get_repository)],
    current_user: Annotated[dict, Depends(require_teacher)],
):
    elections = await election_service.list_elections_for_teacher(repo, current_user["id"])
    return success_response(data=elections)


@router.post("/{election_id}/stop")
async def stop_election(
    election_id: UUID,
    repo: Annotated[VotingRepository, Depends(get_repository)],
    current_user: Annotated[dict, Depends(require_teacher)],
):
    """
    Stop an election now.

    The end time moves to the current instant; the scheduler announces the
    end on its next tick.
    """
    election = await election_service.stop_election(repo, current_user["id"], str(election_id))
    return success_response(data=election, message="Election stopped successfully")


# ============================================
# STUDENT ENDPOINTS
# ============================================


@router.get("/student")
async def list_student_elections(
    repo: Annotated[VotingRepository, Depends(get_repository)],
    current_user: Annotated[dict, Depends(require_student)],
):
    """Elections for the student's branch and section."""
    elections = await election_service.list_elections_for_student(repo, current_user["id"])
    return success_response(data=elections)


# ============================================
# SHARED ENDPOINTS
# ============================================


@router.get("/{election_id}")
async def get_election(
    election_id: UUID,
    repo: Annotated[VotingRepository, Depends(get_repository)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    election = await election_service.get_election_for_user(
        repo, str(election_id), current_user["id"], current_user["role"]
    )
    return success_response(data=election)


@router.get("/{election_id}/results")
async def get_election_results(
    election_id: UUID,
    repo: Annotated[VotingRepository, Depends(get_repository)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    """Tally, winners and turnout for an election."""
    results = await results_service.get_results_for_user(
        repo, str(election_id), current_user["id"], current_user["role"]
    )
    return success_response(data=results)
