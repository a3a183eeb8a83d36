"""Cohort eligibility checks for students and elections."""

from classvote.services.repository import VotingRepository


def is_eligible(student: dict, election: dict) -> bool:
    """A student may take part when branch and section match the election's cohort."""
    return (
        student.get("branch") == election.get("branch")
        and student.get("section") == election.get("section")
    )


async def resolve_eligibility(
    repo: VotingRepository, student_id: str, election: dict
) -> bool:
    """Look the student up and check eligibility. Unknown students are ineligible."""
    student = await repo.get_student(student_id)
    if student is None:
        return False
    return is_eligible(student, election)
