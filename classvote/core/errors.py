"""Typed outcomes for rejected voting operations.

Every subclass of :class:`VotingError` is an expected, caller-recoverable
rejection. The API layer renders them with their ``status_code`` and ``code``.
"""

from fastapi import status


class VotingError(Exception):
    """Base class for rejected ticket, ballot and election operations."""

    code = "voting_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "The request could not be completed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(VotingError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class Forbidden(VotingError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You are not eligible for this election"


class InvalidState(VotingError):
    code = "invalid_state"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Election is not accepting this operation right now"


class AlreadyVoted(VotingError):
    code = "already_voted"
    status_code = status.HTTP_409_CONFLICT
    default_message = "You have already voted in this election"


class TicketExpired(VotingError):
    code = "ticket_expired"
    status_code = status.HTTP_410_GONE
    default_message = "Ticket has expired. Please request a new ticket."


class InvalidTicket(VotingError):
    code = "invalid_ticket"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid ticket. Check the code in your latest ticket email."


class InvalidCandidate(VotingError):
    code = "invalid_candidate"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Candidate is not standing in this election"


class DeliveryFailed(VotingError):
    code = "delivery_failed"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Failed to send ticket email. Please try again later."


class TallyUpdateFailed(VotingError):
    """A ticket flip whose tally increment did not apply; the unit is rolled back."""

    code = "tally_update_failed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Your vote could not be recorded. Please try again."


class InvalidElection(VotingError):
    """Rejected election definition (timing or candidate list)."""

    code = "invalid_election"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Invalid election definition"


class DuplicateAccount(VotingError):
    """Registration clashes with an existing USN or email."""

    code = "duplicate_account"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "An account with these details already exists"
