"""Unit tests for ticket issuance."""

from datetime import timedelta
import re

import pytest
from pydantic import ValidationError

from classvote.core.config import Settings, settings
from classvote.core.errors import AlreadyVoted, DeliveryFailed, Forbidden, InvalidState, NotFound
from classvote.services import ballots as ballot_service
from classvote.services import tickets as ticket_service
from fakes import RecordingNotifier


class TestTicketCodes:
    def test_generate_ticket_code_format(self):
        code = ticket_service.generate_ticket_code()

        assert len(code) == settings.TICKET_CODE_LENGTH
        assert re.fullmatch(r"[0-9A-F]+", code)

    def test_generate_ticket_code_is_random(self):
        codes = {ticket_service.generate_ticket_code() for _ in range(50)}
        assert len(codes) == 50

    def test_hash_is_case_and_whitespace_insensitive(self):
        assert ticket_service.hash_ticket_code(" abcd1234 ") == ticket_service.hash_ticket_code(
            "ABCD1234"
        )

    def test_short_ticket_code_length_is_rejected(self):
        with pytest.raises(ValidationError):
            Settings(TICKET_CODE_LENGTH=8)

        assert Settings(TICKET_CODE_LENGTH=15).TICKET_CODE_LENGTH == 15


@pytest.mark.asyncio
async def test_request_ticket_issues_and_emails_code(repo, notifier, cohort, live_election, now):
    student = cohort[2]

    result = await ticket_service.request_ticket(
        repo, notifier, student["id"], live_election["id"], now=now
    )

    assert result["election_id"] == live_election["id"]
    assert result["expires_at"] == now + timedelta(minutes=settings.TICKET_TTL_MINUTES)
    assert result["expires_in_seconds"] == settings.TICKET_TTL_MINUTES * 60

    assert len(notifier.sent) == 1
    assert notifier.sent[0]["to_email"] == student["email"]
    assert notifier.sent[0]["election_title"] == live_election["title"]

    ticket = await repo.find_unused_ticket(live_election["id"], student["id"])
    assert ticket["ticket_hash"] == ticket_service.hash_ticket_code(notifier.last_code())
    # Only the hash is stored
    assert notifier.last_code() not in ticket.values()


@pytest.mark.asyncio
async def test_second_request_invalidates_first_code(repo, notifier, cohort, live_election, now):
    student = cohort[2]
    await ticket_service.request_ticket(repo, notifier, student["id"], live_election["id"], now=now)
    first_code = notifier.last_code()
    await ticket_service.request_ticket(repo, notifier, student["id"], live_election["id"], now=now)
    second_code = notifier.last_code()

    unused = [
        t
        for t in repo.tickets.values()
        if t["student_id"] == student["id"] and not t["used"]
    ]
    assert len(unused) == 1
    assert unused[0]["ticket_hash"] == ticket_service.hash_ticket_code(second_code)
    assert first_code != second_code


@pytest.mark.asyncio
async def test_concurrent_requests_leave_one_unused_ticket(
    repo, notifier, cohort, live_election, now
):
    import asyncio

    student = cohort[2]
    await asyncio.gather(
        *[
            ticket_service.request_ticket(repo, notifier, student["id"], live_election["id"], now=now)
            for _ in range(5)
        ]
    )

    unused = [t for t in repo.tickets.values() if t["student_id"] == student["id"]]
    assert len(unused) == 1


@pytest.mark.asyncio
async def test_request_ticket_unknown_student(repo, notifier, live_election, now):
    with pytest.raises(NotFound):
        await ticket_service.request_ticket(
            repo, notifier, "00000000-0000-0000-0000-000000000000", live_election["id"], now=now
        )


@pytest.mark.asyncio
async def test_request_ticket_unknown_election(repo, notifier, cohort, now):
    with pytest.raises(NotFound):
        await ticket_service.request_ticket(
            repo, notifier, cohort[0]["id"], "00000000-0000-0000-0000-000000000000", now=now
        )
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_request_ticket_outside_cohort(repo, notifier, outsider, live_election, now):
    with pytest.raises(Forbidden):
        await ticket_service.request_ticket(
            repo, notifier, outsider["id"], live_election["id"], now=now
        )
    assert repo.tickets == {}


@pytest.mark.asyncio
async def test_request_ticket_before_start(repo, notifier, cohort, live_election):
    too_early = live_election["start_time"] - timedelta(seconds=1)

    with pytest.raises(InvalidState, match="not started"):
        await ticket_service.request_ticket(
            repo, notifier, cohort[2]["id"], live_election["id"], now=too_early
        )


@pytest.mark.asyncio
async def test_request_ticket_after_end(repo, notifier, cohort, live_election):
    too_late = live_election["end_time"] + timedelta(seconds=1)

    with pytest.raises(InvalidState, match="ended"):
        await ticket_service.request_ticket(
            repo, notifier, cohort[2]["id"], live_election["id"], now=too_late
        )
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_request_ticket_after_voting(repo, notifier, cohort, live_election, now):
    student = cohort[2]
    await ticket_service.request_ticket(repo, notifier, student["id"], live_election["id"], now=now)
    await ballot_service.cast_vote(
        repo, student["id"], live_election["id"], "NOTA", notifier.last_code(), now=now
    )

    with pytest.raises(AlreadyVoted):
        await ticket_service.request_ticket(
            repo, notifier, student["id"], live_election["id"], now=now
        )
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_delivery_failure_withdraws_ticket(repo, cohort, live_election, now):
    notifier = RecordingNotifier(fail=True)

    with pytest.raises(DeliveryFailed):
        await ticket_service.request_ticket(
            repo, notifier, cohort[2]["id"], live_election["id"], now=now
        )
    assert repo.tickets == {}


@pytest.mark.asyncio
async def test_notifier_exception_counts_as_delivery_failure(repo, cohort, live_election, now):
    notifier = RecordingNotifier(error=ConnectionError("SMTP down"))

    with pytest.raises(DeliveryFailed):
        await ticket_service.request_ticket(
            repo, notifier, cohort[2]["id"], live_election["id"], now=now
        )
    assert repo.tickets == {}


@pytest.mark.asyncio
async def test_failed_delivery_after_earlier_ticket_leaves_no_usable_ticket(
    repo, notifier, cohort, live_election, now
):
    """The earlier code was already invalidated by the replacement."""
    student = cohort[2]
    await ticket_service.request_ticket(repo, notifier, student["id"], live_election["id"], now=now)

    with pytest.raises(DeliveryFailed):
        await ticket_service.request_ticket(
            repo, RecordingNotifier(fail=True), student["id"], live_election["id"], now=now
        )
    assert await repo.find_unused_ticket(live_election["id"], student["id"]) is None
