"""Data access for students, teachers, elections, tickets and ballots.

The voting services depend on the ``VotingRepository`` protocol only. The
PostgreSQL implementation supplies the atomic primitives they rely on:

- insert-if-absent for tickets, backed by partial unique indexes
- a conditional ``used = FALSE -> TRUE`` update for ticket consumption
- in-place ``votes = votes + 1`` increments for tallies

Tallies never live on the ``elections`` row. Casting holds a share lock on
that row, and two casts upgrading it to a write lock would deadlock.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Protocol

import asyncpg

from classvote.core.database import get_db_connection
from classvote.core.errors import AlreadyVoted, DuplicateAccount

NOTA = "NOTA"

_ELECTION_SELECT = """
    SELECT e.*, COALESCE(n.votes, 0) AS nota_votes
    FROM elections e
    LEFT JOIN nota_tallies n ON n.election_id = e.id
"""


class VotingRepository(Protocol):
    def transaction(self) -> Any: ...

    # Students and teachers
    async def create_student(
        self,
        usn: str,
        name: str,
        email: str,
        password_hash: str,
        admission_year: int,
        branch: str,
        section: str,
        gender: str | None = None,
    ) -> dict: ...
    async def create_teacher(self, name: str, email: str, password_hash: str) -> dict: ...
    async def search_students(
        self,
        branch: str,
        section: str,
        admission_year: int | None = None,
        query: str | None = None,
        limit: int = 50,
    ) -> list[dict]: ...
    async def get_student(self, student_id: str) -> dict | None: ...
    async def get_student_by_login(self, identifier: str) -> dict | None: ...
    async def get_students_by_ids(self, student_ids: list[str]) -> list[dict]: ...
    async def count_cohort(self, branch: str, section: str) -> int: ...
    async def get_teacher(self, teacher_id: str) -> dict | None: ...
    async def get_teacher_by_email(self, email: str) -> dict | None: ...

    # Elections
    async def create_election(self, **fields: Any) -> dict: ...
    async def get_election(self, election_id: str, lock: bool = False) -> dict | None: ...
    async def list_elections_for_cohort(self, branch: str, section: str) -> list[dict]: ...
    async def list_elections_by_creator(self, teacher_id: str) -> list[dict]: ...
    async def close_election(
        self, election_id: str, teacher_id: str, now: datetime
    ) -> dict | None: ...
    async def claim_started(self, now: datetime) -> list[dict]: ...
    async def claim_ended(self, now: datetime) -> list[dict]: ...

    # Tickets
    async def find_used_ticket(self, election_id: str, student_id: str) -> dict | None: ...
    async def find_unused_ticket(self, election_id: str, student_id: str) -> dict | None: ...
    async def replace_unused_ticket(
        self,
        election_id: str,
        student_id: str,
        ticket_hash: str,
        email: str,
        expires_at: datetime,
        created_at: datetime,
    ) -> dict: ...
    async def delete_unused_ticket(self, ticket_id: str, ticket_hash: str) -> bool: ...
    async def find_ticket(
        self, election_id: str, student_id: str, ticket_hash: str
    ) -> dict | None: ...
    async def mark_ticket_used(self, ticket_id: str, used_at: datetime) -> bool: ...

    # Ballots and tallies
    async def insert_ballot(
        self,
        ballot_hash: str,
        election_id: str,
        student_id: str,
        candidate_id: str,
        cast_at: datetime,
    ) -> dict: ...
    async def increment_tally(self, election_id: str, candidate_id: str) -> bool: ...
    async def count_ballots(self, election_id: str) -> int: ...
    async def recent_ballots(self, limit: int = 10) -> list[dict]: ...


class PostgresVotingRepository:
    """``VotingRepository`` over a single asyncpg connection."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self.conn = conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["PostgresVotingRepository"]:
        async with self.conn.transaction():
            yield self

    # ============================================
    # STUDENTS & TEACHERS
    # ============================================

    async def create_student(
        self,
        usn: str,
        name: str,
        email: str,
        password_hash: str,
        admission_year: int,
        branch: str,
        section: str,
        gender: str | None = None,
    ) -> dict:
        try:
            result = await self.conn.fetchrow(
                """
                INSERT INTO students (
                    usn, name, email, password_hash, admission_year, branch, section, gender
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                RETURNING *
                """,
                usn.upper(),
                name,
                email.lower(),
                password_hash,
                admission_year,
                branch.lower(),
                section.lower(),
                gender,
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateAccount("A student with this email or USN already exists") from e
        return _parse_row(result)

    async def get_student(self, student_id: str) -> dict | None:
        result = await self.conn.fetchrow(
            "SELECT * FROM students WHERE id = $1", str(student_id)
        )
        return _parse_row(result) if result else None

    async def get_student_by_login(self, identifier: str) -> dict | None:
        """Look up a student by USN or email."""
        result = await self.conn.fetchrow(
            "SELECT * FROM students WHERE usn = $1 OR email = $2",
            identifier.upper(),
            identifier.lower(),
        )
        return _parse_row(result) if result else None

    async def get_students_by_ids(self, student_ids: list[str]) -> list[dict]:
        if not student_ids:
            return []
        results = await self.conn.fetch(
            "SELECT * FROM students WHERE id = ANY($1::uuid[])",
            [str(sid) for sid in student_ids],
        )
        return [_parse_row(row) for row in results]

    async def count_cohort(self, branch: str, section: str) -> int:
        result = await self.conn.fetchval(
            "SELECT COUNT(*) FROM students WHERE branch = $1 AND section = $2",
            branch,
            section,
        )
        return result or 0

    async def search_students(
        self,
        branch: str,
        section: str,
        admission_year: int | None = None,
        query: str | None = None,
        limit: int = 50,
    ) -> list[dict]:
        """Students of a cohort, optionally filtered by a name or USN fragment."""
        conditions = ["branch = $1", "section = $2"]
        params: list[Any] = [branch, section]

        if admission_year is not None:
            params.append(admission_year)
            conditions.append(f"admission_year = ${len(params)}")

        if query:
            escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            params.append(f"%{escaped}%")
            conditions.append(f"(name ILIKE ${len(params)} OR usn ILIKE ${len(params)})")

        where = " AND ".join(conditions)
        params.append(limit)
        rows = await self.conn.fetch(
            f"""
            SELECT id, name, usn, admission_year FROM students
            WHERE {where}
            ORDER BY usn ASC
            LIMIT ${len(params)}
            """,
            *params,
        )
        return [_parse_row(row) for row in rows]

    async def create_teacher(self, name: str, email: str, password_hash: str) -> dict:
        try:
            result = await self.conn.fetchrow(
                """
                INSERT INTO teachers (name, email, password_hash)
                VALUES ($1, $2, $3)
                RETURNING *
                """,
                name,
                email.lower(),
                password_hash,
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateAccount("A teacher with this email already exists") from e
        return _parse_row(result)

    async def get_teacher(self, teacher_id: str) -> dict | None:
        result = await self.conn.fetchrow(
            "SELECT * FROM teachers WHERE id = $1", str(teacher_id)
        )
        return _parse_row(result) if result else None

    async def get_teacher_by_email(self, email: str) -> dict | None:
        result = await self.conn.fetchrow(
            "SELECT * FROM teachers WHERE email = $1", email.lower()
        )
        return _parse_row(result) if result else None

    # ============================================
    # ELECTIONS
    # ============================================

    async def create_election(
        self,
        title: str,
        description: str,
        branch: str,
        section: str,
        admission_year: int | None,
        start_time: datetime,
        end_time: datetime,
        created_by: str,
        candidates: list[dict],
    ) -> dict:
        async with self.conn.transaction():
            election = await self.conn.fetchrow(
                """
                INSERT INTO elections (
                    title, description, branch, section, admission_year,
                    start_time, end_time, created_by
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                RETURNING *
                """,
                title,
                description,
                branch,
                section,
                admission_year,
                start_time,
                end_time,
                str(created_by),
            )
            await self.conn.executemany(
                """
                INSERT INTO election_candidates (
                    election_id, student_id, name, usn, display_order
                )
                VALUES ($1, $2, $3, $4, $5)
                """,
                [
                    (election["id"], str(c["student_id"]), c["name"], c["usn"], order)
                    for order, c in enumerate(candidates)
                ],
            )
            await self.conn.execute(
                "INSERT INTO nota_tallies (election_id) VALUES ($1)", election["id"]
            )
        return await self.get_election(str(election["id"]))

    async def get_election(self, election_id: str, lock: bool = False) -> dict | None:
        """Get an election with its candidate list.

        ``lock`` takes a share lock on the election row for the rest of the
        surrounding transaction, so a concurrent stop waits for it.
        """
        query = f"{_ELECTION_SELECT} WHERE e.id = $1"
        if lock:
            query += " FOR SHARE OF e"
        result = await self.conn.fetchrow(query, str(election_id))
        if not result:
            return None

        election = _parse_row(result)
        candidates = await self.conn.fetch(
            """
            SELECT student_id, name, usn, votes
            FROM election_candidates
            WHERE election_id = $1
            ORDER BY display_order ASC
            """,
            str(election_id),
        )
        election["candidates"] = [_parse_row(row) for row in candidates]
        return election

    async def _attach_candidates(self, rows: list[asyncpg.Record]) -> list[dict]:
        elections = [_parse_row(row) for row in rows]
        if not elections:
            return []

        candidates = await self.conn.fetch(
            """
            SELECT election_id, student_id, name, usn, votes
            FROM election_candidates
            WHERE election_id = ANY($1::uuid[])
            ORDER BY display_order ASC
            """,
            [e["id"] for e in elections],
        )
        by_election: dict[str, list[dict]] = {e["id"]: [] for e in elections}
        for row in candidates:
            candidate = _parse_row(row)
            by_election[candidate.pop("election_id")].append(candidate)

        for election in elections:
            election["candidates"] = by_election[election["id"]]
        return elections

    async def list_elections_for_cohort(self, branch: str, section: str) -> list[dict]:
        rows = await self.conn.fetch(
            """
            SELECT e.*, COALESCE(n.votes, 0) AS nota_votes, t.name AS created_by_name
            FROM elections e
            LEFT JOIN nota_tallies n ON n.election_id = e.id
            JOIN teachers t ON e.created_by = t.id
            WHERE e.branch = $1 AND e.section = $2
            ORDER BY e.start_time DESC
            """,
            branch,
            section,
        )
        return await self._attach_candidates(rows)

    async def list_elections_by_creator(self, teacher_id: str) -> list[dict]:
        rows = await self.conn.fetch(
            f"""
            {_ELECTION_SELECT}
            WHERE e.created_by = $1
            ORDER BY e.start_time DESC
            """,
            str(teacher_id),
        )
        return await self._attach_candidates(rows)

    async def close_election(
        self, election_id: str, teacher_id: str, now: datetime
    ) -> dict | None:
        """Set ``end_time = now`` if the teacher owns a not-yet-ended election."""
        result = await self.conn.fetchrow(
            """
            UPDATE elections
            SET end_time = $3, updated_at = $3
            WHERE id = $1 AND created_by = $2 AND end_time > $3
            RETURNING id
            """,
            str(election_id),
            str(teacher_id),
            now,
        )
        if not result:
            return None
        return await self.get_election(str(election_id))

    async def claim_started(self, now: datetime) -> list[dict]:
        """Claim elections whose start was not announced yet."""
        rows = await self.conn.fetch(
            """
            UPDATE elections
            SET started_notified_at = $1
            WHERE started_notified_at IS NULL AND start_time <= $1
            RETURNING id, title, start_time, end_time
            """,
            now,
        )
        return [_parse_row(row) for row in rows]

    async def claim_ended(self, now: datetime) -> list[dict]:
        """Claim elections whose end was not announced yet."""
        rows = await self.conn.fetch(
            """
            UPDATE elections
            SET ended_notified_at = $1
            WHERE ended_notified_at IS NULL AND end_time <= $1
            RETURNING id, title, start_time, end_time
            """,
            now,
        )
        return [_parse_row(row) for row in rows]

    # ============================================
    # TICKETS
    # ============================================

    async def find_used_ticket(self, election_id: str, student_id: str) -> dict | None:
        result = await self.conn.fetchrow(
            """
            SELECT * FROM tickets
            WHERE election_id = $1 AND student_id = $2 AND used = TRUE
            """,
            str(election_id),
            str(student_id),
        )
        return _parse_row(result) if result else None

    async def find_unused_ticket(self, election_id: str, student_id: str) -> dict | None:
        result = await self.conn.fetchrow(
            """
            SELECT * FROM tickets
            WHERE election_id = $1 AND student_id = $2 AND used = FALSE
            """,
            str(election_id),
            str(student_id),
        )
        return _parse_row(result) if result else None

    async def replace_unused_ticket(
        self,
        election_id: str,
        student_id: str,
        ticket_hash: str,
        email: str,
        expires_at: datetime,
        created_at: datetime,
    ) -> dict:
        """Delete the pair's unused tickets and store a new one.

        The upsert against the partial unique index on unused tickets keeps a
        concurrent request for the same pair from creating a second one.
        """
        async with self.conn.transaction():
            await self.conn.execute(
                """
                DELETE FROM tickets
                WHERE election_id = $1 AND student_id = $2 AND used = FALSE
                """,
                str(election_id),
                str(student_id),
            )
            result = await self.conn.fetchrow(
                """
                INSERT INTO tickets (
                    election_id, student_id, ticket_hash, email, expires_at, created_at
                )
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (election_id, student_id) WHERE used = FALSE
                DO UPDATE SET
                    ticket_hash = EXCLUDED.ticket_hash,
                    email = EXCLUDED.email,
                    expires_at = EXCLUDED.expires_at,
                    created_at = EXCLUDED.created_at
                RETURNING *
                """,
                str(election_id),
                str(student_id),
                ticket_hash,
                email,
                expires_at,
                created_at,
            )
        return _parse_row(result)

    async def delete_unused_ticket(self, ticket_id: str, ticket_hash: str) -> bool:
        result = await self.conn.execute(
            """
            DELETE FROM tickets
            WHERE id = $1 AND ticket_hash = $2 AND used = FALSE
            """,
            str(ticket_id),
            ticket_hash,
        )
        return int(result.split()[-1]) > 0

    async def find_ticket(
        self, election_id: str, student_id: str, ticket_hash: str
    ) -> dict | None:
        result = await self.conn.fetchrow(
            """
            SELECT * FROM tickets
            WHERE election_id = $1 AND student_id = $2 AND ticket_hash = $3
            """,
            str(election_id),
            str(student_id),
            ticket_hash,
        )
        return _parse_row(result) if result else None

    async def mark_ticket_used(self, ticket_id: str, used_at: datetime) -> bool:
        """Flip ``used`` to TRUE. Returns False if another caller got there first."""
        try:
            result = await self.conn.execute(
                """
                UPDATE tickets
                SET used = TRUE, used_at = $2
                WHERE id = $1 AND used = FALSE
                """,
                str(ticket_id),
                used_at,
            )
        except asyncpg.UniqueViolationError as e:
            # Another ticket for the same pair was already consumed
            raise AlreadyVoted() from e
        return int(result.split()[-1]) > 0

    # ============================================
    # BALLOTS & TALLIES
    # ============================================

    async def insert_ballot(
        self,
        ballot_hash: str,
        election_id: str,
        student_id: str,
        candidate_id: str,
        cast_at: datetime,
    ) -> dict:
        try:
            result = await self.conn.fetchrow(
                """
                INSERT INTO ballots (ballot_hash, election_id, student_id, candidate_id, cast_at)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING *
                """,
                ballot_hash,
                str(election_id),
                str(student_id),
                candidate_id,
                cast_at,
            )
        except asyncpg.UniqueViolationError as e:
            raise AlreadyVoted() from e
        return _parse_row(result)

    async def increment_tally(self, election_id: str, candidate_id: str) -> bool:
        if candidate_id == NOTA:
            result = await self.conn.execute(
                """
                INSERT INTO nota_tallies (election_id, votes)
                VALUES ($1, 1)
                ON CONFLICT (election_id)
                DO UPDATE SET votes = nota_tallies.votes + 1
                """,
                str(election_id),
            )
        else:
            result = await self.conn.execute(
                """
                UPDATE election_candidates
                SET votes = votes + 1
                WHERE election_id = $1 AND student_id = $2
                """,
                str(election_id),
                candidate_id,
            )
        return int(result.split()[-1]) == 1

    async def count_ballots(self, election_id: str) -> int:
        result = await self.conn.fetchval(
            "SELECT COUNT(*) FROM ballots WHERE election_id = $1", str(election_id)
        )
        return result or 0

    async def recent_ballots(self, limit: int = 10) -> list[dict]:
        rows = await self.conn.fetch(
            """
            SELECT b.ballot_hash, b.cast_at, e.title AS election_title
            FROM ballots b
            JOIN elections e ON b.election_id = e.id
            ORDER BY b.cast_at DESC
            LIMIT $1
            """,
            limit,
        )
        return [_parse_row(row) for row in rows]


# ============================================
# HELPER FUNCTIONS
# ============================================

_UUID_FIELDS = ("id", "election_id", "student_id", "created_by")


def _parse_row(row: asyncpg.Record) -> dict:
    """Parse a row into a dict with string identifiers."""
    result = dict(row)
    for field in _UUID_FIELDS:
        if result.get(field) is not None:
            result[field] = str(result[field])
    return result


@asynccontextmanager
async def pooled_repository() -> AsyncIterator[PostgresVotingRepository]:
    """Repository on a pooled connection, for work outside a request."""
    async with get_db_connection() as conn:
        yield PostgresVotingRepository(conn)
