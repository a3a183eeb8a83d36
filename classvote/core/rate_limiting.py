"""Login rate limiting backed by a pluggable attempt store.

The limiter itself holds no state. Attempts live in an ``AttemptStore`` so that
several server instances can share one window when the PostgreSQL store is
used.
"""

from collections import defaultdict
from datetime import UTC, datetime, timedelta
from typing import Protocol
import threading

import asyncpg


class AttemptStore(Protocol):
    """Storage for timestamped attempts keyed by identifier."""

    async def add(self, identifier: str, at: datetime) -> None: ...

    async def list_since(self, identifier: str, since: datetime) -> list[datetime]: ...

    async def clear(self, identifier: str) -> None: ...

    async def purge(self, before: datetime) -> int: ...


class InMemoryAttemptStore:
    """Process-local attempt store. Suitable for a single instance."""

    def __init__(self) -> None:
        self._attempts: dict[str, list[datetime]] = defaultdict(list)
        self._lock = threading.Lock()

    async def add(self, identifier: str, at: datetime) -> None:
        with self._lock:
            self._attempts[identifier].append(at)

    async def list_since(self, identifier: str, since: datetime) -> list[datetime]:
        with self._lock:
            recent = [t for t in self._attempts.get(identifier, []) if t > since]
            if recent:
                self._attempts[identifier] = recent
            else:
                self._attempts.pop(identifier, None)
            return list(recent)

    async def clear(self, identifier: str) -> None:
        with self._lock:
            self._attempts.pop(identifier, None)

    async def purge(self, before: datetime) -> int:
        removed = 0
        with self._lock:
            for identifier in list(self._attempts):
                kept = [t for t in self._attempts[identifier] if t > before]
                removed += len(self._attempts[identifier]) - len(kept)
                if kept:
                    self._attempts[identifier] = kept
                else:
                    del self._attempts[identifier]
        return removed


class PostgresAttemptStore:
    """Attempt store shared across instances through the ``auth_attempts`` table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def add(self, identifier: str, at: datetime) -> None:
        await self.pool.execute(
            "INSERT INTO auth_attempts (identifier, attempted_at) VALUES ($1, $2)",
            identifier,
            at,
        )

    async def list_since(self, identifier: str, since: datetime) -> list[datetime]:
        rows = await self.pool.fetch(
            """
            SELECT attempted_at FROM auth_attempts
            WHERE identifier = $1 AND attempted_at > $2
            ORDER BY attempted_at ASC
            """,
            identifier,
            since,
        )
        return [row["attempted_at"] for row in rows]

    async def clear(self, identifier: str) -> None:
        await self.pool.execute(
            "DELETE FROM auth_attempts WHERE identifier = $1", identifier
        )

    async def purge(self, before: datetime) -> int:
        result = await self.pool.execute(
            "DELETE FROM auth_attempts WHERE attempted_at <= $1", before
        )
        return int(result.split()[-1])


class LoginRateLimiter:
    """Sliding-window limiter for failed login attempts."""

    def __init__(
        self, store: AttemptStore, max_attempts: int = 5, window_seconds: int = 900
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds

    async def record(self, identifier: str, now: datetime | None = None) -> None:
        """Record a failed attempt for the given identifier."""
        await self.store.add(identifier, now or datetime.now(UTC))

    async def is_blocked(
        self, identifier: str, now: datetime | None = None
    ) -> tuple[bool, int | None]:
        """
        Check if an identifier is rate limited.

        Returns:
            Tuple of (is_blocked, retry_after_seconds)
        """
        now = now or datetime.now(UTC)
        window = timedelta(seconds=self.window_seconds)
        attempts = await self.store.list_since(identifier, now - window)

        if len(attempts) >= self.max_attempts:
            retry_after = (min(attempts) + window - now).total_seconds()
            return True, int(max(1, retry_after))

        return False, None

    async def reset(self, identifier: str) -> None:
        """Reset rate limiting for an identifier after a successful login."""
        await self.store.clear(identifier)

    async def cleanup(self, now: datetime | None = None) -> int:
        """Drop attempts that fell out of the window."""
        now = now or datetime.now(UTC)
        return await self.store.purge(now - timedelta(seconds=self.window_seconds))
