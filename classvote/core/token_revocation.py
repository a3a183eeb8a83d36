"""Revocation list for logged-out access tokens, keyed by JWT ``jti``."""

from datetime import UTC, datetime
from typing import Protocol
import threading

import asyncpg


class RevokedTokenStore(Protocol):
    async def revoke(self, jti: str, expires_at: datetime) -> None: ...

    async def is_revoked(self, jti: str, now: datetime) -> bool: ...

    async def purge(self, now: datetime) -> int: ...


class InMemoryRevokedTokenStore:
    """Process-local revocation list with expiry-based eviction."""

    def __init__(self) -> None:
        self._revoked: dict[str, datetime] = {}
        self._lock = threading.Lock()

    async def revoke(self, jti: str, expires_at: datetime) -> None:
        with self._lock:
            self._revoked[jti] = expires_at

    async def is_revoked(self, jti: str, now: datetime) -> bool:
        with self._lock:
            expires_at = self._revoked.get(jti)
            if expires_at is None:
                return False
            if now > expires_at:
                # An expired token is rejected by JWT validation anyway
                del self._revoked[jti]
                return False
            return True

    async def purge(self, now: datetime) -> int:
        with self._lock:
            expired = [jti for jti, exp in self._revoked.items() if now > exp]
            for jti in expired:
                del self._revoked[jti]
            return len(expired)


class PostgresRevokedTokenStore:
    """Revocation list shared across instances through ``revoked_tokens``."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def revoke(self, jti: str, expires_at: datetime) -> None:
        await self.pool.execute(
            """
            INSERT INTO revoked_tokens (jti, expires_at) VALUES ($1, $2)
            ON CONFLICT (jti) DO NOTHING
            """,
            jti,
            expires_at,
        )

    async def is_revoked(self, jti: str, now: datetime) -> bool:
        found = await self.pool.fetchval(
            "SELECT 1 FROM revoked_tokens WHERE jti = $1 AND expires_at >= $2",
            jti,
            now,
        )
        return found is not None

    async def purge(self, now: datetime) -> int:
        result = await self.pool.execute(
            "DELETE FROM revoked_tokens WHERE expires_at < $1", now
        )
        return int(result.split()[-1])


class TokenRevocationList:
    def __init__(self, store: RevokedTokenStore) -> None:
        self.store = store

    async def revoke(self, jti: str, expires_at: datetime) -> None:
        await self.store.revoke(jti, expires_at)

    async def is_revoked(self, jti: str, now: datetime | None = None) -> bool:
        return await self.store.is_revoked(jti, now or datetime.now(UTC))

    async def cleanup(self, now: datetime | None = None) -> int:
        return await self.store.purge(now or datetime.now(UTC))
