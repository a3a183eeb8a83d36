"""Periodic announcement of election start and end.

The scheduler is advisory. Ticket issuance and ballot casting re-check the
election window themselves; the scheduler only pushes ``election:started`` and
``election:ended`` to subscribers. Each transition is claimed with a
conditional update so that several instances announce it once.

Each tick also purges expired login attempts and token revocations.
"""

import asyncio
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime

from classvote.core.events import ELECTION_ENDED, ELECTION_STARTED, EventBroker
from classvote.core.logging_config import get_logger
from classvote.core.rate_limiting import LoginRateLimiter
from classvote.core.token_revocation import TokenRevocationList
from classvote.services.repository import VotingRepository

logger = get_logger(__name__)

RepositoryFactory = Callable[[], AbstractAsyncContextManager[VotingRepository]]


class ElectionLifecycleScheduler:
    def __init__(
        self,
        repository_factory: RepositoryFactory,
        broker: EventBroker,
        interval_seconds: float = 60,
        rate_limiter: LoginRateLimiter | None = None,
        token_revocation: TokenRevocationList | None = None,
    ) -> None:
        self.repository_factory = repository_factory
        self.broker = broker
        self.interval_seconds = interval_seconds
        self.rate_limiter = rate_limiter
        self.token_revocation = token_revocation
        self._task: asyncio.Task | None = None

    async def purge_expired(self, now: datetime) -> dict[str, int]:
        """Drop login attempts outside the window and revocations past token expiry."""
        purged = {}
        if self.rate_limiter is not None:
            purged["login_attempts"] = await self.rate_limiter.cleanup(now)
        if self.token_revocation is not None:
            purged["revoked_tokens"] = await self.token_revocation.cleanup(now)
        if any(purged.values()):
            logger.info(f"Purged expired auth state: {purged}")
        return purged

    async def tick(self, now: datetime | None = None) -> dict[str, list[str]]:
        """Announce every due transition once. Returns the announced election ids."""
        now = now or datetime.now(UTC)
        async with self.repository_factory() as repo:
            started = await repo.claim_started(now)
            ended = await repo.claim_ended(now)

        # An election whose whole window passed between ticks is announced twice, in order
        for election in started:
            self.broker.publish(ELECTION_STARTED, {"election_id": election["id"]})
            logger.info(f"Election started: {election['title']} ({election['id']})")

        for election in ended:
            self.broker.publish(ELECTION_ENDED, {"election_id": election["id"]})
            logger.info(f"Election ended: {election['title']} ({election['id']})")

        await self.purge_expired(now)

        return {
            "started": [e["id"] for e in started],
            "ended": [e["id"] for e in ended],
        }

    async def run(self) -> None:
        logger.info(f"Election scheduler started (every {self.interval_seconds}s)")
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in election scheduler: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="election-scheduler")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Election scheduler stopped")
