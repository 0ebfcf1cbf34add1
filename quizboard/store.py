"""
Identity store, score ledger and leaderboard aggregator.

These sit on top of whichever ``UserStore`` the backend selector bound and
never look at which engine it is. Every call waits for the readiness gate.
"""

from __future__ import annotations

import logging
from typing import Optional

from quizboard.db import LeaderboardUser, UniversityStats, UserRecord, UserStore
from quizboard.errors import NotFound
from quizboard.readiness import ReadinessGate

logger = logging.getLogger(__name__)


class IdentityStore:
    """CRUD over user rows."""

    def __init__(self, backend: UserStore, gate: ReadinessGate):
        self._backend = backend
        self.gate = gate

    async def backend(self) -> UserStore:
        """Return the bound engine once it is ready."""
        await self.gate.wait_ready()
        return self._backend

    async def ping(self) -> None:
        backend = await self.backend()
        await backend.ping()

    async def create_or_upsert(self, record: UserRecord) -> tuple[UserRecord, bool]:
        """Return the resulting row and whether it was newly inserted."""
        backend = await self.backend()
        return await backend.upsert_user(record)

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        backend = await self.backend()
        return await backend.get_user_by_email(email)

    async def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        backend = await self.backend()
        return await backend.get_user_by_id(user_id)

    async def update_mutable_fields(self, user_id: str, **changes) -> UserRecord:
        """
        Update name, university, avatar_url, banner_url and role. Fields left
        out, or passed as None, keep their current value.
        """
        backend = await self.backend()
        updated = await backend.update_user(user_id, changes)
        if updated is None:
            raise NotFound(user_id)
        return updated


class ScoreLedger:
    def __init__(self, identity: IdentityStore):
        self.identity = identity

    async def increment_score(self, user_id: str, delta: int) -> UserRecord:
        backend = await self.identity.backend()
        updated = await backend.increment_score(user_id, delta)
        if updated is None:
            raise NotFound(user_id)
        logger.debug("score of %s changed by %d to %d", user_id, delta, updated.score)
        return updated

    async def increment_score_by_email(self, email: str, delta: int) -> UserRecord:
        user = await self.identity.find_by_email(email)
        if user is None:
            raise NotFound(email)
        return await self.increment_score(user.id, delta)


class LeaderboardAggregator:
    """Read-only ranked views."""

    def __init__(self, identity: IdentityStore):
        self.identity = identity

    async def top_users(self, limit: int) -> list[LeaderboardUser]:
        backend = await self.identity.backend()
        return await backend.top_users(limit)

    async def university_leaderboard(self) -> list[UniversityStats]:
        backend = await self.identity.backend()
        return await backend.university_totals()
