"""
Backend selection and dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.engine import URL

from quizboard.config import Settings, get_settings
from quizboard.db import MysqlUserStore, SqliteUserStore, UserStore
from quizboard.readiness import ReadinessGate
from quizboard.reconcile import ReconciliationService
from quizboard.store import IdentityStore, LeaderboardAggregator, ScoreLedger

logger = logging.getLogger(__name__)


@dataclass
class Backend:
    """Everything bound to the one storage engine chosen at startup."""

    store: UserStore
    gate: ReadinessGate
    identity: IdentityStore
    ledger: ScoreLedger
    leaderboard: LeaderboardAggregator
    reconciler: ReconciliationService

    async def close(self) -> None:
        await self.store.dispose()


def select_user_store(settings: Settings) -> UserStore:
    if settings.uses_mysql:
        url = settings.db_url or URL.create(
            "mysql",
            username=settings.db_user,
            password=settings.db_password,
            host=settings.db_host,
            port=settings.db_port,
            database=settings.db_database,
        )
        logger.info("Using MySQL storage engine")
        return MysqlUserStore(
            url, pool_size=settings.db_pool_size, use_ssl=settings.db_ssl
        )
    logger.info("Using SQLite storage engine at %s", settings.sqlite_path)
    return SqliteUserStore(settings.sqlite_path, pool_size=settings.db_pool_size)


def build_backend(
    settings: Optional[Settings] = None, store: Optional[UserStore] = None
) -> Backend:
    """
    Bind exactly one storage engine and the services that run on it. Schema
    creation is left to the readiness gate.
    """
    if store is None:
        store = select_user_store(settings or get_settings())
    gate = ReadinessGate(store.initialize, name=type(store).__name__)
    identity = IdentityStore(store, gate)
    return Backend(
        store=store,
        gate=gate,
        identity=identity,
        ledger=ScoreLedger(identity),
        leaderboard=LeaderboardAggregator(identity),
        reconciler=ReconciliationService(identity),
    )


def get_backend(request: Request) -> Backend:
    return request.app.state.backend


def get_identity_store(backend: Backend = Depends(get_backend)) -> IdentityStore:
    return backend.identity


def get_score_ledger(backend: Backend = Depends(get_backend)) -> ScoreLedger:
    return backend.ledger


def get_leaderboard(backend: Backend = Depends(get_backend)) -> LeaderboardAggregator:
    return backend.leaderboard


def get_reconciler(backend: Backend = Depends(get_backend)) -> ReconciliationService:
    return backend.reconciler
