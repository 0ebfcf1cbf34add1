"""
HTTP routes for the quizboard API.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

import pydantic
from fastapi import APIRouter, Body, Depends, Query, Response

from quizboard.dependencies import (
    get_identity_store,
    get_leaderboard,
    get_reconciler,
    get_score_ledger,
)
from quizboard.errors import NotFound, StorageError, ValidationError
from quizboard.reconcile import ReconciliationService
from quizboard.schemas import (
    BulkUpsertResponse,
    HealthResponse,
    LeaderboardEntry,
    LeaderboardResponse,
    ScoreDeltaRequest,
    UniversityLeaderboardResponse,
    UniversityRanking,
    UserResponse,
)
from quizboard.store import IdentityStore, LeaderboardAggregator, ScoreLedger

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_LEADERBOARD_LIMIT = 10
MAX_LEADERBOARD_LIMIT = 100


def _parse_delta(payload: Any) -> int:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("invalid delta")
    try:
        return ScoreDeltaRequest.model_validate(payload).delta
    except pydantic.ValidationError as exc:
        raise ValidationError("invalid delta") from exc


def parse_limit(raw: Optional[str]) -> int:
    """Leaderboard size from the query string, floored and clamped to [1, 100]."""
    if raw is None:
        return DEFAULT_LEADERBOARD_LIMIT
    try:
        limit = math.floor(float(raw))
    except (ValueError, OverflowError):
        limit = DEFAULT_LEADERBOARD_LIMIT
    return max(1, min(MAX_LEADERBOARD_LIMIT, limit))


@router.get("/health", response_model=HealthResponse)
async def health(identity: IdentityStore = Depends(get_identity_store)):
    try:
        await identity.ping()
    except StorageError as exc:
        logger.warning("Health check failed: %s", exc)
        return HealthResponse(ok=False)
    return HealthResponse(ok=True)


@router.post("/users/upsert", response_model=UserResponse)
async def upsert_user(
    response: Response,
    payload: Any = Body(None),
    reconciler: ReconciliationService = Depends(get_reconciler),
):
    """
    Create the user, or merge into the row matching its email (then id).
    Answers 201 on creation and 200 on merge.
    """
    result = await reconciler.reconcile(payload)
    response.status_code = 201 if result.created else 200
    return result.user.as_dict()


@router.post("/users/bulk-upsert", response_model=BulkUpsertResponse)
async def bulk_upsert_users(
    payload: Any = Body(None),
    reconciler: ReconciliationService = Depends(get_reconciler),
):
    if not isinstance(payload, list):
        raise ValidationError("array body required")
    users = await reconciler.bulk_reconcile(payload)
    return BulkUpsertResponse(
        count=len(users), users=[user.as_dict() for user in users]
    )


@router.post("/users/by-email/{email:path}/score", response_model=UserResponse)
async def increment_score_by_email(
    email: str,
    payload: Any = Body(None),
    ledger: ScoreLedger = Depends(get_score_ledger),
):
    email = email.strip()
    if not email:
        raise ValidationError("invalid email or delta")
    delta = _parse_delta(payload)
    updated = await ledger.increment_score_by_email(email, delta)
    return updated.as_dict()


@router.post("/users/{user_id}/score", response_model=UserResponse)
async def increment_score(
    user_id: str,
    payload: Any = Body(None),
    ledger: ScoreLedger = Depends(get_score_ledger),
):
    delta = _parse_delta(payload)
    updated = await ledger.increment_score(user_id, delta)
    return updated.as_dict()


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str, identity: IdentityStore = Depends(get_identity_store)
):
    user = await identity.find_by_id(user_id)
    if user is None:
        raise NotFound(user_id, "not found")
    return user.as_dict()


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    limit: Optional[str] = Query(None),
    aggregator: LeaderboardAggregator = Depends(get_leaderboard),
):
    users = await aggregator.top_users(parse_limit(limit))
    return LeaderboardResponse(
        users=[
            LeaderboardEntry(**user.as_dict(), rank=index + 1)
            for index, user in enumerate(users)
        ]
    )


@router.get("/leaderboard/universities", response_model=UniversityLeaderboardResponse)
async def university_leaderboard(
    aggregator: LeaderboardAggregator = Depends(get_leaderboard),
):
    rows = await aggregator.university_leaderboard()
    return UniversityLeaderboardResponse(
        universities=[
            UniversityRanking(**row.as_dict(), rank=index + 1)
            for index, row in enumerate(rows)
        ]
    )
