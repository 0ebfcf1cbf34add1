"""
Reconciliation of client-submitted user records.

A candidate is matched to an existing row by email, then by id; when neither
matches a new row is created. Matching rows only receive the mutable fields
the candidate actually carries, so replaying records from an offline cache
is safe and idempotent.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import pydantic

from quizboard.db import DEFAULT_ROLE, UserRecord
from quizboard.errors import (
    DuplicateUserError,
    NotFound,
    PartialBatchFailure,
    StorageError,
    ValidationError,
)
from quizboard.schemas import UserUpsertRequest
from quizboard.store import IdentityStore

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    user: UserRecord
    created: bool


def parse_candidate(raw: Any) -> UserUpsertRequest:
    """Validate a raw payload; raises ``ValidationError`` before any lookup."""
    if not isinstance(raw, dict):
        raise ValidationError("user payload must be a JSON object")
    try:
        candidate = UserUpsertRequest.model_validate(raw)
    except pydantic.ValidationError as exc:
        errors = exc.errors()
        field = ".".join(str(part) for part in errors[0]["loc"]) if errors else ""
        raise ValidationError(f"invalid value for '{field}'") from exc
    if not candidate.name or not candidate.email:
        raise ValidationError("name and email are required")
    return candidate


class ReconciliationService:
    def __init__(self, identity: IdentityStore):
        self.identity = identity

    async def reconcile(self, raw: Any) -> ReconcileResult:
        return await self._reconcile(parse_candidate(raw))

    async def bulk_reconcile(self, records: Iterable[Any]) -> list[UserRecord]:
        """
        Reconcile ``records`` in order. Invalid records are skipped. The first
        storage failure stops the batch with ``PartialBatchFailure``; rows
        reconciled before it stay committed.
        """
        reconciled: list[UserRecord] = []
        for index, raw in enumerate(records):
            try:
                candidate = parse_candidate(raw)
            except ValidationError as exc:
                logger.debug("Skipping bulk record %d: %s", index, exc)
                continue
            try:
                result = await self._reconcile(candidate)
            except (StorageError, NotFound) as exc:
                logger.error(
                    "Bulk reconciliation stopped at record %d after %d rows: %s",
                    index,
                    len(reconciled),
                    exc,
                )
                raise PartialBatchFailure(exc, reconciled) from exc
            reconciled.append(result.user)
        return reconciled

    async def _resolve(self, candidate: UserUpsertRequest) -> Optional[UserRecord]:
        target = await self.identity.find_by_email(candidate.email)
        if target is None and candidate.id:
            target = await self.identity.find_by_id(candidate.id)
        return target

    async def _reconcile(self, candidate: UserUpsertRequest) -> ReconcileResult:
        target = await self._resolve(candidate)
        if target is None:
            try:
                user, inserted = await self.identity.create_or_upsert(
                    self._new_record(candidate)
                )
                if not inserted:
                    # Same id inserted concurrently; the upsert merged into it.
                    logger.info("User %s created concurrently, merged", user.id)
                return ReconcileResult(user=user, created=inserted)
            except DuplicateUserError:
                # Another request created the row between lookup and insert.
                logger.info("User %s created concurrently, merging", candidate.email)
                target = await self._resolve(candidate)
                if target is None:
                    raise
        merged = await self.identity.update_mutable_fields(
            target.id,
            name=candidate.name,
            university=candidate.university,
            avatar_url=candidate.avatarUrl,
            banner_url=candidate.bannerUrl,
            role=candidate.role,
        )
        return ReconcileResult(user=merged, created=False)

    def _new_record(self, candidate: UserUpsertRequest) -> UserRecord:
        return UserRecord(
            id=candidate.id or str(uuid.uuid4()),
            name=candidate.name,
            email=candidate.email,
            password=candidate.password,
            university=candidate.university,
            avatar_url=candidate.avatarUrl,
            banner_url=candidate.bannerUrl,
            role=candidate.role or DEFAULT_ROLE,
            score=candidate.score or 0,
        )
