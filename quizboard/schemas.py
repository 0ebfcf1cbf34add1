"""
Pydantic schemas for the quizboard API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "admin"]

# Scores are stored as signed 64-bit integers on both engines.
MIN_SCORE = -(2**63)
MAX_SCORE = 2**63 - 1


class UserUpsertRequest(BaseModel):
    """Candidate user record as sent by the client (single or bulk)."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    university: Optional[str] = None
    avatarUrl: Optional[str] = None
    bannerUrl: Optional[str] = None
    role: Optional[Role] = None
    score: Optional[int] = Field(default=None, ge=MIN_SCORE, le=MAX_SCORE)


class ScoreDeltaRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    delta: int = Field(default=0, ge=MIN_SCORE, le=MAX_SCORE)


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    password: Optional[str] = None
    university: Optional[str] = None
    avatarUrl: Optional[str] = None
    bannerUrl: Optional[str] = None
    role: Role
    score: int
    created_at: Optional[str] = None


class BulkUpsertResponse(BaseModel):
    count: int
    users: list[UserResponse]


class LeaderboardEntry(BaseModel):
    id: str
    name: str
    score: int
    avatarUrl: Optional[str] = None
    rank: int


class LeaderboardResponse(BaseModel):
    users: list[LeaderboardEntry]


class UniversityRanking(BaseModel):
    university: str
    totalScore: int
    userCount: int
    averageScore: int
    rank: int


class UniversityLeaderboardResponse(BaseModel):
    universities: list[UniversityRanking]


class HealthResponse(BaseModel):
    ok: bool


class ErrorResponse(BaseModel):
    error: str
    count: Optional[int] = None
