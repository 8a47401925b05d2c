"""Pydantic response models for ranking queries."""

from __future__ import annotations

from pydantic import BaseModel


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    display_name: str | None = None
    avatar: str | None = None
    role: str
    level: int
    xp: int


class RankResponse(BaseModel):
    user_id: int
    rank: int
    xp: int
    total_users: int
