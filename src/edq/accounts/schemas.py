"""Pydantic response models for account operations."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, ConfigDict


class AccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    display_name: str | None = None
    avatar: str | None = None
    role: str
    coins: int
    xp: int
    level: int
    streak: int
    last_login_on: date | None = None


class LoginResult(BaseModel):
    user_id: int
    streak: int
    login_bonus: int
    coins: int
