"""Pydantic result models for entitlement operations."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict


# --- Purchases / enrollment ---


class PurchaseResult(BaseModel):
    user_id: int
    item_id: int
    balance: int
    charged: int
    quantity: int
    already_owned: bool = False


class EnrollmentResult(BaseModel):
    user_id: int
    course_id: int
    balance: int
    charged: int
    already_enrolled: bool = False


# --- Certificates ---


class CertificateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    course_title: str
    course_id: int | None = None
    issued_on: date


# --- Settlement ---


class SettlementResult(BaseModel):
    progress_id: int
    settlement_id: int | None = None
    status: str
    settled: bool
    xp_gained: int = 0
    coins_gained: int = 0
    coins: int
    xp: int
    level: int
    certificate: CertificateResponse | None = None
    certificate_issued: bool = False


# --- Listings ---


class InventoryEntry(BaseModel):
    item_id: int
    name: str
    category: str
    icon: str | None = None
    quantity: int
    acquired_at: datetime


class EnrollmentEntry(BaseModel):
    course_id: int
    title: str
    category: str
    credits: int
    enrolled_at: datetime


class ProgressSummary(BaseModel):
    user_id: int
    total_score: int
    completed_count: int
    certificates: list[CertificateResponse] = []
    rank: int
    total_users: int
