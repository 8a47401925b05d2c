"""ORM models for the rewards ledger.

Entitlement tables carry the uniqueness constraints that make inserts
idempotent; the application never relies on check-then-insert alone.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from edq.db.base import Base, BigIntPK


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class Account(Base):
    """One row per user: identity, display metadata and balances."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("coins >= 0", name="ck_accounts_coins_non_negative"),
        CheckConstraint("xp >= 0", name="ck_accounts_xp_non_negative"),
        CheckConstraint("level >= 1", name="ck_accounts_level_positive"),
        CheckConstraint("streak >= 0", name="ck_accounts_streak_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    avatar: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="student", server_default="student")
    coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_login_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    item_ownerships: Mapped[list[ItemOwnership]] = relationship(
        "ItemOwnership", back_populates="user", passive_deletes=True
    )
    enrollments: Mapped[list[Enrollment]] = relationship(
        "Enrollment", back_populates="user", passive_deletes=True
    )
    certificates: Mapped[list[Certificate]] = relationship(
        "Certificate", back_populates="user", passive_deletes=True
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class CatalogItem(Base):
    """Purchasable shop item. Category decides whether repeat purchases stack."""

    __tablename__ = "catalog_items"
    __table_args__ = (CheckConstraint("price >= 0", name="ck_catalog_items_price_non_negative"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="cosmetic", server_default="cosmetic")
    icon: Mapped[str | None] = mapped_column(String(64), nullable=True)


class Course(Base):
    """Learning unit (a.k.a. activity). ``credits`` weights the completion reward."""

    __tablename__ = "courses"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_courses_price_non_negative"),
        CheckConstraint("credits >= 0", name="ck_courses_credits_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="General", server_default="General")
    price: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    creator_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Entitlements
# ---------------------------------------------------------------------------


class ItemOwnership(Base):
    """Items owned by users. UNIQUE(user_id, item_id); consumables stack in quantity."""

    __tablename__ = "item_ownerships"
    __table_args__ = (
        UniqueConstraint("user_id", "item_id", name="uq_item_ownerships_user_item"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    item_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("catalog_items.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    user: Mapped[Account] = relationship("Account", back_populates="item_ownerships")
    item: Mapped[CatalogItem] = relationship("CatalogItem", lazy="joined")


class Enrollment(Base):
    """Course access. UNIQUE(user_id, course_id) keeps re-enrolls from duplicating."""

    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_enrollments_user_course"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    course_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    enrolled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    user: Mapped[Account] = relationship("Account", back_populates="enrollments")
    course: Mapped[Course] = relationship("Course", lazy="joined")


class Certificate(Base):
    """Completion certificate. At most one per (user, course title)."""

    __tablename__ = "certificates"
    __table_args__ = (
        UniqueConstraint("user_id", "course_title", name="uq_certificates_user_course_title"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    course_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("courses.id", ondelete="SET NULL"), nullable=True
    )
    course_title: Mapped[str] = mapped_column(String(256), nullable=False)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    issued_on: Mapped[date] = mapped_column(Date, nullable=False)

    user: Mapped[Account] = relationship("Account", back_populates="certificates")


# ---------------------------------------------------------------------------
# Progress, balance ledger, settlement journal
# ---------------------------------------------------------------------------


class ProgressRecord(Base):
    """Append-only raw progress log. Never updated."""

    __tablename__ = "progress_log"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    course_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class BalanceLedgerEntry(Base):
    """Immutable balance movement log with optional idempotency key."""

    __tablename__ = "balance_ledger"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    coins_delta: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_delta: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Settlement(Base):
    """Reconciliation journal for completion rewards.

    Written in the same transaction as the progress record, so a reward
    owed is never lost even if granting it fails afterwards.
    """

    __tablename__ = "settlements"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    course_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    progress_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("progress_log.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    xp_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    coins_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    certificate_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
