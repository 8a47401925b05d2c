"""Certificate codes and idempotent issuance.

Codes are ``CERT-`` followed by 9 base36 characters (0-9, A-Z), drawn
from a cryptographic random source.
"""

from __future__ import annotations

import secrets
import string
from collections.abc import Sequence
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edq.db.dialect import insert_for
from edq.db.models import Certificate, Course

CODE_PREFIX = "CERT-"
CODE_CHARSET = string.digits + string.ascii_uppercase  # base36
CODE_LENGTH = 9
MAX_CODE_ATTEMPTS = 10


def generate_certificate_code() -> str:
    return CODE_PREFIX + "".join(secrets.choice(CODE_CHARSET) for _ in range(CODE_LENGTH))


async def get_certificate(db: AsyncSession, user_id: int, course_title: str) -> Certificate | None:
    result = await db.execute(
        select(Certificate).where(
            Certificate.user_id == user_id,
            Certificate.course_title == course_title,
        )
    )
    return result.scalar_one_or_none()


async def list_certificates(db: AsyncSession, user_id: int) -> Sequence[Certificate]:
    result = await db.execute(
        select(Certificate).where(Certificate.user_id == user_id).order_by(Certificate.id.desc())
    )
    return result.scalars().all()


async def issue_certificate(
    db: AsyncSession,
    user_id: int,
    course: Course,
    issued_on: date | None = None,
) -> tuple[Certificate, bool]:
    """Issue a certificate for (user, course title) unless one exists. Does not commit.

    Returns ``(certificate, created)``. The insert ignores every unique
    conflict; a miss with no existing certificate means the random code
    collided, so a fresh code is drawn.
    """
    if issued_on is None:
        issued_on = datetime.now(timezone.utc).date()

    for _ in range(MAX_CODE_ATTEMPTS):
        stmt = (
            insert_for(db, Certificate)
            .values(
                user_id=user_id,
                course_id=course.id,
                course_title=course.title,
                code=generate_certificate_code(),
                issued_on=issued_on,
            )
            .on_conflict_do_nothing()
            .returning(Certificate.id)
        )
        inserted_id = (await db.execute(stmt)).scalar_one_or_none()

        certificate = await get_certificate(db, user_id, course.title)
        if certificate is not None:
            return certificate, inserted_id is not None

    raise RuntimeError(f"Failed to generate unique certificate code after {MAX_CODE_ATTEMPTS} attempts")
