"""Bulk enrollment.

Per-row idempotent: a user already enrolled in the cohort is skipped, not an
error. The batch as a whole still commits or rolls back together.
"""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from lms.core.errors import TransactionFailed, classify_integrity_error
from lms.core.logging import get_logger
from lms.models import Enrollment

logger = get_logger("enrollments")

_UPSERT_INSERTS = {"sqlite": sqlite_insert, "postgresql": pg_insert}


def _insert_or_skip(db: Session, dialect: str, cohort_id: str, user_id: str) -> Optional[Enrollment]:
    insert_fn = _UPSERT_INSERTS.get(dialect)
    if insert_fn is not None:
        stmt = (
            insert_fn(Enrollment)
            .values(cohort_id=cohort_id, user_id=user_id, enrollment_status="enrolled")
            .on_conflict_do_nothing(index_elements=["cohort_id", "user_id"])
            .returning(Enrollment)
        )
        return db.scalars(stmt).first()

    # stores without ON CONFLICT: isolate each row in a savepoint
    row = Enrollment(cohort_id=cohort_id, user_id=user_id, enrollment_status="enrolled")
    try:
        with db.begin_nested():
            db.add(row)
            db.flush()
    except IntegrityError as exc:
        if classify_integrity_error(exc) != "unique":
            raise
        return None
    return row


def bulk_enroll(db: Session, cohort_id: str, user_ids: Iterable[str]) -> list[Enrollment]:
    """Enroll every user into the cohort; returns only the rows actually inserted."""
    user_ids = list(user_ids)
    dialect = db.get_bind().dialect.name
    created: list[Enrollment] = []
    try:
        for user_id in user_ids:
            row = _insert_or_skip(db, dialect, cohort_id, user_id)
            if row is not None:
                created.append(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Bulk enroll into cohort %s rolled back", cohort_id)
        raise TransactionFailed("Failed to bulk enroll participants") from exc
    logger.info(
        "Bulk enroll cohort=%s requested=%d enrolled=%d skipped=%d",
        cohort_id,
        len(user_ids),
        len(created),
        len(user_ids) - len(created),
    )
    return created
