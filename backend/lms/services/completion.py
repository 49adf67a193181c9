"""Completion aggregation over module-level progress rows.

A participant's completion of a course is the share of the course's modules
whose progress row is ``completed``, scaled to 0-100. Nothing is cached;
every call reads the store.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lms.core.errors import ConstraintViolation, NotFound
from lms.core.logging import get_logger
from lms.models import Cohort, Course, Enrollment, Module, ProgressTracking
from lms.schemas import ProgressSummaryOut

logger = get_logger("completion")


def is_enrolled_for_course(db: Session, user_id: str, course: Course) -> bool:
    """True when some enrollment of the user reaches the course through cohort -> programme."""
    if course.programme_id is None:
        return False
    found = db.scalar(
        select(Enrollment.id)
        .join(Cohort, Cohort.id == Enrollment.cohort_id)
        .where(Enrollment.user_id == user_id, Cohort.programme_id == course.programme_id)
        .limit(1)
    )
    return found is not None


def course_completion(db: Session, user_id: str, course: Course) -> float:
    # a course without modules has nothing to complete, so it reports 0
    if not is_enrolled_for_course(db, user_id, course):
        return 0.0
    total = db.scalar(select(func.count(Module.id)).where(Module.course_id == course.id)) or 0
    if total == 0:
        return 0.0
    completed = (
        db.scalar(
            select(func.count(ProgressTracking.id))
            .join(Module, Module.id == ProgressTracking.module_id)
            .where(
                Module.course_id == course.id,
                ProgressTracking.user_id == user_id,
                ProgressTracking.status == "completed",
            )
        )
        or 0
    )
    return completion_percentage(completed, total)


def completion_percentage(completed: int, total: int) -> float:
    """Share of ``total`` done, 0-100 with 2 decimals; 100 only when nothing is left."""
    if total <= 0:
        return 0.0
    if completed >= total:
        return 100.0
    return min(round(completed / total * 100, 2), 99.99)


def _upsert_progress(db: Session, user_id: str, module_id: str, completed: bool) -> ProgressTracking:
    if db.get(Module, module_id) is None:
        raise NotFound("Module not found")
    now = datetime.utcnow()
    row = db.scalar(
        select(ProgressTracking).where(ProgressTracking.user_id == user_id, ProgressTracking.module_id == module_id)
    )
    if row is None:
        row = ProgressTracking(user_id=user_id, module_id=module_id)
        db.add(row)
    if completed:
        row.status = "completed"
        row.completed_at = now
        if row.started_at is None:
            row.started_at = now
    elif row.status != "completed":
        # reopening a finished module must not lower completion
        row.status = "in_progress"
        if row.started_at is None:
            row.started_at = now
    row.last_accessed_at = now
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConstraintViolation("Progress could not be recorded for this user and module") from exc
    db.refresh(row)
    logger.info("Progress %s for user=%s module=%s", row.status, user_id, module_id)
    return row


def mark_module_started(db: Session, user_id: str, module_id: str) -> ProgressTracking:
    return _upsert_progress(db, user_id, module_id, completed=False)


def mark_module_completed(db: Session, user_id: str, module_id: str) -> ProgressTracking:
    return _upsert_progress(db, user_id, module_id, completed=True)


def user_progress_summary(db: Session, user_id: str) -> ProgressSummaryOut:
    row = db.execute(
        select(
            func.count(ProgressTracking.id),
            func.sum(case((ProgressTracking.status == "completed", 1), else_=0)),
            func.sum(case((ProgressTracking.status == "in_progress", 1), else_=0)),
            func.sum(ProgressTracking.time_spent_minutes),
        ).where(ProgressTracking.user_id == user_id)
    ).one()
    return ProgressSummaryOut(
        total_modules=row[0] or 0,
        completed_modules=row[1] or 0,
        in_progress_modules=row[2] or 0,
        total_time_spent=row[3] or 0,
    )


def progress_for_user(db: Session, user_id: str) -> list[ProgressTracking]:
    """Every module progress row of the user, most recently touched first."""
    return list(
        db.scalars(
            select(ProgressTracking)
            .where(ProgressTracking.user_id == user_id)
            .order_by(ProgressTracking.last_accessed_at.desc(), ProgressTracking.id.asc())
        ).all()
    )
