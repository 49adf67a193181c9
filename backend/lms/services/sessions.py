"""Cohort session scheduling and its correlation with attendance.

Attendance rows point at a session through ``session_id``. Rows written
before that link existed, or without a matching session, still count for a
session when they share its cohort and date.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from lms.core.errors import NotFound, TransactionFailed
from lms.core.logging import get_logger
from lms.models import AttendanceRecord, CohortSession
from lms.schemas import CohortSessionIn, CohortSessionOut, CohortSessionStatsOut

logger = get_logger("sessions")


def get_session(db: Session, session_id: str) -> CohortSession:
    row = db.get(CohortSession, session_id)
    if row is None:
        raise NotFound("Session not found")
    return row


def create_session(db: Session, payload: CohortSessionIn) -> CohortSession:
    row = CohortSession(**payload.model_dump())
    db.add(row)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise NotFound("Cohort not found") from exc
    db.refresh(row)
    logger.info("Session %s scheduled for cohort %s on %s", row.id, row.cohort_id, row.session_date)
    return row


def list_sessions(db: Session, cohort_id: str) -> list[CohortSession]:
    return list(
        db.scalars(
            select(CohortSession)
            .where(CohortSession.cohort_id == cohort_id)
            .order_by(CohortSession.session_date.asc(), CohortSession.start_time.asc())
        ).all()
    )


def find_session_for_date(db: Session, cohort_id: str, session_date: date) -> Optional[CohortSession]:
    """The cohort's session on that date, or None when there is no single match."""
    rows = db.scalars(
        select(CohortSession).where(CohortSession.cohort_id == cohort_id, CohortSession.session_date == session_date)
    ).all()
    return rows[0] if len(rows) == 1 else None


def _status_count(status: str):
    return func.count(case((AttendanceRecord.attendance_status == status, AttendanceRecord.id)))


def sessions_with_attendance_stats(db: Session, cohort_id: str) -> list[CohortSessionStatsOut]:
    linked = or_(
        AttendanceRecord.session_id == CohortSession.id,
        and_(
            AttendanceRecord.session_id.is_(None),
            AttendanceRecord.cohort_id == CohortSession.cohort_id,
            AttendanceRecord.session_date == CohortSession.session_date,
        ),
    )
    stmt = (
        select(
            CohortSession,
            func.count(AttendanceRecord.id),
            _status_count("present"),
            _status_count("absent"),
            _status_count("late"),
            _status_count("excused"),
        )
        .outerjoin(AttendanceRecord, linked)
        .where(CohortSession.cohort_id == cohort_id)
        .group_by(CohortSession.id)
        .order_by(CohortSession.session_date.asc(), CohortSession.start_time.asc())
    )
    out = []
    for session, marked, present, absent, late, excused in db.execute(stmt).all():
        base = CohortSessionOut.model_validate(session).model_dump()
        out.append(
            CohortSessionStatsOut(
                **base,
                total_marked=marked or 0,
                present_count=present or 0,
                absent_count=absent or 0,
                late_count=late or 0,
                excused_count=excused or 0,
            )
        )
    return out


def mark_session_completed(db: Session, session_id: str, notes: Optional[str] = None) -> CohortSession:
    """Flag the session as held. Existing notes are kept unless new ones are given."""
    row = get_session(db, session_id)
    row.is_completed = True
    if notes is not None:
        row.notes = notes
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Completing session %s failed", session_id)
        raise TransactionFailed("Failed to complete session") from exc
    db.refresh(row)
    return row


def delete_session(db: Session, session_id: str) -> None:
    row = get_session(db, session_id)
    db.delete(row)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Deleting session %s failed", session_id)
        raise TransactionFailed("Failed to delete session") from exc
    logger.info("Session %s deleted", session_id)
