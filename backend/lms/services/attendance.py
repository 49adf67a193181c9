"""Attendance recording.

``bulk_record_attendance`` is strictly all-or-nothing and never idempotent:
marking the same participant for the same session twice stores two rows.
``duplicate_attendance`` reports such groups; it does not pick a winner.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Optional, Sequence

from sqlalchemy import case, distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lms.core.errors import ConstraintViolation, TransactionFailed
from lms.core.logging import get_logger
from lms.models import AttendanceRecord
from lms.schemas import AttendanceEntryIn, AttendanceStatsOut, DuplicateAttendanceOut
from lms.services.sessions import find_session_for_date, get_session

logger = get_logger("attendance")


def _resolve_session_id(db: Session, cohort_id: str, session_date: date, session_id: Optional[str]) -> Optional[str]:
    if session_id:
        session = get_session(db, session_id)
        if session.cohort_id != cohort_id:
            raise ConstraintViolation("Session belongs to a different cohort")
        return session.id
    match = find_session_for_date(db, cohort_id, session_date)
    return match.id if match is not None else None


def bulk_record_attendance(
    db: Session,
    cohort_id: str,
    session_date: date,
    session_name: str,
    entries: Sequence[AttendanceEntryIn],
    recorded_by: Optional[str],
    session_id: Optional[str] = None,
) -> list[AttendanceRecord]:
    """Insert one attendance row per entry inside a single transaction.

    Rows are written in input order. Any store error rolls back every row of
    the batch and raises TransactionFailed; callers retry the whole batch.
    """
    linked_session = _resolve_session_id(db, cohort_id, session_date, session_id)
    records: list[AttendanceRecord] = []
    try:
        for entry in entries:
            row = AttendanceRecord(
                cohort_id=cohort_id,
                user_id=entry.user_id,
                session_id=linked_session,
                session_date=session_date,
                session_name=session_name,
                attendance_status=entry.status,
                recorded_by=recorded_by,
            )
            db.add(row)
            db.flush()
            records.append(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "Bulk attendance for cohort %s on %s rolled back after %d row(s)", cohort_id, session_date, len(records)
        )
        raise TransactionFailed("Failed to bulk record attendance") from exc
    logger.info("Recorded %d attendance row(s) for cohort %s on %s", len(records), cohort_id, session_date)
    return records


def attendance_for_cohort(db: Session, cohort_id: str, session_date: Optional[date] = None) -> list[AttendanceRecord]:
    stmt = select(AttendanceRecord).where(AttendanceRecord.cohort_id == cohort_id)
    if session_date is not None:
        stmt = stmt.where(AttendanceRecord.session_date == session_date)
    stmt = stmt.order_by(AttendanceRecord.session_date.desc(), AttendanceRecord.recorded_at.asc())
    return list(db.scalars(stmt).all())


def attendance_for_user(db: Session, user_id: str) -> list[AttendanceRecord]:
    """A participant's attendance across every cohort, newest session first."""
    stmt = (
        select(AttendanceRecord)
        .where(AttendanceRecord.user_id == user_id)
        .order_by(AttendanceRecord.session_date.desc(), AttendanceRecord.recorded_at.asc())
    )
    return list(db.scalars(stmt).all())


def _status_sum(status: str):
    return func.sum(case((AttendanceRecord.attendance_status == status, 1), else_=0))


def attendance_stats(db: Session, cohort_id: str) -> AttendanceStatsOut:
    row = db.execute(
        select(
            func.count(AttendanceRecord.id),
            func.count(distinct(AttendanceRecord.user_id)),
            func.count(distinct(AttendanceRecord.session_date)),
            _status_sum("present"),
            _status_sum("absent"),
            _status_sum("late"),
            _status_sum("excused"),
        ).where(AttendanceRecord.cohort_id == cohort_id)
    ).one()
    return AttendanceStatsOut(
        total_records=row[0] or 0,
        unique_participants=row[1] or 0,
        total_sessions=row[2] or 0,
        present_count=row[3] or 0,
        absent_count=row[4] or 0,
        late_count=row[5] or 0,
        excused_count=row[6] or 0,
    )


def duplicate_attendance(db: Session, cohort_id: str) -> list[DuplicateAttendanceOut]:
    grouped: dict[tuple[str, date], list[str]] = defaultdict(list)
    rows = db.scalars(
        select(AttendanceRecord)
        .where(AttendanceRecord.cohort_id == cohort_id)
        .order_by(AttendanceRecord.recorded_at.asc())
    ).all()
    for row in rows:
        grouped[(row.user_id, row.session_date)].append(row.attendance_status)
    return [
        DuplicateAttendanceOut(user_id=user_id, session_date=day, record_count=len(statuses), statuses=statuses)
        for (user_id, day), statuses in sorted(grouped.items(), key=lambda kv: (kv[0][1], kv[0][0]))
        if len(statuses) > 1
    ]
