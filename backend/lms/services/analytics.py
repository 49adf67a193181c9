"""Read-only roll-ups for the admin dashboard.

Averages use the completion percentage stored on each enrollment. The
attendance rate counts ``present`` and ``late`` rows as attended.
"""

from __future__ import annotations

from sqlalchemy import case, distinct, func, select
from sqlalchemy.orm import Session

from lms.core.errors import NotFound
from lms.models import AttendanceRecord, Cohort, Enrollment, Programme, User
from lms.schemas import DashboardStatsOut, ProgrammeStatsOut

ATTENDED_STATUSES = ("present", "late")


def _count(db: Session, stmt) -> int:
    return db.scalar(stmt) or 0


def _rounded(value) -> float:
    return round(float(value), 2) if value is not None else 0.0


def dashboard_stats(db: Session) -> DashboardStatsOut:
    return DashboardStatsOut(
        total_programmes=_count(db, select(func.count(Programme.id))),
        active_cohorts=_count(db, select(func.count(Cohort.id)).where(Cohort.status == "active")),
        total_participants=_count(db, select(func.count(User.id)).where(User.role == "participant")),
        completed_enrollments=_count(
            db, select(func.count(Enrollment.id)).where(Enrollment.enrollment_status == "completed")
        ),
        avg_completion_rate=_rounded(db.scalar(select(func.avg(Enrollment.completion_percentage)))),
    )


def programme_stats(db: Session, programme_id: str) -> ProgrammeStatsOut:
    programme = db.get(Programme, programme_id)
    if programme is None:
        raise NotFound("Programme not found")

    cohorts, enrollments, completed, avg_completion = db.execute(
        select(
            func.count(distinct(Cohort.id)),
            func.count(distinct(Enrollment.id)),
            func.count(distinct(case((Enrollment.enrollment_status == "completed", Enrollment.id)))),
            func.avg(Enrollment.completion_percentage),
        )
        .select_from(Cohort)
        .outerjoin(Enrollment, Enrollment.cohort_id == Cohort.id)
        .where(Cohort.programme_id == programme_id)
    ).one()

    marked, attended = db.execute(
        select(
            func.count(AttendanceRecord.id),
            func.sum(case((AttendanceRecord.attendance_status.in_(ATTENDED_STATUSES), 1), else_=0)),
        )
        .join(Cohort, Cohort.id == AttendanceRecord.cohort_id)
        .where(Cohort.programme_id == programme_id)
    ).one()

    return ProgrammeStatsOut(
        programme_id=programme.id,
        name=programme.name,
        status=programme.status,
        cohort_count=cohorts or 0,
        total_enrollments=enrollments or 0,
        completed_count=completed or 0,
        avg_completion=_rounded(avg_completion),
        attendance_records=marked or 0,
        attendance_rate=round((attended or 0) / marked * 100, 2) if marked else 0.0,
    )
