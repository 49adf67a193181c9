from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

USER_ROLES = ("admin", "mentor", "participant", "viewer")
ENROLLMENT_STATUSES = ("enrolled", "in_progress", "completed", "dropped", "waitlist")
ATTENDANCE_STATUSES = ("present", "absent", "late", "excused")
PROGRESS_STATUSES = ("not_started", "in_progress", "completed", "skipped")


def _new_id() -> str:
    return str(uuid.uuid4())


def _in_list(column: str, values: tuple[str, ...]) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    __table_args__ = (CheckConstraint(_in_list("role", USER_ROLES), name="ck_users_role"),)
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    username: Mapped[str] = mapped_column(String, unique=True, index=True)
    email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(String, default="participant")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    actor_user_id: Mapped[str] = mapped_column(String)
    action: Mapped[str] = mapped_column(String)
    entity_type: Mapped[str] = mapped_column(String)
    entity_id: Mapped[str] = mapped_column(String)
    payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Programme(Base):
    __tablename__ = "programmes"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, default="draft")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Cohort(Base):
    __tablename__ = "cohorts"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    programme_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("programmes.id", ondelete="CASCADE"), index=True, nullable=True
    )
    name: Mapped[str] = mapped_column(String)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String, default="draft")


class Course(Base):
    __tablename__ = "courses"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    programme_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("programmes.id", ondelete="CASCADE"), index=True, nullable=True
    )
    title: Mapped[str] = mapped_column(String)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sequence_order: Mapped[int] = mapped_column(Integer, default=0)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Module(Base):
    __tablename__ = "modules"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    course_id: Mapped[str] = mapped_column(String, ForeignKey("courses.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String)
    sequence_order: Mapped[int] = mapped_column(Integer, default=0)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False)


class CoursePrerequisite(Base):
    """Directed edge: ``course_id`` requires ``prerequisite_course_id``."""

    __tablename__ = "course_prerequisites"
    __table_args__ = (
        UniqueConstraint("course_id", "prerequisite_course_id", name="uq_course_prerequisite"),
        CheckConstraint("course_id != prerequisite_course_id", name="ck_no_self_prerequisite"),
    )
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    course_id: Mapped[str] = mapped_column(String, ForeignKey("courses.id", ondelete="CASCADE"), index=True)
    prerequisite_course_id: Mapped[str] = mapped_column(
        String, ForeignKey("courses.id", ondelete="CASCADE"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("cohort_id", "user_id", name="uq_enrollment_cohort_user"),
        CheckConstraint(_in_list("enrollment_status", ENROLLMENT_STATUSES), name="ck_enrollment_status"),
        CheckConstraint("completion_percentage BETWEEN 0 AND 100", name="ck_enrollment_completion"),
    )
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    cohort_id: Mapped[str] = mapped_column(String, ForeignKey("cohorts.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    enrollment_status: Mapped[str] = mapped_column(String, default="enrolled")
    enrollment_date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    completion_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completion_percentage: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class CohortSession(Base):
    __tablename__ = "cohort_sessions"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    cohort_id: Mapped[str] = mapped_column(String, ForeignKey("cohorts.id", ondelete="CASCADE"), index=True)
    session_name: Mapped[str] = mapped_column(String)
    session_date: Mapped[date] = mapped_column(Date, index=True)
    start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    session_type: Mapped[str] = mapped_column(String, default="lecture")
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class AttendanceRecord(Base):
    # no uniqueness on (cohort_id, user_id, session_date): re-marking appends a row
    __tablename__ = "attendance_records"
    __table_args__ = (
        CheckConstraint(_in_list("attendance_status", ATTENDANCE_STATUSES), name="ck_attendance_status"),
    )
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    cohort_id: Mapped[str] = mapped_column(String, ForeignKey("cohorts.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    session_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("cohort_sessions.id", ondelete="SET NULL"), index=True, nullable=True
    )
    session_date: Mapped[date] = mapped_column(Date, index=True)
    session_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    attendance_status: Mapped[str] = mapped_column(String, default="present")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recorded_by: Mapped[Optional[str]] = mapped_column(String, ForeignKey("users.id"), nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ProgressTracking(Base):
    __tablename__ = "progress_tracking"
    __table_args__ = (
        UniqueConstraint("user_id", "module_id", name="uq_progress_user_module"),
        CheckConstraint(_in_list("status", PROGRESS_STATUSES), name="ck_progress_status"),
    )
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id", ondelete="CASCADE"), index=True)
    module_id: Mapped[str] = mapped_column(String, ForeignKey("modules.id", ondelete="CASCADE"), index=True)
    status: Mapped[str] = mapped_column(String, default="not_started")
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    time_spent_minutes: Mapped[int] = mapped_column(Integer, default=0)
    last_accessed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
