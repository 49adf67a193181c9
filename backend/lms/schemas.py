"""Request and response records.

Every entity crosses the HTTP boundary through exactly one of these models.
Field names are snake_case in Python and camelCase on the wire; inputs
accept either spelling.
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

AttendanceStatus = Literal["present", "absent", "late", "excused"]
EnrollmentStatus = Literal["enrolled", "in_progress", "completed", "dropped", "waitlist"]
ProgressStatus = Literal["not_started", "in_progress", "completed", "skipped"]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Courses and the prerequisite graph


class CourseIn(ApiModel):
    programme_id: Optional[str] = None
    title: str = Field(min_length=1)
    description: Optional[str] = None
    sequence_order: int = 0
    is_published: bool = False


class CourseOut(ApiModel):
    id: str
    programme_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    sequence_order: int = 0
    is_published: bool = False


class CourseDeletedOut(ApiModel):
    status: str = "deleted"
    course_id: str
    dependents_unlinked: list[CourseOut]


class PrerequisiteIn(ApiModel):
    prerequisite_course_id: str = Field(min_length=1)


class PrerequisiteEdgeOut(ApiModel):
    id: str
    course_id: str
    prerequisite_course_id: str
    created_at: Optional[datetime] = None


class PrerequisiteStatus(ApiModel):
    prerequisite_course_id: str
    title: str
    completion_percentage: float
    is_completed: bool


class AccessCheck(ApiModel):
    has_access: bool
    prerequisites: list[PrerequisiteStatus]
    missing_count: int


class CompletionOut(ApiModel):
    user_id: str
    course_id: str
    completion_percentage: float


class GraphNode(ApiModel):
    id: str
    label: str
    programme_id: Optional[str] = None
    sequence_order: int = 0


class GraphEdge(ApiModel):
    id: str
    from_: str = Field(alias="from")
    to: str


class PrerequisiteGraph(ApiModel):
    nodes: list[GraphNode]
    edges: list[GraphEdge]
    cycles: list[list[str]]


# Enrollment


class BulkEnrollIn(ApiModel):
    cohort_id: str = Field(min_length=1)
    user_ids: list[str]


class EnrollmentOut(ApiModel):
    id: str
    cohort_id: str
    user_id: str
    enrollment_status: EnrollmentStatus
    enrollment_date: Optional[datetime] = None
    completion_date: Optional[datetime] = None
    completion_percentage: int = 0
    notes: Optional[str] = None


class BulkEnrollOut(ApiModel):
    requested: int
    enrolled: int
    skipped: int
    enrollments: list[EnrollmentOut]


# Attendance


class AttendanceEntryIn(ApiModel):
    user_id: str = Field(min_length=1)
    status: AttendanceStatus


class BulkAttendanceIn(ApiModel):
    cohort_id: str = Field(min_length=1)
    session_date: date
    session_name: str = ""
    session_id: Optional[str] = None
    # the original admin console posts this list as "attendanceData"
    entries: list[AttendanceEntryIn] = Field(alias="attendanceData")


class AttendanceRecordOut(ApiModel):
    id: str
    cohort_id: str
    user_id: str
    session_id: Optional[str] = None
    session_date: date
    session_name: Optional[str] = None
    attendance_status: AttendanceStatus
    notes: Optional[str] = None
    recorded_by: Optional[str] = None
    recorded_at: Optional[datetime] = None


class BulkAttendanceOut(ApiModel):
    recorded: int
    records: list[AttendanceRecordOut]


class AttendanceStatsOut(ApiModel):
    total_records: int = 0
    unique_participants: int = 0
    total_sessions: int = 0
    present_count: int = 0
    absent_count: int = 0
    late_count: int = 0
    excused_count: int = 0


class DuplicateAttendanceOut(ApiModel):
    user_id: str
    session_date: date
    record_count: int
    statuses: list[AttendanceStatus]


# Cohort sessions


class CohortSessionIn(ApiModel):
    cohort_id: str = Field(min_length=1)
    session_name: str = Field(min_length=1)
    session_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    location: Optional[str] = None
    description: Optional[str] = None
    session_type: str = "lecture"


class CohortSessionOut(ApiModel):
    id: str
    cohort_id: str
    session_name: str
    session_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    location: Optional[str] = None
    description: Optional[str] = None
    session_type: str = "lecture"
    is_completed: bool = False
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class CohortSessionStatsOut(CohortSessionOut):
    total_marked: int = 0
    present_count: int = 0
    absent_count: int = 0
    late_count: int = 0
    excused_count: int = 0


class SessionCompleteIn(ApiModel):
    notes: Optional[str] = None


# Progress


class ProgressOut(ApiModel):
    id: str
    user_id: str
    module_id: str
    status: ProgressStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_spent_minutes: int = 0
    last_accessed_at: Optional[datetime] = None


class ProgressSummaryOut(ApiModel):
    total_modules: int = 0
    completed_modules: int = 0
    in_progress_modules: int = 0
    total_time_spent: int = 0


# Analytics


class DashboardStatsOut(ApiModel):
    total_programmes: int = 0
    active_cohorts: int = 0
    total_participants: int = 0
    completed_enrollments: int = 0
    avg_completion_rate: float = 0.0


class ProgrammeStatsOut(ApiModel):
    programme_id: str
    name: str
    status: str
    cohort_count: int = 0
    total_enrollments: int = 0
    completed_count: int = 0
    avg_completion: float = 0.0
    attendance_records: int = 0
    attendance_rate: float = 0.0
