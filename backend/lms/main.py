from __future__ import annotations

import json
import uuid
from datetime import date, timedelta
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from itsdangerous import BadSignature, URLSafeSerializer
from sqlalchemy import select
from sqlalchemy.orm import Session

from lms.core.config import settings
from lms.core.database import SessionLocal, engine, get_db
from lms.core.errors import LmsError, NotFound
from lms.core.logging import NO_REQUEST, bind_request_id, current_request_id, get_logger, setup_logging
from lms.models import (
    AuditLog,
    Base,
    Cohort,
    CohortSession,
    Course,
    CoursePrerequisite,
    Module,
    Programme,
    User,
)
from lms.schemas import (
    AccessCheck,
    AttendanceRecordOut,
    AttendanceStatsOut,
    BulkAttendanceIn,
    BulkAttendanceOut,
    BulkEnrollIn,
    BulkEnrollOut,
    CohortSessionIn,
    CohortSessionOut,
    CohortSessionStatsOut,
    CompletionOut,
    CourseDeletedOut,
    CourseIn,
    CourseOut,
    DashboardStatsOut,
    DuplicateAttendanceOut,
    EnrollmentOut,
    PrerequisiteEdgeOut,
    PrerequisiteGraph,
    PrerequisiteIn,
    ProgrammeStatsOut,
    ProgressOut,
    ProgressSummaryOut,
    SessionCompleteIn,
)
from lms.services import analytics, attendance, completion, enrollments, prerequisites, sessions

setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)
logger = get_logger("api")

serializer = URLSafeSerializer(settings.SESSION_SECRET, salt=settings.SESSION_SALT)
MENTOR_ROLES = ("admin", "mentor")
VIEWER_ROLES = ("admin", "viewer")
REQUEST_ID_HEADER = "X-Request-ID"

app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Tag every log line of the request with one id and echo it back as X-Request-ID."""
    request_id = bind_request_id(request.headers.get(REQUEST_ID_HEADER))
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@app.exception_handler(LmsError)
async def lms_error_handler(request: Request, exc: LmsError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": type(exc).__name__, "detail": exc.message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Turn unhandled exceptions into a JSON 500 without leaking internals."""
    error_id = current_request_id()
    if error_id == NO_REQUEST:
        error_id = uuid.uuid4().hex[:12]
    logger.exception("Unhandled exception [error_id=%s] %s %s", error_id, request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "error_id": error_id,
            "detail": "An unexpected error occurred. Please contact support with the error_id.",
        },
    )


def issue_token(user: User) -> str:
    return serializer.dumps({"user_id": user.id})


def current_user(session_token: str = Query(...), db: Session = Depends(get_db)) -> User:
    try:
        payload = serializer.loads(session_token)
    except BadSignature as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
    user = db.get(User, payload.get("user_id"))
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid user")
    return user


def require_mentor(user: User = Depends(current_user)) -> User:
    if user.role not in MENTOR_ROLES:
        raise HTTPException(status_code=403, detail="Mentor or admin role required")
    return user


def require_admin(user: User = Depends(current_user)) -> User:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin role required")
    return user


def require_viewer(user: User = Depends(current_user)) -> User:
    if user.role not in VIEWER_ROLES:
        raise HTTPException(status_code=403, detail="Viewer or admin role required")
    return user


def write_audit(db: Session, user: User, action: str, entity: str, entity_id: str, payload: Optional[str] = None) -> None:
    db.add(AuditLog(actor_user_id=user.id, action=action, entity_type=entity, entity_id=entity_id, payload=payload))
    db.commit()


def seed_demo_data(db: Session) -> dict:
    created = {
        "users": 0,
        "programmes": 0,
        "cohorts": 0,
        "courses": 0,
        "modules": 0,
        "prerequisites": 0,
        "sessions": 0,
    }

    users_by_name = {u.username: u for u in db.scalars(select(User)).all()}
    for username, role, first, last in (
        ("demo_admin", "admin", "Ada", "Admin"),
        ("demo_mentor", "mentor", "Mo", "Mentor"),
        ("participant_one", "participant", "Pat", "One"),
        ("participant_two", "participant", "Sam", "Two"),
    ):
        if username not in users_by_name:
            user = User(username=username, role=role, first_name=first, last_name=last, email=f"{username}@example.org")
            db.add(user)
            users_by_name[username] = user
            created["users"] += 1

    programme = db.scalar(select(Programme).where(Programme.name == "Founders Breakout"))
    if not programme:
        programme = Programme(name="Founders Breakout", description="Demo programme", status="active")
        db.add(programme)
        created["programmes"] += 1
    db.flush()

    cohort = db.scalar(select(Cohort).where(Cohort.programme_id == programme.id, Cohort.name == "Spring Cohort"))
    if not cohort:
        start = date.today()
        cohort = Cohort(
            programme_id=programme.id,
            name="Spring Cohort",
            start_date=start,
            end_date=start + timedelta(weeks=10),
            status="active",
        )
        db.add(cohort)
        created["cohorts"] += 1

    course_specs = (
        ("Foundations of Leadership", 1, ("Self awareness", "Team dynamics")),
        ("Strategic Planning", 2, ("Market analysis", "Roadmaps", "Metrics")),
        ("Scaling Operations", 3, ("Hiring", "Process design")),
    )
    courses_by_title = {c.title: c for c in db.scalars(select(Course).where(Course.programme_id == programme.id)).all()}
    for title, order, module_titles in course_specs:
        if title in courses_by_title:
            continue
        course = Course(programme_id=programme.id, title=title, sequence_order=order, is_published=True)
        db.add(course)
        db.flush()
        courses_by_title[title] = course
        created["courses"] += 1
        for idx, module_title in enumerate(module_titles, start=1):
            db.add(Module(course_id=course.id, title=module_title, sequence_order=idx, is_published=True))
            created["modules"] += 1
    db.flush()

    chain = [courses_by_title[spec[0]] for spec in course_specs]
    for dependent, required in zip(chain[1:], chain[:-1]):
        if not db.scalar(
            select(CoursePrerequisite).where(
                CoursePrerequisite.course_id == dependent.id,
                CoursePrerequisite.prerequisite_course_id == required.id,
            )
        ):
            db.add(CoursePrerequisite(course_id=dependent.id, prerequisite_course_id=required.id))
            created["prerequisites"] += 1

    if not db.scalar(select(CohortSession).where(CohortSession.cohort_id == cohort.id)):
        for week in range(3):
            db.add(
                CohortSession(
                    cohort_id=cohort.id,
                    session_name=f"Week {week + 1} workshop",
                    session_date=(cohort.start_date or date.today()) + timedelta(weeks=week),
                    location="Main hall",
                )
            )
            created["sessions"] += 1
    db.commit()

    participant_ids = [users_by_name[name].id for name in ("participant_one", "participant_two")]
    enrolled = enrollments.bulk_enroll(db, cohort.id, participant_ids)
    created["enrollments"] = len(enrolled)
    return created


@app.on_event("startup")
def startup():
    Base.metadata.create_all(engine)
    if settings.SEED_DEMO_DATA:
        with SessionLocal() as db:
            summary = seed_demo_data(db)
        logger.info("Demo data seeded: %s", json.dumps(summary))


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/demo/load-data")
def load_demo_data(db: Session = Depends(get_db), user: User = Depends(require_admin)):
    summary = seed_demo_data(db)
    write_audit(db, user, "SEED_DEMO_DATA", "System", "demo", json.dumps(summary))
    return {"status": "ok", "summary": summary}


# Courses and prerequisites


@app.post("/courses", response_model=CourseOut, status_code=201)
def create_course(payload: CourseIn, db: Session = Depends(get_db), user: User = Depends(require_admin)):
    out = CourseOut.model_validate(prerequisites.create_course(db, payload))
    write_audit(db, user, "CREATE", "Course", out.id, payload.model_dump_json())
    return out


@app.delete("/courses/{course_id}", response_model=CourseDeletedOut)
def delete_course(course_id: str, db: Session = Depends(get_db), user: User = Depends(require_admin)):
    dependents = prerequisites.delete_course(db, course_id)
    write_audit(db, user, "DELETE", "Course", course_id, json.dumps({"dependents": [d.id for d in dependents]}))
    return CourseDeletedOut(course_id=course_id, dependents_unlinked=dependents)


@app.get("/courses/{course_id}/prerequisites", response_model=list[CourseOut])
def list_prerequisites(course_id: str, db: Session = Depends(get_db), _: User = Depends(current_user)):
    return prerequisites.get_prerequisites(db, course_id)


@app.get("/courses/{course_id}/dependents", response_model=list[CourseOut])
def list_dependents(course_id: str, db: Session = Depends(get_db), _: User = Depends(current_user)):
    return prerequisites.get_dependents(db, course_id)


@app.post("/courses/{course_id}/prerequisites", response_model=PrerequisiteEdgeOut, status_code=201)
def add_prerequisite(
    course_id: str, payload: PrerequisiteIn, db: Session = Depends(get_db), user: User = Depends(require_admin)
):
    edge = PrerequisiteEdgeOut.model_validate(prerequisites.add_prerequisite(db, course_id, payload.prerequisite_course_id))
    write_audit(db, user, "CREATE", "CoursePrerequisite", edge.id, payload.model_dump_json())
    return edge


@app.delete("/courses/{course_id}/prerequisites/{prerequisite_id}")
def remove_prerequisite(
    course_id: str, prerequisite_id: str, db: Session = Depends(get_db), user: User = Depends(require_admin)
):
    removed = prerequisites.remove_prerequisite(db, course_id, prerequisite_id)
    if removed is None:
        raise NotFound("Prerequisite relationship not found")
    write_audit(db, user, "DELETE", "CoursePrerequisite", removed.id)
    return {"status": "deleted", "message": "Prerequisite removed successfully"}


@app.get("/courses/{course_id}/check-prerequisites", response_model=AccessCheck)
def check_prerequisites(course_id: str, db: Session = Depends(get_db), user: User = Depends(current_user)):
    return prerequisites.check_access(db, user.id, course_id)


@app.get("/courses/{course_id}/completion", response_model=CompletionOut)
def course_completion(course_id: str, db: Session = Depends(get_db), user: User = Depends(current_user)):
    course = prerequisites.get_course(db, course_id)
    pct = completion.course_completion(db, user.id, course)
    return CompletionOut(user_id=user.id, course_id=course_id, completion_percentage=pct)


@app.get("/design/prerequisite-graph", response_model=PrerequisiteGraph)
def prerequisite_graph(
    programme_id: Optional[str] = None, db: Session = Depends(get_db), _: User = Depends(current_user)
):
    return prerequisites.prerequisite_graph(db, programme_id)


# Bulk recording


@app.post("/enrollments/bulk", response_model=BulkEnrollOut, status_code=201)
def bulk_enroll(payload: BulkEnrollIn, db: Session = Depends(get_db), user: User = Depends(require_admin)):
    if not db.get(Cohort, payload.cohort_id):
        raise NotFound("Cohort not found")
    rows = enrollments.bulk_enroll(db, payload.cohort_id, payload.user_ids)
    out = [EnrollmentOut.model_validate(r) for r in rows]
    write_audit(
        db, user, "BULK_ENROLL", "Cohort", payload.cohort_id, json.dumps({"requested": len(payload.user_ids), "enrolled": len(out)})
    )
    return BulkEnrollOut(
        requested=len(payload.user_ids),
        enrolled=len(out),
        skipped=len(payload.user_ids) - len(out),
        enrollments=out,
    )


@app.post("/attendance/bulk", response_model=BulkAttendanceOut, status_code=201)
def bulk_record_attendance(payload: BulkAttendanceIn, db: Session = Depends(get_db), user: User = Depends(require_mentor)):
    if not db.get(Cohort, payload.cohort_id):
        raise NotFound("Cohort not found")
    rows = attendance.bulk_record_attendance(
        db,
        payload.cohort_id,
        payload.session_date,
        payload.session_name,
        payload.entries,
        recorded_by=user.id,
        session_id=payload.session_id,
    )
    out = [AttendanceRecordOut.model_validate(r) for r in rows]
    write_audit(
        db, user, "BULK_ATTENDANCE", "Cohort", payload.cohort_id, json.dumps({"date": str(payload.session_date), "recorded": len(out)})
    )
    return BulkAttendanceOut(recorded=len(out), records=out)


@app.get("/attendance/cohort/{cohort_id}", response_model=list[AttendanceRecordOut])
def list_cohort_attendance(
    cohort_id: str,
    session_date: Optional[date] = None,
    db: Session = Depends(get_db),
    _: User = Depends(require_mentor),
):
    return attendance.attendance_for_cohort(db, cohort_id, session_date)


@app.get("/attendance/cohort/{cohort_id}/stats", response_model=AttendanceStatsOut)
def cohort_attendance_stats(cohort_id: str, db: Session = Depends(get_db), _: User = Depends(require_mentor)):
    return attendance.attendance_stats(db, cohort_id)


@app.get("/attendance/cohort/{cohort_id}/duplicates", response_model=list[DuplicateAttendanceOut])
def cohort_duplicate_attendance(cohort_id: str, db: Session = Depends(get_db), _: User = Depends(require_mentor)):
    return attendance.duplicate_attendance(db, cohort_id)


@app.get("/attendance/user/{user_id}", response_model=list[AttendanceRecordOut])
def user_attendance(user_id: str, db: Session = Depends(get_db), _: User = Depends(require_mentor)):
    return attendance.attendance_for_user(db, user_id)


# Progress


@app.post("/progress/module/{module_id}/start", response_model=ProgressOut)
def start_module(module_id: str, db: Session = Depends(get_db), user: User = Depends(current_user)):
    return completion.mark_module_started(db, user.id, module_id)


@app.post("/progress/module/{module_id}/complete", response_model=ProgressOut)
def complete_module(module_id: str, db: Session = Depends(get_db), user: User = Depends(current_user)):
    return completion.mark_module_completed(db, user.id, module_id)


@app.get("/progress/user/{user_id}", response_model=list[ProgressOut])
def user_progress(user_id: str, db: Session = Depends(get_db), _: User = Depends(require_mentor)):
    return completion.progress_for_user(db, user_id)


@app.get("/progress/user/{user_id}/summary", response_model=ProgressSummaryOut)
def progress_summary(user_id: str, db: Session = Depends(get_db), _: User = Depends(require_mentor)):
    return completion.user_progress_summary(db, user_id)


# Cohort sessions


@app.post("/cohort-sessions", response_model=CohortSessionOut, status_code=201)
def create_cohort_session(payload: CohortSessionIn, db: Session = Depends(get_db), user: User = Depends(require_mentor)):
    row = CohortSessionOut.model_validate(sessions.create_session(db, payload))
    write_audit(db, user, "CREATE", "CohortSession", row.id, payload.model_dump_json())
    return row


@app.get("/cohort-sessions/cohort/{cohort_id}", response_model=list[CohortSessionOut])
def list_cohort_sessions(cohort_id: str, db: Session = Depends(get_db), _: User = Depends(current_user)):
    return sessions.list_sessions(db, cohort_id)


@app.get("/cohort-sessions/cohort/{cohort_id}/with-stats", response_model=list[CohortSessionStatsOut])
def list_cohort_sessions_with_stats(cohort_id: str, db: Session = Depends(get_db), _: User = Depends(current_user)):
    return sessions.sessions_with_attendance_stats(db, cohort_id)


@app.post("/cohort-sessions/{session_id}/complete", response_model=CohortSessionOut)
def complete_cohort_session(
    session_id: str,
    payload: Optional[SessionCompleteIn] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_mentor),
):
    row = CohortSessionOut.model_validate(sessions.mark_session_completed(db, session_id, payload.notes if payload else None))
    write_audit(db, user, "COMPLETE", "CohortSession", session_id)
    return row


@app.delete("/cohort-sessions/{session_id}")
def delete_cohort_session(session_id: str, db: Session = Depends(get_db), user: User = Depends(require_admin)):
    sessions.delete_session(db, session_id)
    write_audit(db, user, "DELETE", "CohortSession", session_id)
    return {"status": "deleted"}


# Analytics


@app.get("/analytics/dashboard", response_model=DashboardStatsOut)
def dashboard(db: Session = Depends(get_db), _: User = Depends(require_viewer)):
    return analytics.dashboard_stats(db)


@app.get("/analytics/programme/{programme_id}", response_model=ProgrammeStatsOut)
def programme_analytics(programme_id: str, db: Session = Depends(get_db), _: User = Depends(require_viewer)):
    return analytics.programme_stats(db, programme_id)
