"""Pytest configuration: in-memory store, entity factory and API client."""

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.pool import StaticPool

from lms.core.database import get_db, make_engine, make_session_factory
from lms.main import app, issue_token
from lms.models import Base, Cohort, CohortSession, Course, Enrollment, Module, Programme, ProgressTracking, User


class Factory:
    def __init__(self, db):
        self.db = db
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def user(self, role="participant", **kwargs):
        n = self._next()
        return self._save(User(username=kwargs.pop("username", f"user{n}"), role=role, **kwargs))

    def programme(self, name="Programme"):
        return self._save(Programme(name=name))

    def cohort(self, programme=None, name="Cohort"):
        return self._save(Cohort(programme_id=programme.id if programme else None, name=name))

    def course(self, programme=None, title=None, modules=0):
        n = self._next()
        course = self._save(Course(programme_id=programme.id if programme else None, title=title or f"Course {n:03d}"))
        for idx in range(modules):
            self.module(course, title=f"{course.title} module {idx + 1}")
        return course

    def module(self, course, title="Module"):
        return self._save(Module(course_id=course.id, title=title))

    def modules_of(self, course):
        return list(self.db.scalars(select(Module).where(Module.course_id == course.id).order_by(Module.title)).all())

    def enroll(self, user, cohort, status="enrolled"):
        return self._save(Enrollment(cohort_id=cohort.id, user_id=user.id, enrollment_status=status))

    def progress(self, user, module, status="completed"):
        return self._save(ProgressTracking(user_id=user.id, module_id=module.id, status=status))

    def session(self, cohort, session_date=date(2026, 3, 2), name="Workshop"):
        return self._save(CohortSession(cohort_id=cohort.id, session_name=name, session_date=session_date))


@pytest.fixture()
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make(db):
    return Factory(db)


@pytest.fixture()
def client(session_factory):
    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def token_for():
    def _token(user):
        return {"session_token": issue_token(user)}

    return _token
