from datetime import date

import pytest

from lms.core.errors import NotFound
from lms.schemas import AttendanceEntryIn
from lms.services import analytics
from lms.services.attendance import bulk_record_attendance


@pytest.fixture()
def programme_with_activity(db, make):
    programme = make.programme("Founders")
    running = make.cohort(programme, name="Spring")
    planned = make.cohort(programme, name="Autumn")
    running.status = "active"
    u1, u2, u3 = make.user(), make.user(), make.user()
    done = make.enroll(u1, running, status="completed")
    halfway = make.enroll(u2, running)
    make.enroll(u3, planned)
    done.completion_percentage = 100
    halfway.completion_percentage = 50
    db.commit()

    bulk_record_attendance(
        db,
        running.id,
        date(2026, 3, 2),
        "",
        [AttendanceEntryIn(user_id=u1.id, status="present"), AttendanceEntryIn(user_id=u2.id, status="late")],
        None,
    )
    bulk_record_attendance(
        db, running.id, date(2026, 3, 9), "", [AttendanceEntryIn(user_id=u2.id, status="absent")], None
    )
    return programme


def test_dashboard_stats(db, programme_with_activity):
    stats = analytics.dashboard_stats(db)

    assert stats.total_programmes == 1
    assert stats.active_cohorts == 1
    assert stats.total_participants == 3
    assert stats.completed_enrollments == 1
    assert stats.avg_completion_rate == 50.0


def test_dashboard_on_empty_store(db):
    stats = analytics.dashboard_stats(db)
    assert stats.total_programmes == 0
    assert stats.avg_completion_rate == 0.0


def test_programme_stats(db, programme_with_activity):
    stats = analytics.programme_stats(db, programme_with_activity.id)

    assert stats.name == "Founders"
    assert stats.cohort_count == 2
    assert stats.total_enrollments == 3
    assert stats.completed_count == 1
    assert stats.avg_completion == 50.0
    assert stats.attendance_records == 3
    assert stats.attendance_rate == 66.67


def test_programme_without_cohorts(db, make):
    stats = analytics.programme_stats(db, make.programme("Empty").id)

    assert (stats.cohort_count, stats.total_enrollments, stats.completed_count) == (0, 0, 0)
    assert stats.avg_completion == 0.0
    assert stats.attendance_rate == 0.0


def test_programme_stats_unknown(db):
    with pytest.raises(NotFound):
        analytics.programme_stats(db, "missing")
