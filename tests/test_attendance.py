from datetime import date

import pytest

from lms.core.errors import ConstraintViolation, NotFound, TransactionFailed
from lms.schemas import AttendanceEntryIn
from lms.services import attendance

DAY = date(2026, 3, 2)


def _entries(*pairs):
    return [AttendanceEntryIn(user_id=user_id, status=status) for user_id, status in pairs]


def test_bulk_record_returns_one_row_per_entry(db, make):
    cohort = make.cohort()
    mentor = make.user("mentor")
    u1, u2 = make.user(), make.user()

    rows = attendance.bulk_record_attendance(
        db, cohort.id, DAY, "Kickoff", _entries((u1.id, "present"), (u2.id, "absent")), mentor.id
    )

    assert len(rows) == 2
    assert [(r.user_id, r.attendance_status) for r in rows] == [(u1.id, "present"), (u2.id, "absent")]
    assert all(r.recorded_by == mentor.id and r.session_name == "Kickoff" for r in rows)
    assert len(attendance.attendance_for_cohort(db, cohort.id, DAY)) == 2


def test_bulk_record_rolls_back_whole_batch(db, make):
    cohort = make.cohort()
    u1 = make.user()

    with pytest.raises(TransactionFailed):
        attendance.bulk_record_attendance(
            db, cohort.id, DAY, "Kickoff", _entries((u1.id, "present"), ("ghost", "absent")), None
        )

    assert attendance.attendance_for_cohort(db, cohort.id, DAY) == []


def test_bulk_record_empty_batch(db, make):
    cohort = make.cohort()
    assert attendance.bulk_record_attendance(db, cohort.id, DAY, "", [], None) == []
    assert attendance.attendance_for_cohort(db, cohort.id) == []


def test_re_marking_appends_rows_and_is_reported(db, make):
    cohort = make.cohort()
    u1, u2 = make.user(), make.user()
    attendance.bulk_record_attendance(db, cohort.id, DAY, "", _entries((u1.id, "absent"), (u2.id, "present")), None)
    attendance.bulk_record_attendance(db, cohort.id, DAY, "", _entries((u1.id, "late")), None)

    assert len(attendance.attendance_for_cohort(db, cohort.id, DAY)) == 3

    duplicates = attendance.duplicate_attendance(db, cohort.id)
    assert len(duplicates) == 1
    assert duplicates[0].user_id == u1.id
    assert duplicates[0].record_count == 2
    assert sorted(duplicates[0].statuses) == ["absent", "late"]


def test_attendance_stats(db, make):
    cohort = make.cohort()
    u1, u2 = make.user(), make.user()
    attendance.bulk_record_attendance(db, cohort.id, DAY, "", _entries((u1.id, "present"), (u2.id, "late")), None)
    attendance.bulk_record_attendance(
        db, cohort.id, date(2026, 3, 9), "", _entries((u1.id, "excused"), (u2.id, "absent")), None
    )

    stats = attendance.attendance_stats(db, cohort.id)

    assert stats.total_records == 4
    assert stats.unique_participants == 2
    assert stats.total_sessions == 2
    assert (stats.present_count, stats.absent_count, stats.late_count, stats.excused_count) == (1, 1, 1, 1)
    assert attendance.attendance_stats(db, "empty").total_records == 0


def test_records_link_to_single_session_on_that_date(db, make):
    cohort = make.cohort()
    user = make.user()
    session = make.session(cohort, DAY)

    rows = attendance.bulk_record_attendance(db, cohort.id, DAY, "", _entries((user.id, "present")), None)
    assert rows[0].session_id == session.id

    other_day = attendance.bulk_record_attendance(
        db, cohort.id, date(2026, 4, 1), "", _entries((user.id, "present")), None
    )
    assert other_day[0].session_id is None


def test_ambiguous_date_leaves_record_unlinked(db, make):
    cohort = make.cohort()
    user = make.user()
    make.session(cohort, DAY, name="Morning")
    make.session(cohort, DAY, name="Afternoon")

    rows = attendance.bulk_record_attendance(db, cohort.id, DAY, "", _entries((user.id, "present")), None)
    assert rows[0].session_id is None


def test_explicit_session_must_exist_and_match_cohort(db, make):
    cohort = make.cohort(name="Mine")
    other = make.cohort(name="Theirs")
    user = make.user()
    foreign = make.session(other, DAY)

    with pytest.raises(NotFound):
        attendance.bulk_record_attendance(db, cohort.id, DAY, "", _entries((user.id, "present")), None, "missing")
    with pytest.raises(ConstraintViolation):
        attendance.bulk_record_attendance(db, cohort.id, DAY, "", _entries((user.id, "present")), None, foreign.id)
    assert attendance.attendance_for_cohort(db, cohort.id) == []


def test_attendance_for_user_across_cohorts(db, make):
    first = make.cohort(name="First")
    second = make.cohort(name="Second")
    user, other = make.user(), make.user()
    attendance.bulk_record_attendance(db, first.id, DAY, "", _entries((user.id, "present"), (other.id, "late")), None)
    attendance.bulk_record_attendance(db, second.id, date(2026, 3, 9), "", _entries((user.id, "absent")), None)

    rows = attendance.attendance_for_user(db, user.id)

    assert [(r.cohort_id, r.session_date) for r in rows] == [(second.id, date(2026, 3, 9)), (first.id, DAY)]
    assert attendance.attendance_for_user(db, "nobody") == []
