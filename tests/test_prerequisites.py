import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from lms.core.errors import DuplicateEdge, InvalidReference, NotFound, TransactionFailed
from lms.models import Course, CoursePrerequisite, Module
from lms.schemas import CourseIn
from lms.services import prerequisites


def test_add_prerequisite_visible_from_both_sides(db, make):
    a = make.course(title="Advanced")
    b = make.course(title="Basics")

    edge = prerequisites.add_prerequisite(db, a.id, b.id)

    assert edge.course_id == a.id
    assert edge.prerequisite_course_id == b.id
    assert [c.id for c in prerequisites.get_prerequisites(db, a.id)] == [b.id]
    assert [c.id for c in prerequisites.get_dependents(db, b.id)] == [a.id]


def test_prerequisites_ordered_by_title(db, make):
    target = make.course(title="Target")
    for title in ("Zoology", "Algebra", "Music"):
        prerequisites.add_prerequisite(db, target.id, make.course(title=title).id)

    titles = [c.title for c in prerequisites.get_prerequisites(db, target.id)]
    assert titles == ["Algebra", "Music", "Zoology"]


def test_self_prerequisite_rejected(db, make):
    a = make.course()
    with pytest.raises(InvalidReference):
        prerequisites.add_prerequisite(db, a.id, a.id)
    assert prerequisites.get_prerequisites(db, a.id) == []


def test_duplicate_edge_rejected_and_single_row_kept(db, make):
    a = make.course()
    b = make.course()
    prerequisites.add_prerequisite(db, a.id, b.id)

    with pytest.raises(DuplicateEdge):
        prerequisites.add_prerequisite(db, a.id, b.id)

    assert [c.id for c in prerequisites.get_prerequisites(db, a.id)] == [b.id]


def test_add_prerequisite_unknown_course(db, make):
    a = make.course()
    with pytest.raises(NotFound):
        prerequisites.add_prerequisite(db, a.id, "missing")


def test_remove_prerequisite(db, make):
    a = make.course()
    b = make.course()
    prerequisites.add_prerequisite(db, a.id, b.id)

    removed = prerequisites.remove_prerequisite(db, a.id, b.id)

    assert removed is not None
    assert removed.prerequisite_course_id == b.id
    assert prerequisites.get_prerequisites(db, a.id) == []


def test_remove_missing_edge_signals_nothing_removed(db, make):
    a = make.course()
    b = make.course()
    assert prerequisites.remove_prerequisite(db, a.id, b.id) is None


def test_two_course_cycle_is_accepted(db, make):
    a = make.course()
    b = make.course()
    prerequisites.add_prerequisite(db, a.id, b.id)
    prerequisites.add_prerequisite(db, b.id, a.id)

    graph = prerequisites.prerequisite_graph(db)
    assert graph.cycles == [sorted([a.id, b.id])]


def test_delete_course_cascades_edges_but_keeps_dependent(db, make):
    a = make.course(title="Needed", modules=2)
    b = make.course(title="Dependent")
    c = make.course(title="Upstream")
    prerequisites.add_prerequisite(db, b.id, a.id)
    prerequisites.add_prerequisite(db, a.id, c.id)

    dependents = prerequisites.delete_course(db, a.id)

    assert [d.id for d in dependents] == [b.id]
    db.expire_all()
    assert db.get(Course, b.id) is not None
    assert db.get(Course, c.id) is not None
    assert db.scalars(select(CoursePrerequisite)).all() == []
    assert db.scalars(select(Module).where(Module.course_id == a.id)).all() == []


def test_delete_unknown_course(db):
    with pytest.raises(NotFound):
        prerequisites.delete_course(db, "missing")


def test_find_cycles():
    assert prerequisites.find_cycles({"a": ["b"], "b": ["c"]}) == []
    assert prerequisites.find_cycles({"c": ["a"], "a": ["b"], "b": ["c"]}) == [["a", "b", "c"]]
    assert prerequisites.find_cycles({"a": ["b"], "b": ["a"], "x": ["y"], "y": ["x"]}) == [["a", "b"], ["x", "y"]]


def test_find_cycles_reports_loops_sharing_a_finished_course():
    cycles = prerequisites.find_cycles({"a": ["b", "c"], "b": ["c"], "c": ["a"]})
    assert cycles == [["a", "b", "c"], ["a", "c"]]


def test_find_cycles_overlapping_loops():
    requires = {"a": ["b"], "b": ["a", "c"], "c": ["b", "d"], "d": []}
    assert prerequisites.find_cycles(requires) == [["a", "b"], ["b", "c"]]


def test_graph_filters_by_programme(db, make):
    p1 = make.programme("One")
    p2 = make.programme("Two")
    a = make.course(p1, title="A")
    b = make.course(p1, title="B")
    other = make.course(p2, title="Other")
    prerequisites.add_prerequisite(db, b.id, a.id)
    prerequisites.add_prerequisite(db, other.id, a.id)

    graph = prerequisites.prerequisite_graph(db, p1.id)

    assert {n.id for n in graph.nodes} == {a.id, b.id}
    assert [(e.from_, e.to) for e in graph.edges] == [(a.id, b.id)]
    assert graph.cycles == []


def test_create_course(db, make):
    programme = make.programme()

    course = prerequisites.create_course(db, CourseIn(programme_id=programme.id, title="Finance", sequence_order=2))

    assert course.id
    assert db.get(Course, course.id).title == "Finance"
    with pytest.raises(NotFound):
        prerequisites.create_course(db, CourseIn(programme_id="missing", title="Orphan"))


def test_create_course_store_failure_is_translated(db, monkeypatch):
    def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "commit", failing_commit)
    with pytest.raises(TransactionFailed):
        prerequisites.create_course(db, CourseIn(title="Finance"))
