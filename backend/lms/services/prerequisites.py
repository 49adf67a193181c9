"""Prerequisite graph engine.

Edges are directed "requires" relations between courses. Gating is shallow:
``check_access`` looks only at a course's direct prerequisites and never
walks further up the graph. Cycles longer than a self-loop are accepted on
insert and only reported through ``prerequisite_graph``.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from lms.core.errors import (
    ConstraintViolation,
    DuplicateEdge,
    InvalidReference,
    NotFound,
    TransactionFailed,
    classify_integrity_error,
)
from lms.core.logging import get_logger
from lms.models import Course, CoursePrerequisite, Programme
from lms.schemas import (
    AccessCheck,
    CourseIn,
    CourseOut,
    GraphEdge,
    GraphNode,
    PrerequisiteEdgeOut,
    PrerequisiteGraph,
    PrerequisiteStatus,
)
from lms.services.completion import course_completion

logger = get_logger("prerequisites")

SELF_REFERENCE_MESSAGE = "A course cannot be a prerequisite of itself"


def get_course(db: Session, course_id: str) -> Course:
    course = db.get(Course, course_id)
    if course is None:
        raise NotFound("Course not found")
    return course


def add_prerequisite(db: Session, course_id: str, prerequisite_course_id: str) -> CoursePrerequisite:
    if course_id == prerequisite_course_id:
        raise InvalidReference(SELF_REFERENCE_MESSAGE)
    get_course(db, course_id)
    get_course(db, prerequisite_course_id)

    edge = CoursePrerequisite(course_id=course_id, prerequisite_course_id=prerequisite_course_id)
    db.add(edge)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        kind = classify_integrity_error(exc)
        if kind == "unique":
            raise DuplicateEdge("This prerequisite already exists") from exc
        if kind == "check":
            raise InvalidReference(SELF_REFERENCE_MESSAGE) from exc
        if kind == "foreign_key":
            raise NotFound("Course not found") from exc
        raise ConstraintViolation("Prerequisite violates a store constraint") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Adding prerequisite %s -> %s failed", course_id, prerequisite_course_id)
        raise TransactionFailed("Failed to add prerequisite") from exc
    db.refresh(edge)
    logger.info("Prerequisite added: %s requires %s", course_id, prerequisite_course_id)
    return edge


def remove_prerequisite(db: Session, course_id: str, prerequisite_course_id: str) -> Optional[PrerequisiteEdgeOut]:
    """Delete the edge. Returns the removed edge, or None when there was nothing to remove."""
    edge = db.scalar(
        select(CoursePrerequisite).where(
            CoursePrerequisite.course_id == course_id,
            CoursePrerequisite.prerequisite_course_id == prerequisite_course_id,
        )
    )
    if edge is None:
        return None
    removed = PrerequisiteEdgeOut.model_validate(edge)
    db.delete(edge)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Removing prerequisite %s -> %s failed", course_id, prerequisite_course_id)
        raise TransactionFailed("Failed to remove prerequisite") from exc
    logger.info("Prerequisite removed: %s no longer requires %s", course_id, prerequisite_course_id)
    return removed


def get_prerequisites(db: Session, course_id: str) -> list[Course]:
    return list(
        db.scalars(
            select(Course)
            .join(CoursePrerequisite, CoursePrerequisite.prerequisite_course_id == Course.id)
            .where(CoursePrerequisite.course_id == course_id)
            .order_by(Course.title.asc())
        ).all()
    )


def get_dependents(db: Session, course_id: str) -> list[Course]:
    return list(
        db.scalars(
            select(Course)
            .join(CoursePrerequisite, CoursePrerequisite.course_id == Course.id)
            .where(CoursePrerequisite.prerequisite_course_id == course_id)
            .order_by(Course.title.asc())
        ).all()
    )


def check_access(db: Session, user_id: str, course_id: str) -> AccessCheck:
    statuses = []
    for prereq in get_prerequisites(db, course_id):
        pct = course_completion(db, user_id, prereq)
        statuses.append(
            PrerequisiteStatus(
                prerequisite_course_id=prereq.id,
                title=prereq.title,
                completion_percentage=pct,
                is_completed=pct >= 100,
            )
        )
    missing = sum(1 for s in statuses if not s.is_completed)
    return AccessCheck(has_access=missing == 0, prerequisites=statuses, missing_count=missing)


def create_course(db: Session, payload: CourseIn) -> Course:
    if payload.programme_id and db.get(Programme, payload.programme_id) is None:
        raise NotFound("Programme not found")
    course = Course(**payload.model_dump())
    db.add(course)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Creating course %r failed", payload.title)
        raise TransactionFailed("Failed to create course") from exc
    db.refresh(course)
    logger.info("Course %s created", course.id)
    return course


def delete_course(db: Session, course_id: str) -> list[CourseOut]:
    """Delete a course; modules and edges in both directions go by cascade.

    Returns the courses that required it, which lose that prerequisite.
    """
    course = get_course(db, course_id)
    dependents = [CourseOut.model_validate(c) for c in get_dependents(db, course_id)]
    db.delete(course)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Deleting course %s failed", course_id)
        raise TransactionFailed("Failed to delete course") from exc
    logger.info("Course %s deleted, %d dependent(s) unlinked", course_id, len(dependents))
    return dependents


def _steps_within(requires: dict[str, list[str]], node: str, within: set[str]):
    return iter(sorted(p for p in set(requires.get(node, ())) if p in within))


def find_cycles(requires: dict[str, list[str]]) -> list[list[str]]:
    """Every elementary cycle of ``course -> [prerequisites]``.

    Cycles are searched from each id in sorted order, using only ids not smaller
    than the start, so each loop comes out once, starting at its smallest id.
    """
    nodes = sorted(set(requires) | {p for prereqs in requires.values() for p in prereqs})
    required_by: dict[str, list[str]] = {}
    for course, prereqs in requires.items():
        for prereq in prereqs:
            required_by.setdefault(prereq, []).append(course)

    cycles: list[list[str]] = []
    for idx, start in enumerate(nodes):
        allowed = set(nodes[idx:])
        # only ids that lead back to start can sit on one of its cycles
        returns = {start}
        pending = [start]
        while pending:
            for course in required_by.get(pending.pop(), ()):
                if course in allowed and course not in returns:
                    returns.add(course)
                    pending.append(course)

        path = [start]
        on_path = {start}
        stack = [_steps_within(requires, start, returns)]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                on_path.discard(path.pop())
            elif nxt == start:
                cycles.append(list(path))
            elif nxt not in on_path:
                path.append(nxt)
                on_path.add(nxt)
                stack.append(_steps_within(requires, nxt, returns))
    return cycles


def prerequisite_graph(db: Session, programme_id: Optional[str] = None) -> PrerequisiteGraph:
    stmt = select(Course).order_by(Course.sequence_order.asc(), Course.title.asc())
    if programme_id:
        stmt = stmt.where(Course.programme_id == programme_id)
    courses = db.scalars(stmt).all()
    ids = {c.id for c in courses}
    nodes = [
        GraphNode(id=c.id, label=c.title, programme_id=c.programme_id, sequence_order=c.sequence_order)
        for c in courses
    ]
    edges = []
    requires: dict[str, list[str]] = {}
    for pre in db.scalars(select(CoursePrerequisite)).all():
        if pre.course_id in ids and pre.prerequisite_course_id in ids:
            edges.append(GraphEdge(id=pre.id, from_=pre.prerequisite_course_id, to=pre.course_id))
            requires.setdefault(pre.course_id, []).append(pre.prerequisite_course_id)
    cycles = find_cycles(requires)
    if cycles:
        logger.warning("Prerequisite graph contains %d cycle(s)", len(cycles))
    return PrerequisiteGraph(nodes=nodes, edges=edges, cycles=cycles)
