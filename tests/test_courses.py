import pytest

from app import courses
from app.errors import AlreadyExists, NotFound, PermissionDenied, ValidationFailed
from app.models import Course


def test_create_course_enrolls_teacher(session, admin, teacher):
    course = courses.create_course(session, admin, "Data Structures", teacher)

    assert course.teacher_id == teacher.id
    assert [u.id for u in courses.course_members(session, course)] == [teacher.id]
    assert courses.find_course_by_name(session, "Data Structures").id == course.id


def test_course_requires_admin_and_teacher(session, admin, teacher, student):
    with pytest.raises(PermissionDenied):
        courses.create_course(session, teacher, "Mine", teacher)

    with pytest.raises(ValidationFailed) as excinfo:
        courses.create_course(session, admin, " ", student)
    assert set(excinfo.value.errors) == {"name", "teacher"}
    assert courses.list_courses(session) == []


def test_course_names_are_unique(session, admin, teacher):
    courses.create_course(session, admin, "Algorithms", teacher)
    with pytest.raises(AlreadyExists):
        courses.create_course(session, admin, "Algorithms", teacher)
    assert len(courses.list_courses(session)) == 1


def test_enroll_is_idempotent(session, admin, teacher, student):
    course = courses.create_course(session, admin, "Algorithms", teacher)

    courses.enroll(session, course, [student, student])
    session.commit()
    courses.enroll(session, course, [teacher, student])
    session.commit()

    assert [u.id for u in courses.course_members(session, course)] == [teacher.id, student.id]


def test_unknown_course(session):
    with pytest.raises(NotFound):
        courses.find_course_by_name(session, "nope")
    assert session.get(Course, 1) is None
