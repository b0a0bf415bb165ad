"""Business rules about who may do what.

Role checks on the token itself happen in the API dependencies; the rules
here depend on the entities involved (course ownership, enrollment
ownership, exam windows).  ``ensure_*`` helpers raise, ``can_*`` helpers
answer.
"""

from __future__ import annotations

import logging

from courseflow.core.errors import Forbidden, InvalidState
from courseflow.models.course import Course
from courseflow.models.enrollment import Enrollment
from courseflow.models.exam import Exam, ExamAttempt
from courseflow.models.principal import Principal

logger = logging.getLogger(__name__)


def ensure_can_enroll(principal: Principal, course: Course) -> None:
    if not principal.is_student:
        logger.warning("Enroll rejected: user=%s is not a student", principal.user_id)
        raise Forbidden("only students can enroll in courses")
    if course.instructor_id == principal.user_id:
        logger.warning(
            "Enroll rejected: user=%s instructs course=%s",
            principal.user_id,
            course.id,
        )
        raise InvalidState("instructors cannot enroll in their own course")
    ensure_course_open(course)


def ensure_course_open(course: Course) -> None:
    if not course.is_published:
        raise InvalidState("course is not published")


def is_course_manager(principal: Principal, course: Course | None) -> bool:
    if principal.is_admin:
        return True
    return course is not None and course.instructor_id == principal.user_id


def ensure_can_manage_course(principal: Principal, course: Course | None) -> None:
    if not is_course_manager(principal, course):
        logger.warning(
            "Course management denied: user=%s course=%s",
            principal.user_id,
            course.id if course else None,
        )
        raise Forbidden("only the course instructor or an admin may do this")


def can_view_enrollment(
    principal: Principal, enrollment: Enrollment, course: Course | None
) -> bool:
    if enrollment.student_id == principal.user_id:
        return True
    return is_course_manager(principal, course)


def can_view_certificate(principal: Principal, enrollment: Enrollment) -> bool:
    return principal.is_admin or enrollment.student_id == principal.user_id


def ensure_enrollment_owner(principal: Principal, enrollment: Enrollment) -> None:
    if principal.is_admin or enrollment.student_id == principal.user_id:
        return
    logger.warning(
        "Enrollment access denied: user=%s enrollment=%s",
        principal.user_id,
        enrollment.id,
    )
    raise Forbidden("not your enrollment")


def ensure_exam_window(exam: Exam, now: int) -> None:
    state = exam.window_state(now)
    if state == "upcoming":
        raise Forbidden("exam is not open yet")
    if state == "closed":
        raise Forbidden("exam is closed")


def may_reveal_answers(exam: Exam, attempt: ExamAttempt, now: int) -> bool:
    if not attempt.is_terminal:
        return False
    if exam.show_correct_answers == "after_submit":
        return True
    if exam.show_correct_answers == "after_close":
        return exam.close_at is not None and now > exam.close_at
    return False
