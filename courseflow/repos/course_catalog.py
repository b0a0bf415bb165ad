"""Read-side view of courses, lessons and exams.

Authoring lives in another system; this service only reads the catalog
and maintains the cached per-course enrollment counter.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from courseflow.models.course import Course, Lesson
from courseflow.models.exam import Exam


class CourseCatalog(Protocol):
    async def get_course(self, course_id: UUID) -> Course | None: ...
    async def get_lesson(self, lesson_id: UUID) -> Lesson | None: ...
    async def get_exam(self, exam_id: UUID) -> Exam | None: ...
    async def published_lesson_count(self, course_id: UUID) -> int: ...
    async def published_exam_count(self, course_id: UUID) -> int: ...
    async def published_exam_ids(self, course_id: UUID) -> frozenset[UUID]: ...
    async def adjust_enrollment_count(self, course_id: UUID, delta: int) -> None: ...


class InMemoryCourseCatalog:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._courses: dict[UUID, Course] = {}
        self._lessons: dict[UUID, Lesson] = {}
        self._exams: dict[UUID, Exam] = {}

    # --- seeding helpers (dev and tests) ---

    def add_course(self, course: Course) -> Course:
        with self._lock:
            self._courses[course.id] = course
        return course

    def add_lesson(self, lesson: Lesson) -> Lesson:
        with self._lock:
            self._lessons[lesson.id] = lesson
        return lesson

    def set_lesson_published(self, lesson_id: UUID, is_published: bool) -> None:
        with self._lock:
            lesson = self._lessons.get(lesson_id)
            if lesson is None:
                raise KeyError("lesson not found")
            self._lessons[lesson_id] = replace(lesson, is_published=is_published)

    def add_exam(self, exam: Exam) -> Exam:
        with self._lock:
            self._exams[exam.id] = exam
        return exam

    def set_exam_status(self, exam_id: UUID, status: str) -> None:
        with self._lock:
            exam = self._exams.get(exam_id)
            if exam is None:
                raise KeyError("exam not found")
            self._exams[exam_id] = replace(exam, status=status)  # type: ignore[arg-type]

    def clear(self) -> None:
        with self._lock:
            self._courses.clear()
            self._lessons.clear()
            self._exams.clear()

    # --- CourseCatalog ---

    async def get_course(self, course_id: UUID) -> Course | None:
        return self._courses.get(course_id)

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        return self._lessons.get(lesson_id)

    async def get_exam(self, exam_id: UUID) -> Exam | None:
        return self._exams.get(exam_id)

    async def published_lesson_count(self, course_id: UUID) -> int:
        return sum(
            1
            for lesson in self._lessons.values()
            if lesson.course_id == course_id and lesson.is_published
        )

    async def published_exam_count(self, course_id: UUID) -> int:
        return len(await self.published_exam_ids(course_id))

    async def published_exam_ids(self, course_id: UUID) -> frozenset[UUID]:
        return frozenset(
            exam.id
            for exam in self._exams.values()
            if exam.course_id == course_id and exam.is_published
        )

    async def adjust_enrollment_count(self, course_id: UUID, delta: int) -> None:
        with self._lock:
            course = self._courses.get(course_id)
            if course is None:
                return
            self._courses[course_id] = replace(
                course, enrollment_count=max(0, course.enrollment_count + delta)
            )
