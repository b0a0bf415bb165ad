from __future__ import annotations

from dataclasses import dataclass
from typing import Literal
from uuid import UUID, uuid4

CourseStatus = Literal["draft", "published", "archived"]


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    slug: str
    title: str
    instructor_id: UUID
    status: CourseStatus = "draft"
    enrollment_count: int = 0  # cached counter, maintained by enroll/unenroll

    @property
    def is_published(self) -> bool:
        return self.status == "published"

    @staticmethod
    def new(
        *,
        slug: str,
        title: str,
        instructor_id: UUID,
        status: CourseStatus = "published",
    ) -> Course:
        return Course(
            id=uuid4(),
            slug=slug,
            title=title,
            instructor_id=instructor_id,
            status=status,
        )


@dataclass(frozen=True, slots=True)
class Lesson:
    id: UUID
    course_id: UUID
    title: str
    position: int
    is_published: bool = True

    @staticmethod
    def new(
        *, course_id: UUID, title: str, position: int, is_published: bool = True
    ) -> Lesson:
        return Lesson(
            id=uuid4(),
            course_id=course_id,
            title=title,
            position=position,
            is_published=is_published,
        )
