"""Request-scoped course context passed explicitly to every service call."""

from dataclasses import dataclass, field

from forum.db.models import Course, CourseRole, Enrollment, Tag


@dataclass(frozen=True)
class CourseContext:
    """
    The course being viewed, the viewer's enrollment in it, and the tags that
    enrollment may see (staff-only tags are already removed for students).
    """

    course: Course
    enrollment: Enrollment
    tags: list[Tag] = field(default_factory=list)

    @property
    def is_staff(self) -> bool:
        return self.enrollment.course_role == CourseRole.STAFF.value
