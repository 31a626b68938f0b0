"""
Course Service Repository

Database access for the course aggregate. Uniqueness of slugs and of
module/lesson order numbers is enforced by the schema; violations surface
as ConflictError.
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.course_service.models import CourseModel, CourseModuleModel, LessonModel
from shared.database.errors import conflict_from_integrity
from shared.domain.courses import Course, CourseModule, Lesson

logger = structlog.get_logger(__name__)


def _columns(row: Any) -> dict[str, Any]:
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


@dataclass(frozen=True)
class LessonContext:
    """A lesson together with the ids of its module, course, and instructor."""

    lesson: Lesson
    module_id: UUID
    course_id: UUID
    instructor_id: UUID


class CourseRepository:
    """Repository for courses, modules, and lessons."""

    def __init__(self, session: AsyncSession):
        """
        Initialize repository.

        Args:
            session: Database session
        """
        self.session = session

    # Reads

    async def get_course_row(self, course_id: UUID) -> CourseModel | None:
        result = await self.session.execute(select(CourseModel).where(CourseModel.id == course_id))
        return result.scalar_one_or_none()

    async def get_course(self, course_id: UUID) -> Course | None:
        """
        Load the full course aggregate.

        Args:
            course_id: Course UUID

        Returns:
            Course with modules and lessons, or None
        """
        row = await self.get_course_row(course_id)
        if row is None:
            return None

        module_rows = (
            await self.session.execute(
                select(CourseModuleModel)
                .where(CourseModuleModel.course_id == course_id)
                .order_by(CourseModuleModel.order_number)
            )
        ).scalars().all()

        lessons_by_module: dict[UUID, list[Lesson]] = {m.id: [] for m in module_rows}
        if module_rows:
            lesson_rows = (
                await self.session.execute(
                    select(LessonModel)
                    .where(LessonModel.module_id.in_(list(lessons_by_module)))
                    .order_by(LessonModel.order_number)
                )
            ).scalars().all()
            for lesson_row in lesson_rows:
                lessons_by_module[lesson_row.module_id].append(Lesson.model_validate(lesson_row))

        modules = [
            CourseModule.model_validate({**_columns(m), "lessons": lessons_by_module[m.id]})
            for m in module_rows
        ]
        return Course.model_validate({**_columns(row), "modules": modules})

    async def get_module_course_id(self, module_id: UUID) -> UUID | None:
        result = await self.session.execute(
            select(CourseModuleModel.course_id).where(CourseModuleModel.id == module_id)
        )
        return result.scalar_one_or_none()

    async def get_lesson_context(self, lesson_id: UUID) -> LessonContext | None:
        """Resolve a lesson to its module, course, and instructor."""
        result = await self.session.execute(
            select(LessonModel, CourseModuleModel.course_id, CourseModel.instructor_id)
            .join(CourseModuleModel, CourseModuleModel.id == LessonModel.module_id)
            .join(CourseModel, CourseModel.id == CourseModuleModel.course_id)
            .where(LessonModel.id == lesson_id)
        )
        found = result.one_or_none()
        if found is None:
            return None
        lesson_row, course_id, instructor_id = found
        return LessonContext(
            lesson=Lesson.model_validate(lesson_row),
            module_id=lesson_row.module_id,
            course_id=course_id,
            instructor_id=instructor_id,
        )

    async def get_module_lesson_ids(self, course_id: UUID) -> dict[UUID, list[UUID]]:
        """Module id to lesson ids, both in order."""
        result = await self.session.execute(
            select(CourseModuleModel.id, LessonModel.id)
            .join(LessonModel, LessonModel.module_id == CourseModuleModel.id, isouter=True)
            .where(CourseModuleModel.course_id == course_id)
            .order_by(CourseModuleModel.order_number, LessonModel.order_number)
        )
        structure: dict[UUID, list[UUID]] = {}
        for module_id, lesson_id in result.all():
            lessons = structure.setdefault(module_id, [])
            if lesson_id is not None:
                lessons.append(lesson_id)
        return structure

    async def get_next_module_order_number(self, course_id: UUID) -> int:
        result = await self.session.execute(
            select(func.max(CourseModuleModel.order_number)).where(
                CourseModuleModel.course_id == course_id
            )
        )
        return (result.scalar() or 0) + 1

    async def get_next_lesson_order_number(self, module_id: UUID) -> int:
        result = await self.session.execute(
            select(func.max(LessonModel.order_number)).where(LessonModel.module_id == module_id)
        )
        return (result.scalar() or 0) + 1

    # Writes

    async def insert_course(self, course: Course) -> CourseModel:
        """
        Insert a new course row.

        Raises:
            IntegrityError: If the slug is taken; the caller decides whether
                to retry with a fresh slug
        """
        row = CourseModel(
            **course.model_dump(
                include={
                    "id",
                    "instructor_id",
                    "title",
                    "description",
                    "slug",
                    "category",
                    "price",
                    "enrollment_limit",
                    "published_at",
                    "created_at",
                    "updated_at",
                }
            ),
            difficulty=course.difficulty.value,
            status=course.status.value,
        )
        async with self.session.begin_nested():
            self.session.add(row)
        logger.info("Course created", course_id=str(course.id), slug=course.slug)
        return row

    async def save_course_state(self, course: Course) -> None:
        """Persist lifecycle fields of the course row."""
        row = await self.get_course_row(course.id)
        if row is None:
            return
        row.status = course.status.value
        row.published_at = course.published_at
        row.updated_at = course.updated_at
        await self.session.flush()

    async def insert_module(self, module: CourseModule) -> CourseModuleModel:
        """
        Raises:
            ConflictError: If the order number is taken within the course
        """
        row = CourseModuleModel(**module.model_dump(exclude={"lessons"}))
        try:
            async with self.session.begin_nested():
                self.session.add(row)
        except IntegrityError as e:
            raise conflict_from_integrity(
                e,
                f"Module with order number {module.order_number} already exists",
                course_id=str(module.course_id),
            ) from e
        return row

    async def insert_lesson(self, lesson: Lesson, module: CourseModule) -> LessonModel:
        """
        Insert a lesson and store the module's recomputed duration.

        Raises:
            ConflictError: If the order number is taken within the module
        """
        row = LessonModel(**lesson.model_dump(exclude={"lesson_type"}), lesson_type=lesson.lesson_type.value)
        try:
            async with self.session.begin_nested():
                self.session.add(row)
                module_row = await self.session.get(CourseModuleModel, module.id)
                if module_row is not None:
                    module_row.duration_minutes = module.duration_minutes
                    module_row.updated_at = module.updated_at
        except IntegrityError as e:
            raise conflict_from_integrity(
                e,
                f"Lesson with order number {lesson.order_number} already exists",
                module_id=str(lesson.module_id),
            ) from e
        return row

    async def apply_module_order(self, course_id: UUID, ordering: dict[UUID, int]) -> None:
        """
        Write new module order numbers.

        Two phases (negative placeholders, then final values) keep the
        unique constraint satisfied after every statement.
        """
        rows = (
            await self.session.execute(
                select(CourseModuleModel).where(CourseModuleModel.course_id == course_id)
            )
        ).scalars().all()
        await self._two_phase_reorder(rows, ordering)

    async def apply_lesson_order(self, module_id: UUID, ordering: dict[UUID, int]) -> None:
        rows = (
            await self.session.execute(select(LessonModel).where(LessonModel.module_id == module_id))
        ).scalars().all()
        await self._two_phase_reorder(rows, ordering)

    async def _two_phase_reorder(self, rows: list, ordering: dict[UUID, int]) -> None:
        try:
            async with self.session.begin_nested():
                for row in rows:
                    row.order_number = -ordering[row.id]
                await self.session.flush()
                for row in rows:
                    row.order_number = ordering[row.id]
                await self.session.flush()
        except IntegrityError as e:
            raise conflict_from_integrity(e, "Concurrent reorder detected") from e

    async def update_lesson_content(self, lesson: Lesson) -> None:
        row = await self.session.get(LessonModel, lesson.id)
        if row is None:
            return
        row.content_url = lesson.content_url
        row.updated_at = lesson.updated_at
        await self.session.flush()
