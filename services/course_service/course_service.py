"""
Course Service

Course structure validation and publication workflow: module/lesson
authoring, reordering, publish gating, and lifecycle transitions.
"""

import random
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.course_service.repository import CourseRepository
from shared.clock import Clock, utcnow
from shared.config import Settings, get_settings
from shared.database.errors import conflict_from_integrity, persistence_guard
from shared.domain.courses import (
    Course,
    CourseModule,
    Difficulty,
    Lesson,
    LessonType,
    PublishCheck,
)
from shared.domain.exceptions import AuthorizationError, ConflictError, NotFoundError
from shared.events.outbox import Outbox
from shared.security.access import AccessPolicy, Actor, Role, access_policy

logger = structlog.get_logger(__name__)

MAX_SLUG_ATTEMPTS = 5


class CourseService:
    """
    Service orchestrating course authoring and publication.

    Every mutation loads the course aggregate, checks the caller, applies the
    change through the aggregate, writes it back, and stages the resulting
    events in the outbox within the same transaction. The caller commits.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        outbox: Outbox | None = None,
        settings: Settings | None = None,
        clock: Clock = utcnow,
        rng: random.Random | None = None,
        policy: AccessPolicy = access_policy,
    ):
        """
        Initialize course service.

        Args:
            db_session: Database session
            outbox: Outbox for domain events
            settings: Application settings (defaults to cached settings)
            clock: Source of the current UTC time
            rng: Random source for slug suffixes
            policy: Ownership checks
        """
        self.db = db_session
        self.repository = CourseRepository(db_session)
        self.outbox = outbox or Outbox()
        self.settings = settings or get_settings()
        self.clock = clock
        self.rng = rng
        self.policy = policy

    async def _load(self, course_id: UUID) -> Course:
        course = await self.repository.get_course(course_id)
        if course is None:
            raise NotFoundError("Course", course_id)
        return course

    async def _load_for_management(self, actor: Actor, course_id: UUID, action: str) -> Course:
        course = await self._load(course_id)
        self.policy.ensure_course_manager(actor, course.instructor_id, "course", action)
        return course

    async def _course_id_for_module(self, module_id: UUID) -> UUID:
        course_id = await self.repository.get_module_course_id(module_id)
        if course_id is None:
            raise NotFoundError("CourseModule", module_id)
        return course_id

    @persistence_guard("create_course")
    async def create_course(
        self,
        actor: Actor,
        title: str,
        description: str,
        category: str,
        difficulty: Difficulty = Difficulty.BEGINNER,
        price: float = 0.0,
        enrollment_limit: int | None = None,
        instructor_id: UUID | None = None,
    ) -> Course:
        """
        Create a draft course.

        Args:
            actor: Instructor creating the course (or admin creating on behalf)
            title: Course title
            description: Course description
            category: Catalogue category
            difficulty: Difficulty level
            price: Price, non-negative
            enrollment_limit: Optional cap on active enrollments
            instructor_id: Owning instructor when an admin creates the course

        Returns:
            Course: The persisted draft

        Raises:
            AuthorizationError: If the caller is not an instructor or admin
            ValidationError: On invalid fields
            ConflictError: If no unique slug could be allocated
        """
        if actor.role not in (Role.INSTRUCTOR, Role.ADMIN):
            raise AuthorizationError(
                "Only instructors can create courses", resource="course", action="create"
            )
        owner = instructor_id if actor.is_admin and instructor_id else actor.user_id

        logger.info("Creating course", instructor_id=str(owner), title=title)

        now = self.clock()
        course = Course.create(
            instructor_id=owner,
            title=title,
            description=description,
            category=category,
            difficulty=difficulty,
            price=price,
            enrollment_limit=enrollment_limit,
            now=now,
            rng=self.rng,
        )

        for attempt in range(1, MAX_SLUG_ATTEMPTS + 1):
            try:
                await self.repository.insert_course(course)
                break
            except IntegrityError as e:
                logger.warning("Slug collision, regenerating", slug=course.slug, attempt=attempt)
                if attempt == MAX_SLUG_ATTEMPTS:
                    raise conflict_from_integrity(
                        e, "Could not allocate a unique course slug", title=course.title
                    ) from e
                course.regenerate_slug(self.clock(), self.rng)

        await self.outbox.stage(self.db, course.pull_events())
        return course

    async def get_course(self, course_id: UUID) -> Course:
        """
        Raises:
            NotFoundError: If the course does not exist
        """
        return await self._load(course_id)

    async def get_next_module_order_number(self, course_id: UUID) -> int:
        await self._load(course_id)
        return await self.repository.get_next_module_order_number(course_id)

    async def get_next_lesson_order_number(self, module_id: UUID) -> int:
        await self._course_id_for_module(module_id)
        return await self.repository.get_next_lesson_order_number(module_id)

    @persistence_guard("add_module")
    async def add_module(
        self,
        actor: Actor,
        course_id: UUID,
        title: str,
        order_number: int | None = None,
        description: str | None = None,
        prerequisite_module_id: UUID | None = None,
    ) -> CourseModule:
        """
        Add a module to a course.

        When no order number is given the next free one is used.

        Raises:
            NotFoundError: If the course does not exist
            AuthorizationError: If the caller does not manage the course
            ValidationError: On invalid fields or a foreign prerequisite
            ConflictError: If the order number is taken
        """
        course = await self._load_for_management(actor, course_id, "add_module")
        module = course.add_module(
            title=title,
            order_number=order_number,
            description=description,
            prerequisite_module_id=prerequisite_module_id,
            actor_id=actor.user_id,
            now=self.clock(),
        )
        await self.repository.insert_module(module)
        await self.outbox.stage(self.db, course.pull_events())

        logger.info(
            "Module added",
            course_id=str(course_id),
            module_id=str(module.id),
            order_number=module.order_number,
        )
        return module

    @persistence_guard("add_lesson")
    async def add_lesson(
        self,
        actor: Actor,
        module_id: UUID,
        title: str,
        lesson_type: LessonType,
        order_number: int | None = None,
        description: str | None = None,
        duration_minutes: int = 0,
        is_preview: bool = False,
        content_url: str | None = None,
        content_text: str | None = None,
    ) -> Lesson:
        """
        Add a lesson to a module.

        Raises:
            NotFoundError: If the module does not exist
            AuthorizationError: If the caller does not manage the course
            ValidationError: On invalid fields or a text lesson without content
            ConflictError: If the order number is taken
        """
        course_id = await self._course_id_for_module(module_id)
        course = await self._load_for_management(actor, course_id, "add_lesson")

        lesson = course.add_lesson(
            module_id=module_id,
            title=title,
            lesson_type=lesson_type,
            order_number=order_number,
            description=description,
            duration_minutes=duration_minutes,
            is_preview=is_preview,
            content_url=content_url,
            content_text=content_text,
            actor_id=actor.user_id,
            now=self.clock(),
        )
        module = course.get_module(module_id)
        await self.repository.insert_lesson(lesson, module)
        await self.outbox.stage(self.db, course.pull_events())

        logger.info(
            "Lesson added",
            course_id=str(course_id),
            module_id=str(module_id),
            lesson_id=str(lesson.id),
            lesson_type=lesson.lesson_type.value,
        )
        return lesson

    @persistence_guard("reorder_modules")
    async def reorder_modules(
        self, actor: Actor, course_id: UUID, module_ids: list[UUID]
    ) -> list[CourseModule]:
        """
        Reorder modules to follow ``module_ids``.

        Returns:
            list: Modules in their new order (order numbers 1..N)

        Raises:
            ValidationError: If ``module_ids`` is not a permutation of the
                course's modules
        """
        course = await self._load_for_management(actor, course_id, "reorder_modules")
        ordering = course.reorder_modules(module_ids, actor_id=actor.user_id, now=self.clock())

        await self.repository.apply_module_order(course_id, ordering)
        await self.outbox.stage(self.db, course.pull_events())

        logger.info("Modules reordered", course_id=str(course_id), count=len(ordering))
        return course.ordered_modules()

    @persistence_guard("reorder_lessons")
    async def reorder_lessons(
        self, actor: Actor, module_id: UUID, lesson_ids: list[UUID]
    ) -> list[Lesson]:
        """
        Reorder a module's lessons to follow ``lesson_ids``.

        Raises:
            ValidationError: If ``lesson_ids`` is not a permutation of the
                module's lessons
        """
        course_id = await self._course_id_for_module(module_id)
        course = await self._load_for_management(actor, course_id, "reorder_lessons")
        ordering = course.reorder_lessons(module_id, lesson_ids, actor_id=actor.user_id, now=self.clock())

        await self.repository.apply_lesson_order(module_id, ordering)
        await self.outbox.stage(self.db, course.pull_events())

        logger.info("Lessons reordered", module_id=str(module_id), count=len(ordering))
        return course.get_module(module_id).ordered_lessons()

    @persistence_guard("mark_lesson_content_processed")
    async def mark_lesson_content_processed(
        self, actor: Actor, lesson_id: UUID, content_url: str
    ) -> Lesson:
        """Record the processed content URL of a video lesson."""
        context = await self.repository.get_lesson_context(lesson_id)
        if context is None:
            raise NotFoundError("Lesson", lesson_id)
        course = await self._load_for_management(actor, context.course_id, "process_content")

        lesson = course.mark_lesson_content_processed(
            lesson_id, content_url, actor_id=actor.user_id, now=self.clock()
        )
        await self.repository.update_lesson_content(lesson)
        await self.outbox.stage(self.db, course.pull_events())

        logger.info("Lesson content processed", lesson_id=str(lesson_id))
        return lesson

    async def can_publish(self, course_id: UUID) -> PublishCheck:
        """
        Evaluate publish gating without side effects.

        Raises:
            NotFoundError: If the course does not exist
        """
        course = await self._load(course_id)
        return course.can_publish(self.settings.min_modules_to_publish)

    @persistence_guard("publish_course")
    async def publish(self, actor: Actor, course_id: UUID) -> Course:
        """
        Publish a course.

        Raises:
            InvalidStateTransitionError: If the course is archived or already published
            ConflictError: If publish gating fails (all reasons attached)
        """
        course = await self._load_for_management(actor, course_id, "publish")

        try:
            course.publish(
                min_modules=self.settings.min_modules_to_publish,
                actor_id=actor.user_id,
                now=self.clock(),
            )
        except ConflictError as e:
            logger.warning("Course publication rejected", course_id=str(course_id), reasons=e.reasons)
            raise

        await self.repository.save_course_state(course)
        await self.outbox.stage(self.db, course.pull_events())

        logger.info("Course published", course_id=str(course_id))
        return course

    @persistence_guard("submit_course_for_review")
    async def submit_for_review(self, actor: Actor, course_id: UUID) -> Course:
        """Move a draft course to pending review."""
        course = await self._load_for_management(actor, course_id, "submit_for_review")
        course.submit_for_review(actor_id=actor.user_id, now=self.clock())

        await self.repository.save_course_state(course)
        await self.outbox.stage(self.db, course.pull_events())

        logger.info("Course submitted for review", course_id=str(course_id))
        return course

    @persistence_guard("archive_course")
    async def archive_course(self, actor: Actor, course_id: UUID) -> Course:
        """Archive a published course."""
        course = await self._load_for_management(actor, course_id, "archive")
        course.archive(actor_id=actor.user_id, now=self.clock())

        await self.repository.save_course_state(course)
        await self.outbox.stage(self.db, course.pull_events())

        logger.info("Course archived", course_id=str(course_id))
        return course
