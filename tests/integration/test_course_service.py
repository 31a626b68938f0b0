"""Course service tests against the database."""

from uuid import uuid4

import pytest

from shared.domain.courses import (
    UNPROCESSED_VIDEO_REASON,
    CourseModule,
    CourseStatus,
    LessonType,
)
from shared.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)

pytestmark = pytest.mark.integration


async def create_course(course_service, actor, title: str = "Intro to Python"):
    return await course_service.create_course(
        actor, title=title, description="Learn the basics", category="programming"
    )


class TestCourseAuthoring:
    """Tests for creating courses, modules, and lessons."""

    @pytest.mark.asyncio
    async def test_create_course_persists_draft(self, course_service, instructor, outbox, session):
        course = await create_course(course_service, instructor)

        loaded = await course_service.get_course(course.id)
        assert loaded.status == CourseStatus.DRAFT
        assert loaded.instructor_id == instructor.user_id
        assert loaded.slug.startswith("intro-to-python-")
        staged = await outbox.pending(session)
        assert [row.event_type for row in staged] == ["course.created"]

    @pytest.mark.asyncio
    async def test_students_cannot_create_courses(self, course_service, student):
        with pytest.raises(AuthorizationError):
            await create_course(course_service, student)

    @pytest.mark.asyncio
    async def test_admin_creates_on_behalf_of_instructor(self, course_service, admin, instructor):
        course = await course_service.create_course(
            admin,
            title="Delegated",
            description="Created by an admin",
            category="ops",
            instructor_id=instructor.user_id,
        )

        assert course.instructor_id == instructor.user_id

    @pytest.mark.asyncio
    async def test_missing_course_raises_not_found(self, course_service):
        with pytest.raises(NotFoundError):
            await course_service.get_course(uuid4())

    @pytest.mark.asyncio
    async def test_next_order_numbers(self, course_service, instructor):
        course = await create_course(course_service, instructor)
        assert await course_service.get_next_module_order_number(course.id) == 1

        module = await course_service.add_module(instructor, course.id, title="Basics")
        await course_service.add_lesson(
            instructor, module.id, title="Welcome", lesson_type=LessonType.TEXT, content_text="Hi"
        )

        assert await course_service.get_next_module_order_number(course.id) == 2
        assert await course_service.get_next_lesson_order_number(module.id) == 2

    @pytest.mark.asyncio
    async def test_duplicate_module_order_conflicts(self, course_service, instructor):
        course = await create_course(course_service, instructor)
        await course_service.add_module(instructor, course.id, title="First", order_number=1)

        with pytest.raises(ConflictError, match="Module with order number 1 already exists"):
            await course_service.add_module(instructor, course.id, title="Second", order_number=1)

    @pytest.mark.asyncio
    async def test_unique_constraint_is_final_arbiter(self, course_service, instructor):
        course = await create_course(course_service, instructor)
        await course_service.add_module(instructor, course.id, title="First", order_number=1)
        # A writer that never saw the first module
        stale = CourseModule(course_id=course.id, title="Racing", order_number=1)

        with pytest.raises(ConflictError, match="Module with order number 1 already exists"):
            await course_service.repository.insert_module(stale)

        loaded = await course_service.get_course(course.id)
        assert [m.title for m in loaded.modules] == ["First"]

    @pytest.mark.asyncio
    async def test_lesson_updates_module_duration(self, course_service, instructor):
        course = await create_course(course_service, instructor)
        module = await course_service.add_module(instructor, course.id, title="Basics")
        for minutes in (10, 25):
            await course_service.add_lesson(
                instructor,
                module.id,
                title=f"Lesson {minutes}",
                lesson_type=LessonType.TEXT,
                content_text="Body",
                duration_minutes=minutes,
            )

        loaded = await course_service.get_course(course.id)
        assert loaded.modules[0].duration_minutes == 35

    @pytest.mark.asyncio
    async def test_other_instructor_cannot_edit(self, course_service, instructor, other_instructor):
        course = await create_course(course_service, instructor)

        with pytest.raises(AuthorizationError):
            await course_service.add_module(other_instructor, course.id, title="Hijack")


class TestReorder:
    """Tests for reordering modules and lessons."""

    @pytest.mark.asyncio
    async def test_reorder_modules_yields_contiguous_order(self, course_service, instructor):
        course = await create_course(course_service, instructor)
        modules = [
            await course_service.add_module(instructor, course.id, title=f"Module {i}") for i in range(1, 4)
        ]
        desired = [modules[2].id, modules[0].id, modules[1].id]

        reordered = await course_service.reorder_modules(instructor, course.id, desired)

        assert [m.id for m in reordered] == desired
        assert [m.order_number for m in reordered] == [1, 2, 3]
        loaded = await course_service.get_course(course.id)
        assert [m.id for m in loaded.ordered_modules()] == desired

    @pytest.mark.asyncio
    async def test_reorder_rejects_partial_list(self, course_service, instructor):
        course = await create_course(course_service, instructor)
        modules = [
            await course_service.add_module(instructor, course.id, title=f"Module {i}") for i in range(1, 3)
        ]

        with pytest.raises(ValidationError):
            await course_service.reorder_modules(instructor, course.id, [modules[1].id])

    @pytest.mark.asyncio
    async def test_reorder_lessons(self, course_service, instructor):
        course = await create_course(course_service, instructor)
        module = await course_service.add_module(instructor, course.id, title="Basics")
        lessons = [
            await course_service.add_lesson(
                instructor, module.id, title=f"L{i}", lesson_type=LessonType.TEXT, content_text="x"
            )
            for i in range(3)
        ]
        desired = [lessons[1].id, lessons[2].id, lessons[0].id]

        reordered = await course_service.reorder_lessons(instructor, module.id, desired)

        assert [lesson.id for lesson in reordered] == desired
        assert [lesson.order_number for lesson in reordered] == [1, 2, 3]


class TestPublication:
    """Tests for publish gating and the course lifecycle."""

    @pytest.mark.asyncio
    async def test_publish_gating_scenario(self, course_service, instructor):
        course = await create_course(course_service, instructor)
        for i in range(1, 3):
            module = await course_service.add_module(instructor, course.id, title=f"Module {i}")
            await course_service.add_lesson(
                instructor, module.id, title=f"Reading {i}", lesson_type=LessonType.TEXT, content_text="x"
            )

        check = await course_service.can_publish(course.id)
        assert check.reasons == ["Course must have at least 3 modules"]
        with pytest.raises(ConflictError) as exc_info:
            await course_service.publish(instructor, course.id)
        assert exc_info.value.reasons == check.reasons

        third = await course_service.add_module(instructor, course.id, title="Module 3")
        video = await course_service.add_lesson(
            instructor, third.id, title="Walkthrough", lesson_type=LessonType.VIDEO
        )
        assert (await course_service.can_publish(course.id)).reasons == [UNPROCESSED_VIDEO_REASON]

        await course_service.mark_lesson_content_processed(
            instructor, video.id, "https://cdn.test/walkthrough.mp4"
        )
        published = await course_service.publish(instructor, course.id)

        assert published.status == CourseStatus.PUBLISHED
        assert published.published_at is not None
        loaded = await course_service.get_course(course.id)
        assert loaded.is_published()

    @pytest.mark.asyncio
    async def test_lifecycle(self, course_service, instructor, published_course):
        course = await published_course()

        with pytest.raises(InvalidStateTransitionError):
            await course_service.submit_for_review(instructor, course.id)

        archived = await course_service.archive_course(instructor, course.id)
        assert archived.status == CourseStatus.ARCHIVED
        with pytest.raises(InvalidStateTransitionError):
            await course_service.publish(instructor, course.id)

    @pytest.mark.asyncio
    async def test_review_then_publish(self, course_service, instructor):
        course = await create_course(course_service, instructor)
        for i in range(1, 4):
            module = await course_service.add_module(instructor, course.id, title=f"Module {i}")
            await course_service.add_lesson(
                instructor, module.id, title=f"Reading {i}", lesson_type=LessonType.TEXT, content_text="x"
            )

        pending = await course_service.submit_for_review(instructor, course.id)
        assert pending.status == CourseStatus.PENDING_REVIEW

        published = await course_service.publish(instructor, course.id)
        assert published.status == CourseStatus.PUBLISHED
