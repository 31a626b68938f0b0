"""Unit tests for the course aggregate: structure, ordering, and publish gating."""

import random
import re
from datetime import datetime
from uuid import uuid4

import pytest

from shared.domain.courses import (
    EMPTY_MODULE_REASON,
    UNPROCESSED_VIDEO_REASON,
    Course,
    CourseStatus,
    LessonType,
    generate_slug,
    to_base36,
)
from shared.domain.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    InvariantViolationError,
    ValidationError,
)
from shared.events.learning_events import CoursePublishedEvent, ModulesReorderedEvent

NOW = datetime(2025, 3, 1, 9, 0, 0)


def make_course() -> Course:
    return Course.create(
        instructor_id=uuid4(),
        title="Intro to Python",
        description="Learn the basics",
        category="programming",
        now=NOW,
        rng=random.Random(7),
    )


def add_text_lesson(course: Course, module_id, title: str = "Reading", **kwargs):
    return course.add_lesson(
        module_id, title=title, lesson_type=LessonType.TEXT, content_text="Some text", now=NOW, **kwargs
    )


class TestSlugGeneration:
    """Tests for slug derivation."""

    def test_base36_rendering(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"

    def test_negative_base36_is_a_programming_error(self):
        with pytest.raises(InvariantViolationError):
            to_base36(-1)

    def test_slug_normalizes_title_and_appends_suffix(self):
        slug = generate_slug("Intro to   Python!!", NOW, random.Random(1))

        assert re.fullmatch(r"intro-to-python-[0-9a-z]+-[0-9a-z]{6}", slug)

    def test_slug_for_title_without_usable_characters(self):
        slug = generate_slug("!!!", NOW, random.Random(1))

        assert re.fullmatch(r"[0-9a-z]+-[0-9a-z]{6}", slug)

    def test_create_rejects_negative_price(self):
        with pytest.raises(ValidationError) as exc_info:
            Course.create(
                instructor_id=uuid4(),
                title="Course",
                description="Desc",
                category="cat",
                price=-1,
            )
        assert exc_info.value.field == "price"

    def test_regenerated_slug_updates_pending_creation_event(self):
        course = make_course()
        new_slug = course.regenerate_slug(NOW, random.Random(99))

        created = course.pending_events[0]
        assert created.slug == new_slug == course.slug


class TestModuleAndLessonStructure:
    """Tests for module/lesson order numbers."""

    def test_order_numbers_are_assigned_when_omitted(self):
        course = make_course()
        first = course.add_module("One", now=NOW)
        second = course.add_module("Two", now=NOW)

        assert (first.order_number, second.order_number) == (1, 2)

    def test_duplicate_module_order_number_is_rejected(self):
        course = make_course()
        course.add_module("One", order_number=1, now=NOW)

        with pytest.raises(ConflictError, match="Module with order number 1 already exists"):
            course.add_module("Again", order_number=1, now=NOW)

    def test_duplicate_lesson_order_number_is_rejected(self):
        course = make_course()
        module = course.add_module("One", now=NOW)
        add_text_lesson(course, module.id, order_number=1)

        with pytest.raises(ConflictError, match="Lesson with order number 1 already exists"):
            add_text_lesson(course, module.id, title="Other", order_number=1)

    def test_text_lesson_requires_content(self):
        course = make_course()
        module = course.add_module("One", now=NOW)

        with pytest.raises(ValidationError):
            course.add_lesson(module.id, title="Empty", lesson_type=LessonType.TEXT, now=NOW)

    def test_module_duration_tracks_lessons(self):
        course = make_course()
        module = course.add_module("One", now=NOW)
        add_text_lesson(course, module.id, duration_minutes=15)
        add_text_lesson(course, module.id, title="More", duration_minutes=20)

        assert module.duration_minutes == 35

    def test_prerequisite_must_be_in_same_course(self):
        course = make_course()

        with pytest.raises(ValidationError):
            course.add_module("One", prerequisite_module_id=uuid4(), now=NOW)


class TestReordering:
    """Tests for permutation-based reordering."""

    def test_reorder_assigns_contiguous_numbers_in_input_order(self):
        course = make_course()
        modules = [course.add_module(f"M{i}", now=NOW) for i in range(4)]
        desired = [modules[2].id, modules[0].id, modules[3].id, modules[1].id]

        ordering = course.reorder_modules(desired, now=NOW)

        assert [ordering[module_id] for module_id in desired] == [1, 2, 3, 4]
        assert [m.id for m in course.ordered_modules()] == desired
        assert isinstance(course.pending_events[-1], ModulesReorderedEvent)

    @pytest.mark.parametrize("mutation", ["missing", "duplicate", "foreign"])
    def test_non_permutation_is_rejected(self, mutation):
        course = make_course()
        ids = [course.add_module(f"M{i}", now=NOW).id for i in range(3)]
        if mutation == "missing":
            candidate = ids[:2]
        elif mutation == "duplicate":
            candidate = [ids[0], ids[0], ids[1]]
        else:
            candidate = [ids[0], ids[1], uuid4()]

        with pytest.raises(ValidationError):
            course.reorder_modules(candidate, now=NOW)
        assert [m.order_number for m in course.ordered_modules()] == [1, 2, 3]

    def test_reorder_lessons_within_module(self):
        course = make_course()
        module = course.add_module("One", now=NOW)
        a = add_text_lesson(course, module.id, title="A")
        b = add_text_lesson(course, module.id, title="B")

        course.reorder_lessons(module.id, [b.id, a.id], now=NOW)

        assert [lesson.id for lesson in module.ordered_lessons()] == [b.id, a.id]


class TestPublishGating:
    """Tests for can_publish/publish."""

    def test_two_modules_fail_with_module_count_reason(self):
        course = make_course()
        for i in range(2):
            module = course.add_module(f"M{i}", now=NOW)
            add_text_lesson(course, module.id)

        check = course.can_publish(3)

        assert not check.can_publish
        assert check.reasons == ["Course must have at least 3 modules"]

    def test_reasons_accumulate(self):
        course = make_course()
        first = course.add_module("M1", now=NOW)
        course.add_module("Empty", now=NOW)
        course.add_lesson(first.id, title="Video", lesson_type=LessonType.VIDEO, now=NOW)

        check = course.can_publish(3)

        assert check.reasons == [
            "Course must have at least 3 modules",
            EMPTY_MODULE_REASON,
            UNPROCESSED_VIDEO_REASON,
        ]

    def test_third_module_with_processed_video_allows_publication(self):
        course = make_course()
        for i in range(2):
            module = course.add_module(f"M{i}", now=NOW)
            add_text_lesson(course, module.id)
        assert not course.can_publish(3).can_publish

        third = course.add_module("M3", now=NOW)
        video = course.add_lesson(third.id, title="Video", lesson_type=LessonType.VIDEO, now=NOW)
        assert course.can_publish(3).reasons == [UNPROCESSED_VIDEO_REASON]

        course.mark_lesson_content_processed(video.id, "https://cdn.test/v.mp4", now=NOW)
        assert course.can_publish(3).can_publish

    def test_publish_failure_carries_all_reasons(self):
        course = make_course()

        with pytest.raises(ConflictError) as exc_info:
            course.publish(min_modules=3, now=NOW)

        assert exc_info.value.reasons == ["Course must have at least 3 modules"]
        assert course.status == CourseStatus.DRAFT

    def test_publish_sets_status_and_timestamp(self):
        course = make_course()
        for i in range(3):
            module = course.add_module(f"M{i}", now=NOW)
            add_text_lesson(course, module.id)
        course.pull_events()

        course.publish(min_modules=3, now=NOW)

        assert course.status == CourseStatus.PUBLISHED
        assert course.published_at == NOW
        assert [type(e) for e in course.pull_events()] == [CoursePublishedEvent]

    def test_lifecycle_transitions(self):
        course = make_course()

        with pytest.raises(InvalidStateTransitionError):
            course.archive(now=NOW)

        course.submit_for_review(now=NOW)
        assert course.status == CourseStatus.PENDING_REVIEW
        assert course.can_transition_to(CourseStatus.PUBLISHED)
        assert not course.can_transition_to(CourseStatus.DRAFT)
