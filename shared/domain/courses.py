"""
Course Structure Domain

Course aggregate owning ordered modules and lessons, plus the publication
state machine and publish gating rules.
"""

import random
import re
import string
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar
from uuid import UUID

from pydantic import Field

from shared.clock import utcnow
from shared.domain.entities import AbstractEntity, AggregateRoot
from shared.domain.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    InvariantViolationError,
    ValidationError,
)
from shared.events.base import EventMetadata
from shared.events.learning_events import (
    CourseCreatedEvent,
    CoursePublishedEvent,
    CourseStatusChangedEvent,
    LessonAddedEvent,
    LessonContentProcessedEvent,
    LessonsReorderedEvent,
    ModuleAddedEvent,
    ModulesReorderedEvent,
)

BASE36_ALPHABET = string.digits + string.ascii_lowercase

MODULE_COUNT_REASON = "Course must have at least {count} modules"
EMPTY_MODULE_REASON = "All modules must have at least one lesson"
UNPROCESSED_VIDEO_REASON = "All video lessons must be processed before publishing"


class CourseStatus(str, Enum):
    """Course publication lifecycle."""

    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class Difficulty(str, Enum):
    """Course difficulty level."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class LessonType(str, Enum):
    """Lesson content type."""

    VIDEO = "video"
    TEXT = "text"
    QUIZ = "quiz"
    ASSIGNMENT = "assignment"


ALLOWED_TRANSITIONS: dict[CourseStatus, frozenset[CourseStatus]] = {
    CourseStatus.DRAFT: frozenset({CourseStatus.PENDING_REVIEW, CourseStatus.PUBLISHED}),
    CourseStatus.PENDING_REVIEW: frozenset({CourseStatus.PUBLISHED}),
    CourseStatus.PUBLISHED: frozenset({CourseStatus.ARCHIVED}),
    CourseStatus.ARCHIVED: frozenset(),
}


def to_base36(value: int) -> str:
    """Render a non-negative integer in base 36."""
    if value < 0:
        raise InvariantViolationError("base36 requires a non-negative integer", context={"value": value})
    digits = []
    while True:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
        if value == 0:
            break
    return "".join(reversed(digits))


def random_base36(length: int, rng: random.Random | None = None) -> str:
    """Random base36 string of the given length."""
    chooser = rng or random.SystemRandom()
    return "".join(chooser.choice(BASE36_ALPHABET) for _ in range(length))


def generate_slug(title: str, at: datetime | None = None, rng: random.Random | None = None) -> str:
    """
    Derive a URL slug from a course title.

    The slug is the normalized title followed by a base36 millisecond
    timestamp and a random suffix. Uniqueness is only probabilistic; the
    storage unique constraint is the final arbiter.

    Args:
        title: Course title
        at: Timestamp used for the time component (defaults to now)
        rng: Random source for the suffix

    Returns:
        str: Slug such as ``intro-to-python-lq2k3j9a-x8f2k1``
    """
    base = title.lower()
    base = re.sub(r"[^a-z0-9\s-]", "", base)
    base = re.sub(r"\s+", "-", base)
    base = re.sub(r"-+", "-", base).strip("-")

    moment = at or utcnow()
    millis = int((moment - datetime(1970, 1, 1)).total_seconds() * 1000)
    suffix = f"{to_base36(millis)}-{random_base36(6, rng)}"
    return f"{base}-{suffix}" if base else suffix


@dataclass(frozen=True)
class PublishCheck:
    """Outcome of the publish gating rules."""

    can_publish: bool
    reasons: list[str] = field(default_factory=list)


class Lesson(AbstractEntity):
    """A single unit of content inside a module."""

    module_id: UUID = Field(...)
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(default=None)
    lesson_type: LessonType = Field(...)
    order_number: int = Field(..., ge=1)
    duration_minutes: int = Field(default=0, ge=0)
    is_preview: bool = Field(default=False)
    content_url: str | None = Field(default=None)
    content_text: str | None = Field(default=None)

    def is_ready_for_publication(self) -> bool:
        """Whether the type-specific content is in place."""
        if self.lesson_type == LessonType.VIDEO:
            return bool(self.content_url)
        if self.lesson_type == LessonType.TEXT:
            return bool(self.content_text and self.content_text.strip())
        # Quiz and assignment content is validated by its own entity
        return True

    def validate_business_rules(self) -> bool:
        if self.lesson_type == LessonType.TEXT and not (self.content_text and self.content_text.strip()):
            raise ValidationError("Text lessons require content", field="content_text")
        return True


class CourseModule(AbstractEntity):
    """Ordered group of lessons within a course."""

    course_id: UUID = Field(...)
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(default=None)
    order_number: int = Field(..., ge=1)
    duration_minutes: int = Field(default=0, ge=0)
    prerequisite_module_id: UUID | None = Field(default=None)
    lessons: list[Lesson] = Field(default_factory=list)

    def validate_business_rules(self) -> bool:
        numbers = [lesson.order_number for lesson in self.lessons]
        if len(numbers) != len(set(numbers)):
            raise ValidationError("Lesson order numbers must be unique within a module", field="lessons")
        return True

    def ordered_lessons(self) -> list[Lesson]:
        """Lessons sorted by order number."""
        return sorted(self.lessons, key=lambda lesson: lesson.order_number)

    def next_lesson_order_number(self) -> int:
        """Highest lesson order number plus one, or 1 for an empty module."""
        return max((lesson.order_number for lesson in self.lessons), default=0) + 1

    def recalculate_duration(self) -> int:
        """Recompute the module duration from its lessons."""
        self.duration_minutes = sum(lesson.duration_minutes for lesson in self.lessons)
        return self.duration_minutes

    def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        return next((lesson for lesson in self.lessons if lesson.id == lesson_id), None)


class Course(AggregateRoot):
    """
    Course aggregate root.

    Owns its modules and their lessons; every structural mutation goes
    through this class so order-number and publication invariants are
    checked at the mutation boundary. The storage unique constraints remain
    the final guard against concurrent writers.
    """

    SERVICE_NAME: ClassVar[str] = "course_service"

    instructor_id: UUID = Field(...)
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1, max_length=320)
    category: str = Field(..., min_length=1, max_length=100)
    difficulty: Difficulty = Field(default=Difficulty.BEGINNER)
    price: float = Field(default=0.0, ge=0)
    enrollment_limit: int | None = Field(default=None, gt=0)
    status: CourseStatus = Field(default=CourseStatus.DRAFT)
    published_at: datetime | None = Field(default=None)
    modules: list[CourseModule] = Field(default_factory=list)

    @classmethod
    def aggregate_type(cls) -> str:
        return "Course"

    @classmethod
    def create(
        cls,
        instructor_id: UUID,
        title: str,
        description: str,
        category: str,
        difficulty: Difficulty = Difficulty.BEGINNER,
        price: float = 0.0,
        enrollment_limit: int | None = None,
        now: datetime | None = None,
        rng: random.Random | None = None,
    ) -> "Course":
        """
        Create a draft course.

        Raises:
            ValidationError: If any field is out of range
        """
        title = (title or "").strip()
        if not title or len(title) > 255:
            raise ValidationError("Title must be between 1 and 255 characters", field="title")
        if not description or not description.strip():
            raise ValidationError("Description is required", field="description")
        if not category or not category.strip():
            raise ValidationError("Category is required", field="category")
        if price < 0:
            raise ValidationError("Price cannot be negative", field="price", value=price)
        if enrollment_limit is not None and enrollment_limit <= 0:
            raise ValidationError(
                "Enrollment limit must be positive", field="enrollment_limit", value=enrollment_limit
            )

        now = now or utcnow()
        course = cls(
            instructor_id=instructor_id,
            title=title,
            description=description.strip(),
            slug=generate_slug(title, now, rng),
            category=category.strip(),
            difficulty=difficulty,
            price=price,
            enrollment_limit=enrollment_limit,
            created_at=now,
            updated_at=now,
        )
        course.record_event(
            CourseCreatedEvent(
                metadata=course._metadata(now, instructor_id),
                aggregate_id=course.id,
                aggregate_type=cls.aggregate_type(),
                instructor_id=instructor_id,
                title=course.title,
                slug=course.slug,
            )
        )
        return course

    def regenerate_slug(self, now: datetime | None = None, rng: random.Random | None = None) -> str:
        """Pick a fresh slug after a uniqueness collision."""
        self.slug = generate_slug(self.title, now, rng)
        # Keep the pending creation event in step with the stored slug
        self._pending_events[:] = [
            event.model_copy(update={"slug": self.slug})
            if isinstance(event, CourseCreatedEvent)
            else event
            for event in self._pending_events
        ]
        return self.slug

    def validate_business_rules(self) -> bool:
        numbers = [module.order_number for module in self.modules]
        if len(numbers) != len(set(numbers)):
            raise ValidationError("Module order numbers must be unique within a course", field="modules")
        for module in self.modules:
            module.validate_business_rules()
        return True

    def _metadata(self, at: datetime, user_id: UUID | None = None) -> EventMetadata:
        return EventMetadata(service=self.SERVICE_NAME, timestamp=at, user_id=user_id)

    def _event_fields(self, at: datetime, user_id: UUID | None) -> dict:
        return {
            "metadata": self._metadata(at, user_id),
            "aggregate_id": self.id,
            "aggregate_type": self.aggregate_type(),
        }

    # Structure

    def ordered_modules(self) -> list[CourseModule]:
        """Modules sorted by order number."""
        return sorted(self.modules, key=lambda module: module.order_number)

    def get_module(self, module_id: UUID) -> CourseModule | None:
        return next((module for module in self.modules if module.id == module_id), None)

    def find_lesson(self, lesson_id: UUID) -> tuple[CourseModule, Lesson] | None:
        """Locate a lesson and its module."""
        for module in self.modules:
            lesson = module.get_lesson(lesson_id)
            if lesson is not None:
                return module, lesson
        return None

    def all_lessons(self) -> list[Lesson]:
        """Every lesson in module order, then lesson order."""
        return [lesson for module in self.ordered_modules() for lesson in module.ordered_lessons()]

    def next_module_order_number(self) -> int:
        """Highest module order number plus one, or 1 for an empty course."""
        return max((module.order_number for module in self.modules), default=0) + 1

    def add_module(
        self,
        title: str,
        order_number: int | None = None,
        description: str | None = None,
        prerequisite_module_id: UUID | None = None,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> CourseModule:
        """
        Append a module.

        Raises:
            ValidationError: If the title or order number is invalid, or the
                prerequisite is not a module of this course
            ConflictError: If the order number is already taken
        """
        now = now or utcnow()
        title = (title or "").strip()
        if not title or len(title) > 255:
            raise ValidationError("Module title must be between 1 and 255 characters", field="title")

        if order_number is None:
            order_number = self.next_module_order_number()
        if order_number < 1:
            raise ValidationError("Order number must be positive", field="order_number", value=order_number)
        if any(module.order_number == order_number for module in self.modules):
            raise ConflictError(f"Module with order number {order_number} already exists")

        if prerequisite_module_id is not None and self.get_module(prerequisite_module_id) is None:
            raise ValidationError(
                "Prerequisite module must belong to the same course",
                field="prerequisite_module_id",
                value=prerequisite_module_id,
            )

        module = CourseModule(
            course_id=self.id,
            title=title,
            description=description,
            order_number=order_number,
            prerequisite_module_id=prerequisite_module_id,
            created_at=now,
            updated_at=now,
        )
        self.modules.append(module)
        self.mark_updated(now)

        self.record_event(
            ModuleAddedEvent(
                **self._event_fields(now, actor_id),
                module_id=module.id,
                title=module.title,
                order_number=module.order_number,
            )
        )
        return module

    def add_lesson(
        self,
        module_id: UUID,
        title: str,
        lesson_type: LessonType,
        order_number: int | None = None,
        description: str | None = None,
        duration_minutes: int = 0,
        is_preview: bool = False,
        content_url: str | None = None,
        content_text: str | None = None,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Lesson:
        """
        Append a lesson to one of this course's modules.

        Raises:
            ValidationError: On invalid fields or missing text content
            ConflictError: If the order number is already taken in the module
        """
        now = now or utcnow()
        module = self.get_module(module_id)
        if module is None:
            raise ValidationError("Module does not belong to this course", field="module_id", value=module_id)

        title = (title or "").strip()
        if not title or len(title) > 255:
            raise ValidationError("Lesson title must be between 1 and 255 characters", field="title")
        if duration_minutes < 0:
            raise ValidationError(
                "Duration cannot be negative", field="duration_minutes", value=duration_minutes
            )

        if order_number is None:
            order_number = module.next_lesson_order_number()
        if order_number < 1:
            raise ValidationError("Order number must be positive", field="order_number", value=order_number)
        if any(lesson.order_number == order_number for lesson in module.lessons):
            raise ConflictError(f"Lesson with order number {order_number} already exists")

        lesson = Lesson(
            module_id=module.id,
            title=title,
            description=description,
            lesson_type=lesson_type,
            order_number=order_number,
            duration_minutes=duration_minutes,
            is_preview=is_preview,
            content_url=content_url or None,
            content_text=content_text,
            created_at=now,
            updated_at=now,
        )
        lesson.validate_business_rules()

        module.lessons.append(lesson)
        module.recalculate_duration()
        module.mark_updated(now)
        self.mark_updated(now)

        self.record_event(
            LessonAddedEvent(
                **self._event_fields(now, actor_id),
                module_id=module.id,
                lesson_id=lesson.id,
                title=lesson.title,
                lesson_type=lesson.lesson_type.value,
                order_number=lesson.order_number,
            )
        )
        return lesson

    def reorder_modules(
        self, module_ids: list[UUID], actor_id: UUID | None = None, now: datetime | None = None
    ) -> dict[UUID, int]:
        """
        Assign order numbers 1..N following ``module_ids``.

        Raises:
            ValidationError: If the input is not a permutation of this
                course's module ids

        Returns:
            dict: module id to new order number
        """
        now = now or utcnow()
        _require_permutation(module_ids, [module.id for module in self.modules], "module_ids")

        ordering = {module_id: index for index, module_id in enumerate(module_ids, start=1)}
        for module in self.modules:
            module.order_number = ordering[module.id]
        self.mark_updated(now)

        self.record_event(
            ModulesReorderedEvent(
                **self._event_fields(now, actor_id),
                ordering=[
                    {"module_id": str(module_id), "order_number": number}
                    for module_id, number in ordering.items()
                ],
            )
        )
        return ordering

    def reorder_lessons(
        self,
        module_id: UUID,
        lesson_ids: list[UUID],
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> dict[UUID, int]:
        """
        Assign lesson order numbers 1..N within a module following ``lesson_ids``.

        Raises:
            ValidationError: If the module is foreign or the input is not a
                permutation of the module's lesson ids
        """
        now = now or utcnow()
        module = self.get_module(module_id)
        if module is None:
            raise ValidationError("Module does not belong to this course", field="module_id", value=module_id)
        _require_permutation(lesson_ids, [lesson.id for lesson in module.lessons], "lesson_ids")

        ordering = {lesson_id: index for index, lesson_id in enumerate(lesson_ids, start=1)}
        for lesson in module.lessons:
            lesson.order_number = ordering[lesson.id]
        module.mark_updated(now)
        self.mark_updated(now)

        self.record_event(
            LessonsReorderedEvent(
                **self._event_fields(now, actor_id),
                module_id=module.id,
                ordering=[
                    {"lesson_id": str(lesson_id), "order_number": number}
                    for lesson_id, number in ordering.items()
                ],
            )
        )
        return ordering

    def mark_lesson_content_processed(
        self,
        lesson_id: UUID,
        content_url: str,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Lesson:
        """Record the processed content URL of a video lesson."""
        now = now or utcnow()
        located = self.find_lesson(lesson_id)
        if located is None:
            raise ValidationError("Lesson does not belong to this course", field="lesson_id", value=lesson_id)
        module, lesson = located

        if lesson.lesson_type != LessonType.VIDEO:
            raise ValidationError("Only video lessons carry processed content", field="lesson_type")
        if not content_url or not content_url.strip():
            raise ValidationError("Content URL is required", field="content_url")

        lesson.content_url = content_url.strip()
        lesson.mark_updated(now)
        self.mark_updated(now)

        self.record_event(
            LessonContentProcessedEvent(
                **self._event_fields(now, actor_id),
                module_id=module.id,
                lesson_id=lesson.id,
                content_url=lesson.content_url,
            )
        )
        return lesson

    # Publication

    def can_publish(self, min_modules: int = 3) -> PublishCheck:
        """
        Evaluate every publish gating rule.

        Reasons accumulate so the caller sees all failing conditions at once.
        """
        reasons: list[str] = []

        if len(self.modules) < min_modules:
            reasons.append(MODULE_COUNT_REASON.format(count=min_modules))

        if any(not module.lessons for module in self.modules):
            reasons.append(EMPTY_MODULE_REASON)

        if any(
            lesson.lesson_type == LessonType.VIDEO and not lesson.is_ready_for_publication()
            for module in self.modules
            for lesson in module.lessons
        ):
            reasons.append(UNPROCESSED_VIDEO_REASON)

        return PublishCheck(can_publish=not reasons, reasons=reasons)

    def publish(
        self, min_modules: int = 3, actor_id: UUID | None = None, now: datetime | None = None
    ) -> None:
        """
        Make the course live.

        Raises:
            InvalidStateTransitionError: If the current status cannot move to published
            ConflictError: If publish gating fails; carries every reason
        """
        now = now or utcnow()
        self._require_transition(CourseStatus.PUBLISHED)

        check = self.can_publish(min_modules)
        if not check.can_publish:
            raise ConflictError(
                f"Cannot publish course: {', '.join(check.reasons)}",
                reasons=check.reasons,
                context={"course_id": str(self.id)},
            )

        self.status = CourseStatus.PUBLISHED
        self.published_at = now
        self.mark_updated(now)

        self.record_event(
            CoursePublishedEvent(
                **self._event_fields(now, actor_id),
                instructor_id=self.instructor_id,
                title=self.title,
                published_at=now,
            )
        )

    def submit_for_review(self, actor_id: UUID | None = None, now: datetime | None = None) -> None:
        """Move a draft to pending review."""
        self._change_status(CourseStatus.PENDING_REVIEW, actor_id, now or utcnow())

    def archive(self, actor_id: UUID | None = None, now: datetime | None = None) -> None:
        """Retire a published course."""
        self._change_status(CourseStatus.ARCHIVED, actor_id, now or utcnow())

    def can_transition_to(self, target: CourseStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def _require_transition(self, target: CourseStatus) -> None:
        if not self.can_transition_to(target):
            raise InvalidStateTransitionError(
                entity_type="Course", from_state=self.status.value, to_state=target.value
            )

    def _change_status(self, target: CourseStatus, actor_id: UUID | None, now: datetime) -> None:
        self._require_transition(target)
        previous = self.status
        self.status = target
        self.mark_updated(now)

        self.record_event(
            CourseStatusChangedEvent(
                **self._event_fields(now, actor_id),
                previous_status=previous.value,
                new_status=target.value,
            )
        )

    def is_published(self) -> bool:
        return self.status == CourseStatus.PUBLISHED


def _require_permutation(candidate: list[UUID], current: list[UUID], field_name: str) -> None:
    if len(candidate) != len(current) or set(candidate) != set(current):
        raise ValidationError(
            "Ordering must contain every existing id exactly once",
            field=field_name,
            context={"expected": len(current), "received": len(candidate)},
        )
