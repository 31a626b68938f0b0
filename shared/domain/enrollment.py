"""
Enrollment & Progress Domain

Enrollment aggregate with its per-lesson progress rows, progress arithmetic,
course completion, and certificate issuance.
"""

import random
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar
from uuid import UUID

import structlog
from pydantic import Field

from shared.clock import utcnow
from shared.domain.courses import random_base36, to_base36
from shared.domain.entities import AbstractEntity, AggregateRoot
from shared.domain.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    InvariantViolationError,
    NotFoundError,
    ValidationError,
)
from shared.events.base import EventMetadata
from shared.events.learning_events import (
    CertificateIssuedEvent,
    CourseCompletedEvent,
    EnrollmentDroppedEvent,
    LessonProgressUpdatedEvent,
    StudentEnrolledEvent,
)

logger = structlog.get_logger(__name__)


class EnrollmentStatus(str, Enum):
    """Enrollment lifecycle; completed and dropped are terminal."""

    ACTIVE = "active"
    COMPLETED = "completed"
    DROPPED = "dropped"


class ProgressStatus(str, Enum):
    """Per-lesson progress status."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


_PROGRESS_RANK = {
    ProgressStatus.NOT_STARTED: 0,
    ProgressStatus.IN_PROGRESS: 1,
    ProgressStatus.COMPLETED: 2,
}


def calculate_percentage(completed: int, total: int) -> float:
    """
    Percentage of completed lessons, rounded to two decimals.

    Raises:
        InvariantViolationError: On negative counts or completed > total
    """
    if completed < 0 or total < 0 or completed > total:
        raise InvariantViolationError(
            "Invalid lesson counts", context={"completed": completed, "total": total}
        )
    if total == 0:
        return 0.0
    return round(completed / total * 100, 2)


class LessonProgress(AbstractEntity):
    """Completion and time tracking for one lesson of one enrollment."""

    enrollment_id: UUID = Field(...)
    lesson_id: UUID = Field(...)
    status: ProgressStatus = Field(default=ProgressStatus.NOT_STARTED)
    time_spent_seconds: int = Field(default=0, ge=0)
    completed_at: datetime | None = Field(default=None)
    last_accessed_at: datetime | None = Field(default=None)
    quiz_score: float | None = Field(default=None, ge=0, le=100)
    attempts_count: int = Field(default=0, ge=0)

    def validate_business_rules(self) -> bool:
        if self.status == ProgressStatus.COMPLETED and self.completed_at is None:
            raise ValidationError("Completed lessons must record completion time", field="completed_at")
        return True

    def is_completed(self) -> bool:
        return self.status == ProgressStatus.COMPLETED

    def add_time(self, seconds: int, now: datetime) -> None:
        """Add time spent; time only ever grows."""
        if seconds < 0:
            raise ValidationError(
                "Time spent cannot decrease", field="time_spent_seconds", value=seconds
            )
        self.time_spent_seconds += seconds
        self.last_accessed_at = now
        self.mark_updated(now)

    def advance(self, target: ProgressStatus, now: datetime) -> bool:
        """
        Move towards ``target``.

        Completion is sticky: once completed, later updates keep the lesson
        completed and ``completed_at`` is never rewritten.

        Returns:
            bool: True if this call completed the lesson
        """
        if self.status == ProgressStatus.COMPLETED or target == self.status:
            return False
        if _PROGRESS_RANK[target] < _PROGRESS_RANK[self.status]:
            raise InvalidStateTransitionError(
                entity_type="LessonProgress",
                from_state=self.status.value,
                to_state=target.value,
            )

        self.status = target
        self.last_accessed_at = now
        if target == ProgressStatus.COMPLETED:
            self.completed_at = now
        self.mark_updated(now)
        return target == ProgressStatus.COMPLETED

    def record_quiz_score(self, score: float, now: datetime) -> None:
        """Store the latest quiz score and count the attempt."""
        if score < 0 or score > 100:
            raise ValidationError("Quiz score must be between 0 and 100", field="quiz_score", value=score)
        self.quiz_score = round(score, 2)
        self.attempts_count += 1
        self.last_accessed_at = now
        self.mark_updated(now)


@dataclass(frozen=True)
class ProgressOutcome:
    """Result of a progress mutation."""

    progress: LessonProgress
    lesson_completed: bool
    course_completed: bool


@dataclass(frozen=True)
class EnrollmentEligibility:
    """Accumulated reasons a student may not enroll."""

    eligible: bool
    reasons: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class EnrollmentProgressSummary:
    """Read model of an enrollment's progress."""

    enrollment_id: UUID
    status: EnrollmentStatus
    progress_percentage: float
    total_lessons: int
    completed_lessons: int
    in_progress_lessons: int
    not_started_lessons: int
    total_time_spent_seconds: int
    average_quiz_score: float | None
    completed_module_ids: list[UUID]
    next_lesson_id: UUID | None
    completed_at: datetime | None
    certificate_id: UUID | None


class Enrollment(AggregateRoot):
    """
    Enrollment aggregate binding one student to one course.

    Owns the LessonProgress rows; progress percentage is always derived from
    them and never set directly.
    """

    SERVICE_NAME: ClassVar[str] = "enrollment_service"

    student_id: UUID = Field(...)
    course_id: UUID = Field(...)
    enrolled_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = Field(default=None)
    progress_percentage: float = Field(default=0.0, ge=0, le=100)
    status: EnrollmentStatus = Field(default=EnrollmentStatus.ACTIVE)
    payment_id: str | None = Field(default=None, max_length=255)
    certificate_id: UUID | None = Field(default=None)
    dropped_reason: str | None = Field(default=None)
    lesson_progress: list[LessonProgress] = Field(default_factory=list)

    @classmethod
    def aggregate_type(cls) -> str:
        return "Enrollment"

    @classmethod
    def enroll(
        cls,
        student_id: UUID,
        course_id: UUID,
        lesson_ids: list[UUID],
        payment_id: str | None = None,
        now: datetime | None = None,
    ) -> "Enrollment":
        """
        Start an enrollment with one not-started progress row per lesson.

        Args:
            student_id: Enrolling student
            course_id: Published course
            lesson_ids: Every lesson of the course
            payment_id: Optional payment reference
            now: Enrollment time
        """
        if len(lesson_ids) != len(set(lesson_ids)):
            raise ValidationError("Lesson ids must be unique", field="lesson_ids")

        now = now or utcnow()
        enrollment = cls(
            student_id=student_id,
            course_id=course_id,
            enrolled_at=now,
            payment_id=payment_id,
            created_at=now,
            updated_at=now,
        )
        enrollment.lesson_progress = [
            LessonProgress(
                enrollment_id=enrollment.id,
                lesson_id=lesson_id,
                created_at=now,
                updated_at=now,
            )
            for lesson_id in lesson_ids
        ]
        enrollment.record_event(
            StudentEnrolledEvent(
                **enrollment._event_fields(now, student_id),
                student_id=student_id,
                course_id=course_id,
                lesson_count=len(lesson_ids),
                payment_id=payment_id,
                enrolled_at=now,
            )
        )
        return enrollment

    def validate_business_rules(self) -> bool:
        if self.status == EnrollmentStatus.COMPLETED and self.completed_at is None:
            raise ValidationError("Completed enrollments must record completion time", field="completed_at")
        lesson_ids = [p.lesson_id for p in self.lesson_progress]
        if len(lesson_ids) != len(set(lesson_ids)):
            raise ValidationError("One progress row per lesson", field="lesson_progress")
        return True

    def _event_fields(self, at: datetime, user_id: UUID | None) -> dict:
        return {
            "metadata": EventMetadata(service=self.SERVICE_NAME, timestamp=at, user_id=user_id),
            "aggregate_id": self.id,
            "aggregate_type": self.aggregate_type(),
        }

    # Queries

    def is_active(self) -> bool:
        return self.status == EnrollmentStatus.ACTIVE

    def get_progress(self, lesson_id: UUID) -> LessonProgress:
        """
        Progress row for a lesson.

        Raises:
            NotFoundError: If the lesson is not part of this enrollment
        """
        for progress in self.lesson_progress:
            if progress.lesson_id == lesson_id:
                return progress
        raise NotFoundError("LessonProgress", lesson_id, context={"enrollment_id": str(self.id)})

    def completed_lesson_count(self) -> int:
        return sum(1 for p in self.lesson_progress if p.is_completed())

    def calculate_progress(self) -> float:
        return calculate_percentage(self.completed_lesson_count(), len(self.lesson_progress))

    def all_lessons_completed(self) -> bool:
        return bool(self.lesson_progress) and all(p.is_completed() for p in self.lesson_progress)

    def completed_module_ids(self, module_lessons: dict[UUID, list[UUID]]) -> list[UUID]:
        """
        Modules whose lessons are all completed.

        Args:
            module_lessons: Module id to its lesson ids, in module order
        """
        completed = {p.lesson_id for p in self.lesson_progress if p.is_completed()}
        return [
            module_id
            for module_id, lesson_ids in module_lessons.items()
            if lesson_ids and all(lesson_id in completed for lesson_id in lesson_ids)
        ]

    def next_lesson_id(self, ordered_lesson_ids: list[UUID]) -> UUID | None:
        """First incomplete lesson in course order."""
        completed = {p.lesson_id for p in self.lesson_progress if p.is_completed()}
        return next((lesson_id for lesson_id in ordered_lesson_ids if lesson_id not in completed), None)

    def summarize(self, module_lessons: dict[UUID, list[UUID]]) -> EnrollmentProgressSummary:
        """Build the progress read model."""
        counts = {status: 0 for status in ProgressStatus}
        for progress in self.lesson_progress:
            counts[progress.status] += 1

        scores = [p.quiz_score for p in self.lesson_progress if p.quiz_score is not None]
        ordered_lessons = [lesson_id for lesson_ids in module_lessons.values() for lesson_id in lesson_ids]

        return EnrollmentProgressSummary(
            enrollment_id=self.id,
            status=self.status,
            progress_percentage=self.progress_percentage,
            total_lessons=len(self.lesson_progress),
            completed_lessons=counts[ProgressStatus.COMPLETED],
            in_progress_lessons=counts[ProgressStatus.IN_PROGRESS],
            not_started_lessons=counts[ProgressStatus.NOT_STARTED],
            total_time_spent_seconds=sum(p.time_spent_seconds for p in self.lesson_progress),
            average_quiz_score=round(sum(scores) / len(scores), 2) if scores else None,
            completed_module_ids=self.completed_module_ids(module_lessons),
            next_lesson_id=self.next_lesson_id(ordered_lessons),
            completed_at=self.completed_at,
            certificate_id=self.certificate_id,
        )

    # Mutations

    def sync_lessons(self, lesson_ids: list[UUID], now: datetime | None = None) -> list[LessonProgress]:
        """
        Add not-started rows for course lessons created after enrollment.

        Only active enrollments follow the course; completed and dropped
        enrollments keep the lessons they had.

        Args:
            lesson_ids: Every lesson currently in the course
            now: Creation time for the new rows

        Returns:
            The progress rows that were added
        """
        if not self.is_active():
            return []

        now = now or utcnow()
        known = {p.lesson_id for p in self.lesson_progress}
        added = [
            LessonProgress(
                enrollment_id=self.id,
                lesson_id=lesson_id,
                created_at=now,
                updated_at=now,
            )
            for lesson_id in dict.fromkeys(lesson_ids)
            if lesson_id not in known
        ]
        if added:
            self.lesson_progress.extend(added)
            self.progress_percentage = self.calculate_progress()
            self.mark_updated(now)
        return added

    def _require_active(self, action: str) -> None:
        if not self.is_active():
            raise ConflictError(
                f"Cannot {action} on a {self.status.value} enrollment",
                context={"enrollment_id": str(self.id), "status": self.status.value},
            )

    def update_lesson_progress(
        self,
        lesson_id: UUID,
        status: ProgressStatus | None = None,
        time_spent_seconds: int = 0,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> ProgressOutcome:
        """
        Merge a progress update into a lesson's row.

        Time is additive. The enrollment percentage is recomputed when a
        lesson completes for the first time, and the course completes when
        the last lesson does.

        Raises:
            ConflictError: If the enrollment is no longer active
            ValidationError: On a negative time delta
            NotFoundError: If the lesson is not part of this enrollment
        """
        now = now or utcnow()
        self._require_active("update progress")
        if time_spent_seconds < 0:
            raise ValidationError(
                "Time spent cannot be negative", field="time_spent_seconds", value=time_spent_seconds
            )

        progress = self.get_progress(lesson_id)
        previous_status = progress.status

        if time_spent_seconds:
            progress.add_time(time_spent_seconds, now)
        lesson_completed = progress.advance(status, now) if status is not None else False

        return self._after_progress_change(progress, previous_status, lesson_completed, actor_id, now)

    def record_grading_outcome(
        self,
        lesson_id: UUID,
        quiz_score: float | None = None,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> ProgressOutcome:
        """
        Apply a finalized grade to the owning lesson.

        Marks the lesson completed if it is not already and, for quiz
        lessons, records the score.
        """
        now = now or utcnow()
        self._require_active("record a grade")

        progress = self.get_progress(lesson_id)
        previous_status = progress.status

        if quiz_score is not None:
            progress.record_quiz_score(quiz_score, now)
        lesson_completed = progress.advance(ProgressStatus.COMPLETED, now)

        return self._after_progress_change(progress, previous_status, lesson_completed, actor_id, now)

    def _after_progress_change(
        self,
        progress: LessonProgress,
        previous_status: ProgressStatus,
        lesson_completed: bool,
        actor_id: UUID | None,
        now: datetime,
    ) -> ProgressOutcome:
        if lesson_completed:
            self.progress_percentage = self.calculate_progress()
        self.mark_updated(now)

        self.record_event(
            LessonProgressUpdatedEvent(
                **self._event_fields(now, actor_id),
                lesson_id=progress.lesson_id,
                previous_status=previous_status.value,
                new_status=progress.status.value,
                time_spent_seconds=progress.time_spent_seconds,
                progress_percentage=self.progress_percentage,
            )
        )

        course_completed = False
        if lesson_completed and self.all_lessons_completed():
            self.complete(actor_id, now)
            course_completed = True

        return ProgressOutcome(
            progress=progress,
            lesson_completed=lesson_completed,
            course_completed=course_completed,
        )

    def complete(self, actor_id: UUID | None = None, now: datetime | None = None) -> None:
        """
        Transition to completed.

        Raises:
            InvalidStateTransitionError: Unless the enrollment is active
            ConflictError: If lessons remain incomplete
        """
        now = now or utcnow()
        if not self.is_active():
            raise InvalidStateTransitionError(
                entity_type="Enrollment",
                from_state=self.status.value,
                to_state=EnrollmentStatus.COMPLETED.value,
            )
        if not self.all_lessons_completed():
            raise ConflictError(
                "All lessons must be completed before completing the course",
                context={"enrollment_id": str(self.id)},
            )

        self.status = EnrollmentStatus.COMPLETED
        self.completed_at = now
        self.progress_percentage = 100.0
        self.mark_updated(now)

        self.record_event(
            CourseCompletedEvent(
                **self._event_fields(now, actor_id),
                student_id=self.student_id,
                course_id=self.course_id,
                completed_at=now,
                time_to_completion_days=max((now - self.enrolled_at).days, 0),
            )
        )
        logger.info(
            "Course completed",
            enrollment_id=str(self.id),
            student_id=str(self.student_id),
            course_id=str(self.course_id),
        )

    def withdraw(
        self, reason: str | None = None, actor_id: UUID | None = None, now: datetime | None = None
    ) -> None:
        """
        Drop the enrollment. No progress mutation is accepted afterwards.

        Raises:
            InvalidStateTransitionError: Unless the enrollment is active
        """
        now = now or utcnow()
        if not self.is_active():
            raise InvalidStateTransitionError(
                entity_type="Enrollment",
                from_state=self.status.value,
                to_state=EnrollmentStatus.DROPPED.value,
            )

        self.status = EnrollmentStatus.DROPPED
        self.dropped_reason = reason
        self.mark_updated(now)

        self.record_event(
            EnrollmentDroppedEvent(
                **self._event_fields(now, actor_id),
                student_id=self.student_id,
                course_id=self.course_id,
                reason=reason,
                progress_at_withdrawal=self.progress_percentage,
            )
        )

    def attach_certificate(self, certificate: "Certificate", now: datetime | None = None) -> None:
        """
        Link the issued certificate.

        Raises:
            ConflictError: If a certificate is already linked
        """
        now = now or utcnow()
        if self.certificate_id is not None:
            raise ConflictError(
                "Certificate already issued for this enrollment",
                context={"enrollment_id": str(self.id), "certificate_id": str(self.certificate_id)},
            )

        self.certificate_id = certificate.id
        self.mark_updated(now)

        self.record_event(
            CertificateIssuedEvent(
                **self._event_fields(now, None),
                certificate_id=certificate.id,
                certificate_code=certificate.certificate_code,
                student_id=self.student_id,
                course_id=self.course_id,
                verification_url=certificate.verification_url,
                issued_at=certificate.issued_at,
            )
        )


def generate_certificate_code(at: datetime | None = None, rng: random.Random | None = None) -> str:
    """Human-readable certificate code: ``CERT-<BASE36 TIMESTAMP>-<RANDOM>``."""
    moment = at or utcnow()
    millis = int((moment - datetime(1970, 1, 1)).total_seconds() * 1000)
    return f"CERT-{to_base36(millis).upper()}-{random_base36(6, rng).upper()}"


class Certificate(AbstractEntity):
    """Completion certificate, issued exactly once per enrollment."""

    enrollment_id: UUID = Field(...)
    student_id: UUID = Field(...)
    course_id: UUID = Field(...)
    certificate_code: str = Field(..., min_length=1, max_length=64)
    pdf_url: str | None = Field(default=None)
    issued_at: datetime = Field(default_factory=utcnow)
    verification_url: str = Field(..., min_length=1)

    @classmethod
    def issue(
        cls,
        enrollment: Enrollment,
        app_base_url: str,
        now: datetime | None = None,
        rng: random.Random | None = None,
    ) -> "Certificate":
        """
        Issue a certificate for a completed enrollment.

        Raises:
            ConflictError: If the enrollment is not completed or already
                has a certificate
        """
        now = now or utcnow()
        if enrollment.status != EnrollmentStatus.COMPLETED:
            raise ConflictError(
                "Certificates are only issued for completed enrollments",
                context={"enrollment_id": str(enrollment.id), "status": enrollment.status.value},
            )
        if enrollment.certificate_id is not None:
            raise ConflictError(
                "Certificate already issued for this enrollment",
                context={"enrollment_id": str(enrollment.id)},
            )

        code = generate_certificate_code(now, rng)
        return cls(
            enrollment_id=enrollment.id,
            student_id=enrollment.student_id,
            course_id=enrollment.course_id,
            certificate_code=code,
            issued_at=now,
            verification_url=f"{app_base_url.rstrip('/')}/certificates/verify/{code}",
            created_at=now,
            updated_at=now,
        )

    def validate_business_rules(self) -> bool:
        if not self.certificate_code.startswith("CERT-"):
            raise ValidationError("Malformed certificate code", field="certificate_code")
        return True
