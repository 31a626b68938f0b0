"""
Learning Domain Events

Events related to course structure, enrollment progress, and assessments.
"""

from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID

from pydantic import Field

from shared.events.base import DomainEvent


# Course structure


class CourseCreatedEvent(DomainEvent):
    """Event emitted when a new course draft is created."""

    EVENT_TYPE: ClassVar[str] = "course.created"

    instructor_id: UUID = Field(...)
    title: str = Field(...)
    slug: str = Field(...)


class CourseStatusChangedEvent(DomainEvent):
    """Event emitted on any course lifecycle transition other than publishing."""

    EVENT_TYPE: ClassVar[str] = "course.status_changed"

    previous_status: str = Field(...)
    new_status: str = Field(...)


class CoursePublishedEvent(DomainEvent):
    """Event emitted when a course goes live."""

    EVENT_TYPE: ClassVar[str] = "course.published"

    instructor_id: UUID = Field(...)
    title: str = Field(...)
    published_at: datetime = Field(...)


class ModuleAddedEvent(DomainEvent):
    """Event emitted when a module is added to a course."""

    EVENT_TYPE: ClassVar[str] = "course.module_added"

    module_id: UUID = Field(...)
    title: str = Field(...)
    order_number: int = Field(...)


class ModulesReorderedEvent(DomainEvent):
    """Event emitted when a course's modules are reordered."""

    EVENT_TYPE: ClassVar[str] = "course.modules_reordered"

    ordering: list[dict[str, Any]] = Field(
        ..., description="Final ordering as [{'module_id', 'order_number'}]"
    )


class LessonAddedEvent(DomainEvent):
    """Event emitted when a lesson is added to a module."""

    EVENT_TYPE: ClassVar[str] = "course.lesson_added"

    module_id: UUID = Field(...)
    lesson_id: UUID = Field(...)
    title: str = Field(...)
    lesson_type: str = Field(...)
    order_number: int = Field(...)


class LessonsReorderedEvent(DomainEvent):
    """Event emitted when a module's lessons are reordered."""

    EVENT_TYPE: ClassVar[str] = "course.lessons_reordered"

    module_id: UUID = Field(...)
    ordering: list[dict[str, Any]] = Field(
        ..., description="Final ordering as [{'lesson_id', 'order_number'}]"
    )


class LessonContentProcessedEvent(DomainEvent):
    """Event emitted when a video lesson's processed content URL is recorded."""

    EVENT_TYPE: ClassVar[str] = "course.lesson_content_processed"

    module_id: UUID = Field(...)
    lesson_id: UUID = Field(...)
    content_url: str = Field(...)


# Enrollment and progress


class StudentEnrolledEvent(DomainEvent):
    """Event emitted when a student enrolls in a course."""

    EVENT_TYPE: ClassVar[str] = "enrollment.student_enrolled"

    student_id: UUID = Field(...)
    course_id: UUID = Field(...)
    lesson_count: int = Field(..., ge=0)
    payment_id: str | None = Field(default=None)
    enrolled_at: datetime = Field(...)


class LessonProgressUpdatedEvent(DomainEvent):
    """Event emitted when a lesson progress row changes."""

    EVENT_TYPE: ClassVar[str] = "enrollment.lesson_progress_updated"

    lesson_id: UUID = Field(...)
    previous_status: str = Field(...)
    new_status: str = Field(...)
    time_spent_seconds: int = Field(..., ge=0)
    progress_percentage: float = Field(..., ge=0, le=100)


class CourseCompletedEvent(DomainEvent):
    """Event emitted when an enrollment reaches completion."""

    EVENT_TYPE: ClassVar[str] = "enrollment.course_completed"

    student_id: UUID = Field(...)
    course_id: UUID = Field(...)
    completed_at: datetime = Field(...)
    time_to_completion_days: int = Field(..., ge=0)


class EnrollmentDroppedEvent(DomainEvent):
    """Event emitted when a student withdraws."""

    EVENT_TYPE: ClassVar[str] = "enrollment.dropped"

    student_id: UUID = Field(...)
    course_id: UUID = Field(...)
    reason: str | None = Field(default=None)
    progress_at_withdrawal: float = Field(..., ge=0, le=100)


class CertificateIssuedEvent(DomainEvent):
    """Event emitted when a completion certificate is issued."""

    EVENT_TYPE: ClassVar[str] = "enrollment.certificate_issued"

    certificate_id: UUID = Field(...)
    certificate_code: str = Field(...)
    student_id: UUID = Field(...)
    course_id: UUID = Field(...)
    verification_url: str = Field(...)
    issued_at: datetime = Field(...)


# Assessments


class QuizCreatedEvent(DomainEvent):
    """Event emitted when a quiz is created for a lesson."""

    EVENT_TYPE: ClassVar[str] = "assessment.quiz_created"

    lesson_id: UUID = Field(...)
    title: str = Field(...)
    quiz_type: str = Field(...)


class QuestionAddedEvent(DomainEvent):
    """Event emitted when a question is appended to a quiz."""

    EVENT_TYPE: ClassVar[str] = "assessment.question_added"

    question_id: UUID = Field(...)
    question_type: str = Field(...)
    order_number: int = Field(...)
    points: float = Field(...)


class QuizAttemptStartedEvent(DomainEvent):
    """Event emitted when a student starts a quiz attempt."""

    EVENT_TYPE: ClassVar[str] = "assessment.quiz_attempt_started"

    quiz_id: UUID = Field(...)
    student_id: UUID = Field(...)
    attempt_number: int = Field(..., ge=1)


class QuizSubmittedEvent(DomainEvent):
    """Event emitted when a quiz attempt is submitted and auto-graded."""

    EVENT_TYPE: ClassVar[str] = "assessment.quiz_submitted"

    quiz_id: UUID = Field(...)
    student_id: UUID = Field(...)
    score_percentage: float = Field(...)
    grading_status: str = Field(...)
    time_taken_seconds: int = Field(..., ge=0)


class SubmissionGradedEvent(DomainEvent):
    """Event emitted when a quiz or assignment submission receives a final grade."""

    EVENT_TYPE: ClassVar[str] = "assessment.submission_graded"

    submission_kind: str = Field(..., description="'quiz' or 'assignment'")
    student_id: UUID = Field(...)
    lesson_id: UUID = Field(...)
    score: float = Field(...)
    graded_by: UUID | None = Field(default=None)


class AssignmentCreatedEvent(DomainEvent):
    """Event emitted when an assignment is created."""

    EVENT_TYPE: ClassVar[str] = "assessment.assignment_created"

    lesson_id: UUID = Field(...)
    title: str = Field(...)
    due_date: datetime = Field(...)


class AssignmentSubmittedEvent(DomainEvent):
    """Event emitted when a student submits (or resubmits) an assignment."""

    EVENT_TYPE: ClassVar[str] = "assessment.assignment_submitted"

    assignment_id: UUID = Field(...)
    student_id: UUID = Field(...)
    is_late: bool = Field(...)
    revision_number: int = Field(..., ge=1)
    parent_submission_id: UUID | None = Field(default=None)


class RevisionRequestedEvent(DomainEvent):
    """Event emitted when a grader asks for a revision."""

    EVENT_TYPE: ClassVar[str] = "assessment.revision_requested"

    assignment_id: UUID = Field(...)
    student_id: UUID = Field(...)
    requested_by: UUID = Field(...)
