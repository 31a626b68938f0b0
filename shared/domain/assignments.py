"""
Assignment Domain

Assignment rules (deadline, late penalty, file policy) and the submission
state machine with revision chains.

    submitted -> under_review -> graded
    submitted -> graded
    submitted -> revision_requested
    under_review -> revision_requested
    revision_requested -> (new submission, revision + 1)

A revision is always a new row linked to its predecessor; the predecessor
stays untouched as the historical record.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import ClassVar
from uuid import UUID

from pydantic import Field

from shared.clock import utcnow
from shared.domain.entities import AggregateRoot
from shared.domain.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    ValidationError,
)
from shared.events.base import EventMetadata
from shared.events.learning_events import (
    AssignmentCreatedEvent,
    AssignmentSubmittedEvent,
    RevisionRequestedEvent,
    SubmissionGradedEvent,
)

FILE_TYPE_PATTERN = re.compile(r"^\.[a-zA-Z0-9]+$")
BYTES_PER_MB = 1024 * 1024


class AssignmentGradingStatus(str, Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    GRADED = "graded"
    REVISION_REQUESTED = "revision_requested"


_GRADABLE = frozenset({AssignmentGradingStatus.SUBMITTED, AssignmentGradingStatus.UNDER_REVIEW})


@dataclass(frozen=True)
class FileUpload:
    """A file as received from the caller, before upload."""

    file_name: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size_bytes(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return PurePosixPath(self.file_name).suffix.lower()


@dataclass(frozen=True)
class StoredFile:
    """A file after upload to object storage."""

    url: str
    name: str
    size_bytes: int


class Assignment(AggregateRoot):
    """Assignment attached to an assignment lesson."""

    SERVICE_NAME: ClassVar[str] = "assessment_service"

    lesson_id: UUID = Field(...)
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(default=None)
    instructions: str = Field(..., min_length=1)
    due_date: datetime = Field(...)
    late_submission_allowed: bool = Field(default=False)
    late_penalty_percentage: float = Field(default=0.0, ge=0, le=100)
    max_points: float = Field(..., gt=0)
    requires_file_upload: bool = Field(default=False)
    allowed_file_types: list[str] = Field(default_factory=list)
    max_file_size_mb: int = Field(default=10, gt=0)

    @classmethod
    def aggregate_type(cls) -> str:
        return "Assignment"

    @classmethod
    def create(
        cls,
        lesson_id: UUID,
        title: str,
        instructions: str,
        due_date: datetime,
        max_points: float,
        allowed_file_types: list[str],
        max_file_size_mb: int,
        description: str | None = None,
        late_submission_allowed: bool = False,
        late_penalty_percentage: float = 0.0,
        requires_file_upload: bool = False,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> "Assignment":
        """
        Create an assignment.

        Raises:
            ValidationError: If the due date is not in the future or any
                field is out of range
        """
        now = now or utcnow()
        title = (title or "").strip()
        if not title or len(title) > 255:
            raise ValidationError("Title must be between 1 and 255 characters", field="title")
        if not instructions or not instructions.strip():
            raise ValidationError("Instructions are required", field="instructions")
        if due_date <= now:
            raise ValidationError("Due date must be in the future", field="due_date", value=due_date)
        if late_penalty_percentage < 0 or late_penalty_percentage > 100:
            raise ValidationError(
                "Late penalty must be between 0 and 100",
                field="late_penalty_percentage",
                value=late_penalty_percentage,
            )
        if max_points <= 0:
            raise ValidationError("Max points must be positive", field="max_points", value=max_points)
        if max_file_size_mb <= 0:
            raise ValidationError(
                "Max file size must be positive", field="max_file_size_mb", value=max_file_size_mb
            )
        if not allowed_file_types:
            raise ValidationError("At least one allowed file type is required", field="allowed_file_types")
        for file_type in allowed_file_types:
            if not FILE_TYPE_PATTERN.match(file_type):
                raise ValidationError(
                    f"Invalid file type format: {file_type}",
                    field="allowed_file_types",
                    value=file_type,
                )

        assignment = cls(
            lesson_id=lesson_id,
            title=title,
            description=description,
            instructions=instructions.strip(),
            due_date=due_date,
            late_submission_allowed=late_submission_allowed,
            late_penalty_percentage=late_penalty_percentage,
            max_points=max_points,
            requires_file_upload=requires_file_upload,
            allowed_file_types=[t.lower() for t in allowed_file_types],
            max_file_size_mb=max_file_size_mb,
            created_at=now,
            updated_at=now,
        )
        assignment.record_event(
            AssignmentCreatedEvent(
                metadata=EventMetadata(service=cls.SERVICE_NAME, timestamp=now, user_id=actor_id),
                aggregate_id=assignment.id,
                aggregate_type=cls.aggregate_type(),
                lesson_id=lesson_id,
                title=title,
                due_date=due_date,
            )
        )
        return assignment

    def validate_business_rules(self) -> bool:
        for file_type in self.allowed_file_types:
            if not FILE_TYPE_PATTERN.match(file_type):
                raise ValidationError(f"Invalid file type format: {file_type}", field="allowed_file_types")
        return True

    def is_late(self, at: datetime) -> bool:
        return at > self.due_date

    def is_accepting_submissions(self, now: datetime) -> bool:
        """Open until the due date, or indefinitely when late work is allowed."""
        return now <= self.due_date or self.late_submission_allowed

    def validate_file(self, file_name: str, size_bytes: int) -> None:
        """
        Check extension (case-insensitive) and size against the policy.

        Raises:
            ValidationError: On a disallowed type or an oversized file
        """
        extension = PurePosixPath(file_name).suffix.lower()
        if extension not in {t.lower() for t in self.allowed_file_types}:
            raise ValidationError(
                f"File type not allowed. Allowed types: {', '.join(self.allowed_file_types)}",
                field="file",
                value=file_name,
            )
        if size_bytes < 0:
            raise ValidationError("File size cannot be negative", field="file", value=size_bytes)
        if size_bytes > self.max_file_size_mb * BYTES_PER_MB:
            raise ValidationError(
                f"File size exceeds maximum of {self.max_file_size_mb}MB",
                field="file",
                value=size_bytes,
            )

    def validate_submission(
        self,
        file_name: str | None,
        file_size_bytes: int | None,
        submission_text: str | None,
        now: datetime,
    ) -> None:
        """
        Everything that must hold before any upload is attempted.

        Raises:
            ConflictError: If the assignment no longer accepts submissions
            ValidationError: On missing content or a file policy violation
        """
        if not self.is_accepting_submissions(now):
            raise ConflictError(
                "Assignment is no longer accepting submissions",
                context={"assignment_id": str(self.id)},
            )
        has_text = bool(submission_text and submission_text.strip())
        if self.requires_file_upload and file_name is None:
            raise ValidationError("File upload is required for this assignment", field="file")
        if file_name is None and not has_text:
            raise ValidationError(
                "Either file upload or submission text is required", field="submission_text"
            )
        if file_name is not None:
            self.validate_file(file_name, file_size_bytes or 0)

    def calculate_final_score(self, points_awarded: float, is_late: bool) -> float:
        """Apply the late penalty once, to the raw points."""
        if not is_late or self.late_penalty_percentage == 0:
            return round(points_awarded, 2)
        penalty = points_awarded * self.late_penalty_percentage / 100
        return round(max(points_awarded - penalty, 0.0), 2)


class AssignmentSubmission(AggregateRoot):
    """One submission (or revision) of an assignment by a student."""

    SERVICE_NAME: ClassVar[str] = "assessment_service"

    assignment_id: UUID = Field(...)
    student_id: UUID = Field(...)
    enrollment_id: UUID = Field(...)
    file_url: str | None = Field(default=None)
    file_name: str | None = Field(default=None)
    file_size_bytes: int | None = Field(default=None, ge=0)
    submission_text: str | None = Field(default=None)
    submitted_at: datetime = Field(default_factory=utcnow)
    is_late: bool = Field(default=False)
    points_awarded: float | None = Field(default=None, ge=0)
    final_score: float | None = Field(default=None, ge=0)
    feedback: str | None = Field(default=None)
    grading_status: AssignmentGradingStatus = Field(default=AssignmentGradingStatus.SUBMITTED)
    graded_at: datetime | None = Field(default=None)
    graded_by: UUID | None = Field(default=None)
    revision_number: int = Field(default=1, ge=1)
    parent_submission_id: UUID | None = Field(default=None)

    @classmethod
    def aggregate_type(cls) -> str:
        return "AssignmentSubmission"

    @classmethod
    def submit(
        cls,
        assignment: Assignment,
        student_id: UUID,
        enrollment_id: UUID,
        submission_text: str | None = None,
        stored_file: StoredFile | None = None,
        parent: "AssignmentSubmission | None" = None,
        now: datetime | None = None,
    ) -> "AssignmentSubmission":
        """
        Build a new submission, chained to ``parent`` when it is a revision.

        Raises:
            ValidationError: If the parent belongs to another student or assignment
            ConflictError: If the parent has no outstanding revision request
        """
        now = now or utcnow()
        revision_number = cls.next_revision_number(parent, assignment, student_id)

        text = submission_text.strip() if submission_text and submission_text.strip() else None
        submission = cls(
            assignment_id=assignment.id,
            student_id=student_id,
            enrollment_id=enrollment_id,
            file_url=stored_file.url if stored_file else None,
            file_name=stored_file.name if stored_file else None,
            file_size_bytes=stored_file.size_bytes if stored_file else None,
            submission_text=text,
            submitted_at=now,
            is_late=assignment.is_late(now),
            revision_number=revision_number,
            parent_submission_id=parent.id if parent else None,
            created_at=now,
            updated_at=now,
        )
        submission.validate_business_rules()

        submission.record_event(
            AssignmentSubmittedEvent(
                **submission._event_fields(now, student_id),
                assignment_id=assignment.id,
                student_id=student_id,
                is_late=submission.is_late,
                revision_number=revision_number,
                parent_submission_id=submission.parent_submission_id,
            )
        )
        return submission

    @staticmethod
    def next_revision_number(
        parent: "AssignmentSubmission | None", assignment: Assignment, student_id: UUID
    ) -> int:
        """
        Revision number for a submission following ``parent``.

        Raises:
            ValidationError: If the parent belongs to another student or assignment
            ConflictError: If the parent has no outstanding revision request
        """
        if parent is None:
            return 1
        if parent.student_id != student_id or parent.assignment_id != assignment.id:
            raise ValidationError(
                "Parent submission belongs to a different student or assignment",
                field="parent_submission_id",
                value=parent.id,
            )
        if parent.grading_status != AssignmentGradingStatus.REVISION_REQUESTED:
            raise ConflictError(
                "Parent submission has no outstanding revision request",
                context={
                    "parent_submission_id": str(parent.id),
                    "status": parent.grading_status.value,
                },
            )
        return parent.revision_number + 1

    def validate_business_rules(self) -> bool:
        if self.file_url is None and not self.submission_text:
            raise ValidationError(
                "Either file upload or submission text is required", field="submission_text"
            )
        if self.revision_number > 1 and self.parent_submission_id is None:
            raise ValidationError("Revisions must reference their parent", field="parent_submission_id")
        return True

    def _event_fields(self, at: datetime, user_id: UUID | None) -> dict:
        return {
            "metadata": EventMetadata(service=self.SERVICE_NAME, timestamp=at, user_id=user_id),
            "aggregate_id": self.id,
            "aggregate_type": self.aggregate_type(),
        }

    def _transition(self, target: AssignmentGradingStatus, allowed: frozenset) -> None:
        if self.grading_status not in allowed:
            raise InvalidStateTransitionError(
                entity_type="AssignmentSubmission",
                from_state=self.grading_status.value,
                to_state=target.value,
            )
        self.grading_status = target

    def start_review(self, reviewer_id: UUID, now: datetime | None = None) -> None:
        """Claim the submission for review."""
        self._transition(
            AssignmentGradingStatus.UNDER_REVIEW, frozenset({AssignmentGradingStatus.SUBMITTED})
        )
        self.graded_by = reviewer_id
        self.mark_updated(now)

    def grade(
        self,
        assignment: Assignment,
        points_awarded: float,
        grader_id: UUID,
        feedback: str | None = None,
        now: datetime | None = None,
    ) -> float:
        """
        Record the grade and the late-adjusted final score.

        ``points_awarded`` keeps the raw grade; the penalty lives only in
        ``final_score`` so it is never applied twice.

        Raises:
            ConflictError: If already graded or awaiting a revision
            ValidationError: If points fall outside [0, max_points]
        """
        now = now or utcnow()
        if self.grading_status == AssignmentGradingStatus.GRADED:
            raise ConflictError(
                "Submission has already been graded",
                context={"submission_id": str(self.id)},
            )
        if points_awarded < 0 or points_awarded > assignment.max_points:
            raise ValidationError(
                f"Points awarded must be between 0 and {assignment.max_points}",
                field="points_awarded",
                value=points_awarded,
            )
        self._transition(AssignmentGradingStatus.GRADED, _GRADABLE)

        self.points_awarded = points_awarded
        self.final_score = assignment.calculate_final_score(points_awarded, self.is_late)
        self.feedback = feedback
        self.graded_at = now
        self.graded_by = grader_id
        self.mark_updated(now)

        self.record_event(
            SubmissionGradedEvent(
                **self._event_fields(now, grader_id),
                submission_kind="assignment",
                student_id=self.student_id,
                lesson_id=assignment.lesson_id,
                score=self.final_score,
                graded_by=grader_id,
            )
        )
        return self.final_score

    def request_revision(
        self, feedback: str, grader_id: UUID, now: datetime | None = None
    ) -> None:
        """
        Ask the student to resubmit.

        Raises:
            ValidationError: If no feedback is given
            ConflictError: Unless the submission is submitted or under review
        """
        now = now or utcnow()
        if not feedback or not feedback.strip():
            raise ValidationError("Feedback is required when requesting a revision", field="feedback")
        if self.grading_status == AssignmentGradingStatus.REVISION_REQUESTED:
            raise ConflictError(
                "Revision already requested for this submission",
                context={"submission_id": str(self.id)},
            )
        self._transition(AssignmentGradingStatus.REVISION_REQUESTED, _GRADABLE)

        self.points_awarded = None
        self.final_score = None
        self.feedback = feedback.strip()
        self.graded_at = now
        self.graded_by = grader_id
        self.mark_updated(now)

        self.record_event(
            RevisionRequestedEvent(
                **self._event_fields(now, grader_id),
                assignment_id=self.assignment_id,
                student_id=self.student_id,
                requested_by=grader_id,
            )
        )


def can_submit_assignment(
    assignment: Assignment, latest: AssignmentSubmission | None, now: datetime
) -> bool:
    """Open assignment, and either no prior submission or a pending revision request."""
    if not assignment.is_accepting_submissions(now):
        return False
    return latest is None or latest.grading_status == AssignmentGradingStatus.REVISION_REQUESTED


@dataclass(frozen=True)
class StudentSubmissionSummary:
    """A student's standing on one assignment."""

    assignment_id: UUID
    student_id: UUID
    submission_count: int
    latest_submission: AssignmentSubmission | None
    revision_requested: bool
    can_submit: bool
