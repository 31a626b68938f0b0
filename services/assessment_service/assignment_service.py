"""
Assignment Service

Assignment engine: authoring, file-validated submission with upload
compensation, review, grading with late penalty, and revision chains.
"""

from datetime import datetime
from uuid import UUID, uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.assessment_service.repository import AssignmentRepository
from services.course_service.repository import CourseRepository, LessonContext
from services.enrollment_service.enrollment_service import EnrollmentService
from services.enrollment_service.repository import EnrollmentRepository
from shared.clock import Clock, utcnow
from shared.config import Settings, get_settings
from shared.database.errors import persistence_guard
from shared.domain.assignments import (
    Assignment,
    AssignmentGradingStatus,
    AssignmentSubmission,
    FileUpload,
    StoredFile,
    StudentSubmissionSummary,
    can_submit_assignment,
)
from shared.domain.courses import LessonType
from shared.domain.enrollment import Enrollment
from shared.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from shared.events.outbox import Outbox
from shared.security.access import AccessPolicy, Actor, access_policy
from shared.storage.object_store import HttpObjectStorageClient, ObjectStorageClient

logger = structlog.get_logger(__name__)


class AssignmentService:
    """
    Service orchestrating assignments and their submissions.

    Submission is all-or-nothing with its file: every check runs before the
    upload, and an uploaded object is removed again if the row cannot be
    stored.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        storage: ObjectStorageClient | None = None,
        outbox: Outbox | None = None,
        settings: Settings | None = None,
        clock: Clock = utcnow,
        policy: AccessPolicy = access_policy,
    ):
        """
        Initialize assignment service.

        Args:
            db_session: Database session
            storage: Object storage for submission files
            outbox: Outbox for domain events
            settings: Application settings (defaults to cached settings)
            clock: Source of the current UTC time
            policy: Ownership checks
        """
        self.db = db_session
        self.repository = AssignmentRepository(db_session)
        self.courses = CourseRepository(db_session)
        self.enrollments = EnrollmentRepository(db_session)
        self.storage = storage or HttpObjectStorageClient()
        self.outbox = outbox or Outbox()
        self.settings = settings or get_settings()
        self.clock = clock
        self.policy = policy
        self.progress = EnrollmentService(
            db_session,
            outbox=self.outbox,
            settings=self.settings,
            clock=clock,
            policy=policy,
        )

    async def _lesson_context(self, lesson_id: UUID) -> LessonContext:
        context = await self.courses.get_lesson_context(lesson_id)
        if context is None:
            raise NotFoundError("Lesson", lesson_id)
        return context

    async def _load_assignment(self, assignment_id: UUID) -> Assignment:
        assignment = await self.repository.get_assignment(assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment", assignment_id)
        return assignment

    async def _load_submission(
        self, submission_id: UUID, for_update: bool = False
    ) -> AssignmentSubmission:
        submission = await self.repository.get_submission(submission_id, for_update=for_update)
        if submission is None:
            raise NotFoundError("AssignmentSubmission", submission_id)
        return submission

    async def _load_for_grading(
        self, actor: Actor, submission_id: UUID, action: str
    ) -> tuple[AssignmentSubmission, Assignment]:
        submission = await self._load_submission(submission_id, for_update=True)
        assignment = await self._load_assignment(submission.assignment_id)
        context = await self._lesson_context(assignment.lesson_id)
        self.policy.ensure_course_manager(actor, context.instructor_id, "assignment_submission", action)
        return submission, assignment

    async def _active_enrollment(self, student_id: UUID, course_id: UUID) -> Enrollment:
        enrollment = await self.enrollments.find_by_student_and_course(student_id, course_id)
        if enrollment is None or not enrollment.is_active():
            raise AuthorizationError(
                "Student must be actively enrolled in the course",
                resource="assignment",
                action="submit",
            )
        return enrollment

    async def _save(self, submission: AssignmentSubmission) -> None:
        await self.repository.save_submission(submission)
        await self.outbox.stage(self.db, submission.pull_events())

    @persistence_guard("create_assignment")
    async def create_assignment(
        self,
        actor: Actor,
        lesson_id: UUID,
        title: str,
        instructions: str,
        due_date: datetime,
        max_points: float,
        allowed_file_types: list[str],
        max_file_size_mb: int | None = None,
        description: str | None = None,
        late_submission_allowed: bool = False,
        late_penalty_percentage: float = 0.0,
        requires_file_upload: bool = False,
    ) -> Assignment:
        """
        Create an assignment for an assignment lesson.

        Args:
            max_file_size_mb: Per-file limit; defaults to the configured limit

        Raises:
            NotFoundError: If the lesson does not exist
            AuthorizationError: If the caller does not manage the course
            ValidationError: If the lesson is not an assignment lesson, the
                due date is not in the future, or a field is out of range
        """
        context = await self._lesson_context(lesson_id)
        self.policy.ensure_course_manager(actor, context.instructor_id, "assignment", "create")
        if context.lesson.lesson_type != LessonType.ASSIGNMENT:
            raise ValidationError(
                "Assignments can only be attached to assignment lessons",
                field="lesson_id",
                value=str(lesson_id),
            )

        assignment = Assignment.create(
            lesson_id=lesson_id,
            title=title,
            instructions=instructions,
            due_date=due_date,
            max_points=max_points,
            allowed_file_types=allowed_file_types,
            max_file_size_mb=(
                max_file_size_mb
                if max_file_size_mb is not None
                else self.settings.default_max_file_size_mb
            ),
            description=description,
            late_submission_allowed=late_submission_allowed,
            late_penalty_percentage=late_penalty_percentage,
            requires_file_upload=requires_file_upload,
            actor_id=actor.user_id,
            now=self.clock(),
        )
        await self.repository.insert_assignment(assignment)
        await self.outbox.stage(self.db, assignment.pull_events())

        logger.info(
            "Assignment created",
            assignment_id=str(assignment.id),
            lesson_id=str(lesson_id),
            due_date=assignment.due_date.isoformat(),
        )
        return assignment

    async def _resolve_parent(
        self,
        assignment: Assignment,
        student_id: UUID,
        parent_submission_id: UUID | None,
    ) -> AssignmentSubmission | None:
        """
        The submission a new one supersedes.

        Without an explicit parent, the student's latest submission is used
        when it awaits a revision; any other latest submission blocks a new one.
        """
        if parent_submission_id is not None:
            parent = await self._load_submission(parent_submission_id)
        else:
            latest = await self.repository.get_latest_submission(assignment.id, student_id)
            if latest is None:
                return None
            if latest.grading_status != AssignmentGradingStatus.REVISION_REQUESTED:
                raise ConflictError(
                    "A submission for this assignment is already pending or graded",
                    context={
                        "assignment_id": str(assignment.id),
                        "latest_submission_id": str(latest.id),
                        "status": latest.grading_status.value,
                    },
                )
            parent = latest

        AssignmentSubmission.next_revision_number(parent, assignment, student_id)
        return parent

    async def _discard_upload(self, key: str) -> None:
        try:
            await self.storage.delete_file(key)
        except ExternalServiceError as e:
            logger.error(
                "Failed to remove uploaded file after aborted submission",
                key=key,
                error=str(e),
            )

    @persistence_guard("submit_assignment")
    async def submit_assignment(
        self,
        actor: Actor,
        assignment_id: UUID,
        submission_text: str | None = None,
        file: FileUpload | None = None,
        parent_submission_id: UUID | None = None,
    ) -> AssignmentSubmission:
        """
        Submit (or resubmit) work for an assignment.

        Process:
        1. Require an active enrollment in the assignment's course
        2. Validate content, file policy, and revision chain
        3. Upload the file, if any
        4. Insert the row; on failure remove the uploaded object again

        Args:
            actor: The submitting student
            assignment_id: Assignment UUID
            submission_text: Optional text answer
            file: Optional file upload
            parent_submission_id: Submission this one revises; inferred from
                an outstanding revision request when omitted

        Returns:
            AssignmentSubmission: The stored submission

        Raises:
            NotFoundError: If the assignment or parent submission does not exist
            AuthorizationError: If the caller is not an actively enrolled student
            ValidationError: On missing content or a file policy violation
            ConflictError: If submissions are closed or a non-revisable
                submission already exists
            ExternalServiceError: If the file upload fails
        """
        assignment = await self._load_assignment(assignment_id)
        context = await self._lesson_context(assignment.lesson_id)
        enrollment = await self._active_enrollment(actor.user_id, context.course_id)

        assignment.validate_submission(
            file_name=file.file_name if file else None,
            file_size_bytes=file.size_bytes if file else None,
            submission_text=submission_text,
            now=self.clock(),
        )
        parent = await self._resolve_parent(assignment, actor.user_id, parent_submission_id)

        stored_file: StoredFile | None = None
        key: str | None = None
        if file is not None:
            key = f"assignments/{assignment_id}/{actor.user_id}/{uuid4().hex}{file.extension}"
            url = await self.storage.upload_file(key, file.content, file.content_type)
            stored_file = StoredFile(url=url, name=file.file_name, size_bytes=file.size_bytes)

        try:
            submission = AssignmentSubmission.submit(
                assignment,
                student_id=actor.user_id,
                enrollment_id=enrollment.id,
                submission_text=submission_text,
                stored_file=stored_file,
                parent=parent,
                now=self.clock(),
            )
            await self.repository.insert_submission(submission)
            await self.outbox.stage(self.db, submission.pull_events())
        except Exception:
            if key is not None:
                await self._discard_upload(key)
            raise

        if submission.is_late:
            logger.warning(
                "Late assignment submission",
                assignment_id=str(assignment_id),
                submission_id=str(submission.id),
                student_id=str(actor.user_id),
            )
        logger.info(
            "Assignment submitted",
            assignment_id=str(assignment_id),
            submission_id=str(submission.id),
            revision_number=submission.revision_number,
            has_file=stored_file is not None,
        )
        return submission

    @persistence_guard("start_review")
    async def start_review(self, actor: Actor, submission_id: UUID) -> AssignmentSubmission:
        """
        Raises:
            InvalidStateTransitionError: Unless the submission is freshly submitted
        """
        submission, _ = await self._load_for_grading(actor, submission_id, "review")
        submission.start_review(actor.user_id, now=self.clock())
        await self._save(submission)

        logger.info("Assignment review started", submission_id=str(submission_id))
        return submission

    @persistence_guard("grade_assignment")
    async def grade_assignment(
        self,
        actor: Actor,
        submission_id: UUID,
        points_awarded: float,
        feedback: str | None = None,
    ) -> AssignmentSubmission:
        """
        Grade a submission and mark its lesson complete.

        The late penalty is applied once to the raw points and kept in
        ``final_score``.

        Raises:
            NotFoundError: If the submission does not exist
            AuthorizationError: If the caller does not manage the course
            ValidationError: If points fall outside [0, max_points]
            ConflictError: If already graded or awaiting a revision
        """
        submission, assignment = await self._load_for_grading(actor, submission_id, "grade")
        submission.grade(
            assignment,
            points_awarded=points_awarded,
            grader_id=actor.user_id,
            feedback=feedback,
            now=self.clock(),
        )
        await self._save(submission)
        await self.progress.record_grading_outcome(
            submission.enrollment_id, assignment.lesson_id, grader_id=actor.user_id
        )

        logger.info(
            "Assignment graded",
            submission_id=str(submission_id),
            points_awarded=points_awarded,
            final_score=submission.final_score,
            is_late=submission.is_late,
        )
        return submission

    @persistence_guard("request_revision")
    async def request_revision(
        self, actor: Actor, submission_id: UUID, feedback: str
    ) -> AssignmentSubmission:
        """
        Ask the student to resubmit. The submission row stays as the record.

        Raises:
            ValidationError: If no feedback is given
            ConflictError: If already graded or a revision was already requested
        """
        submission, _ = await self._load_for_grading(actor, submission_id, "request_revision")
        submission.request_revision(feedback, grader_id=actor.user_id, now=self.clock())
        await self._save(submission)

        logger.info(
            "Revision requested",
            submission_id=str(submission_id),
            requested_by=str(actor.user_id),
        )
        return submission

    async def can_submit_assignment(self, assignment_id: UUID, student_id: UUID) -> bool:
        assignment = await self._load_assignment(assignment_id)
        latest = await self.repository.get_latest_submission(assignment_id, student_id)
        return can_submit_assignment(assignment, latest, self.clock())

    async def get_student_submission_summary(
        self, actor: Actor, assignment_id: UUID, student_id: UUID
    ) -> StudentSubmissionSummary:
        """
        Raises:
            NotFoundError: If the assignment does not exist
            AuthorizationError: Unless the caller is the student, the course
                instructor, or an admin
        """
        assignment = await self._load_assignment(assignment_id)
        context = await self._lesson_context(assignment.lesson_id)
        self.policy.ensure_learner_record_access(
            actor, student_id, context.instructor_id, "assignment", "view_submissions"
        )

        submissions = await self.repository.list_submissions(assignment_id, student_id)
        latest = submissions[-1] if submissions else None
        return StudentSubmissionSummary(
            assignment_id=assignment_id,
            student_id=student_id,
            submission_count=len(submissions),
            latest_submission=latest,
            revision_requested=(
                latest is not None
                and latest.grading_status == AssignmentGradingStatus.REVISION_REQUESTED
            ),
            can_submit=can_submit_assignment(assignment, latest, self.clock()),
        )
