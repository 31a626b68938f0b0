"""
Enrollment Service

Enrollment and progress engine: enrollment, lesson progress, completion
detection, withdrawal, certificate issuance, and the grading-completion
hook used by the assessment engines.
"""

import random
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.course_service.repository import CourseRepository
from services.enrollment_service.certificate_service import CertificateService
from services.enrollment_service.repository import EnrollmentRepository
from shared.clock import Clock, utcnow
from shared.config import Settings, get_settings
from shared.database.errors import persistence_guard
from shared.domain.courses import CourseStatus
from shared.domain.enrollment import (
    Certificate,
    Enrollment,
    EnrollmentEligibility,
    EnrollmentProgressSummary,
    ProgressOutcome,
    ProgressStatus,
)
from shared.domain.exceptions import ConflictError, NotFoundError
from shared.events.outbox import Outbox
from shared.security.access import AccessPolicy, Actor, access_policy

logger = structlog.get_logger(__name__)

ALREADY_ENROLLED = "Student is already enrolled in this course"
NOT_PUBLISHED = "Course is not published"
ENROLLMENT_FULL = "Course has reached its enrollment limit"


class EnrollmentService:
    """
    Service orchestrating enrollment and progress tracking.

    Implements:
    - Enrollment guarded by the (student, course) unique constraint
    - Additive progress merging with derived percentage
    - Course completion with exactly-once certificate issuance
    - Grading-completion hook for quizzes and assignments
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
        Initialize enrollment service.

        Args:
            db_session: Database session
            outbox: Outbox for domain events
            settings: Application settings (defaults to cached settings)
            clock: Source of the current UTC time
            rng: Random source for certificate codes
            policy: Ownership checks
        """
        self.db = db_session
        self.repository = EnrollmentRepository(db_session)
        self.courses = CourseRepository(db_session)
        self.certificates = CertificateService(db_session, settings, clock, rng)
        self.outbox = outbox or Outbox()
        self.settings = settings or get_settings()
        self.clock = clock
        self.policy = policy

    async def _load(self, enrollment_id: UUID, for_update: bool = False) -> Enrollment:
        enrollment = await self.repository.get_enrollment(enrollment_id, for_update=for_update)
        if enrollment is None:
            raise NotFoundError("Enrollment", enrollment_id)
        return enrollment

    async def _sync_lessons(self, enrollment: Enrollment, persist: bool) -> None:
        """Give an active enrollment rows for lessons added since it started."""
        if not enrollment.is_active():
            return
        structure = await self.courses.get_module_lesson_ids(enrollment.course_id)
        lesson_ids = [lesson_id for lesson_ids in structure.values() for lesson_id in lesson_ids]
        added = enrollment.sync_lessons(lesson_ids, now=self.clock())
        if added and persist:
            await self.repository.insert_progress_rows(added)
            logger.info(
                "Progress rows added for new lessons",
                enrollment_id=str(enrollment.id),
                lesson_count=len(added),
                progress_percentage=enrollment.progress_percentage,
            )

    async def _load_for_progress(self, enrollment_id: UUID) -> Enrollment:
        enrollment = await self._load(enrollment_id, for_update=True)
        await self._sync_lessons(enrollment, persist=True)
        return enrollment

    async def _commit_changes(self, enrollment: Enrollment) -> None:
        await self.repository.save_enrollment(enrollment)
        await self.outbox.stage(self.db, enrollment.pull_events())

    async def get_enrollment(self, enrollment_id: UUID) -> Enrollment:
        """
        Raises:
            NotFoundError: If the enrollment does not exist
        """
        return await self._load(enrollment_id)

    async def find_enrollment(self, student_id: UUID, course_id: UUID) -> Enrollment | None:
        return await self.repository.find_by_student_and_course(student_id, course_id)

    async def check_enrollment_eligibility(
        self, student_id: UUID, course_id: UUID
    ) -> EnrollmentEligibility:
        """
        Collect every reason the student may not enroll.

        Read-only; ``enroll_student`` still relies on the unique constraint
        for duplicates.

        Raises:
            NotFoundError: If the course does not exist
        """
        course_row = await self.courses.get_course_row(course_id)
        if course_row is None:
            raise NotFoundError("Course", course_id)

        reasons: list[str] = []
        if course_row.status != CourseStatus.PUBLISHED.value:
            reasons.append(NOT_PUBLISHED)
        if await self.repository.count_enrollments(student_id, course_id) > 0:
            reasons.append(ALREADY_ENROLLED)
        if course_row.enrollment_limit is not None:
            active = await self.repository.count_active_enrollments(course_id)
            if active >= course_row.enrollment_limit:
                reasons.append(ENROLLMENT_FULL)

        return EnrollmentEligibility(eligible=not reasons, reasons=reasons)

    @persistence_guard("enroll_student")
    async def enroll_student(
        self,
        actor: Actor,
        student_id: UUID,
        course_id: UUID,
        payment_id: str | None = None,
    ) -> Enrollment:
        """
        Enroll a student in a published course.

        Process:
        1. Check the caller and the course state
        2. Create one not-started progress row per lesson
        3. Insert; the unique (student, course) constraint rejects duplicates
        4. Stage events

        Args:
            actor: The student (or an admin enrolling on their behalf)
            student_id: Student UUID
            course_id: Course UUID
            payment_id: Optional payment reference

        Returns:
            Enrollment: New active enrollment at 0% progress

        Raises:
            AuthorizationError: If the caller is neither the student nor an admin
            NotFoundError: If the course does not exist
            ConflictError: If the course is not published, is full, or the
                student is already enrolled
        """
        self.policy.ensure_student_self(actor, student_id, "enrollment", "enroll", allow_admin=True)

        logger.info("Starting enrollment", student_id=str(student_id), course_id=str(course_id))

        course_row = await self.courses.get_course_row(course_id)
        if course_row is None:
            raise NotFoundError("Course", course_id)
        if course_row.status != CourseStatus.PUBLISHED.value:
            raise ConflictError(NOT_PUBLISHED, context={"course_id": str(course_id)})
        if course_row.enrollment_limit is not None:
            active = await self.repository.count_active_enrollments(course_id)
            if active >= course_row.enrollment_limit:
                raise ConflictError(ENROLLMENT_FULL, context={"course_id": str(course_id)})

        structure = await self.courses.get_module_lesson_ids(course_id)
        lesson_ids = [lesson_id for lesson_ids in structure.values() for lesson_id in lesson_ids]

        enrollment = Enrollment.enroll(
            student_id=student_id,
            course_id=course_id,
            lesson_ids=lesson_ids,
            payment_id=payment_id,
            now=self.clock(),
        )
        await self.repository.insert_enrollment(enrollment)
        await self.outbox.stage(self.db, enrollment.pull_events())

        logger.info(
            "Student enrolled",
            enrollment_id=str(enrollment.id),
            student_id=str(student_id),
            course_id=str(course_id),
            lesson_count=len(lesson_ids),
        )
        return enrollment

    @persistence_guard("update_lesson_progress")
    async def update_lesson_progress(
        self,
        actor: Actor,
        enrollment_id: UUID,
        lesson_id: UUID,
        status: ProgressStatus | None = None,
        time_spent_seconds: int = 0,
    ) -> ProgressOutcome:
        """
        Merge a progress update for one lesson.

        Time is additive; completion is sticky. Completing the last lesson
        completes the enrollment and issues the certificate.

        Raises:
            NotFoundError: If the enrollment or lesson progress does not exist
            AuthorizationError: If the caller is not the enrolled student
            ConflictError: If the enrollment is dropped or completed
            ValidationError: On a negative time delta
        """
        enrollment = await self._load(enrollment_id, for_update=True)
        self.policy.ensure_student_self(
            actor, enrollment.student_id, "lesson_progress", "update", allow_admin=True
        )
        await self._sync_lessons(enrollment, persist=True)

        outcome = enrollment.update_lesson_progress(
            lesson_id,
            status=status,
            time_spent_seconds=time_spent_seconds,
            actor_id=actor.user_id,
            now=self.clock(),
        )
        if outcome.course_completed:
            await self.certificates.issue(enrollment)

        await self._commit_changes(enrollment)

        logger.info(
            "Lesson progress updated",
            enrollment_id=str(enrollment_id),
            lesson_id=str(lesson_id),
            status=outcome.progress.status.value,
            progress_percentage=enrollment.progress_percentage,
            course_completed=outcome.course_completed,
        )
        return outcome

    @persistence_guard("record_grading_outcome")
    async def record_grading_outcome(
        self,
        enrollment_id: UUID,
        lesson_id: UUID,
        quiz_score: float | None = None,
        grader_id: UUID | None = None,
    ) -> ProgressOutcome | None:
        """
        Grading-completion hook.

        Marks the graded lesson completed and, for quiz lessons, records the
        score. Hooks for enrollments that are no longer active are skipped.

        Returns:
            ProgressOutcome, or None when skipped
        """
        enrollment = await self._load_for_progress(enrollment_id)
        if not enrollment.is_active():
            logger.info(
                "Skipping grading outcome for inactive enrollment",
                enrollment_id=str(enrollment_id),
                lesson_id=str(lesson_id),
                status=enrollment.status.value,
            )
            return None

        outcome = enrollment.record_grading_outcome(
            lesson_id, quiz_score=quiz_score, actor_id=grader_id, now=self.clock()
        )
        if outcome.course_completed:
            await self.certificates.issue(enrollment)

        await self._commit_changes(enrollment)

        logger.info(
            "Grading outcome recorded",
            enrollment_id=str(enrollment_id),
            lesson_id=str(lesson_id),
            quiz_score=quiz_score,
            course_completed=outcome.course_completed,
        )
        return outcome

    @persistence_guard("withdraw_enrollment")
    async def withdraw_enrollment(
        self, actor: Actor, enrollment_id: UUID, reason: str | None = None
    ) -> Enrollment:
        """
        Drop an active enrollment. Later progress updates are rejected.

        Raises:
            InvalidStateTransitionError: If the enrollment is not active
        """
        enrollment = await self._load(enrollment_id, for_update=True)
        self.policy.ensure_student_self(
            actor, enrollment.student_id, "enrollment", "withdraw", allow_admin=True
        )

        enrollment.withdraw(reason, actor_id=actor.user_id, now=self.clock())
        await self._commit_changes(enrollment)

        logger.info("Enrollment withdrawn", enrollment_id=str(enrollment_id), reason=reason)
        return enrollment

    @persistence_guard("issue_certificate")
    async def issue_certificate(self, enrollment_id: UUID) -> Certificate:
        """
        Issue the certificate for a completed enrollment.

        Raises:
            ConflictError: If it was already issued or the enrollment is not completed
        """
        enrollment = await self._load(enrollment_id, for_update=True)
        certificate = await self.certificates.issue(enrollment)
        await self._commit_changes(enrollment)
        return certificate

    async def get_enrollment_progress(
        self, actor: Actor, enrollment_id: UUID
    ) -> EnrollmentProgressSummary:
        """
        Progress summary: counts by status, time spent, average quiz score,
        completed modules, and the next lesson to take.

        Raises:
            NotFoundError: If the enrollment does not exist
            AuthorizationError: Unless the caller is the student, the course
                instructor, or an admin
        """
        enrollment = await self._load(enrollment_id)
        course_row = await self.courses.get_course_row(enrollment.course_id)
        if course_row is None:
            raise NotFoundError("Course", enrollment.course_id)
        self.policy.ensure_learner_record_access(
            actor, enrollment.student_id, course_row.instructor_id, "enrollment", "view_progress"
        )
        await self._sync_lessons(enrollment, persist=False)

        structure = await self.courses.get_module_lesson_ids(enrollment.course_id)
        return enrollment.summarize(structure)
