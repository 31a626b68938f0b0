"""
Quiz Service

Quiz engine: quiz authoring, attempt start with per-attempt presentation,
progressive answering, auto-grading on submit, manual grading, and the
grading-completion hook into enrollment progress.
"""

import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.assessment_service.repository import QuizRepository
from services.course_service.repository import CourseRepository, LessonContext
from services.enrollment_service.enrollment_service import EnrollmentService
from services.enrollment_service.repository import EnrollmentRepository
from shared.clock import Clock, utcnow
from shared.config import Settings, get_settings
from shared.database.errors import persistence_guard
from shared.domain.courses import LessonType
from shared.domain.enrollment import Enrollment
from shared.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from shared.domain.quizzes import (
    AttemptEligibility,
    AttemptSummary,
    GradingResult,
    PresentedQuestion,
    Question,
    QuestionDifficulty,
    QuestionType,
    Quiz,
    QuizGradingStatus,
    QuizSubmission,
    QuizType,
    present_questions,
    summarize_attempts,
)
from shared.events.outbox import Outbox
from shared.security.access import AccessPolicy, Actor, access_policy

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StartedAttempt:
    """A freshly started attempt and the questions as presented in it."""

    submission: QuizSubmission
    questions: list[PresentedQuestion]


class QuizService:
    """
    Service orchestrating quizzes and quiz attempts.

    Implements:
    - Attempt numbering guarded by the (quiz, student, attempt) constraint
    - Attempt-scoped question and option shuffling
    - Per-question answer rows so concurrent answers never collide
    - Auto-grading with manual review for subjective questions
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
        Initialize quiz service.

        Args:
            db_session: Database session
            outbox: Outbox for domain events
            settings: Application settings (defaults to cached settings)
            clock: Source of the current UTC time
            rng: Random source for question and option shuffling
            policy: Ownership checks
        """
        self.db = db_session
        self.repository = QuizRepository(db_session)
        self.courses = CourseRepository(db_session)
        self.enrollments = EnrollmentRepository(db_session)
        self.outbox = outbox or Outbox()
        self.settings = settings or get_settings()
        self.clock = clock
        self.rng = rng or random.Random()
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

    async def _load_quiz(self, quiz_id: UUID, for_update: bool = False) -> Quiz:
        quiz = await self.repository.get_quiz(quiz_id, for_update=for_update)
        if quiz is None:
            raise NotFoundError("Quiz", quiz_id)
        return quiz

    async def _load_submission(self, submission_id: UUID, for_update: bool = False) -> QuizSubmission:
        submission = await self.repository.get_submission(submission_id, for_update=for_update)
        if submission is None:
            raise NotFoundError("QuizSubmission", submission_id)
        return submission

    async def _active_enrollment(self, student_id: UUID, course_id: UUID) -> Enrollment:
        enrollment = await self.enrollments.find_by_student_and_course(student_id, course_id)
        if enrollment is None or not enrollment.is_active():
            raise AuthorizationError(
                "Student must be actively enrolled in the course",
                resource="quiz",
                action="attempt",
            )
        return enrollment

    @persistence_guard("create_quiz")
    async def create_quiz(
        self,
        actor: Actor,
        lesson_id: UUID,
        title: str,
        quiz_type: QuizType = QuizType.FORMATIVE,
        passing_score_percentage: float = 70.0,
        description: str | None = None,
        time_limit_minutes: int | None = None,
        max_attempts: int = 0,
        randomize_questions: bool = False,
        randomize_options: bool = False,
        show_correct_answers: bool = True,
        show_explanations: bool = True,
        available_from: datetime | None = None,
        available_until: datetime | None = None,
    ) -> Quiz:
        """
        Create a quiz for a quiz lesson.

        Raises:
            NotFoundError: If the lesson does not exist
            AuthorizationError: If the caller does not manage the course
            ValidationError: If the lesson is not a quiz lesson or a setting is invalid
        """
        context = await self._lesson_context(lesson_id)
        self.policy.ensure_course_manager(actor, context.instructor_id, "quiz", "create")
        if context.lesson.lesson_type != LessonType.QUIZ:
            raise ValidationError(
                "Quizzes can only be attached to quiz lessons",
                field="lesson_id",
                value=str(lesson_id),
            )

        quiz = Quiz.create(
            lesson_id=lesson_id,
            title=title,
            quiz_type=quiz_type,
            passing_score_percentage=passing_score_percentage,
            description=description,
            time_limit_minutes=time_limit_minutes,
            max_attempts=max_attempts,
            randomize_questions=randomize_questions,
            randomize_options=randomize_options,
            show_correct_answers=show_correct_answers,
            show_explanations=show_explanations,
            available_from=available_from,
            available_until=available_until,
            actor_id=actor.user_id,
            now=self.clock(),
        )
        await self.repository.insert_quiz(quiz)
        await self.outbox.stage(self.db, quiz.pull_events())

        logger.info("Quiz created", quiz_id=str(quiz.id), lesson_id=str(lesson_id))
        return quiz

    @persistence_guard("add_question")
    async def add_question(
        self,
        actor: Actor,
        quiz_id: UUID,
        question_type: QuestionType,
        question_text: str,
        correct_answer: Any = None,
        options: Any = None,
        points: float = 1.0,
        explanation: str | None = None,
        question_media_url: str | None = None,
        difficulty: QuestionDifficulty = QuestionDifficulty.MEDIUM,
    ) -> Question:
        """
        Append a question; its order number comes from the quiz counter.

        Raises:
            NotFoundError: If the quiz does not exist
            AuthorizationError: If the caller does not manage the course
            ValidationError: On a malformed question definition
            ConflictError: If a concurrent addition took the same order number
        """
        quiz = await self._load_quiz(quiz_id, for_update=True)
        context = await self._lesson_context(quiz.lesson_id)
        self.policy.ensure_course_manager(actor, context.instructor_id, "quiz", "add_question")

        question = quiz.add_question(
            question_type=question_type,
            question_text=question_text,
            correct_answer=correct_answer,
            options=options,
            points=points,
            explanation=explanation,
            question_media_url=question_media_url,
            difficulty=difficulty,
            actor_id=actor.user_id,
            now=self.clock(),
        )
        await self.repository.insert_question(question, quiz)
        await self.outbox.stage(self.db, quiz.pull_events())

        logger.info(
            "Question added",
            quiz_id=str(quiz_id),
            question_id=str(question.id),
            question_type=question_type.value,
            order_number=question.order_number,
        )
        return question

    async def can_start_attempt(self, quiz_id: UUID, student_id: UUID) -> AttemptEligibility:
        """
        Availability window plus attempt budget. No side effects.

        Raises:
            NotFoundError: If the quiz does not exist
        """
        quiz = await self._load_quiz(quiz_id)
        prior = await self.repository.count_attempts(quiz_id, student_id)
        return quiz.check_attempt_eligibility(prior, self.clock())

    @persistence_guard("start_attempt")
    async def start_attempt(self, actor: Actor, quiz_id: UUID) -> StartedAttempt:
        """
        Start the next attempt for the calling student.

        Process:
        1. Require an active enrollment in the quiz's course
        2. Check availability and attempt budget
        3. Decide the attempt's presentation (question and option order)
        4. Insert; the attempt-number constraint rejects a concurrent duplicate

        Raises:
            NotFoundError: If the quiz does not exist
            AuthorizationError: If the caller is not an actively enrolled student
            ConflictError: If the quiz is unavailable or attempts are exhausted
        """
        quiz = await self._load_quiz(quiz_id)
        context = await self._lesson_context(quiz.lesson_id)
        enrollment = await self._active_enrollment(actor.user_id, context.course_id)

        now = self.clock()
        prior = await self.repository.count_attempts(quiz_id, actor.user_id)
        eligibility = quiz.check_attempt_eligibility(prior, now)
        if not eligibility.can_start:
            raise ConflictError(
                eligibility.reason or "Cannot start quiz attempt",
                context={"quiz_id": str(quiz_id), "attempts_used": eligibility.attempts_used},
            )

        questions = await self.repository.get_questions(quiz_id)
        question_order, option_orders = quiz.build_presentation(questions, self.rng)

        submission = QuizSubmission.start(
            quiz,
            student_id=actor.user_id,
            enrollment_id=enrollment.id,
            attempt_number=eligibility.next_attempt_number,
            question_order=question_order,
            option_orders=option_orders,
            now=now,
        )
        await self.repository.insert_submission(submission)
        await self.outbox.stage(self.db, submission.pull_events())

        logger.info(
            "Quiz attempt started",
            quiz_id=str(quiz_id),
            submission_id=str(submission.id),
            student_id=str(actor.user_id),
            attempt_number=submission.attempt_number,
        )
        return StartedAttempt(
            submission=submission,
            questions=present_questions(questions, question_order, option_orders),
        )

    @persistence_guard("submit_answer")
    async def submit_answer(
        self, actor: Actor, submission_id: UUID, question_id: UUID, answer: Any
    ) -> QuizSubmission:
        """
        Store one answer. The answer's shape is only checked at grading.

        The attempt row is locked, so an answer cannot land after a
        concurrent submit has closed the attempt.

        Raises:
            NotFoundError: If the submission does not exist
            AuthorizationError: If the caller does not own the attempt
            ConflictError: If the attempt was already submitted
            ValidationError: If the question belongs to another quiz
        """
        submission = await self._load_submission(submission_id, for_update=True)
        self.policy.ensure_student_self(actor, submission.student_id, "quiz_submission", "answer")
        submission.ensure_open()

        question_ids = {q.id for q in await self.repository.get_questions(submission.quiz_id)}
        if question_id not in question_ids:
            raise ValidationError(
                "Question does not belong to this quiz",
                field="question_id",
                value=str(question_id),
            )

        now = self.clock()
        submission.record_answer(question_id, answer, now=now)
        await self.repository.upsert_answer(submission_id, question_id, answer, now)

        logger.debug(
            "Quiz answer recorded",
            submission_id=str(submission_id),
            question_id=str(question_id),
        )
        return submission

    async def _notify_progress(
        self, quiz: Quiz, submission: QuizSubmission, grader_id: UUID | None
    ) -> None:
        await self.progress.record_grading_outcome(
            submission.enrollment_id,
            quiz.lesson_id,
            quiz_score=submission.score_percentage,
            grader_id=grader_id,
        )

    @persistence_guard("submit_quiz")
    async def submit_quiz(self, actor: Actor, submission_id: UUID) -> GradingResult:
        """
        Close an attempt and auto-grade it.

        Objective-only quizzes are final immediately and update lesson
        progress; any essay or short-answer question leaves the attempt
        pending review.

        Raises:
            NotFoundError: If the submission does not exist
            AuthorizationError: If the caller does not own the attempt
            ConflictError: If the attempt was already submitted
        """
        submission = await self._load_submission(submission_id, for_update=True)
        self.policy.ensure_student_self(actor, submission.student_id, "quiz_submission", "submit")

        quiz = await self._load_quiz(submission.quiz_id)
        questions = await self.repository.get_questions(quiz.id)

        result = submission.submit(quiz, questions, now=self.clock())
        await self.repository.save_submission(submission)
        await self.outbox.stage(self.db, submission.pull_events())

        if submission.grading_status == QuizGradingStatus.AUTO_GRADED:
            await self._notify_progress(quiz, submission, None)

        logger.info(
            "Quiz submitted",
            submission_id=str(submission_id),
            score_percentage=result.score_percentage,
            grading_status=submission.grading_status.value,
            exceeded_time_limit=submission.exceeded_time_limit,
        )
        return result

    @persistence_guard("grade_submission")
    async def grade_submission(
        self,
        actor: Actor,
        submission_id: UUID,
        points_awarded: float | None = None,
        question_grades: dict[UUID, float] | None = None,
        feedback: str | None = None,
    ) -> QuizSubmission:
        """
        Manually grade a submitted attempt.

        Args:
            actor: Course instructor or admin
            submission_id: Attempt to grade
            points_awarded: Flat total, or
            question_grades: Points per question id; unnamed questions keep
                their auto-graded points
            feedback: Optional feedback for the student

        Raises:
            NotFoundError: If the submission does not exist
            AuthorizationError: If the caller does not manage the course
            ConflictError: If not yet submitted or already graded
            ValidationError: On out-of-range points
        """
        submission = await self._load_submission(submission_id, for_update=True)
        quiz = await self._load_quiz(submission.quiz_id)
        context = await self._lesson_context(quiz.lesson_id)
        self.policy.ensure_course_manager(actor, context.instructor_id, "quiz_submission", "grade")

        questions = await self.repository.get_questions(quiz.id)
        submission.grade(
            quiz,
            questions,
            grader_id=actor.user_id,
            points_awarded=points_awarded,
            question_grades=question_grades,
            feedback=feedback,
            now=self.clock(),
        )
        await self.repository.save_submission(submission)
        await self.outbox.stage(self.db, submission.pull_events())
        await self._notify_progress(quiz, submission, actor.user_id)

        logger.info(
            "Quiz submission graded",
            submission_id=str(submission_id),
            score_percentage=submission.score_percentage,
            graded_by=str(actor.user_id),
        )
        return submission

    async def get_attempt_summary(
        self, actor: Actor, quiz_id: UUID, student_id: UUID
    ) -> AttemptSummary:
        """
        Attempts, best score, pass flag, and whether another attempt may start.

        Raises:
            NotFoundError: If the quiz does not exist
            AuthorizationError: Unless the caller is the student, the course
                instructor, or an admin
        """
        quiz = await self._load_quiz(quiz_id)
        context = await self._lesson_context(quiz.lesson_id)
        self.policy.ensure_learner_record_access(
            actor, student_id, context.instructor_id, "quiz", "view_attempts"
        )
        submissions = await self.repository.list_submissions(quiz_id, student_id)
        return summarize_attempts(quiz, student_id, submissions, self.clock())
