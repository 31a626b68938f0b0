"""
Quiz Domain

Quiz aggregate, question definitions, attempt eligibility, per-attempt
presentation (question and option shuffling), and grading.

Answer checking is strict about types: a multiple-choice answer must be a
plain integer (``True`` is not ``1``), a true/false answer must be a bool,
and fill-in-the-blank answers must be a list of strings of the right length.
"""

import random
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar
from uuid import UUID

import structlog
from pydantic import Field

from shared.clock import utcnow
from shared.domain.entities import AbstractEntity, AggregateRoot
from shared.domain.exceptions import ConflictError, InvariantViolationError, ValidationError
from shared.events.base import EventMetadata
from shared.events.learning_events import (
    QuestionAddedEvent,
    QuizAttemptStartedEvent,
    QuizCreatedEvent,
    QuizSubmittedEvent,
    SubmissionGradedEvent,
)

logger = structlog.get_logger(__name__)


class QuizType(str, Enum):
    FORMATIVE = "formative"
    SUMMATIVE = "summative"
    PRACTICE = "practice"


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"
    FILL_BLANK = "fill_blank"
    MATCHING = "matching"


class QuestionDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class QuizGradingStatus(str, Enum):
    AUTO_GRADED = "auto_graded"
    PENDING_REVIEW = "pending_review"
    GRADED = "graded"


# Question types that always need a human grader
MANUAL_REVIEW_TYPES = frozenset({QuestionType.SHORT_ANSWER, QuestionType.ESSAY})


def _normalize(text: str) -> str:
    return text.strip().lower()


def validate_question_definition(
    question_type: QuestionType, options: Any, correct_answer: Any
) -> None:
    """
    Type-specific checks for a question's options and answer key.

    Raises:
        ValidationError: If the definition is incomplete or inconsistent
    """
    if question_type == QuestionType.MULTIPLE_CHOICE:
        if not isinstance(options, list) or len(options) < 2:
            raise ValidationError(
                "Multiple choice questions must have at least 2 options", field="options"
            )
        if (
            type(correct_answer) is not int
            or correct_answer < 0
            or correct_answer >= len(options)
        ):
            raise ValidationError(
                "Multiple choice questions must have a valid correct answer index",
                field="correct_answer",
                value=correct_answer,
            )

    elif question_type == QuestionType.TRUE_FALSE:
        if not isinstance(correct_answer, bool):
            raise ValidationError(
                "True/false questions must have a boolean correct answer", field="correct_answer"
            )

    elif question_type == QuestionType.SHORT_ANSWER:
        accepted = correct_answer if isinstance(correct_answer, list) else [correct_answer]
        if not accepted or not all(isinstance(a, str) and a.strip() for a in accepted):
            raise ValidationError(
                "Short answer questions must have correct answer(s)", field="correct_answer"
            )

    elif question_type == QuestionType.FILL_BLANK:
        if (
            not isinstance(correct_answer, list)
            or not correct_answer
            or not all(isinstance(a, str) and a.strip() for a in correct_answer)
        ):
            raise ValidationError(
                "Fill in the blank questions must have a list of correct answers",
                field="correct_answer",
            )

    elif question_type == QuestionType.MATCHING:
        if not options or not isinstance(correct_answer, dict) or not correct_answer:
            raise ValidationError(
                "Matching questions must have options and correct answer mappings",
                field="correct_answer",
            )


class Question(AbstractEntity):
    """A question belonging to one quiz."""

    quiz_id: UUID = Field(...)
    question_type: QuestionType = Field(...)
    question_text: str = Field(..., min_length=1)
    question_media_url: str | None = Field(default=None)
    options: Any = Field(default=None)
    correct_answer: Any = Field(default=None)
    explanation: str | None = Field(default=None)
    points: float = Field(default=1.0, gt=0)
    order_number: int = Field(..., ge=1)
    difficulty: QuestionDifficulty = Field(default=QuestionDifficulty.MEDIUM)

    def validate_business_rules(self) -> bool:
        validate_question_definition(self.question_type, self.options, self.correct_answer)
        return True

    def requires_manual_review(self) -> bool:
        return self.question_type in MANUAL_REVIEW_TYPES

    def is_answer_correct(self, answer: Any) -> bool:
        """
        Check an answer against the stored key.

        Multiple-choice answers are expected in canonical option indexes;
        see ``canonical_answer`` for attempts with shuffled options.
        """
        if answer is None:
            return False

        if self.question_type == QuestionType.MULTIPLE_CHOICE:
            return type(answer) is int and answer == self.correct_answer

        if self.question_type == QuestionType.TRUE_FALSE:
            return isinstance(answer, bool) and answer == self.correct_answer

        if self.question_type == QuestionType.FILL_BLANK:
            if not isinstance(answer, list) or len(answer) != len(self.correct_answer):
                return False
            return all(
                isinstance(given, str) and _normalize(given) == _normalize(expected)
                for given, expected in zip(answer, self.correct_answer)
            )

        if self.question_type == QuestionType.SHORT_ANSWER:
            if not isinstance(answer, str):
                return False
            accepted = (
                self.correct_answer if isinstance(self.correct_answer, list) else [self.correct_answer]
            )
            return any(_normalize(answer) == _normalize(a) for a in accepted)

        if self.question_type == QuestionType.MATCHING:
            if not isinstance(answer, dict):
                return False
            expected = {str(k): v for k, v in self.correct_answer.items()}
            return {str(k): v for k, v in answer.items()} == expected

        return False

    def canonical_answer(self, answer: Any, option_order: list[int] | None) -> Any:
        """Map a displayed multiple-choice index back to the stored option index."""
        if (
            self.question_type != QuestionType.MULTIPLE_CHOICE
            or not option_order
            or type(answer) is not int
        ):
            return answer
        if 0 <= answer < len(option_order):
            return option_order[answer]
        # Out of range stays out of range and grades as incorrect
        return answer


@dataclass(frozen=True)
class AttemptEligibility:
    """Whether a student may start another attempt, and why not."""

    can_start: bool
    attempts_used: int
    next_attempt_number: int
    reason: str | None = None


@dataclass(frozen=True)
class QuestionResult:
    question_id: UUID
    points_possible: float
    points_earned: float
    is_correct: bool
    requires_manual_review: bool


@dataclass(frozen=True)
class GradingResult:
    """Outcome of grading every question of a quiz."""

    points_earned: float
    total_points: float
    score_percentage: float
    requires_manual_review: bool
    question_results: list[QuestionResult] = field(default_factory=list)


@dataclass(frozen=True)
class PresentedQuestion:
    """A question as shown to the student for one attempt (no answer key)."""

    question_id: UUID
    question_type: QuestionType
    question_text: str
    question_media_url: str | None
    options: Any
    points: float
    position: int


def score_percentage(earned: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return round(earned / total * 100, 2)


def auto_grade(
    questions: list[Question],
    answers: dict[str, Any],
    option_orders: dict[str, list[int]] | None = None,
) -> GradingResult:
    """
    Grade every question of a quiz.

    Objective questions earn their points when the answer matches exactly.
    Short-answer and essay questions earn nothing here and flag the
    submission for manual review.

    Args:
        questions: All questions of the quiz
        answers: Question id (as str) to the student's answer
        option_orders: Per-question displayed-to-stored option index maps
    """
    option_orders = option_orders or {}
    total = 0.0
    earned = 0.0
    manual = False
    results: list[QuestionResult] = []

    for question in questions:
        key = str(question.id)
        total += question.points

        if question.requires_manual_review():
            manual = True
            results.append(
                QuestionResult(
                    question_id=question.id,
                    points_possible=question.points,
                    points_earned=0.0,
                    is_correct=False,
                    requires_manual_review=True,
                )
            )
            continue

        answer = question.canonical_answer(answers.get(key), option_orders.get(key))
        correct = question.is_answer_correct(answer)
        points = question.points if correct else 0.0
        earned += points
        results.append(
            QuestionResult(
                question_id=question.id,
                points_possible=question.points,
                points_earned=points,
                is_correct=correct,
                requires_manual_review=False,
            )
        )

    return GradingResult(
        points_earned=earned,
        total_points=total,
        score_percentage=score_percentage(earned, total),
        requires_manual_review=manual,
        question_results=results,
    )


class Quiz(AggregateRoot):
    """
    Quiz aggregate root.

    ``question_counter`` hands out question order numbers; it only grows, so
    an order number is never reused even after a question is removed.
    """

    SERVICE_NAME: ClassVar[str] = "assessment_service"

    lesson_id: UUID = Field(...)
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(default=None)
    quiz_type: QuizType = Field(default=QuizType.FORMATIVE)
    time_limit_minutes: int | None = Field(default=None, gt=0)
    passing_score_percentage: float = Field(default=70.0, ge=0, le=100)
    max_attempts: int = Field(default=0, ge=0, description="0 means unlimited")
    randomize_questions: bool = Field(default=False)
    randomize_options: bool = Field(default=False)
    show_correct_answers: bool = Field(default=True)
    show_explanations: bool = Field(default=True)
    available_from: datetime | None = Field(default=None)
    available_until: datetime | None = Field(default=None)
    question_counter: int = Field(default=0, ge=0)

    @classmethod
    def aggregate_type(cls) -> str:
        return "Quiz"

    @classmethod
    def create(
        cls,
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
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> "Quiz":
        """
        Create a quiz for a lesson.

        Raises:
            ValidationError: On out-of-range settings or an empty window
        """
        title = (title or "").strip()
        if not title or len(title) > 255:
            raise ValidationError("Title must be between 1 and 255 characters", field="title")
        if passing_score_percentage < 0 or passing_score_percentage > 100:
            raise ValidationError(
                "Passing score must be between 0 and 100",
                field="passing_score_percentage",
                value=passing_score_percentage,
            )
        if max_attempts < 0:
            raise ValidationError("Max attempts cannot be negative", field="max_attempts", value=max_attempts)
        if time_limit_minutes is not None and time_limit_minutes <= 0:
            raise ValidationError(
                "Time limit must be positive", field="time_limit_minutes", value=time_limit_minutes
            )
        if available_from and available_until and available_from >= available_until:
            raise ValidationError(
                "Availability window must end after it starts", field="available_until"
            )

        now = now or utcnow()
        quiz = cls(
            lesson_id=lesson_id,
            title=title,
            description=description,
            quiz_type=quiz_type,
            time_limit_minutes=time_limit_minutes,
            passing_score_percentage=passing_score_percentage,
            max_attempts=max_attempts,
            randomize_questions=randomize_questions,
            randomize_options=randomize_options,
            show_correct_answers=show_correct_answers,
            show_explanations=show_explanations,
            available_from=available_from,
            available_until=available_until,
            created_at=now,
            updated_at=now,
        )
        quiz.record_event(
            QuizCreatedEvent(
                **quiz._event_fields(now, actor_id),
                lesson_id=lesson_id,
                title=title,
                quiz_type=quiz_type.value,
            )
        )
        return quiz

    def validate_business_rules(self) -> bool:
        if self.available_from and self.available_until and self.available_from >= self.available_until:
            raise ValidationError("Availability window must end after it starts", field="available_until")
        return True

    def _event_fields(self, at: datetime, user_id: UUID | None) -> dict:
        return {
            "metadata": EventMetadata(service=self.SERVICE_NAME, timestamp=at, user_id=user_id),
            "aggregate_id": self.id,
            "aggregate_type": self.aggregate_type(),
        }

    def is_available(self, now: datetime) -> bool:
        """Whether ``now`` falls inside the optional availability window."""
        if self.available_from is not None and now < self.available_from:
            return False
        if self.available_until is not None and now > self.available_until:
            return False
        return True

    def check_attempt_eligibility(self, prior_attempts: int, now: datetime) -> AttemptEligibility:
        """
        Combine the availability window with the attempt budget.

        Read-only: identical inputs always give an identical answer.
        """
        if prior_attempts < 0:
            raise InvariantViolationError(
                "prior_attempts cannot be negative", context={"prior_attempts": prior_attempts}
            )

        reason = None
        if not self.is_available(now):
            reason = "Quiz is not available at this time"
        elif self.max_attempts > 0 and prior_attempts >= self.max_attempts:
            reason = f"Maximum attempts ({self.max_attempts}) reached"

        return AttemptEligibility(
            can_start=reason is None,
            attempts_used=prior_attempts,
            next_attempt_number=prior_attempts + 1,
            reason=reason,
        )

    def add_question(
        self,
        question_type: QuestionType,
        question_text: str,
        correct_answer: Any = None,
        options: Any = None,
        points: float = 1.0,
        explanation: str | None = None,
        question_media_url: str | None = None,
        difficulty: QuestionDifficulty = QuestionDifficulty.MEDIUM,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Question:
        """
        Append a question with the next server-assigned order number.

        Raises:
            ValidationError: On missing text, non-positive points, or a
                type-specific definition problem
        """
        now = now or utcnow()
        if not question_text or not question_text.strip():
            raise ValidationError("Question text is required", field="question_text")
        if points <= 0:
            raise ValidationError("Points must be positive", field="points", value=points)
        validate_question_definition(question_type, options, correct_answer)

        self.question_counter += 1
        question = Question(
            quiz_id=self.id,
            question_type=question_type,
            question_text=question_text.strip(),
            question_media_url=question_media_url,
            options=options,
            correct_answer=correct_answer,
            explanation=explanation,
            points=points,
            order_number=self.question_counter,
            difficulty=difficulty,
            created_at=now,
            updated_at=now,
        )
        self.mark_updated(now)

        self.record_event(
            QuestionAddedEvent(
                **self._event_fields(now, actor_id),
                question_id=question.id,
                question_type=question_type.value,
                order_number=question.order_number,
                points=points,
            )
        )
        return question

    def build_presentation(
        self, questions: list[Question], rng: random.Random | None = None
    ) -> tuple[list[str], dict[str, list[int]]]:
        """
        Decide the question order and option permutations for one attempt.

        Returns:
            tuple: (question ids in display order, question id to the stored
            option index shown at each displayed position)
        """
        rng = rng or random.Random()
        ordered = sorted(questions, key=lambda q: q.order_number)
        if self.randomize_questions:
            ordered = list(ordered)
            rng.shuffle(ordered)

        option_orders: dict[str, list[int]] = {}
        if self.randomize_options:
            for question in ordered:
                if question.question_type == QuestionType.MULTIPLE_CHOICE and isinstance(question.options, list):
                    order = list(range(len(question.options)))
                    rng.shuffle(order)
                    option_orders[str(question.id)] = order

        return [str(q.id) for q in ordered], option_orders


def present_questions(
    questions: list[Question],
    question_order: list[str],
    option_orders: dict[str, list[int]],
) -> list[PresentedQuestion]:
    """Questions as the student sees them in one attempt."""
    by_id = {str(q.id): q for q in questions}
    presented: list[PresentedQuestion] = []
    # Questions added after the attempt started go last, in authoring order
    remaining = sorted(
        (q for key, q in by_id.items() if key not in question_order), key=lambda q: q.order_number
    )
    sequence = [by_id[key] for key in question_order if key in by_id] + remaining

    for position, question in enumerate(sequence, start=1):
        options = question.options
        order = option_orders.get(str(question.id))
        if order and isinstance(options, list):
            options = [options[index] for index in order]
        presented.append(
            PresentedQuestion(
                question_id=question.id,
                question_type=question.question_type,
                question_text=question.question_text,
                question_media_url=question.question_media_url,
                options=options,
                points=question.points,
                position=position,
            )
        )
    return presented


class QuizSubmission(AggregateRoot):
    """
    One attempt by one student at one quiz.

    Answers may change only until ``submitted_at`` is set.
    """

    SERVICE_NAME: ClassVar[str] = "assessment_service"

    quiz_id: UUID = Field(...)
    student_id: UUID = Field(...)
    enrollment_id: UUID = Field(...)
    attempt_number: int = Field(..., ge=1)
    started_at: datetime = Field(default_factory=utcnow)
    submitted_at: datetime | None = Field(default=None)
    time_taken_seconds: int | None = Field(default=None, ge=0)
    exceeded_time_limit: bool = Field(default=False)
    score_percentage: float | None = Field(default=None, ge=0, le=100)
    points_earned: float | None = Field(default=None, ge=0)
    total_points: float | None = Field(default=None, ge=0)
    answers: dict[str, Any] = Field(default_factory=dict)
    question_order: list[str] = Field(default_factory=list)
    option_orders: dict[str, list[int]] = Field(default_factory=dict)
    grading_status: QuizGradingStatus | None = Field(default=None)
    feedback: str | None = Field(default=None)
    graded_at: datetime | None = Field(default=None)
    graded_by: UUID | None = Field(default=None)

    @classmethod
    def aggregate_type(cls) -> str:
        return "QuizSubmission"

    @classmethod
    def start(
        cls,
        quiz: Quiz,
        student_id: UUID,
        enrollment_id: UUID,
        attempt_number: int,
        question_order: list[str],
        option_orders: dict[str, list[int]],
        now: datetime | None = None,
    ) -> "QuizSubmission":
        now = now or utcnow()
        submission = cls(
            quiz_id=quiz.id,
            student_id=student_id,
            enrollment_id=enrollment_id,
            attempt_number=attempt_number,
            started_at=now,
            question_order=question_order,
            option_orders=option_orders,
            created_at=now,
            updated_at=now,
        )
        submission.record_event(
            QuizAttemptStartedEvent(
                **submission._event_fields(now, student_id),
                quiz_id=quiz.id,
                student_id=student_id,
                attempt_number=attempt_number,
            )
        )
        return submission

    def validate_business_rules(self) -> bool:
        if self.grading_status is not None and self.submitted_at is None:
            raise ValidationError("Only submitted attempts carry a grading status", field="grading_status")
        return True

    def _event_fields(self, at: datetime, user_id: UUID | None) -> dict:
        return {
            "metadata": EventMetadata(service=self.SERVICE_NAME, timestamp=at, user_id=user_id),
            "aggregate_id": self.id,
            "aggregate_type": self.aggregate_type(),
        }

    def is_submitted(self) -> bool:
        return self.submitted_at is not None

    def ensure_open(self) -> None:
        """
        Raises:
            ConflictError: If the attempt was already submitted
        """
        if self.is_submitted():
            raise ConflictError(
                "Quiz submission already completed",
                context={"submission_id": str(self.id)},
            )

    def record_answer(self, question_id: UUID, answer: Any, now: datetime | None = None) -> None:
        """Merge one answer; the last write per question wins."""
        self.ensure_open()
        self.answers = {**self.answers, str(question_id): answer}
        self.mark_updated(now)

    def submit(
        self,
        quiz: Quiz,
        questions: list[Question],
        now: datetime | None = None,
    ) -> GradingResult:
        """
        Close the attempt and auto-grade it.

        The time taken is measured with the server clock. Time limits are not
        enforced here; an overrun is flagged for reviewers.
        """
        now = now or utcnow()
        self.ensure_open()

        result = auto_grade(questions, self.answers, self.option_orders)
        taken = max(int((now - self.started_at).total_seconds()), 0)

        self.submitted_at = now
        self.time_taken_seconds = taken
        self.exceeded_time_limit = bool(
            quiz.time_limit_minutes is not None and taken > quiz.time_limit_minutes * 60
        )
        self.points_earned = result.points_earned
        self.total_points = result.total_points
        self.score_percentage = result.score_percentage

        if result.requires_manual_review:
            self.grading_status = QuizGradingStatus.PENDING_REVIEW
            self.graded_at = None
        else:
            self.grading_status = QuizGradingStatus.AUTO_GRADED
            self.graded_at = now
        self.mark_updated(now)

        if self.exceeded_time_limit:
            logger.warning(
                "Quiz submitted after time limit",
                submission_id=str(self.id),
                quiz_id=str(quiz.id),
                time_taken_seconds=taken,
                time_limit_minutes=quiz.time_limit_minutes,
            )

        self.record_event(
            QuizSubmittedEvent(
                **self._event_fields(now, self.student_id),
                quiz_id=self.quiz_id,
                student_id=self.student_id,
                score_percentage=result.score_percentage,
                grading_status=self.grading_status.value,
                time_taken_seconds=taken,
            )
        )
        if self.grading_status == QuizGradingStatus.AUTO_GRADED:
            self._record_graded(quiz, None, now)
        return result

    def grade(
        self,
        quiz: Quiz,
        questions: list[Question],
        grader_id: UUID,
        points_awarded: float | None = None,
        question_grades: dict[UUID, float] | None = None,
        feedback: str | None = None,
        now: datetime | None = None,
    ) -> float:
        """
        Apply a manual grade.

        Per-question grades replace the auto-graded points of the questions
        they name; the others keep their auto-graded points. A flat
        ``points_awarded`` replaces the total. The percentage is always taken
        against every question of the quiz.

        Raises:
            ConflictError: If not yet submitted or already graded
            ValidationError: On missing or out-of-range points
        """
        now = now or utcnow()
        if not self.is_submitted():
            raise ConflictError(
                "Cannot grade submission that has not been submitted",
                context={"submission_id": str(self.id)},
            )
        if self.grading_status == QuizGradingStatus.GRADED:
            raise ConflictError(
                "Submission has already been graded",
                context={"submission_id": str(self.id)},
            )

        total = sum(q.points for q in questions)

        if question_grades:
            by_id = {q.id: q for q in questions}
            auto = auto_grade(questions, self.answers, self.option_orders)
            earned_by_question = {r.question_id: r.points_earned for r in auto.question_results}
            for question_id, points in question_grades.items():
                question = by_id.get(question_id)
                if question is None:
                    raise ValidationError(
                        "Graded question does not belong to this quiz",
                        field="question_grades",
                        value=question_id,
                    )
                if points < 0 or points > question.points:
                    raise ValidationError(
                        f"Points must be between 0 and {question.points}",
                        field="question_grades",
                        value=points,
                    )
                earned_by_question[question_id] = float(points)
            earned = sum(earned_by_question.values())
        elif points_awarded is not None:
            if points_awarded < 0 or points_awarded > total:
                raise ValidationError(
                    f"Points must be between 0 and {total}",
                    field="points_awarded",
                    value=points_awarded,
                )
            earned = float(points_awarded)
        else:
            raise ValidationError(
                "Either points_awarded or question_grades is required", field="points_awarded"
            )

        self.points_earned = earned
        self.total_points = total
        self.score_percentage = score_percentage(earned, total)
        self.grading_status = QuizGradingStatus.GRADED
        self.graded_at = now
        self.graded_by = grader_id
        self.feedback = feedback
        self.mark_updated(now)

        self._record_graded(quiz, grader_id, now)
        return self.score_percentage

    def _record_graded(self, quiz: Quiz, grader_id: UUID | None, now: datetime) -> None:
        self.record_event(
            SubmissionGradedEvent(
                **self._event_fields(now, grader_id),
                submission_kind="quiz",
                student_id=self.student_id,
                lesson_id=quiz.lesson_id,
                score=self.score_percentage or 0.0,
                graded_by=grader_id,
            )
        )

    def is_final(self) -> bool:
        """Whether the score is settled (auto-graded or manually graded)."""
        return self.grading_status in (QuizGradingStatus.AUTO_GRADED, QuizGradingStatus.GRADED)

    def has_passed(self, quiz: Quiz) -> bool:
        return (
            self.is_final()
            and self.score_percentage is not None
            and self.score_percentage >= quiz.passing_score_percentage
        )


@dataclass(frozen=True)
class AttemptSummary:
    """Per-student attempt overview for a quiz."""

    quiz_id: UUID
    student_id: UUID
    total_attempts: int
    best_score: float | None
    has_passing_score: bool
    can_start_new_attempt: bool
    reason: str | None = None


def summarize_attempts(
    quiz: Quiz, student_id: UUID, submissions: list[QuizSubmission], now: datetime
) -> AttemptSummary:
    """Attempt count, best final score, pass flag, and eligibility."""
    scores = [s.score_percentage for s in submissions if s.is_final() and s.score_percentage is not None]
    eligibility = quiz.check_attempt_eligibility(len(submissions), now)
    return AttemptSummary(
        quiz_id=quiz.id,
        student_id=student_id,
        total_attempts=len(submissions),
        best_score=max(scores) if scores else None,
        has_passing_score=any(s.has_passed(quiz) for s in submissions),
        can_start_new_attempt=eligibility.can_start,
        reason=eligibility.reason,
    )
