"""
Assessment Service Repository

Database access for quizzes, quiz attempts, assignments, and assignment
submissions. Attempt numbers, question order numbers, per-question answers,
and revision chains are all guarded by unique constraints.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.assessment_service.models import (
    AssignmentModel,
    AssignmentSubmissionModel,
    QuestionModel,
    QuizAnswerModel,
    QuizModel,
    QuizSubmissionModel,
)
from shared.database.errors import conflict_from_integrity
from shared.domain.assignments import Assignment, AssignmentSubmission
from shared.domain.quizzes import Question, Quiz, QuizSubmission

logger = structlog.get_logger(__name__)

_SUBMISSION_FIELDS = (
    "submitted_at",
    "time_taken_seconds",
    "exceeded_time_limit",
    "score_percentage",
    "points_earned",
    "total_points",
    "grading_status",
    "feedback",
    "graded_at",
    "graded_by",
    "updated_at",
)
_ASSIGNMENT_SUBMISSION_FIELDS = (
    "points_awarded",
    "final_score",
    "feedback",
    "grading_status",
    "graded_at",
    "graded_by",
    "updated_at",
)


def _columns(row: Any) -> dict[str, Any]:
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


def _enum_values(data: dict[str, Any]) -> dict[str, Any]:
    return {key: getattr(value, "value", value) for key, value in data.items()}


def _write_back(row: Any, entity: Any, fields: tuple[str, ...]) -> None:
    for name in fields:
        value = getattr(entity, name)
        setattr(row, name, getattr(value, "value", value))


class QuizRepository:
    """Repository for quizzes, questions, attempts, and answers."""

    def __init__(self, session: AsyncSession):
        """
        Initialize repository.

        Args:
            session: Database session
        """
        self.session = session

    # Quizzes and questions

    async def get_quiz(self, quiz_id: UUID, for_update: bool = False) -> Quiz | None:
        query = select(QuizModel).where(QuizModel.id == quiz_id)
        if for_update:
            query = query.with_for_update()
        row = (await self.session.execute(query)).scalar_one_or_none()
        return Quiz.model_validate(row) if row is not None else None

    async def insert_quiz(self, quiz: Quiz) -> None:
        self.session.add(QuizModel(**_enum_values(quiz.model_dump())))
        await self.session.flush()
        logger.info("Quiz stored", quiz_id=str(quiz.id), lesson_id=str(quiz.lesson_id))

    async def insert_question(self, question: Question, quiz: Quiz) -> None:
        """
        Insert a question and advance the quiz's order counter together.

        Raises:
            ConflictError: If a concurrent writer took the same order number
        """
        try:
            async with self.session.begin_nested():
                self.session.add(QuestionModel(**_enum_values(question.model_dump())))
                quiz_row = await self.session.get(QuizModel, quiz.id)
                if quiz_row is not None:
                    quiz_row.question_counter = quiz.question_counter
                    quiz_row.updated_at = quiz.updated_at
        except IntegrityError as e:
            raise conflict_from_integrity(
                e,
                f"Question with order number {question.order_number} already exists",
                quiz_id=str(quiz.id),
            ) from e

    async def get_questions(self, quiz_id: UUID) -> list[Question]:
        rows = (
            await self.session.execute(
                select(QuestionModel)
                .where(QuestionModel.quiz_id == quiz_id)
                .order_by(QuestionModel.order_number)
            )
        ).scalars().all()
        return [Question.model_validate(row) for row in rows]

    # Attempts

    async def count_attempts(self, quiz_id: UUID, student_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(QuizSubmissionModel.id)).where(
                QuizSubmissionModel.quiz_id == quiz_id,
                QuizSubmissionModel.student_id == student_id,
            )
        )
        return result.scalar() or 0

    async def _answers_for(self, submission_id: UUID) -> dict[str, Any]:
        rows = (
            await self.session.execute(
                select(QuizAnswerModel).where(QuizAnswerModel.submission_id == submission_id)
            )
        ).scalars().all()
        return {str(row.question_id): row.answer for row in rows}

    async def _hydrate_submission(self, row: QuizSubmissionModel) -> QuizSubmission:
        return QuizSubmission.model_validate(
            {**_columns(row), "answers": await self._answers_for(row.id)}
        )

    async def get_submission(
        self, submission_id: UUID, for_update: bool = False
    ) -> QuizSubmission | None:
        query = select(QuizSubmissionModel).where(QuizSubmissionModel.id == submission_id)
        if for_update:
            query = query.with_for_update()
        row = (await self.session.execute(query)).scalar_one_or_none()
        return await self._hydrate_submission(row) if row is not None else None

    async def list_submissions(self, quiz_id: UUID, student_id: UUID) -> list[QuizSubmission]:
        rows = (
            await self.session.execute(
                select(QuizSubmissionModel)
                .where(
                    QuizSubmissionModel.quiz_id == quiz_id,
                    QuizSubmissionModel.student_id == student_id,
                )
                .order_by(QuizSubmissionModel.attempt_number)
            )
        ).scalars().all()
        return [await self._hydrate_submission(row) for row in rows]

    async def insert_submission(self, submission: QuizSubmission) -> None:
        """
        Raises:
            ConflictError: If the attempt number was taken by a concurrent start
        """
        try:
            async with self.session.begin_nested():
                self.session.add(
                    QuizSubmissionModel(**_enum_values(submission.model_dump(exclude={"answers"})))
                )
        except IntegrityError as e:
            raise conflict_from_integrity(
                e,
                f"Attempt {submission.attempt_number} has already been started",
                quiz_id=str(submission.quiz_id),
                student_id=str(submission.student_id),
            ) from e

    async def upsert_answer(
        self, submission_id: UUID, question_id: UUID, answer: Any, at: datetime
    ) -> None:
        """
        Store one answer, replacing an earlier answer to the same question.

        Each question has its own row, so answers to different questions
        never overwrite each other.
        """
        query = select(QuizAnswerModel).where(
            QuizAnswerModel.submission_id == submission_id,
            QuizAnswerModel.question_id == question_id,
        )
        row = (await self.session.execute(query)).scalar_one_or_none()
        if row is None:
            try:
                async with self.session.begin_nested():
                    self.session.add(
                        QuizAnswerModel(
                            submission_id=submission_id,
                            question_id=question_id,
                            answer=answer,
                            answered_at=at,
                        )
                    )
                return
            except IntegrityError:
                # Inserted concurrently; fall through to overwrite
                row = (await self.session.execute(query)).scalar_one()

        row.answer = answer
        row.answered_at = at
        await self.session.flush()

    async def save_submission(self, submission: QuizSubmission) -> None:
        row = await self.session.get(QuizSubmissionModel, submission.id)
        if row is None:
            return
        _write_back(row, submission, _SUBMISSION_FIELDS)
        await self.session.flush()


class AssignmentRepository:
    """Repository for assignments and their submissions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_assignment(self, assignment_id: UUID) -> Assignment | None:
        row = await self.session.get(AssignmentModel, assignment_id)
        return Assignment.model_validate(row) if row is not None else None

    async def insert_assignment(self, assignment: Assignment) -> None:
        self.session.add(AssignmentModel(**_enum_values(assignment.model_dump())))
        await self.session.flush()
        logger.info(
            "Assignment stored",
            assignment_id=str(assignment.id),
            lesson_id=str(assignment.lesson_id),
        )

    async def get_submission(
        self, submission_id: UUID, for_update: bool = False
    ) -> AssignmentSubmission | None:
        query = select(AssignmentSubmissionModel).where(AssignmentSubmissionModel.id == submission_id)
        if for_update:
            query = query.with_for_update()
        row = (await self.session.execute(query)).scalar_one_or_none()
        return AssignmentSubmission.model_validate(row) if row is not None else None

    async def list_submissions(
        self, assignment_id: UUID, student_id: UUID
    ) -> list[AssignmentSubmission]:
        """A student's submissions, oldest first."""
        rows = (
            await self.session.execute(
                select(AssignmentSubmissionModel)
                .where(
                    AssignmentSubmissionModel.assignment_id == assignment_id,
                    AssignmentSubmissionModel.student_id == student_id,
                )
                .order_by(
                    AssignmentSubmissionModel.revision_number,
                    AssignmentSubmissionModel.submitted_at,
                )
            )
        ).scalars().all()
        return [AssignmentSubmission.model_validate(row) for row in rows]

    async def get_latest_submission(
        self, assignment_id: UUID, student_id: UUID
    ) -> AssignmentSubmission | None:
        submissions = await self.list_submissions(assignment_id, student_id)
        return submissions[-1] if submissions else None

    async def insert_submission(self, submission: AssignmentSubmission) -> None:
        """
        Raises:
            ConflictError: If the student already has this revision, or the
                parent submission was already superseded
        """
        try:
            async with self.session.begin_nested():
                self.session.add(AssignmentSubmissionModel(**_enum_values(submission.model_dump())))
        except IntegrityError as e:
            reason = (
                "A submission for this assignment already exists"
                if submission.parent_submission_id is None
                else "A revision has already been submitted for this submission"
            )
            raise conflict_from_integrity(
                e,
                reason,
                assignment_id=str(submission.assignment_id),
                student_id=str(submission.student_id),
                revision_number=submission.revision_number,
                parent_submission_id=str(submission.parent_submission_id),
            ) from e

    async def save_submission(self, submission: AssignmentSubmission) -> None:
        row = await self.session.get(AssignmentSubmissionModel, submission.id)
        if row is None:
            return
        _write_back(row, submission, _ASSIGNMENT_SUBMISSION_FIELDS)
        await self.session.flush()
