"""Unit tests for quiz questions, attempt eligibility, presentation, and grading."""

import random
from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from shared.domain.exceptions import ConflictError, InvariantViolationError, ValidationError
from shared.domain.quizzes import (
    QuestionType,
    Quiz,
    QuizGradingStatus,
    QuizSubmission,
    auto_grade,
    present_questions,
    summarize_attempts,
)

NOW = datetime(2025, 3, 1, 9, 0, 0)


def make_quiz(**kwargs) -> Quiz:
    return Quiz.create(lesson_id=uuid4(), title="Checkpoint", now=NOW, **kwargs)


def multiple_choice(quiz: Quiz, correct: int = 2, points: float = 5):
    return quiz.add_question(
        QuestionType.MULTIPLE_CHOICE,
        "Pick one",
        correct_answer=correct,
        options=["a", "b", "c", "d"],
        points=points,
        now=NOW,
    )


def start(quiz: Quiz, question_order=None, option_orders=None, attempt: int = 1) -> QuizSubmission:
    return QuizSubmission.start(
        quiz,
        student_id=uuid4(),
        enrollment_id=uuid4(),
        attempt_number=attempt,
        question_order=question_order or [],
        option_orders=option_orders or {},
        now=NOW,
    )


class TestQuestionDefinitions:
    """Tests for type-specific question validation."""

    def test_multiple_choice_needs_two_options(self):
        quiz = make_quiz()

        with pytest.raises(ValidationError):
            quiz.add_question(QuestionType.MULTIPLE_CHOICE, "Q", correct_answer=0, options=["only"], now=NOW)

    @pytest.mark.parametrize("answer", [4, -1, True, "2"])
    def test_multiple_choice_needs_valid_integer_index(self, answer):
        quiz = make_quiz()

        with pytest.raises(ValidationError):
            quiz.add_question(
                QuestionType.MULTIPLE_CHOICE, "Q", correct_answer=answer, options=["a", "b", "c", "d"], now=NOW
            )

    def test_true_false_needs_boolean_key(self):
        quiz = make_quiz()

        with pytest.raises(ValidationError):
            quiz.add_question(QuestionType.TRUE_FALSE, "Q", correct_answer=1, now=NOW)

    def test_order_numbers_come_from_counter(self):
        quiz = make_quiz()
        first = multiple_choice(quiz)
        second = quiz.add_question(QuestionType.TRUE_FALSE, "Q", correct_answer=True, now=NOW)

        assert (first.order_number, second.order_number) == (1, 2)
        assert quiz.question_counter == 2

    def test_non_positive_points_rejected(self):
        quiz = make_quiz()

        with pytest.raises(ValidationError):
            multiple_choice(quiz, points=0)


class TestAnswerChecking:
    """Tests for strict per-type answer comparison."""

    def test_multiple_choice_exact_index(self):
        question = multiple_choice(make_quiz())

        assert question.is_answer_correct(2)
        assert not question.is_answer_correct(1)
        assert not question.is_answer_correct("2")

    def test_boolean_is_not_an_index(self):
        question = make_quiz().add_question(
            QuestionType.MULTIPLE_CHOICE, "Q", correct_answer=1, options=["a", "b"], now=NOW
        )

        assert question.is_answer_correct(1)
        assert not question.is_answer_correct(True)

    def test_true_false_rejects_integers(self):
        question = make_quiz().add_question(QuestionType.TRUE_FALSE, "Q", correct_answer=True, now=NOW)

        assert question.is_answer_correct(True)
        assert not question.is_answer_correct(1)

    def test_fill_blank_is_trimmed_and_case_insensitive(self):
        question = make_quiz().add_question(
            QuestionType.FILL_BLANK, "Q", correct_answer=["Paris", "France"], now=NOW
        )

        assert question.is_answer_correct(["  paris", "FRANCE "])
        assert not question.is_answer_correct(["paris"])
        assert not question.is_answer_correct("paris france")

    def test_matching_requires_exact_mapping(self):
        question = make_quiz().add_question(
            QuestionType.MATCHING,
            "Match",
            options={"left": ["a", "b"], "right": ["1", "2"]},
            correct_answer={"a": "1", "b": "2"},
            now=NOW,
        )

        assert question.is_answer_correct({"a": "1", "b": "2"})
        assert not question.is_answer_correct({"a": "1"})

    def test_shuffled_option_index_maps_back(self):
        question = multiple_choice(make_quiz(), correct=2)

        # Displayed position 0 shows stored option 2
        assert question.canonical_answer(0, [2, 0, 1, 3]) == 2


class TestAutoGrade:
    """Tests for whole-quiz grading."""

    def test_multiple_choice_scoring(self):
        quiz = make_quiz()
        question = multiple_choice(quiz, correct=2, points=5)

        right = auto_grade([question], {str(question.id): 2})
        wrong = auto_grade([question], {str(question.id): 1})

        assert (right.points_earned, right.total_points, right.score_percentage) == (5, 5, 100.0)
        assert (wrong.points_earned, wrong.score_percentage) == (0, 0.0)

    def test_unanswered_questions_earn_nothing(self):
        quiz = make_quiz()
        questions = [multiple_choice(quiz, points=3), multiple_choice(quiz, points=1)]

        result = auto_grade(questions, {})

        assert result.points_earned == 0
        assert result.total_points == 4
        assert [r.is_correct for r in result.question_results] == [False, False]

    def test_essay_flags_manual_review(self):
        quiz = make_quiz()
        mc = multiple_choice(quiz, points=5)
        essay = quiz.add_question(QuestionType.ESSAY, "Discuss", points=5, now=NOW)

        result = auto_grade([mc, essay], {str(mc.id): 2, str(essay.id): "My essay"})

        assert result.requires_manual_review
        assert result.points_earned == 5
        assert result.score_percentage == 50.0


class TestAttemptEligibility:
    """Tests for attempt budgets and availability."""

    def test_budget_of_two(self):
        quiz = make_quiz(max_attempts=2)

        assert quiz.check_attempt_eligibility(0, NOW).can_start
        assert quiz.check_attempt_eligibility(1, NOW).next_attempt_number == 2
        third = quiz.check_attempt_eligibility(2, NOW)
        assert not third.can_start
        assert third.reason == "Maximum attempts (2) reached"

    def test_zero_means_unlimited(self):
        assert make_quiz(max_attempts=0).check_attempt_eligibility(50, NOW).can_start

    def test_negative_prior_attempts_is_a_programming_error(self):
        with pytest.raises(InvariantViolationError):
            make_quiz().check_attempt_eligibility(-1, NOW)

    def test_availability_window(self):
        quiz = make_quiz(available_from=NOW + timedelta(days=1), available_until=NOW + timedelta(days=2))

        early = quiz.check_attempt_eligibility(0, NOW)
        assert not early.can_start
        assert early.reason == "Quiz is not available at this time"
        assert quiz.check_attempt_eligibility(0, NOW + timedelta(days=1, hours=1)).can_start

    def test_empty_window_rejected(self):
        with pytest.raises(ValidationError):
            make_quiz(available_from=NOW, available_until=NOW)


class TestPresentation:
    """Tests for per-attempt question and option shuffling."""

    def test_unshuffled_quiz_keeps_authoring_order(self):
        quiz = make_quiz()
        questions = [multiple_choice(quiz) for _ in range(3)]

        order, option_orders = quiz.build_presentation(questions, random.Random(5))

        assert order == [str(q.id) for q in questions]
        assert option_orders == {}

    def test_shuffled_presentation_is_a_permutation(self):
        quiz = make_quiz(randomize_questions=True, randomize_options=True)
        questions = [multiple_choice(quiz) for _ in range(5)]

        order, option_orders = quiz.build_presentation(questions, random.Random(5))
        presented = present_questions(questions, order, option_orders)

        assert sorted(order) == sorted(str(q.id) for q in questions)
        for question in questions:
            assert sorted(option_orders[str(question.id)]) == [0, 1, 2, 3]
        assert [p.position for p in presented] == [1, 2, 3, 4, 5]
        first = presented[0]
        mapping = option_orders[str(first.question_id)]
        assert first.options == [["a", "b", "c", "d"][i] for i in mapping]

    def test_late_questions_are_appended(self):
        quiz = make_quiz()
        early = multiple_choice(quiz)
        late = multiple_choice(quiz)

        presented = present_questions([early, late], [str(early.id)], {})

        assert [p.question_id for p in presented] == [early.id, late.id]


class TestSubmission:
    """Tests for submitting and grading a single attempt."""

    def test_objective_quiz_is_auto_graded(self):
        quiz = make_quiz()
        question = multiple_choice(quiz)
        submission = start(quiz)
        submission.record_answer(question.id, 2, now=NOW)

        result = submission.submit(quiz, [question], now=NOW + timedelta(minutes=5))

        assert result.score_percentage == 100.0
        assert submission.grading_status == QuizGradingStatus.AUTO_GRADED
        assert submission.graded_at == NOW + timedelta(minutes=5)
        assert submission.time_taken_seconds == 300
        assert submission.has_passed(quiz)

    def test_shuffled_answer_is_graded_against_stored_index(self):
        quiz = make_quiz(randomize_options=True)
        question = multiple_choice(quiz, correct=2)
        submission = start(quiz, option_orders={str(question.id): [2, 0, 1, 3]})
        submission.record_answer(question.id, 0, now=NOW)

        result = submission.submit(quiz, [question], now=NOW)

        assert result.points_earned == 5

    def test_essay_quiz_awaits_review(self):
        quiz = make_quiz()
        essay = quiz.add_question(QuestionType.ESSAY, "Discuss", points=10, now=NOW)
        submission = start(quiz)
        submission.record_answer(essay.id, "An answer", now=NOW)

        submission.submit(quiz, [essay], now=NOW)

        assert submission.grading_status == QuizGradingStatus.PENDING_REVIEW
        assert submission.graded_at is None
        assert not submission.is_final()

    def test_submitted_attempt_is_immutable(self):
        quiz = make_quiz()
        question = multiple_choice(quiz)
        submission = start(quiz)
        submission.submit(quiz, [question], now=NOW)

        with pytest.raises(ConflictError, match="Quiz submission already completed"):
            submission.record_answer(question.id, 2, now=NOW)
        with pytest.raises(ConflictError):
            submission.submit(quiz, [question], now=NOW)

    def test_time_limit_overrun_is_flagged_not_rejected(self):
        quiz = make_quiz(time_limit_minutes=10)
        question = multiple_choice(quiz)
        submission = start(quiz)

        submission.submit(quiz, [question], now=NOW + timedelta(minutes=15))

        assert submission.exceeded_time_limit
        assert submission.is_submitted()

    def test_question_grades_override_only_named_questions(self):
        quiz = make_quiz()
        mc = multiple_choice(quiz, points=5)
        essay = quiz.add_question(QuestionType.ESSAY, "Discuss", points=5, now=NOW)
        submission = start(quiz)
        submission.record_answer(mc.id, 2, now=NOW)
        submission.submit(quiz, [mc, essay], now=NOW)

        score = submission.grade(quiz, [mc, essay], grader_id=uuid4(), question_grades={essay.id: 4}, now=NOW)

        assert submission.points_earned == 9
        assert score == 90.0
        assert submission.grading_status == QuizGradingStatus.GRADED

    def test_grading_rules(self):
        quiz = make_quiz()
        essay = quiz.add_question(QuestionType.ESSAY, "Discuss", points=10, now=NOW)
        submission = start(quiz)

        with pytest.raises(ConflictError):
            submission.grade(quiz, [essay], grader_id=uuid4(), points_awarded=5, now=NOW)

        submission.submit(quiz, [essay], now=NOW)
        with pytest.raises(ValidationError):
            submission.grade(quiz, [essay], grader_id=uuid4(), points_awarded=11, now=NOW)
        with pytest.raises(ValidationError):
            submission.grade(quiz, [essay], grader_id=uuid4(), now=NOW)

        submission.grade(quiz, [essay], grader_id=uuid4(), points_awarded=7, now=NOW)
        with pytest.raises(ConflictError):
            submission.grade(quiz, [essay], grader_id=uuid4(), points_awarded=8, now=NOW)

    def test_attempt_summary(self):
        quiz = make_quiz(max_attempts=2, passing_score_percentage=60)
        question = multiple_choice(quiz)
        first = start(quiz)
        first.record_answer(question.id, 1, now=NOW)
        first.submit(quiz, [question], now=NOW)
        second = start(quiz, attempt=2)
        second.record_answer(question.id, 2, now=NOW)
        second.submit(quiz, [question], now=NOW)

        summary = summarize_attempts(quiz, uuid4(), [first, second], NOW)

        assert summary.total_attempts == 2
        assert summary.best_score == 100.0
        assert summary.has_passing_score
        assert not summary.can_start_new_attempt
