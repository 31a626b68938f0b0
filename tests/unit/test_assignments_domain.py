"""Unit tests for assignment policy, late penalties, and revision chains."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from shared.domain.assignments import (
    Assignment,
    AssignmentGradingStatus,
    AssignmentSubmission,
    StoredFile,
    can_submit_assignment,
)
from shared.domain.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    ValidationError,
)

NOW = datetime(2025, 3, 1, 9, 0, 0)
DUE = NOW + timedelta(days=7)


def make_assignment(**overrides) -> Assignment:
    fields = {
        "lesson_id": uuid4(),
        "title": "Essay",
        "instructions": "Write 500 words",
        "due_date": DUE,
        "max_points": 100,
        "allowed_file_types": [".pdf", ".DOCX"],
        "max_file_size_mb": 5,
        "now": NOW,
    }
    fields.update(overrides)
    return Assignment.create(**fields)


def submit(assignment: Assignment, student_id=None, parent=None, at: datetime = NOW) -> AssignmentSubmission:
    return AssignmentSubmission.submit(
        assignment,
        student_id=student_id or uuid4(),
        enrollment_id=uuid4(),
        submission_text="My answer",
        parent=parent,
        now=at,
    )


class TestAssignmentPolicy:
    """Tests for assignment creation and file policy."""

    def test_due_date_must_be_in_future(self):
        with pytest.raises(ValidationError) as exc_info:
            make_assignment(due_date=NOW)
        assert exc_info.value.field == "due_date"

    @pytest.mark.parametrize("file_type", ["pdf", ".p df", ""])
    def test_malformed_file_types_rejected(self, file_type):
        with pytest.raises(ValidationError):
            make_assignment(allowed_file_types=[file_type])

    def test_file_types_are_normalized(self):
        assert make_assignment().allowed_file_types == [".pdf", ".docx"]

    def test_extension_check_is_case_insensitive(self):
        assignment = make_assignment()

        assignment.validate_file("Report.PDF", 1024)
        with pytest.raises(ValidationError):
            assignment.validate_file("report.exe", 1024)

    def test_size_limit(self):
        assignment = make_assignment(max_file_size_mb=1)

        assignment.validate_file("a.pdf", 1024 * 1024)
        with pytest.raises(ValidationError, match="exceeds maximum of 1MB"):
            assignment.validate_file("a.pdf", 1024 * 1024 + 1)

    def test_submission_needs_text_or_file(self):
        assignment = make_assignment()

        with pytest.raises(ValidationError):
            assignment.validate_submission(None, None, "   ", NOW)

    def test_required_file(self):
        assignment = make_assignment(requires_file_upload=True)

        with pytest.raises(ValidationError):
            assignment.validate_submission(None, None, "text only", NOW)

    def test_closed_after_due_date_unless_late_allowed(self):
        strict = make_assignment()
        lenient = make_assignment(late_submission_allowed=True, late_penalty_percentage=20)
        after = DUE + timedelta(minutes=1)

        with pytest.raises(ConflictError):
            strict.validate_submission(None, None, "late", after)
        lenient.validate_submission(None, None, "late", after)


class TestLatePenalty:
    """Tests for final score arithmetic."""

    def test_penalty_applied_once_to_raw_points(self):
        assignment = make_assignment(late_submission_allowed=True, late_penalty_percentage=20)
        submission = submit(assignment, at=DUE + timedelta(hours=1))

        final = submission.grade(assignment, 80, grader_id=uuid4(), now=DUE + timedelta(days=1))

        assert submission.is_late
        assert final == 64.0
        assert submission.points_awarded == 80
        assert submission.final_score == 64.0

    def test_on_time_submission_keeps_points(self):
        assignment = make_assignment(late_submission_allowed=True, late_penalty_percentage=20)
        submission = submit(assignment)

        assert submission.grade(assignment, 80, grader_id=uuid4(), now=NOW) == 80.0

    def test_points_bounded_by_max(self):
        assignment = make_assignment()
        submission = submit(assignment)

        with pytest.raises(ValidationError):
            submission.grade(assignment, 101, grader_id=uuid4(), now=NOW)
        assert submission.grading_status == AssignmentGradingStatus.SUBMITTED


class TestSubmissionStateMachine:
    """Tests for review, grading, and revisions."""

    def test_review_then_grade(self):
        assignment = make_assignment()
        submission = submit(assignment)

        submission.start_review(uuid4(), now=NOW)
        submission.grade(assignment, 90, grader_id=uuid4(), now=NOW)

        assert submission.grading_status == AssignmentGradingStatus.GRADED
        with pytest.raises(ConflictError):
            submission.grade(assignment, 95, grader_id=uuid4(), now=NOW)
        with pytest.raises(InvalidStateTransitionError):
            submission.start_review(uuid4(), now=NOW)

    def test_revision_request_needs_feedback(self):
        submission = submit(make_assignment())

        with pytest.raises(ValidationError):
            submission.request_revision("  ", grader_id=uuid4(), now=NOW)

    def test_revision_chain(self):
        assignment = make_assignment()
        student_id = uuid4()
        first = submit(assignment, student_id=student_id)
        first.request_revision("Expand section 2", grader_id=uuid4(), now=NOW)

        second = submit(assignment, student_id=student_id, parent=first, at=NOW + timedelta(days=1))

        assert second.revision_number == 2
        assert second.parent_submission_id == first.id
        assert first.grading_status == AssignmentGradingStatus.REVISION_REQUESTED
        assert first.feedback == "Expand section 2"

    def test_revision_requires_outstanding_request(self):
        assignment = make_assignment()
        student_id = uuid4()
        first = submit(assignment, student_id=student_id)

        with pytest.raises(ConflictError):
            submit(assignment, student_id=student_id, parent=first)

    def test_revision_must_belong_to_same_student(self):
        assignment = make_assignment()
        first = submit(assignment)
        first.request_revision("Redo", grader_id=uuid4(), now=NOW)

        with pytest.raises(ValidationError):
            submit(assignment, student_id=uuid4(), parent=first)

    def test_file_submission_fields(self):
        assignment = make_assignment()

        submission = AssignmentSubmission.submit(
            assignment,
            student_id=uuid4(),
            enrollment_id=uuid4(),
            stored_file=StoredFile(url="https://files.test/a.pdf", name="a.pdf", size_bytes=10),
            now=NOW,
        )

        assert submission.file_url == "https://files.test/a.pdf"
        assert submission.submission_text is None

    def test_can_submit(self):
        assignment = make_assignment()
        first = submit(assignment)

        assert can_submit_assignment(assignment, None, NOW)
        assert not can_submit_assignment(assignment, first, NOW)
        first.request_revision("Redo", grader_id=uuid4(), now=NOW)
        assert can_submit_assignment(assignment, first, NOW)
        assert not can_submit_assignment(assignment, None, DUE + timedelta(seconds=1))
