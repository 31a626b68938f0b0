"""Assignment service tests against the database, with a fake object store."""

from datetime import timedelta

import pytest
import pytest_asyncio

from shared.domain.assignments import AssignmentGradingStatus, AssignmentSubmission, FileUpload
from shared.domain.courses import LessonType
from shared.domain.enrollment import ProgressStatus
from shared.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    ValidationError,
)

pytestmark = pytest.mark.integration

PDF = FileUpload(file_name="essay.PDF", content=b"%PDF-1.7 essay", content_type="application/pdf")


@pytest_asyncio.fixture
async def assignment_setup(published_course, enrollment_service, assignment_service, instructor, student, clock):
    """Published assignment course, enrolled student, and an assignment due in a week."""
    course = await published_course(modules=3, lesson_types=(LessonType.ASSIGNMENT,))
    enrollment = await enrollment_service.enroll_student(student, student.user_id, course.id)
    lesson = course.all_lessons()[0]
    assignment = await assignment_service.create_assignment(
        instructor,
        lesson.id,
        title="Data cleaning report",
        instructions="Submit your notebook export",
        due_date=clock.now + timedelta(days=7),
        max_points=100,
        allowed_file_types=[".pdf", ".ipynb"],
        late_submission_allowed=True,
        late_penalty_percentage=20,
    )
    return assignment, lesson, enrollment


class TestAssignmentCreation:
    """Tests for creating assignments."""

    @pytest.mark.asyncio
    async def test_defaults_file_limit_from_settings(self, assignment_setup, settings):
        assignment, _, _ = assignment_setup

        assert assignment.max_file_size_mb == settings.default_max_file_size_mb
        assert assignment.allowed_file_types == [".pdf", ".ipynb"]

    @pytest.mark.asyncio
    async def test_requires_assignment_lesson(self, assignment_service, published_course, instructor, clock):
        course = await published_course(modules=3)

        with pytest.raises(ValidationError, match="assignment lessons"):
            await assignment_service.create_assignment(
                instructor,
                course.all_lessons()[0].id,
                title="Wrong lesson",
                instructions="x",
                due_date=clock.now + timedelta(days=1),
                max_points=10,
                allowed_file_types=[".pdf"],
            )

    @pytest.mark.asyncio
    async def test_past_due_date_rejected(self, assignment_service, published_course, instructor, clock):
        course = await published_course(modules=3, lesson_types=(LessonType.ASSIGNMENT,))

        with pytest.raises(ValidationError, match="Due date must be in the future"):
            await assignment_service.create_assignment(
                instructor,
                course.all_lessons()[0].id,
                title="Too late",
                instructions="x",
                due_date=clock.now - timedelta(hours=1),
                max_points=10,
                allowed_file_types=[".pdf"],
            )


class TestSubmission:
    """Tests for submitting work and the upload compensation."""

    @pytest.mark.asyncio
    async def test_file_is_uploaded_before_the_row_is_written(
        self, assignment_service, assignment_setup, student, storage
    ):
        assignment, _, _ = assignment_setup

        submission = await assignment_service.submit_assignment(student, assignment.id, file=PDF)

        assert len(storage.objects) == 1
        key = next(iter(storage.objects))
        assert key.startswith(f"assignments/{assignment.id}/{student.user_id}/")
        assert key.endswith(".pdf")
        assert submission.file_url == f"https://files.test/{key}"
        assert submission.file_name == "essay.PDF"
        assert submission.file_size_bytes == len(PDF.content)
        stored = await assignment_service.repository.get_submission(submission.id)
        assert stored.file_url == submission.file_url

    @pytest.mark.asyncio
    async def test_upload_failure_leaves_no_row(self, assignment_service, assignment_setup, student, storage):
        assignment, _, _ = assignment_setup
        storage.fail_uploads = True

        with pytest.raises(ExternalServiceError):
            await assignment_service.submit_assignment(student, assignment.id, file=PDF)

        assert await assignment_service.repository.list_submissions(assignment.id, student.user_id) == []

    @pytest.mark.asyncio
    async def test_policy_violations_never_upload(self, assignment_service, assignment_setup, student, storage):
        assignment, _, _ = assignment_setup
        exe = FileUpload(file_name="virus.exe", content=b"MZ")
        huge = FileUpload(file_name="big.pdf", content=b"0" * (10 * 1024 * 1024 + 1))

        for upload in (exe, huge):
            with pytest.raises(ValidationError):
                await assignment_service.submit_assignment(student, assignment.id, file=upload)
        with pytest.raises(ValidationError):
            await assignment_service.submit_assignment(student, assignment.id, submission_text="  ")

        assert storage.objects == {}

    @pytest.mark.asyncio
    async def test_failed_insert_removes_uploaded_file(
        self, assignment_service, instructor, assignment_setup, student, storage
    ):
        assignment, _, _ = assignment_setup
        first = await assignment_service.submit_assignment(student, assignment.id, submission_text="v1")
        await assignment_service.request_revision(instructor, first.id, "Add the charts")
        await assignment_service.submit_assignment(
            student, assignment.id, file=PDF, parent_submission_id=first.id
        )
        uploaded_first = set(storage.objects)

        # A second revision of the same parent loses on the unique parent link
        with pytest.raises(ConflictError, match="A revision has already been submitted"):
            await assignment_service.submit_assignment(
                student, assignment.id, file=PDF, parent_submission_id=first.id
            )

        assert len(storage.deleted) == 1
        assert storage.deleted[0] not in uploaded_first
        assert set(storage.objects) == uploaded_first
        submissions = await assignment_service.repository.list_submissions(assignment.id, student.user_id)
        assert [s.revision_number for s in submissions] == [1, 2]

    @pytest.mark.asyncio
    async def test_second_submission_without_revision_request(
        self, assignment_service, assignment_setup, student
    ):
        assignment, _, _ = assignment_setup
        await assignment_service.submit_assignment(student, assignment.id, submission_text="v1")

        assert not await assignment_service.can_submit_assignment(assignment.id, student.user_id)
        with pytest.raises(ConflictError, match="already pending or graded"):
            await assignment_service.submit_assignment(student, assignment.id, submission_text="v2")

    @pytest.mark.asyncio
    async def test_unique_revision_number_is_final_arbiter(
        self, assignment_service, assignment_setup, student, clock
    ):
        assignment, _, enrollment = assignment_setup
        await assignment_service.submit_assignment(student, assignment.id, submission_text="v1")
        # Built as a concurrent request that read no prior submission would
        duplicate = AssignmentSubmission.submit(
            assignment, student.user_id, enrollment.id, submission_text="also v1", now=clock.now
        )

        with pytest.raises(ConflictError, match="A submission for this assignment already exists"):
            await assignment_service.repository.insert_submission(duplicate)

        submissions = await assignment_service.repository.list_submissions(assignment.id, student.user_id)
        assert [s.submission_text for s in submissions] == ["v1"]

    @pytest.mark.asyncio
    async def test_unenrolled_student_rejected(self, assignment_service, assignment_setup, other_student):
        assignment, _, _ = assignment_setup

        with pytest.raises(AuthorizationError):
            await assignment_service.submit_assignment(other_student, assignment.id, submission_text="hi")


class TestRevisionsAndGrading:
    """Tests for the revision chain, grading, and progress."""

    @pytest.mark.asyncio
    async def test_revision_chain_keeps_history(
        self, assignment_service, instructor, assignment_setup, student, clock
    ):
        assignment, _, _ = assignment_setup
        first = await assignment_service.submit_assignment(student, assignment.id, submission_text="v1")
        await assignment_service.start_review(instructor, first.id)
        await assignment_service.request_revision(instructor, first.id, "Cite your sources")
        assert await assignment_service.can_submit_assignment(assignment.id, student.user_id)

        clock.advance(days=1)
        second = await assignment_service.submit_assignment(student, assignment.id, submission_text="v2")

        assert second.revision_number == 2
        assert second.parent_submission_id == first.id
        original = await assignment_service.repository.get_submission(first.id)
        assert original.submission_text == "v1"
        assert original.grading_status == AssignmentGradingStatus.REVISION_REQUESTED
        assert original.feedback == "Cite your sources"

        summary = await assignment_service.get_student_submission_summary(
            student, assignment.id, student.user_id
        )
        assert summary.submission_count == 2
        assert summary.latest_submission.id == second.id
        assert not summary.revision_requested
        assert not summary.can_submit

    @pytest.mark.asyncio
    async def test_late_grade_applies_penalty_and_completes_lesson(
        self, assignment_service, enrollment_service, instructor, assignment_setup, student, clock
    ):
        assignment, lesson, enrollment = assignment_setup
        clock.advance(days=8)
        submission = await assignment_service.submit_assignment(student, assignment.id, submission_text="late")
        assert submission.is_late

        graded = await assignment_service.grade_assignment(instructor, submission.id, 80, feedback="Solid")

        assert graded.points_awarded == 80
        assert graded.final_score == 64.0
        assert graded.grading_status == AssignmentGradingStatus.GRADED
        progress = (await enrollment_service.get_enrollment(enrollment.id)).get_progress(lesson.id)
        assert progress.status == ProgressStatus.COMPLETED
        assert progress.quiz_score is None

    @pytest.mark.asyncio
    async def test_grading_rules(self, assignment_service, instructor, other_instructor, assignment_setup, student):
        assignment, _, _ = assignment_setup
        submission = await assignment_service.submit_assignment(student, assignment.id, submission_text="v1")

        with pytest.raises(AuthorizationError):
            await assignment_service.grade_assignment(other_instructor, submission.id, 50)
        with pytest.raises(ValidationError):
            await assignment_service.grade_assignment(instructor, submission.id, 150)

        await assignment_service.grade_assignment(instructor, submission.id, 90)
        with pytest.raises(ConflictError):
            await assignment_service.grade_assignment(instructor, submission.id, 95)
        with pytest.raises(ConflictError):
            await assignment_service.request_revision(instructor, submission.id, "Too late")
