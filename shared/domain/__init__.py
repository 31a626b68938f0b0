"""
Learning Platform Domain Models

Pydantic aggregates and pure transition rules for course structure,
enrollment progress, quizzes, and assignments.

Aggregates:
- Course owns CourseModule owns Lesson
- Enrollment owns LessonProgress; Certificate is issued on completion
- Quiz owns Question; QuizSubmission is one attempt
- Assignment; AssignmentSubmission forms revision chains
"""

from shared.domain.assignments import (
    Assignment,
    AssignmentGradingStatus,
    AssignmentSubmission,
    FileUpload,
    StoredFile,
    StudentSubmissionSummary,
    can_submit_assignment,
)
from shared.domain.courses import (
    Course,
    CourseModule,
    CourseStatus,
    Difficulty,
    Lesson,
    LessonType,
    PublishCheck,
    generate_slug,
)
from shared.domain.enrollment import (
    Certificate,
    Enrollment,
    EnrollmentEligibility,
    EnrollmentProgressSummary,
    EnrollmentStatus,
    LessonProgress,
    ProgressOutcome,
    ProgressStatus,
    calculate_percentage,
)
from shared.domain.entities import AbstractEntity, AggregateRoot
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
    auto_grade,
)

__all__ = [
    # Base Entities
    "AbstractEntity",
    "AggregateRoot",
    # Course Structure
    "Course",
    "CourseModule",
    "CourseStatus",
    "Difficulty",
    "Lesson",
    "LessonType",
    "PublishCheck",
    "generate_slug",
    # Enrollment & Progress
    "Certificate",
    "Enrollment",
    "EnrollmentEligibility",
    "EnrollmentProgressSummary",
    "EnrollmentStatus",
    "LessonProgress",
    "ProgressOutcome",
    "ProgressStatus",
    "calculate_percentage",
    # Quizzes
    "AttemptEligibility",
    "AttemptSummary",
    "GradingResult",
    "PresentedQuestion",
    "Question",
    "QuestionDifficulty",
    "QuestionType",
    "Quiz",
    "QuizGradingStatus",
    "QuizSubmission",
    "QuizType",
    "auto_grade",
    # Assignments
    "Assignment",
    "AssignmentGradingStatus",
    "AssignmentSubmission",
    "FileUpload",
    "StoredFile",
    "StudentSubmissionSummary",
    "can_submit_assignment",
]
