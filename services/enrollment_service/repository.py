"""
Enrollment Service Repository

Database access for enrollments, their progress rows, and certificates.
The (student, course) pair and the one-certificate-per-enrollment rule are
enforced by unique constraints, never by read-then-write checks.
"""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.enrollment_service.models import (
    CertificateModel,
    EnrollmentModel,
    LessonProgressModel,
)
from shared.database.errors import conflict_from_integrity
from shared.domain.enrollment import Certificate, Enrollment, LessonProgress

logger = structlog.get_logger(__name__)

_ENROLLMENT_FIELDS = (
    "status",
    "progress_percentage",
    "payment_id",
    "certificate_id",
    "dropped_reason",
    "completed_at",
    "updated_at",
)
_PROGRESS_FIELDS = (
    "status",
    "time_spent_seconds",
    "completed_at",
    "last_accessed_at",
    "quiz_score",
    "attempts_count",
    "updated_at",
)


def _columns(row: Any) -> dict[str, Any]:
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


def _enum_values(data: dict[str, Any]) -> dict[str, Any]:
    return {key: getattr(value, "value", value) for key, value in data.items()}


class EnrollmentRepository:
    """Repository for enrollment data access."""

    def __init__(self, session: AsyncSession):
        """
        Initialize repository.

        Args:
            session: Database session
        """
        self.session = session

    async def _hydrate(self, row: EnrollmentModel) -> Enrollment:
        progress_rows = (
            await self.session.execute(
                select(LessonProgressModel)
                .where(LessonProgressModel.enrollment_id == row.id)
                .order_by(LessonProgressModel.created_at, LessonProgressModel.id)
            )
        ).scalars().all()
        return Enrollment.model_validate(
            {
                **_columns(row),
                "lesson_progress": [LessonProgress.model_validate(p) for p in progress_rows],
            }
        )

    async def get_enrollment(self, enrollment_id: UUID, for_update: bool = False) -> Enrollment | None:
        """
        Load an enrollment with its progress rows.

        Args:
            enrollment_id: Enrollment UUID
            for_update: Lock the enrollment row for the rest of the transaction
        """
        query = select(EnrollmentModel).where(EnrollmentModel.id == enrollment_id)
        if for_update:
            query = query.with_for_update()
        row = (await self.session.execute(query)).scalar_one_or_none()
        return await self._hydrate(row) if row is not None else None

    async def find_by_student_and_course(
        self, student_id: UUID, course_id: UUID, for_update: bool = False
    ) -> Enrollment | None:
        query = select(EnrollmentModel).where(
            EnrollmentModel.student_id == student_id,
            EnrollmentModel.course_id == course_id,
        )
        if for_update:
            query = query.with_for_update()
        row = (await self.session.execute(query)).scalar_one_or_none()
        return await self._hydrate(row) if row is not None else None

    async def count_active_enrollments(self, course_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(EnrollmentModel.id)).where(
                EnrollmentModel.course_id == course_id,
                EnrollmentModel.status == "active",
            )
        )
        return result.scalar() or 0

    async def count_enrollments(self, student_id: UUID, course_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(EnrollmentModel.id)).where(
                EnrollmentModel.student_id == student_id,
                EnrollmentModel.course_id == course_id,
            )
        )
        return result.scalar() or 0

    async def insert_enrollment(self, enrollment: Enrollment) -> None:
        """
        Insert an enrollment and all of its progress rows atomically.

        Raises:
            ConflictError: If the student already has an enrollment for the course
        """
        try:
            async with self.session.begin_nested():
                self.session.add(
                    EnrollmentModel(**_enum_values(enrollment.model_dump(exclude={"lesson_progress"})))
                )
                await self.session.flush()
                self.session.add_all(
                    [
                        LessonProgressModel(**_enum_values(progress.model_dump()))
                        for progress in enrollment.lesson_progress
                    ]
                )
        except IntegrityError as e:
            raise conflict_from_integrity(
                e,
                "Student is already enrolled in this course",
                student_id=str(enrollment.student_id),
                course_id=str(enrollment.course_id),
            ) from e

        logger.info(
            "Enrollment stored",
            enrollment_id=str(enrollment.id),
            lesson_count=len(enrollment.lesson_progress),
        )

    async def insert_progress_rows(self, rows: list[LessonProgress]) -> None:
        """
        Add progress rows for lessons created after enrollment.

        Raises:
            ConflictError: If a row for the lesson already exists
        """
        if not rows:
            return
        try:
            async with self.session.begin_nested():
                self.session.add_all([LessonProgressModel(**_enum_values(p.model_dump())) for p in rows])
        except IntegrityError as e:
            raise conflict_from_integrity(
                e,
                "Lesson progress already exists for this enrollment",
                enrollment_id=str(rows[0].enrollment_id),
            ) from e

    async def save_enrollment(self, enrollment: Enrollment) -> None:
        """Write back mutable enrollment and progress fields."""
        row = await self.session.get(EnrollmentModel, enrollment.id)
        if row is None:
            return
        for name in _ENROLLMENT_FIELDS:
            setattr(row, name, getattr(getattr(enrollment, name), "value", getattr(enrollment, name)))

        progress_rows = {
            p.id: p
            for p in (
                await self.session.execute(
                    select(LessonProgressModel).where(LessonProgressModel.enrollment_id == enrollment.id)
                )
            ).scalars()
        }
        for progress in enrollment.lesson_progress:
            progress_row = progress_rows.get(progress.id)
            if progress_row is None:
                continue
            for name in _PROGRESS_FIELDS:
                value = getattr(progress, name)
                setattr(progress_row, name, getattr(value, "value", value))

        await self.session.flush()

    async def insert_certificate(self, certificate: Certificate) -> None:
        """
        Raises:
            ConflictError: If the enrollment already has a certificate
        """
        try:
            async with self.session.begin_nested():
                self.session.add(CertificateModel(**certificate.model_dump()))
        except IntegrityError as e:
            raise conflict_from_integrity(
                e,
                "Certificate already issued for this enrollment",
                enrollment_id=str(certificate.enrollment_id),
            ) from e

    async def get_certificate_for_enrollment(self, enrollment_id: UUID) -> Certificate | None:
        result = await self.session.execute(
            select(CertificateModel).where(CertificateModel.enrollment_id == enrollment_id)
        )
        row = result.scalar_one_or_none()
        return Certificate.model_validate(row) if row is not None else None

    async def count_certificates(self, enrollment_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(CertificateModel.id)).where(
                CertificateModel.enrollment_id == enrollment_id
            )
        )
        return result.scalar() or 0
