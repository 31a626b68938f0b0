"""
Certificate Issuance

Issues the completion certificate for an enrollment exactly once. The
enrollment carries the link, and the certificates table's unique
enrollment_id column rejects any second row.
"""

import random

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.enrollment_service.repository import EnrollmentRepository
from shared.clock import Clock, utcnow
from shared.config import Settings, get_settings
from shared.domain.enrollment import Certificate, Enrollment

logger = structlog.get_logger(__name__)


class CertificateService:
    """Creates completion certificates for completed enrollments."""

    def __init__(
        self,
        db_session: AsyncSession,
        settings: Settings | None = None,
        clock: Clock = utcnow,
        rng: random.Random | None = None,
    ):
        self.db = db_session
        self.repository = EnrollmentRepository(db_session)
        self.settings = settings or get_settings()
        self.clock = clock
        self.rng = rng

    async def issue(self, enrollment: Enrollment) -> Certificate:
        """
        Issue the certificate and link it to the enrollment.

        The enrollment is mutated in memory (certificate link plus a
        certificate-issued event); the caller persists it.

        Raises:
            ConflictError: If the enrollment is not completed or a
                certificate already exists for it
        """
        now = self.clock()
        certificate = Certificate.issue(
            enrollment, self.settings.app_base_url, now=now, rng=self.rng
        )
        await self.repository.insert_certificate(certificate)
        enrollment.attach_certificate(certificate, now=now)

        logger.info(
            "Certificate issued",
            enrollment_id=str(enrollment.id),
            certificate_id=str(certificate.id),
            certificate_code=certificate.certificate_code,
        )
        return certificate
