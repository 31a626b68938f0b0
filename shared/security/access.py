"""
Ownership and Role Checks

The core receives an already-authenticated ``Actor``; broader RBAC lives in
the presentation layer. The checks here are the ones the core owns: course
staff for authoring and grading, the student themself for their own
enrollments, attempts, and submissions.
"""

from enum import Enum
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict

from shared.domain.exceptions import AuthorizationError

logger = structlog.get_logger(__name__)


class Role(str, Enum):
    """Platform roles known to the core."""

    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class Actor(BaseModel):
    """Pre-authenticated caller identity."""

    model_config = ConfigDict(frozen=True)

    user_id: UUID
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class AccessPolicy:
    """
    Evaluates the ownership rules the core is responsible for.

    ``can_*`` methods are pure predicates; ``ensure_*`` methods raise
    AuthorizationError and log the denial.
    """

    def can_manage_course(self, actor: Actor, instructor_id: UUID) -> bool:
        """Course instructor or admin."""
        return actor.is_admin or (actor.role == Role.INSTRUCTOR and actor.user_id == instructor_id)

    def can_act_as_student(self, actor: Actor, student_id: UUID, allow_admin: bool = False) -> bool:
        """The student themself, optionally an admin acting on their behalf."""
        if allow_admin and actor.is_admin:
            return True
        return actor.role == Role.STUDENT and actor.user_id == student_id

    def can_view_learner_record(self, actor: Actor, student_id: UUID, instructor_id: UUID) -> bool:
        """Owning student, course instructor, or admin."""
        return actor.user_id == student_id or self.can_manage_course(actor, instructor_id)

    def ensure_course_manager(
        self, actor: Actor, instructor_id: UUID, resource: str, action: str
    ) -> None:
        if not self.can_manage_course(actor, instructor_id):
            self._deny(actor, resource, action, "Only the course instructor or an admin may do this")

    def ensure_student_self(
        self,
        actor: Actor,
        student_id: UUID,
        resource: str,
        action: str,
        allow_admin: bool = False,
    ) -> None:
        if not self.can_act_as_student(actor, student_id, allow_admin):
            self._deny(actor, resource, action, "Students may only act on their own records")

    def ensure_learner_record_access(
        self, actor: Actor, student_id: UUID, instructor_id: UUID, resource: str, action: str
    ) -> None:
        if not self.can_view_learner_record(actor, student_id, instructor_id):
            self._deny(actor, resource, action, "Not allowed to view this learner record")

    def _deny(self, actor: Actor, resource: str, action: str, message: str) -> None:
        logger.warning(
            "Access denied",
            user_id=str(actor.user_id),
            role=actor.role.value,
            resource=resource,
            action=action,
        )
        raise AuthorizationError(message, resource=resource, action=action)


access_policy = AccessPolicy()
