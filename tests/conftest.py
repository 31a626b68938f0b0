"""Pytest configuration and shared fixtures.

Service tests run against an in-memory SQLite database (aiosqlite) built
from the real models, so the uniqueness constraints are exercised exactly as
in production.
"""

import random
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import services.assessment_service.models  # noqa: F401
import services.course_service.models  # noqa: F401
import services.enrollment_service.models  # noqa: F401
import shared.events.outbox  # noqa: F401
from services.assessment_service.assignment_service import AssignmentService
from services.assessment_service.quiz_service import QuizService
from services.course_service.course_service import CourseService
from services.enrollment_service.enrollment_service import EnrollmentService
from shared.config import Settings
from shared.database.postgres import Base
from shared.domain.courses import Course, LessonType
from shared.domain.exceptions import ExternalServiceError
from shared.events.outbox import Outbox
from shared.events.stream import EventStream
from shared.logging import configure_logging
from shared.security.access import Actor, Role
from shared.storage.object_store import ObjectStorageClient

# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def _structured_logging():
    configure_logging(level="WARNING", log_format="text")


# =============================================================================
# Time
# =============================================================================


class FrozenClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at a fixed naive-UTC instant."""
    return FrozenClock(datetime(2025, 3, 1, 9, 0, 0))


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source for reproducible shuffles and codes."""
    return random.Random(1234)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        min_modules_to_publish=3,
        default_max_file_size_mb=10,
        app_base_url="https://learn.test",
    )


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with working SAVEPOINTs."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session
        await session.rollback()


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def event_stream() -> EventStream:
    return EventStream(stream_id="test")


@pytest.fixture
def outbox() -> Outbox:
    return Outbox()


class FakeObjectStorage(ObjectStorageClient):
    """Records uploads and deletions; can be told to fail."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_uploads = False

    async def upload_file(self, key: str, content: bytes, content_type: str) -> str:
        if self.fail_uploads:
            raise ExternalServiceError(service_name="object_storage", message="upload rejected")
        self.objects[key] = content
        return f"https://files.test/{key}"

    async def delete_file(self, key: str) -> None:
        self.objects.pop(key, None)
        self.deleted.append(key)


@pytest.fixture
def storage() -> FakeObjectStorage:
    return FakeObjectStorage()


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def instructor() -> Actor:
    return Actor(user_id=uuid4(), role=Role.INSTRUCTOR)


@pytest.fixture
def other_instructor() -> Actor:
    return Actor(user_id=uuid4(), role=Role.INSTRUCTOR)


@pytest.fixture
def student() -> Actor:
    return Actor(user_id=uuid4(), role=Role.STUDENT)


@pytest.fixture
def other_student() -> Actor:
    return Actor(user_id=uuid4(), role=Role.STUDENT)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=uuid4(), role=Role.ADMIN)


# =============================================================================
# Services and builders
# =============================================================================


@pytest.fixture
def course_service(session, outbox, settings, clock, rng) -> CourseService:
    return CourseService(session, outbox=outbox, settings=settings, clock=clock, rng=rng)


@pytest.fixture
def enrollment_service(session, outbox, settings, clock, rng) -> EnrollmentService:
    return EnrollmentService(session, outbox=outbox, settings=settings, clock=clock, rng=rng)


PublishedCourseBuilder = Callable[..., Awaitable[Course]]


@pytest.fixture
def published_course(course_service: CourseService, instructor: Actor) -> PublishedCourseBuilder:
    """
    Build and publish a course.

    Each module gets one lesson per entry of ``lesson_types`` (text lessons
    by default).
    """

    async def build(
        modules: int = 3,
        lesson_types: tuple[LessonType, ...] = (LessonType.TEXT,),
        enrollment_limit: int | None = None,
    ) -> Course:
        course = await course_service.create_course(
            instructor,
            title="Intro to Data Science",
            description="Foundations of data analysis",
            category="data",
            enrollment_limit=enrollment_limit,
        )
        for index in range(1, modules + 1):
            module = await course_service.add_module(instructor, course.id, title=f"Module {index}")
            for lesson_type in lesson_types:
                await course_service.add_lesson(
                    instructor,
                    module.id,
                    title=f"{lesson_type.value.title()} lesson {index}",
                    lesson_type=lesson_type,
                    duration_minutes=10,
                    content_text="Read this" if lesson_type == LessonType.TEXT else None,
                    content_url=(
                        f"https://cdn.test/video-{index}.mp4"
                        if lesson_type == LessonType.VIDEO
                        else None
                    ),
                )
        return await course_service.publish(instructor, course.id)

    return build


@pytest.fixture
def quiz_service(session, outbox, settings, clock, rng) -> QuizService:
    return QuizService(session, outbox=outbox, settings=settings, clock=clock, rng=rng)


@pytest.fixture
def assignment_service(session, storage, outbox, settings, clock) -> AssignmentService:
    return AssignmentService(session, storage=storage, outbox=outbox, settings=settings, clock=clock)
