"""
Persistence Error Translation

Maps storage failures onto the domain exception taxonomy.
"""

import functools
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from shared.domain.exceptions import ConflictError, DatabaseError

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def conflict_from_integrity(
    error: IntegrityError, reason: str, **context: object
) -> ConflictError:
    """Build a ConflictError for a rejected uniqueness constraint."""
    logger.info(
        "Uniqueness constraint rejected write",
        reason=reason,
        detail=str(error.orig),
    )
    return ConflictError(reason, context=dict(context), cause=error)


def persistence_guard(operation: str) -> Callable[
    [Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]
]:
    """
    Wrap unexpected SQLAlchemy failures into DatabaseError.

    Domain exceptions raised inside the wrapped coroutine propagate unchanged.

    Args:
        operation: Operation name recorded on the raised DatabaseError
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except SQLAlchemyError as e:
                raise DatabaseError(
                    f"Persistence failure during {operation}",
                    operation=operation,
                    cause=e,
                ) from e

        return wrapper

    return decorator
