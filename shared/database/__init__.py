"""
Database Connection and Utilities

Manages the async PostgreSQL connection and persistence error translation.
"""

from shared.database.errors import conflict_from_integrity, persistence_guard
from shared.database.postgres import (
    Base,
    close_db,
    get_db,
    get_engine,
    get_session_factory,
    init_db,
)

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "get_session_factory",
    "init_db",
    "close_db",
    "persistence_guard",
    "conflict_from_integrity",
]
