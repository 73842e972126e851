"""
Database Connection and Utilities

Manages the async SQLAlchemy engine for the entity store.
"""

from shared.database.postgres import (
    Base,
    close_db,
    create_engine_for,
    create_session_factory,
    init_db,
)
from shared.database.types import UTCDateTime

__all__ = [
    "init_db",
    "close_db",
    "create_engine_for",
    "create_session_factory",
    "Base",
    "UTCDateTime",
]
