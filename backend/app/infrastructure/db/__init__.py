"""
Database Infrastructure Package for My Mechanic API

Exports database utilities.
"""

from app.infrastructure.db.database import (
    DatabaseManager,
    get_db_manager,
    get_session_context,
    persistence_scope,
    init_db,
    close_db,
)


__all__ = [
    "DatabaseManager",
    "get_db_manager",
    "get_session_context",
    "persistence_scope",
    "init_db",
    "close_db",
]
