"""Infrastructure layer - database adapters.

Everything that talks to the database lives here: engine and session
management, the registry model, and the builders and managers for the
runtime-defined tables.
"""

from contentbase.infrastructure.persistence.database import (
    Base,
    DatabaseManager,
    close_database,
    get_db_manager,
    init_database,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "close_database",
    "get_db_manager",
    "init_database",
]
