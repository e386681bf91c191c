"""Database connection management for emopoints services.

Provides connection pooling, transactions, health checks and the
repository base class for PostgreSQL-backed stores.
"""

from .connection import (
    DatabaseConfig,
    ConnectionManager,
)
from .repository import (
    BaseRepository,
    RepositoryError,
    NotFoundError,
    DuplicateError,
)

__all__ = [
    "DatabaseConfig",
    "ConnectionManager",
    "BaseRepository",
    "RepositoryError",
    "NotFoundError",
    "DuplicateError",
]
