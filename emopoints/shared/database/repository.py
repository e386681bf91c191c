"""Base repository pattern for database operations.

Provides the insert/read/delete primitives shared by PostgreSQL-backed
stores. Rows are immutable records, so there is no generic update.
Every primitive can join the transaction of a caller-supplied connection.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, List, TypeVar

from psycopg2 import errors as pg_errors

from .connection import ConnectionManager

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RepositoryError(Exception):
    """Base exception for repository errors.

    Raised when the store is unreachable or a statement fails. Callers
    treat it as retryable.
    """
    pass


class NotFoundError(RepositoryError):
    """Entity not found in database."""
    pass


class DuplicateError(RepositoryError):
    """Entity with the same id already exists."""
    pass


class BaseRepository(ABC, Generic[T]):
    """Abstract base repository with common operations.

    Subclasses map rows to entities and back; the base class owns
    connection handling, error translation and logging.
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        table_name: str,
    ):
        """Initialize repository.

        Args:
            connection_manager: Database connection manager
            table_name: Name of the database table
        """
        self.connection_manager = connection_manager
        self.table_name = table_name

        logger.info(
            "REPOSITORY_INITIALIZED",
            extra={"table_name": table_name}
        )

    @abstractmethod
    def _row_to_entity(self, row: tuple) -> T:
        """Convert database row to entity."""
        pass

    @abstractmethod
    def _entity_to_params(self, entity: T) -> Dict[str, Any]:
        """Convert entity to a column -> value mapping."""
        pass
    def _fetch_all(self, query: str, params: tuple, conn=None) -> List[T]:
        """Run a SELECT and map every row.

        Args:
            query: SQL text
            params: Query parameters
            conn: Connection of an enclosing transaction, so the read sees
                its uncommitted writes. When omitted a pooled connection is
                borrowed for the read.
        """
        try:
            if conn is not None:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    rows = cur.fetchall()
            else:
                with self.connection_manager.get_connection() as own_conn:
                    with own_conn.cursor() as cur:
                        cur.execute(query, params)
                        rows = cur.fetchall()
        except RepositoryError:
            raise
        except Exception as e:
            logger.error(
                "REPOSITORY_QUERY_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"Query on {self.table_name} failed: {e}") from e

        return [self._row_to_entity(row) for row in rows]

    def _advisory_lock(self, conn, key: str) -> None:
        """Serialize writers on `key` until conn's transaction ends.

        Transaction-scoped advisory locks are released by COMMIT or
        ROLLBACK, so no unlock call exists.
        """
        with conn.cursor() as cur:
            cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (key,))

    def insert(self, entity: T, conn=None) -> T:
        """Insert a new row.

        Args:
            entity: Entity to insert
            conn: Connection of an enclosing transaction. When omitted the
                insert runs in its own transaction.

        Raises:
            DuplicateError: If the primary key already exists
            RepositoryError: On any other database failure
        """
        params = self._entity_to_params(entity)
        columns = list(params.keys())
        placeholders = ", ".join(["%s"] * len(columns))
        query = (
            f"INSERT INTO {self.table_name} ({', '.join(columns)}) "
            f"VALUES ({placeholders})"
        )

        try:
            if conn is not None:
                with conn.cursor() as cur:
                    cur.execute(query, list(params.values()))
            else:
                with self.connection_manager.transaction() as own_conn:
                    with own_conn.cursor() as cur:
                        cur.execute(query, list(params.values()))
        except pg_errors.UniqueViolation as e:
            key = params[columns[0]]
            raise DuplicateError(f"{self.table_name} row {key} already exists") from e
        except Exception as e:
            logger.error(
                "REPOSITORY_INSERT_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"Insert into {self.table_name} failed: {e}") from e

        return entity

    def delete(self, entity_id: str) -> bool:
        """Delete entity by ID.

        Returns:
            True if a row was deleted, False if not found
        """
        try:
            with self.connection_manager.transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"DELETE FROM {self.table_name} WHERE id = %s",
                        (entity_id,)
                    )
                    return cur.rowcount > 0
        except Exception as e:
            logger.error(
                "REPOSITORY_DELETE_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"Delete from {self.table_name} failed: {e}") from e
