"""PostgreSQL-backed submission store.

Check-ins live in the append-only emotion_submissions table. The
application role gets INSERT and SELECT; DELETE is granted only so a failed
submit unit can retract its own row.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from emopoints.shared.database import (
    BaseRepository,
    ConnectionManager,
    NotFoundError,
    RepositoryError,
)
from emopoints.shared.models import Emotion, Submission
from emopoints.shared.utils import ensure_utc, hash_pii
from .submission_store import SubmissionStore

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS emotion_submissions (
    id            TEXT PRIMARY KEY,
    student_id    TEXT NOT NULL,
    emotion       TEXT NOT NULL CHECK (emotion IN ('happy', 'sad', 'angry', 'tired', 'neutral')),
    note          TEXT,
    submitted_at  TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_emotion_submissions_student_time
    ON emotion_submissions (student_id, submitted_at DESC);
"""

_COLUMNS = "id, student_id, emotion, note, submitted_at"


class PostgresSubmissionStore(BaseRepository[Submission], SubmissionStore):
    """SubmissionStore on PostgreSQL."""

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "emotion_submissions")

    def create_schema(self) -> None:
        """Create the table and index if they do not exist."""
        try:
            with self.connection_manager.transaction() as conn:
                with conn.cursor() as cur:
                    cur.execute(SCHEMA_SQL)
        except Exception as e:
            raise RepositoryError(f"Schema creation failed: {e}") from e

        logger.info("SUBMISSION_SCHEMA_READY", extra={"table_name": self.table_name})

    def _row_to_entity(self, row: tuple) -> Submission:
        """Convert row to Submission.

        Expected columns:
            0: id
            1: student_id
            2: emotion
            3: note
            4: submitted_at
        """
        return Submission(
            id=row[0],
            student_id=row[1],
            emotion=Emotion(row[2]),
            note=row[3],
            submitted_at=row[4],
        )

    def _entity_to_params(self, entity: Submission) -> Dict[str, Any]:
        return {
            "id": entity.id,
            "student_id": entity.student_id,
            "emotion": entity.emotion.value,
            "note": entity.note,
            "submitted_at": entity.submitted_at,
        }

    def append(self, submission: Submission, conn=None) -> Submission:
        self.insert(submission, conn=conn)

        logger.info(
            "SUBMISSION_STORED_POSTGRES",
            extra={
                "submission_id": submission.id,
                "student_id_hash": hash_pii(submission.student_id),
            }
        )
        return submission

    def retract(self, submission: Submission) -> None:
        if not self.delete(submission.id):
            raise NotFoundError(f"Submission {submission.id} not found")

        logger.warning(
            "SUBMISSION_RETRACTED",
            extra={
                "submission_id": submission.id,
                "student_id_hash": hash_pii(submission.student_id),
            }
        )

    def latest_at_or_before(self, student_id: str, at: datetime, conn=None) -> Optional[Submission]:
        results = self._fetch_all(
            f"""
            SELECT {_COLUMNS} FROM {self.table_name}
            WHERE student_id = %s AND submitted_at <= %s
            ORDER BY submitted_at DESC
            LIMIT 1
            """,
            (student_id, ensure_utc(at)),
            conn=conn,
        )
        return results[0] if results else None

    def find_between(
        self,
        student_ids: Iterable[str],
        start: datetime,
        end: datetime,
    ) -> List[Submission]:
        ids = sorted(set(student_ids))
        if not ids:
            return []

        return self._fetch_all(
            f"""
            SELECT {_COLUMNS} FROM {self.table_name}
            WHERE student_id = ANY(%s)
              AND submitted_at >= %s
              AND submitted_at <= %s
            ORDER BY submitted_at ASC, id ASC
            """,
            (ids, ensure_utc(start), ensure_utc(end))
        )

    def students_submitted_since(
        self,
        student_ids: Iterable[str],
        cutoff: datetime,
    ) -> Set[str]:
        ids = sorted(set(student_ids))
        if not ids:
            return set()

        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"""
                        SELECT DISTINCT student_id FROM {self.table_name}
                        WHERE student_id = ANY(%s) AND submitted_at >= %s
                        """,
                        (ids, ensure_utc(cutoff))
                    )
                    rows = cur.fetchall()
        except Exception as e:
            logger.error(
                "SUBMISSION_STATUS_QUERY_FAILED",
                extra={"student_count": len(ids), "error": str(e)}
            )
            raise RepositoryError(f"Submission status query failed: {e}") from e

        return {row[0] for row in rows}

    def find_by_student(self, student_id: str, limit: int = 50) -> List[Submission]:
        return self._fetch_all(
            f"""
            SELECT {_COLUMNS} FROM {self.table_name}
            WHERE student_id = %s
            ORDER BY submitted_at DESC
            LIMIT %s
            """,
            (student_id, limit)
        )
