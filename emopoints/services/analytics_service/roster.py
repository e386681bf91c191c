"""Class roster lookup.

The roster itself is owned by the school administration system; analytics
only needs to know which students belong to a class.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Iterable, Optional

logger = logging.getLogger(__name__)


class RosterUnavailableError(Exception):
    """The roster collaborator could not be reached. Retryable."""
    pass


class RosterLookup(ABC):
    """Answers class membership questions."""

    @abstractmethod
    def students_in_class(self, class_id: str) -> FrozenSet[str]:
        """Student ids in the class; empty for an unknown class.

        Raises:
            RosterUnavailableError: If the roster cannot be read
        """
        pass


class InMemoryRoster(RosterLookup):
    """Roster held in a dict of class id -> student ids."""

    def __init__(self, classes: Optional[Dict[str, Iterable[str]]] = None):
        self._classes: Dict[str, FrozenSet[str]] = {
            class_id: frozenset(students)
            for class_id, students in (classes or {}).items()
        }

    def enroll(self, class_id: str, student_id: str) -> None:
        current = self._classes.get(class_id, frozenset())
        self._classes[class_id] = current | {student_id}

    def students_in_class(self, class_id: str) -> FrozenSet[str]:
        students = self._classes.get(class_id)
        if students is None:
            logger.warning("ROSTER_CLASS_UNKNOWN", extra={"class_id": class_id})
            return frozenset()
        return students
