"""Role-specific user views returned at the HTTP boundary.

Each role gets its own explicit structure; project_user() picks one by
role. Nothing is merged into a shared dict at runtime.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class Role(Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


@dataclass(frozen=True)
class UserRecord:
    """Identity as the account directory stores it."""
    id: str
    name: str
    role: Role
    student_id: Optional[str] = None
    class_id: Optional[str] = None
    email: Optional[str] = None
    class_ids: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StudentView:
    id: str
    name: str
    student_id: str
    class_id: Optional[str]
    points: int
    role: Role = Role.STUDENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role.value,
            "student_id": self.student_id,
            "class_id": self.class_id,
            "points": self.points,
        }


@dataclass(frozen=True)
class TeacherView:
    id: str
    name: str
    email: Optional[str]
    class_ids: Tuple[str, ...]
    role: Role = Role.TEACHER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role.value,
            "email": self.email,
            "class_ids": list(self.class_ids),
        }


@dataclass(frozen=True)
class AdminView:
    id: str
    name: str
    email: Optional[str]
    role: Role = Role.ADMIN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role.value,
            "email": self.email,
        }


UserView = Union[StudentView, TeacherView, AdminView]


def project_user(user: UserRecord, balance: Optional[int] = None) -> UserView:
    """Build the view for a user's role.

    Args:
        user: Directory record
        balance: Current points, required for students

    Raises:
        ValueError: Student without student_id or balance
    """
    if user.role is Role.STUDENT:
        if not user.student_id:
            raise ValueError("Student record is missing student_id")
        if balance is None:
            raise ValueError("Student view requires the current balance")
        return StudentView(
            id=user.id,
            name=user.name,
            student_id=user.student_id,
            class_id=user.class_id,
            points=balance,
        )
    if user.role is Role.TEACHER:
        return TeacherView(id=user.id, name=user.name, email=user.email, class_ids=tuple(user.class_ids))
    return AdminView(id=user.id, name=user.name, email=user.email)
