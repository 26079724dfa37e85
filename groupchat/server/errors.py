"""Error kinds and the result type returned by the service layer.

Stores raise ``ConstraintViolation`` or ``PersistenceError``; services catch
them and hand back a ``ServiceResult`` so that every caller has to look at
``result.success`` before using ``result.value``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    INVALID_TOKEN = "invalid_token"
    USER_NOT_FOUND = "user_not_found"
    GROUP_NOT_FOUND = "group_not_found"
    MESSAGE_NOT_FOUND = "message_not_found"
    DUPLICATE_USERNAME = "duplicate_username"
    ALREADY_MEMBER = "already_member"
    NOT_A_MEMBER = "not_a_member"
    VALIDATION_ERROR = "validation_error"
    PERSISTENCE_FAILURE = "persistence_failure"


@dataclass(frozen=True)
class ServiceError:
    """A domain-level failure.

    Attributes:
        kind (ErrorKind): What went wrong
        message (str): Human readable summary
        violations (Tuple[str, ...]): Every rule broken, for VALIDATION_ERROR
    """
    kind: ErrorKind
    message: str
    violations: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    """Outcome of a service operation: either ``value`` or ``error``."""
    value: Optional[T] = None
    error: Optional[ServiceError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, value: T) -> "ServiceResult[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, violations: Sequence[str] = ()) -> "ServiceResult[T]":
        return cls(error=ServiceError(kind=kind, message=message, violations=tuple(violations)))

    @classmethod
    def invalid(cls, violations: Sequence[str]) -> "ServiceResult[T]":
        return cls.fail(ErrorKind.VALIDATION_ERROR, "; ".join(violations), violations)


class PersistenceError(Exception):
    """Store operation failed for a reason other than a uniqueness constraint."""


class ConstraintViolation(Exception):
    """Store rejected a write because of a uniqueness constraint.

    Attributes:
        constraint (str): Violated columns as reported by the store,
            e.g. ``users.username`` or ``memberships.group_id, memberships.user_id``
    """

    def __init__(self, constraint: str):
        super().__init__(f"UNIQUE constraint failed: {constraint}")
        self.constraint = constraint

    def involves(self, column: str) -> bool:
        return column in [c.strip() for c in self.constraint.split(",")]
