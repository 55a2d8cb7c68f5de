"""Typed outcomes returned by the booking core.

Business conditions ("booking already completed", "window unavailable") are
values, not exceptions. Only infrastructure failures propagate as exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, List, Optional, TypeVar

T = TypeVar("T")


class Outcome(str, Enum):
    OK = "ok"
    VALIDATION_ERROR = "validation_error"
    AUTHORIZATION_ERROR = "authorization_error"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    DEPENDENCY_FAILURE = "dependency_failure"
    DUPLICATE = "duplicate"


@dataclass
class OperationResult(Generic[T]):
    outcome: Outcome
    value: Optional[T] = None
    reason: Optional[str] = None
    code: Optional[str] = None
    conflicts: List[Any] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.OK, Outcome.DUPLICATE)

    def with_warning(self, message: str) -> "OperationResult[T]":
        self.warnings.append(message)
        return self


def success(value: T = None, *, warnings: Optional[List[str]] = None) -> OperationResult[T]:
    return OperationResult(Outcome.OK, value=value, warnings=list(warnings or []))


def validation_error(reason: str, code: str = "VALIDATION_ERROR") -> OperationResult:
    return OperationResult(Outcome.VALIDATION_ERROR, reason=reason, code=code)


def authorization_error(reason: str = "Not authorized for this booking", code: str = "FORBIDDEN") -> OperationResult:
    return OperationResult(Outcome.AUTHORIZATION_ERROR, reason=reason, code=code)


def not_found(reason: str, code: str = "NOT_FOUND") -> OperationResult:
    return OperationResult(Outcome.NOT_FOUND, reason=reason, code=code)


def conflict(reason: str, code: str = "CONFLICT", conflicts: Optional[List[Any]] = None) -> OperationResult:
    return OperationResult(Outcome.CONFLICT, reason=reason, code=code, conflicts=list(conflicts or []))


def dependency_failure(reason: str, code: str = "DEPENDENCY_FAILURE", value: Any = None) -> OperationResult:
    return OperationResult(Outcome.DEPENDENCY_FAILURE, value=value, reason=reason, code=code)


def duplicate(reason: str = "Already handled") -> OperationResult:
    return OperationResult(Outcome.DUPLICATE, reason=reason, code="DUPLICATE")
