"""
Shared exceptions.

Normal "no slot yet" outcomes are reported as data on the scheduling result;
the types below are raised only when the operation itself cannot complete.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class AppError(Exception):
    message: str = "Application error"
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


class SchedulingError(AppError):
    """Base class for errors surfaced by the scheduling core."""

    retryable = False


class ConfigurationError(SchedulingError):
    """Profile or interval configuration that can never yield a slot."""

    retryable = False


class NoValidSlot(SchedulingError):
    """Every strategy exhausted its attempt budget."""

    retryable = True

    @property
    def attempts(self) -> int:
        return int((self.details or {}).get("attempts", 0))

    @property
    def constraints(self) -> list[str]:
        return list((self.details or {}).get("constraints", []))


class ConcurrentModification(SchedulingError):
    """The stored version token changed between read and conditional write.

    Callers must redo the whole read-compute-write cycle.
    """

    retryable = True

    @property
    def expected_version(self) -> int | None:
        return (self.details or {}).get("expected_version")


class PersistenceUnavailable(SchedulingError):
    retryable = True
