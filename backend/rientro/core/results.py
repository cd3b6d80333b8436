"""
Result types returned by engine handlers.

Handlers never raise for per-item failures; they report them here and the
trigger adapter (HTTP route or scheduler job) decides how to log or respond.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

from .exceptions import RientroException


@dataclass
class Failure:
    """A typed failure attached to the item it happened on."""
    subject: str
    error: RientroException

    def to_dict(self) -> dict[str, Any]:
        return {"subject": self.subject, **self.error.to_dict()}


@dataclass
class HandlerResult:
    """Outcome of a single trigger invocation."""
    handler: str
    failures: list[Failure] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)
    error: Optional[RientroException] = None  # Set when the whole invocation failed

    @property
    def success(self) -> bool:
        return self.error is None and not self.failures

    def fail(self, error: RientroException) -> "HandlerResult":
        self.error = error
        return self

    def add_failure(self, subject: str, error: RientroException) -> None:
        self.failures.append(Failure(subject=subject, error=error))

    def to_dict(self) -> dict[str, Any]:
        return {
            "handler": self.handler,
            "success": self.success,
            "details": self.details,
            "failures": [f.to_dict() for f in self.failures],
            "error": self.error.to_dict() if self.error else None,
        }
