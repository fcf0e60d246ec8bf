"""Error taxonomy for pipeline compilation and execution."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel


class NexusflowError(Exception):
    """Base class for all nexusflow errors."""


class ConfigIssue(BaseModel):
    """One structured problem found while validating a workflow."""

    code: str
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message} [{self.code}]"


class ConfigError(NexusflowError):
    """Compile-time configuration problem. Blocks the save."""

    def __init__(self, issues: List[ConfigIssue]) -> None:
        self.issues = list(issues)
        super().__init__("; ".join(str(i) for i in self.issues))

    @classmethod
    def single(cls, code: str, field: str, message: str) -> "ConfigError":
        return cls([ConfigIssue(code=code, field=field, message=message)])

    @property
    def codes(self) -> List[str]:
        return [i.code for i in self.issues]


class MappingError(NexusflowError):
    """Per-record mapping failure. Always aborts the current run."""

    MISSING_REQUIRED_FIELD = "MissingRequiredField"
    TYPE_COERCION = "TypeCoercion"
    UNRESOLVED_VARIABLE = "UnresolvedVariable"

    def __init__(self, kind: str, field: str, message: str) -> None:
        self.kind = kind
        self.field = field
        self.message = message
        super().__init__(f"{kind}: {message}")


class StepError(NexusflowError):
    """A step failed. Subject to the step's ``onError`` policy."""

    attempts = 1


class DestinationError(StepError):
    """External call failed: connection, non-2xx, query error or timeout."""

    def __init__(
        self,
        message: str,
        timed_out: bool = False,
        http_status: Optional[int] = None,
    ) -> None:
        self.timed_out = timed_out
        self.http_status = http_status
        super().__init__(message)


class ValidationError(NexusflowError):
    """Malformed IR detected at load time."""
