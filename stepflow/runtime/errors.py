"""Error taxonomy for the stepflow runtime.

Every error the engine raises or reports derives from StepflowError so callers
can catch the whole family in one place.

Validation problems are collected as structured ValidationIssue records and
raised together, so a caller sees everything wrong with a flow at once.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

# Issue message template: [FAIL] CODE: location problem
ISSUE_TEMPLATE = "[FAIL] {code}: {location} {problem}"


class StepflowError(Exception):
    """Base class for all stepflow runtime errors."""


class ValidationIssue:
    """One structured problem found in a flow definition."""

    def __init__(self, code: str, location: str, problem: str):
        self.code = code
        self.location = location
        self.problem = problem

    def format(self) -> str:
        return ISSUE_TEMPLATE.format(code=self.code, location=self.location, problem=self.problem)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "location": self.location, "problem": self.problem}

    def __repr__(self) -> str:
        return f"ValidationIssue({self.code!r}, {self.location!r}, {self.problem!r})"


class ValidationError(StepflowError):
    """Flow definition is malformed; raised at initialize(), never partially applied."""

    def __init__(self, reason: str, issues: Optional[Sequence[ValidationIssue]] = None):
        super().__init__(reason)
        self.reason = reason
        self.issues: List[ValidationIssue] = list(issues or [])

    def to_dict(self) -> Dict[str, Any]:
        return {"reason": self.reason, "issues": [i.to_dict() for i in self.issues]}


class StepExecutionError(StepflowError):
    """A step executor reported failure; the run halts at that step."""

    def __init__(self, message: str, step_index: Optional[int] = None, step_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step_index = step_index
        self.step_id = step_id


class GateMisuseError(StepflowError):
    """resume() called with no pending user action, or twice for the same one."""


class CancellationError(StepflowError):
    """Lifecycle call on an engine that is already cancelled or completed."""


class InvalidStateError(StepflowError):
    """Lifecycle call made in a state that does not allow it."""


class RunNotFoundError(StepflowError):
    """No live or stored run has the requested id."""
