"""
validation.py - Pre-flight checks for flow definitions.

A flow must pass these checks before an engine will run it:

- the flow has at least one step and step ids are unique
- step orders are unique and contiguous (0..n-1 or 1..n)
- BLOCK steps reference exactly one existing block
- AGENT steps carry no block_id
- UNSELECTED steps are rejected (there is nothing to execute)

Usage:
    from stepflow.runtime.validation import validate_flow, ensure_valid

    result = validate_flow(flow)
    if not result.ok:
        print(result.format())

    ensure_valid(flow)  # raises ValidationError
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List

from .errors import ValidationError, ValidationIssue
from .types import Flow, StepType


class ValidationResult:
    """Collects validation issues for one flow."""

    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        self.issues: List[ValidationIssue] = []

    @property
    def ok(self) -> bool:
        return not self.issues

    def add(self, code: str, location: str, problem: str) -> None:
        self.issues.append(ValidationIssue(code, location, problem))

    def format(self) -> str:
        return "\n".join(issue.format() for issue in self.issues)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flow_id": self.flow_id,
            "ok": self.ok,
            "issues": [issue.to_dict() for issue in self.issues],
        }

    def raise_if_invalid(self) -> None:
        if self.issues:
            raise ValidationError(
                f"Flow '{self.flow_id}' is invalid: {len(self.issues)} issue(s)",
                self.issues,
            )


def validate_flow(flow: Flow) -> ValidationResult:
    """Check that a flow is executable. Pure; never mutates the flow."""
    result = ValidationResult(flow.id)

    if not flow.steps:
        result.add("EMPTY_FLOW", f"flow:{flow.id}", "has no steps")
        return result

    step_ids = Counter(step.id for step in flow.steps)
    for step_id, count in sorted(step_ids.items()):
        if count > 1:
            result.add("DUPLICATE_STEP_ID", f"step:{step_id}", f"appears {count} times")

    block_ids = Counter(block.id for block in flow.blocks)
    for block_id, count in sorted(block_ids.items()):
        if count > 1:
            result.add("DUPLICATE_BLOCK_ID", f"block:{block_id}", f"appears {count} times")

    _check_orders(flow, result)

    for step in flow.ordered_steps():
        location = f"step:{step.id}"
        if step.step_type == StepType.BLOCK:
            if not step.block_id:
                result.add("MISSING_BLOCK", location, "is a block step without a block_id")
            elif block_ids.get(step.block_id, 0) == 0:
                result.add(
                    "UNKNOWN_BLOCK",
                    location,
                    f"references block '{step.block_id}' which is not in the flow",
                )
        elif step.step_type == StepType.AGENT:
            if step.block_id is not None:
                result.add("AGENT_WITH_BLOCK", location, "is an agent step but has a block_id")
        else:
            result.add("UNSELECTED_STEP", location, "has no block or agent selected")

    return result


def _check_orders(flow: Flow, result: ValidationResult) -> None:
    orders = [step.order for step in flow.steps]
    counts = Counter(orders)
    for order, count in sorted(counts.items()):
        if count > 1:
            result.add("DUPLICATE_ORDER", f"order:{order}", f"is used by {count} steps")

    unique = sorted(counts)
    start = unique[0]
    if start not in (0, 1):
        result.add("ORDER_START", f"order:{start}", "orders must start at 0 or 1")
    expected = list(range(start, start + len(unique)))
    if unique != expected:
        missing = sorted(set(expected) - set(unique))
        result.add(
            "ORDER_GAP",
            f"flow:{flow.id}",
            f"orders are not contiguous (missing {missing or 'n/a'})",
        )


def ensure_valid(flow: Flow) -> None:
    """Raise ValidationError listing every issue if the flow is not executable."""
    validate_flow(flow).raise_if_invalid()
