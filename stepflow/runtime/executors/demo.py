"""
demo.py - Demo executors that fabricate plausible block output.

These stand in for the real block catalog (e-commerce APIs, AI inference,
email) when a block has no functional implementation configured. They do no
I/O; each waits a configurable "processing" delay and returns synthetic data
shaped like the real block's output.

Blocks that in real life need a person (text entry, approvals, outgoing
email) ask for user action instead of completing straight away.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Any, Dict, Optional

from ..data_bus import DataBusSnapshot
from ..types import BlockCategory, FlowBlock, FlowStep, StepOutcome, _datetime_to_iso, _utcnow
from .base import StepContext, StepExecutor, make_result
from .registry import ExecutorRegistry

logger = logging.getLogger(__name__)

# Options that pause for a human response in demo mode
USER_ACTION_OPTIONS = {
    BlockCategory.COLLECT: ("User Text",),
    BlockCategory.ACT: ("Human in the Loop", "Send Email"),
}


def _timestamp() -> str:
    return _datetime_to_iso(_utcnow())


class DemoExecutor(StepExecutor):
    """Base for demo executors: waits, then builds category-shaped data."""

    category: BlockCategory = BlockCategory.COLLECT

    def __init__(self, delay_seconds: float = 0.0):
        self._delay_seconds = max(0.0, float(delay_seconds))

    def execute(
        self,
        step: FlowStep,
        block: Optional[FlowBlock],
        data_bus: DataBusSnapshot,
        ctx: StepContext,
    ) -> StepOutcome:
        if self._delay_seconds and ctx.cancel_event.wait(self._delay_seconds):
            return StepOutcome.failed("Cancelled while processing")
        data = self.build_data(step, block, data_bus)
        data["demo"] = True
        return StepOutcome.completed(make_result(step, block, data))

    @abstractmethod
    def build_data(
        self, step: FlowStep, block: Optional[FlowBlock], data_bus: DataBusSnapshot
    ) -> Dict[str, Any]:
        """Synthetic output for this category."""


class DemoCollectExecutor(DemoExecutor):
    category = BlockCategory.COLLECT

    def build_data(self, step, block, data_bus):
        option = block.option if block else ""
        if option == "Upload Sheet":
            return {
                "sheet_data": "Simulated uploaded spreadsheet data",
                "rows": 15,
                "columns": 5,
                "timestamp": _timestamp(),
            }
        return {
            "collected_data": f"Demo data for {option or step.title}",
            "timestamp": _timestamp(),
        }


class DemoThinkExecutor(DemoExecutor):
    category = BlockCategory.THINK

    def build_data(self, step, block, data_bus):
        label = block.display_name if block else step.title
        return {
            "analysis": "Simulated AI analysis of collected data",
            "insights": [f"Demo insight {n} for {label}" for n in (1, 2, 3)],
            "input_steps": list(data_bus.keys()),
            "timestamp": _timestamp(),
        }


class DemoActExecutor(DemoExecutor):
    category = BlockCategory.ACT

    def build_data(self, step, block, data_bus):
        option = block.option if block else step.title
        return {
            "action": f"Demo action for {option}",
            "status": "Simulated success",
            "input_steps": list(data_bus.keys()),
            "timestamp": _timestamp(),
        }


class DemoAgentExecutor(DemoExecutor):
    category = BlockCategory.AGENT

    def build_data(self, step, block, data_bus):
        agent_name = (block.agent_name if block else None) or "Simulated Agent"
        return {
            "agent_name": agent_name,
            "actions": [f"Simulated agent action {n}" for n in (1, 2, 3)],
            "result": "Simulated successful outcome",
            "timestamp": _timestamp(),
        }


class DemoUserActionExecutor(DemoExecutor):
    """Pauses for a person, then records what they said."""

    def execute(self, step, block, data_bus, ctx):
        if self._delay_seconds and ctx.cancel_event.wait(self._delay_seconds):
            return StepOutcome.failed("Cancelled while processing")
        label = block.display_name if block else step.title
        prompt = (
            f'This "{label}" step requires your input. Please provide the necessary '
            "information or confirm that you've manually completed this step."
        )
        partial: Dict[str, Any] = {"demo": True}
        partial.update(self.build_data(step, block, data_bus))
        return StepOutcome.needs_user_action(prompt, partial)

    def build_data(self, step, block, data_bus):
        option = block.option if block else ""
        data: Dict[str, Any] = {"option": option}
        if option == "Send Email":
            data["email_status"] = {"sent": False, "recipients": 3, "subject": "Demo Email Subject"}
        elif option == "Human in the Loop":
            data["approval_status"] = "Waiting for approval"
        return data

    def complete_user_action(self, step, block, pending, response):
        outcome = super().complete_user_action(step, block, pending, response)
        data = dict(outcome.result.data)
        if "email_status" in data:
            data["email_status"] = dict(data["email_status"], sent=True, delivered_at=_timestamp())
        if "approval_status" in data:
            data["approval_status"] = "Approved"
        return StepOutcome.completed(make_result(step, block, data))


def build_demo_registry(delay_seconds: Optional[float] = None) -> ExecutorRegistry:
    """Registry with a demo executor for every category.

    Args:
        delay_seconds: Artificial processing delay per step. Defaults to the
            configured ``demo.delay_seconds``.
    """
    if delay_seconds is None:
        from stepflow.config.runtime_config import get_demo_delay_seconds

        delay_seconds = get_demo_delay_seconds()

    registry = ExecutorRegistry()
    for executor_cls in (DemoCollectExecutor, DemoThinkExecutor, DemoActExecutor, DemoAgentExecutor):
        registry.register(executor_cls.category, executor_cls(delay_seconds))

    user_action = DemoUserActionExecutor(delay_seconds)
    for category, options in USER_ACTION_OPTIONS.items():
        for option in options:
            registry.register(category, user_action, option=option)

    logger.debug("Built demo registry (delay=%.2fs): %s", delay_seconds, registry.registered_keys())
    return registry
