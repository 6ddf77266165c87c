"""Flow model types: flows, steps and typed blocks.

A Flow is authored externally (canvas or code) and handed to the engine as a
read-mostly definition. All flow types are frozen; the engine derives its own
copies when it needs to flip a step's ``completed`` flag.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ._ids import BlockId, StepId


class BlockCategory(str, Enum):
    """Category of work a block performs."""

    COLLECT = "collect"
    THINK = "think"
    ACT = "act"
    AGENT = "agent"


class StepType(str, Enum):
    """How a step is bound to work."""

    UNSELECTED = "unselected"
    BLOCK = "block"
    AGENT = "agent"


class FlowTrigger(str, Enum):
    """What starts a flow."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    EVENT = "event"


@dataclass(frozen=True)
class FlowBlock:
    """A typed, configured unit of work.

    The engine only looks at ``id`` and ``category``; everything else is
    for the executor that handles the block.

    Attributes:
        id: Block identifier, unique within the flow.
        category: collect | think | act | agent.
        option: Concrete block option (e.g. "Upload Sheet", "Send Email").
        name: Human-readable block name.
        parameters: Executor-specific configuration.
        agent_id: Agent bound to an agent-category block, if any.
        agent_name: Display name of that agent.
    """

    id: BlockId
    category: BlockCategory
    option: str
    name: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.option


@dataclass(frozen=True)
class FlowStep:
    """One unit of work in a flow.

    Attributes:
        id: Step identifier, unique within the flow.
        order: Explicit position; orders are contiguous and unique.
        title: Short title shown on the canvas.
        description: Longer description / instructions.
        block_id: Bound block for BLOCK steps, absent otherwise.
        step_type: unselected | block | agent.
        completed: Set only by the execution engine.
    """

    id: StepId
    order: int
    title: str
    description: str = ""
    block_id: Optional[BlockId] = None
    step_type: StepType = StepType.UNSELECTED
    completed: bool = False


@dataclass(frozen=True)
class Flow:
    """Immutable description of a flow."""

    id: str
    name: str
    description: str = ""
    trigger: FlowTrigger = FlowTrigger.MANUAL
    steps: Tuple[FlowStep, ...] = ()
    blocks: Tuple[FlowBlock, ...] = ()

    def ordered_steps(self) -> List[FlowStep]:
        """Steps sorted by ascending ``order``."""
        return sorted(self.steps, key=lambda s: s.order)

    def get_block(self, block_id: Optional[BlockId]) -> Optional[FlowBlock]:
        if block_id is None:
            return None
        for block in self.blocks:
            if block.id == block_id:
                return block
        return None

    def block_for_step(self, step: FlowStep) -> Optional[FlowBlock]:
        """Return the block bound to a step (None for agent/unselected steps)."""
        if step.step_type != StepType.BLOCK:
            return None
        return self.get_block(step.block_id)

    def steps_with_blocks(self) -> List[Tuple[FlowStep, Optional[FlowBlock]]]:
        """Ordered (step, block) pairs, as the canvas and assistant show them."""
        return [(step, self.block_for_step(step)) for step in self.ordered_steps()]

    def with_step_completed(self, step_id: StepId, completed: bool = True) -> "Flow":
        """Return a copy of this flow with one step's ``completed`` flag set."""
        steps = tuple(
            replace(s, completed=completed) if s.id == step_id else s for s in self.steps
        )
        return replace(self, steps=steps)


# =============================================================================
# Serialization Functions
# =============================================================================


def flow_block_to_dict(block: FlowBlock) -> Dict[str, Any]:
    """Convert FlowBlock to a dictionary for serialization."""
    return {
        "id": block.id,
        "category": block.category.value,
        "option": block.option,
        "name": block.name,
        "parameters": dict(block.parameters),
        "agent_id": block.agent_id,
        "agent_name": block.agent_name,
    }


def flow_block_from_dict(data: Dict[str, Any]) -> FlowBlock:
    """Parse FlowBlock from a dictionary.

    Accepts the canvas spelling ``type`` as an alias for ``category``.
    """
    category = data.get("category", data.get("type"))
    return FlowBlock(
        id=str(data["id"]),
        category=BlockCategory(category),
        option=data.get("option", ""),
        name=data.get("name", ""),
        parameters=dict(data.get("parameters") or {}),
        agent_id=data.get("agent_id", data.get("agentId")),
        agent_name=data.get("agent_name", data.get("agentName")),
    )


def flow_step_to_dict(step: FlowStep) -> Dict[str, Any]:
    """Convert FlowStep to a dictionary for serialization."""
    return {
        "id": step.id,
        "order": step.order,
        "title": step.title,
        "description": step.description,
        "block_id": step.block_id,
        "step_type": step.step_type.value,
        "completed": step.completed,
    }


def flow_step_from_dict(data: Dict[str, Any]) -> FlowStep:
    """Parse FlowStep from a dictionary.

    When ``step_type`` is missing it is inferred: a step with a block_id is a
    BLOCK step, otherwise UNSELECTED.
    """
    block_id = data.get("block_id", data.get("blockId"))
    step_type_value = data.get("step_type", data.get("stepType"))
    if step_type_value is None:
        step_type = StepType.BLOCK if block_id else StepType.UNSELECTED
    else:
        step_type = StepType(step_type_value)
    return FlowStep(
        id=str(data["id"]),
        order=int(data["order"]),
        title=data.get("title", ""),
        description=data.get("description") or "",
        block_id=block_id,
        step_type=step_type,
        completed=bool(data.get("completed", False)),
    )


def flow_to_dict(flow: Flow) -> Dict[str, Any]:
    """Convert Flow to a dictionary for serialization."""
    return {
        "id": flow.id,
        "name": flow.name,
        "description": flow.description,
        "trigger": flow.trigger.value,
        "steps": [flow_step_to_dict(s) for s in flow.steps],
        "blocks": [flow_block_to_dict(b) for b in flow.blocks],
    }


def flow_from_dict(data: Dict[str, Any]) -> Flow:
    """Parse Flow from a dictionary."""
    return Flow(
        id=str(data["id"]),
        name=data.get("name", ""),
        description=data.get("description") or "",
        trigger=FlowTrigger(data.get("trigger", "manual")),
        steps=tuple(flow_step_from_dict(s) for s in data.get("steps", [])),
        blocks=tuple(flow_block_from_dict(b) for b in data.get("blocks", [])),
    )
