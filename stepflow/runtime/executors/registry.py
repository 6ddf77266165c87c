"""
registry.py - Maps (category, option) to a StepExecutor.

Resolution order for a step:
1. Exact (category, option) registration
2. Category-wide registration (option=None)
3. The registry default, if one was set

Agent steps (no block) resolve as (AGENT, None).

Usage:
    registry = ExecutorRegistry()
    registry.register(BlockCategory.COLLECT, SheetExecutor(), option="Upload Sheet")
    registry.register(BlockCategory.THINK, AnalysisExecutor())
    executor = registry.resolve(step, block)
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from ..types import BlockCategory, FlowBlock, FlowStep
from .base import StepExecutor

logger = logging.getLogger(__name__)

RegistryKey = Tuple[BlockCategory, Optional[str]]


class ExecutorRegistry:
    """Registry of step executors keyed by block category and option."""

    def __init__(self, default: Optional[StepExecutor] = None):
        self._executors: Dict[RegistryKey, StepExecutor] = {}
        self._default = default

    def register(
        self,
        category: BlockCategory,
        executor: StepExecutor,
        option: Optional[str] = None,
    ) -> "ExecutorRegistry":
        """Register an executor. Returns self so calls can be chained."""
        key = (BlockCategory(category), option)
        if key in self._executors:
            logger.info(
                "Replacing executor for %s/%s: %s -> %s",
                key[0].value,
                option or "*",
                self._executors[key].executor_id,
                executor.executor_id,
            )
        self._executors[key] = executor
        return self

    def set_default(self, executor: Optional[StepExecutor]) -> None:
        self._default = executor

    def lookup(self, category: BlockCategory, option: Optional[str] = None) -> Optional[StepExecutor]:
        if option is not None:
            exact = self._executors.get((category, option))
            if exact is not None:
                return exact
        wildcard = self._executors.get((category, None))
        if wildcard is not None:
            return wildcard
        return self._default

    def resolve(self, step: FlowStep, block: Optional[FlowBlock]) -> Optional[StepExecutor]:
        """Find the executor for a step, or None if nothing handles it."""
        if block is None:
            return self.lookup(BlockCategory.AGENT)
        return self.lookup(block.category, block.option)

    def registered_keys(self) -> List[Tuple[str, str]]:
        return sorted((cat.value, option or "*") for cat, option in self._executors)
