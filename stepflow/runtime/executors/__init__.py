"""
executors - Step executor contract, registry and demo executors.

Usage:
    from stepflow.runtime.executors import (
        StepExecutor, StepContext, ExecutorRegistry, build_demo_registry,
    )
"""

from .base import StepContext, StepExecutor, block_name_for, category_for, make_result
from .demo import (
    DemoActExecutor,
    DemoAgentExecutor,
    DemoCollectExecutor,
    DemoExecutor,
    DemoThinkExecutor,
    DemoUserActionExecutor,
    build_demo_registry,
)
from .registry import ExecutorRegistry

__all__ = [
    "StepContext",
    "StepExecutor",
    "ExecutorRegistry",
    "block_name_for",
    "category_for",
    "make_result",
    "DemoActExecutor",
    "DemoAgentExecutor",
    "DemoCollectExecutor",
    "DemoExecutor",
    "DemoThinkExecutor",
    "DemoUserActionExecutor",
    "build_demo_registry",
]
