"""
data_bus.py - Append-only store of per-step outputs for one run.

Every completed step contributes exactly one StepResult. Later steps see all
earlier results through a read-only snapshot, so nothing is ever re-run to
recover its output.

Merge rule: when a flattened view is requested, keys from later steps (by
execution order) win. The per-step results stay distinct.

Only the owning engine's control loop writes to the bus.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from .types import BlockCategory, StepId, StepResult

logger = logging.getLogger(__name__)


class DataBusSnapshot(Mapping[StepId, StepResult]):
    """Ordered, read-only view of the results recorded so far.

    Behaves as a mapping keyed by step id (in execution order) and offers
    lookups by block category and block name for executors that want "the
    last thing a collect block produced" rather than a specific step.
    """

    def __init__(self, results: Iterable[StepResult]):
        self._results: Tuple[StepResult, ...] = tuple(results)
        self._by_step: Dict[StepId, StepResult] = {r.step_id: r for r in self._results}

    def __getitem__(self, step_id: StepId) -> StepResult:
        return self._by_step[step_id]

    def __iter__(self) -> Iterator[StepId]:
        return (r.step_id for r in self._results)

    def __len__(self) -> int:
        return len(self._results)

    @property
    def results(self) -> Tuple[StepResult, ...]:
        return self._results

    def by_category(self, category: BlockCategory) -> List[StepResult]:
        """All results produced by blocks of a category, in execution order."""
        return [r for r in self._results if r.category == category]

    def latest_for_category(self, category: BlockCategory) -> Optional[StepResult]:
        matches = self.by_category(category)
        return matches[-1] if matches else None

    def by_block_name(self, block_name: str) -> List[StepResult]:
        return [r for r in self._results if r.block_name == block_name]

    def flattened(self) -> Dict[str, Any]:
        """Merge all result data into one dict; later steps win on overlap."""
        merged: Dict[str, Any] = {}
        for result in self._results:
            merged.update(copy.deepcopy(result.data))
        return merged


class DataBus:
    """Accumulates StepResults for one run."""

    def __init__(self, run_id: str = ""):
        self._run_id = run_id
        self._records: List[StepResult] = []
        self._step_ids: set = set()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._step_ids

    def record(self, step_id: StepId, result: StepResult) -> bool:
        """Append a result for a step.

        Returns:
            True if recorded; False for a duplicate write (logged, ignored).
        """
        if step_id in self._step_ids:
            logger.warning(
                "Data bus for run %s already has a result for step %s; ignoring duplicate write",
                self._run_id,
                step_id,
            )
            return False
        if result.step_id != step_id:
            raise ValueError(
                f"Result belongs to step '{result.step_id}', not '{step_id}'"
            )
        # Own a private copy so later mutation by the producer cannot leak in.
        self._records.append(copy.deepcopy(result))
        self._step_ids.add(step_id)
        return True

    def get(self, step_id: StepId) -> Optional[StepResult]:
        for result in self._records:
            if result.step_id == step_id:
                return result
        return None

    def snapshot(self) -> DataBusSnapshot:
        """Read-only copy of everything recorded so far."""
        return DataBusSnapshot(copy.deepcopy(self._records))

    def rewind(self, step_ids: Iterable[StepId]) -> List[StepId]:
        """Drop whole records for steps that are about to be retried.

        Returns:
            The step ids actually removed.
        """
        doomed = set(step_ids) & self._step_ids
        if not doomed:
            return []
        removed = [r.step_id for r in self._records if r.step_id in doomed]
        self._records = [r for r in self._records if r.step_id not in doomed]
        self._step_ids -= doomed
        logger.info("Data bus for run %s rewound steps %s", self._run_id, removed)
        return removed
