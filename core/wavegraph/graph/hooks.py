"""
Ready-made on_record hooks.

Hooks that remember earlier records keep that memory per run: the executor
calls ``start_run(run_id)`` before the first step and ``finish_run(run_id)``
after the last one, and every record carries its ``run_id``. One hook (or one
RunOptions holding it) can therefore be reused across runs, including
concurrent runs on the same executor.
"""

import logging
from collections.abc import Callable
from typing import Any

from wavegraph.graph.report import ExecutionRecord

logger = logging.getLogger(__name__)


class RunScopedHook:
    """Base class for on_record hooks that keep state for each run."""

    def __init__(self) -> None:
        self._state: dict[str, Any] = {}

    def start_run(self, run_id: str) -> None:
        self._state[run_id] = self.initial_state()

    def finish_run(self, run_id: str) -> None:
        self._state.pop(run_id, None)

    def initial_state(self) -> Any:
        return None

    def __call__(self, record: ExecutionRecord) -> bool:
        if record.run_id not in self._state:
            # Called outside an executor run (e.g. replaying records by hand)
            self._state[record.run_id] = self.initial_state()
        return self.observe(record)

    def observe(self, record: ExecutionRecord) -> bool:
        raise NotImplementedError


class ConvergenceHook(RunScopedHook):
    """Stops the run once ``node`` produces two successive similar outputs."""

    def __init__(self, node: str, is_similar: Callable[[Any, Any], bool]):
        super().__init__()
        self.node = node
        self.is_similar = is_similar

    def initial_state(self) -> list[Any]:
        return []

    def observe(self, record: ExecutionRecord) -> bool:
        if record.node != self.node or record.output is None:
            return False
        previous = self._state[record.run_id]
        current = record.output.payload
        if previous and self.is_similar(previous[-1], current):
            logger.info(f"   ≈ '{self.node}' converged at step {record.sequence}")
            return True
        previous[:] = [current]
        return False


class StopAfterHook(RunScopedHook):
    """Stops the run after ``node`` ran ``times`` times."""

    def __init__(self, node: str, times: int = 1):
        super().__init__()
        self.node = node
        self.times = times

    def initial_state(self) -> int:
        return 0

    def observe(self, record: ExecutionRecord) -> bool:
        if record.node == self.node:
            self._state[record.run_id] += 1
        return self._state[record.run_id] >= self.times


def stop_on_convergence(
    node: str,
    is_similar: Callable[[Any, Any], bool],
) -> ConvergenceHook:
    """
    Build an on_record hook that stops the run once ``node`` produces two
    successive outputs that ``is_similar`` accepts.

    Typical use is a writer/reviewer feedback loop:

        options = RunOptions(
            max_steps=50,
            on_record=stop_on_convergence("writer", lambda a, b: a == b),
        )
    """
    return ConvergenceHook(node, is_similar)


def stop_after(node: str, times: int = 1) -> StopAfterHook:
    """Build an on_record hook that stops the run after ``node`` ran ``times`` times."""
    return StopAfterHook(node, times)
