# src/rebalance/roles.py
from __future__ import annotations
import enum
import logging
from typing import List, Optional, Tuple

import numpy as np

from .errors import RoundError
from .partition import Layout
from .transforms import Transform, apply_transform

log = logging.getLogger(__name__)


class Phase(enum.Enum):
    INIT = "init"
    REPORT_COUNT = "report_count"
    AWAIT_CONSOLIDATION = "await_consolidation"
    PLAN = "plan"
    RECEIVE_ASSIGNMENT = "receive_assignment"
    COMPUTE = "compute"
    SEND_RESULTS = "send_results"
    AWAIT_RECONCILIATION = "await_reconciliation"
    RECEIVE_FINAL_RESULTS = "receive_final_results"
    DONE = "done"


class Worker:
    """
    What every rank does in a round: report its batch, take a balanced slice,
    transform it, hand the results back and receive the results for its own
    original items.

    The channel is anything with the worker side of the collectives
    (gather_counts, gather_variable, scatter_fixed, scatter_variable).
    """

    PHASES: Tuple[Phase, ...] = (
        Phase.INIT,
        Phase.REPORT_COUNT,
        Phase.RECEIVE_ASSIGNMENT,
        Phase.COMPUTE,
        Phase.SEND_RESULTS,
        Phase.RECEIVE_FINAL_RESULTS,
        Phase.DONE,
    )

    def __init__(self, channel, batch: np.ndarray, transform: Transform):
        self.channel = channel
        self.batch = np.asarray(batch)
        if self.batch.ndim != 1:
            raise ValueError(f"batch must be 1D, got shape {self.batch.shape}")
        self.transform = transform
        self.trace: List[Phase] = [Phase.INIT]
        self.task: Optional[np.ndarray] = None
        self.computed: Optional[np.ndarray] = None
        self.results: Optional[np.ndarray] = None

    @property
    def rank(self) -> int:
        return self.channel.rank

    @property
    def phase(self) -> Phase:
        return self.trace[-1]

    def _enter(self, phase: Phase) -> None:
        expected = self.PHASES[len(self.trace)] if len(self.trace) < len(self.PHASES) else None
        if phase is not expected:
            raise RoundError(
                f"rank {self.rank}: cannot enter {phase.value} after {self.phase.value}")
        log.debug("rank %d -> %s", self.rank, phase.value)
        self.trace.append(phase)

    def run(self) -> np.ndarray:
        if self.phase is not Phase.INIT:
            raise RoundError(f"rank {self.rank}: a role runs exactly one round")
        self._enter(Phase.REPORT_COUNT)
        self._collect()
        self._enter(Phase.RECEIVE_ASSIGNMENT)
        self.task = self._receive_assignment()
        self._enter(Phase.COMPUTE)
        self.computed = apply_transform(self.transform, self.task)
        self._enter(Phase.SEND_RESULTS)
        self._send_results(self.computed)
        self._enter(Phase.RECEIVE_FINAL_RESULTS)
        self.results = self._receive_results()
        self._enter(Phase.DONE)
        log.info("rank %d done: %d items in, %d computed here",
                 self.rank, self.batch.shape[0], self.task.shape[0])
        return self.results

    def _collect(self) -> None:
        self.channel.gather_counts(self.batch.shape[0])
        self.channel.gather_variable(self.batch)

    def _receive_assignment(self) -> np.ndarray:
        count = self.channel.scatter_fixed()
        return self.channel.scatter_variable(count, self.batch.dtype)

    def _send_results(self, computed: np.ndarray) -> None:
        self.channel.gather_variable(computed)

    def _receive_results(self) -> np.ndarray:
        return self.channel.scatter_variable(self.batch.shape[0], self.computed.dtype)


class Coordinator(Worker):
    """
    The one rank that also plans and owns the consolidated sequences.

    Two layouts describe the same flat order: `original` (batch sizes as
    submitted) and `balanced` (the planner's near-equal shares). Items are
    consolidated under `original` and handed out under `balanced`; results
    come back under `balanced` and are returned under `original`.
    """

    PHASES = (
        Phase.INIT,
        Phase.REPORT_COUNT,
        Phase.AWAIT_CONSOLIDATION,
        Phase.PLAN,
        Phase.RECEIVE_ASSIGNMENT,
        Phase.COMPUTE,
        Phase.SEND_RESULTS,
        Phase.AWAIT_RECONCILIATION,
        Phase.RECEIVE_FINAL_RESULTS,
        Phase.DONE,
    )

    def __init__(self, channel, batch: np.ndarray, transform: Transform):
        super().__init__(channel, batch, transform)
        self.original: Optional[Layout] = None
        self.balanced: Optional[Layout] = None
        self.flat_items: Optional[np.ndarray] = None
        self.flat_results: Optional[np.ndarray] = None

    def _collect(self) -> None:
        counts = self.channel.gather_counts(self.batch.shape[0])
        self.original = Layout.from_counts(counts, self.channel.world_size)
        self._enter(Phase.AWAIT_CONSOLIDATION)
        self.flat_items = self.channel.gather_variable(self.batch, self.original)
        self._enter(Phase.PLAN)
        self.balanced = Layout.balanced(self.original.total, self.channel.world_size)
        log.info("planned %d items over %d ranks: %s -> %s",
                 self.original.total, self.channel.world_size,
                 self.original.counts.tolist(), self.balanced.counts.tolist())

    def _receive_assignment(self) -> np.ndarray:
        self.channel.scatter_fixed(self.balanced.counts)
        return self.channel.scatter_variable(self.flat_items, self.balanced)

    def _send_results(self, computed: np.ndarray) -> None:
        self.flat_results = self.channel.gather_variable(computed, self.balanced)
        self._enter(Phase.AWAIT_RECONCILIATION)

    def _receive_results(self) -> np.ndarray:
        return self.channel.scatter_variable(self.flat_results, self.original)


def role_for(channel, batch: np.ndarray, transform: Transform) -> Worker:
    cls = Coordinator if channel.coordinates else Worker
    return cls(channel, batch, transform)
