# src/rebalance/round.py
from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .channels import Fabric
from .errors import RankCountMismatch, RoundError
from .partition import Layout
from .roles import Coordinator, Phase, Worker, role_for
from .transforms import Transform, degree_sine

log = logging.getLogger(__name__)


@dataclass
class RoundReport:
    """Everything one round produced, per rank and at the coordinator."""
    root: int
    batches: List[np.ndarray]
    tasks: List[np.ndarray]
    computed: List[np.ndarray]
    results: List[np.ndarray]
    traces: List[List[Phase]]
    original: Layout
    balanced: Layout
    flat_items: np.ndarray
    flat_results: np.ndarray

    @property
    def world_size(self) -> int:
        return len(self.batches)


def _run_rank(fabric: Fabric, rank: int, batch: np.ndarray, transform: Transform) -> Worker:
    role: Optional[Worker] = None
    try:
        role = role_for(fabric.channel(rank), batch, transform)
        role.run()
    except BaseException as exc:
        fabric.abort(exc)
        raise
    return role


def run_round(
    batches: Sequence[np.ndarray],
    transform: Transform = degree_sine,
    root: int = 0,
    poll_interval: float = 0.05,
) -> RoundReport:
    """
    Run one collect -> plan -> redistribute -> compute -> reconcile round with
    one thread per rank; batches[i] is rank i's original batch.

    The round is all-or-nothing: if any rank fails, every other rank is woken
    with RoundAborted and the first real error is re-raised here.
    """
    world_size = len(batches)
    if world_size < 1:
        raise RankCountMismatch("a round needs at least one rank")
    fabric = Fabric(world_size, root=root, poll_interval=poll_interval)
    log.info("starting round over %d ranks (root %d)", world_size, root)

    with ThreadPoolExecutor(max_workers=world_size, thread_name_prefix="rank") as pool:
        futures = [
            pool.submit(_run_rank, fabric, rank, batches[rank], transform)
            for rank in range(world_size)
        ]
    errors = [f.exception() for f in futures if f.exception() is not None]
    if errors:
        # the first failure is the cause; the rest are RoundAborted echoes
        raise fabric.cause or errors[0]

    roles = [f.result() for f in futures]
    coordinator = roles[root]
    if not isinstance(coordinator, Coordinator):
        raise RoundError(f"rank {root} finished without coordinating the round")
    return RoundReport(
        root=root,
        batches=[r.batch for r in roles],
        tasks=[r.task for r in roles],
        computed=[r.computed for r in roles],
        results=[r.results for r in roles],
        traces=[list(r.trace) for r in roles],
        original=coordinator.original,
        balanced=coordinator.balanced,
        flat_items=coordinator.flat_items,
        flat_results=coordinator.flat_results,
    )
