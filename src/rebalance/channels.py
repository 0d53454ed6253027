# src/rebalance/channels.py
"""
In-memory collective transfers for a pool of ranks running as threads.

Every rank talks only to the root: gathers flow rank -> root, scatters flow
root -> rank. Each collective ends on a pool-wide barrier, so no rank can
start the next phase before the current one has completed everywhere.
"""
from __future__ import annotations
import logging
import queue
import threading
from typing import Any, List, NamedTuple, Optional, Sequence

import numpy as np

from .batches import consolidate, split
from .errors import RankCountMismatch, RoundAborted, RoundError, ShapeMismatch
from .partition import Layout, validate_counts

log = logging.getLogger(__name__)


class Envelope(NamedTuple):
    tag: str
    src: int
    payload: Any


class Fabric:
    """One inbox per rank and a barrier shared by the whole pool."""

    def __init__(self, world_size: int, root: int = 0, poll_interval: float = 0.05):
        if world_size < 1:
            raise RankCountMismatch(f"pool needs at least one rank, got {world_size}")
        if not 0 <= root < world_size:
            raise RankCountMismatch(f"root {root} outside pool of {world_size}")
        self.world_size = world_size
        self.root = root
        self.poll_interval = poll_interval
        self.inboxes: List[queue.Queue] = [queue.Queue() for _ in range(world_size)]
        self.barrier = threading.Barrier(world_size)
        self.cause: Optional[BaseException] = None
        self._aborted = threading.Event()
        self._joined: set[int] = set()
        self._lock = threading.Lock()

    @property
    def aborted(self) -> bool:
        return self._aborted.is_set()

    def channel(self, rank: int) -> "Channel":
        if not 0 <= rank < self.world_size:
            raise RankCountMismatch(f"rank {rank} outside pool of {self.world_size}")
        with self._lock:
            if rank in self._joined:
                raise RankCountMismatch(f"rank {rank} joined the pool twice")
            self._joined.add(rank)
        cls = RootChannel if rank == self.root else Channel
        return cls(self, rank)

    def abort(self, cause: BaseException) -> None:
        """Fail the round: wake every rank blocked on a receive or a barrier."""
        with self._lock:
            if self._aborted.is_set():
                return
            self.cause = cause
            self._aborted.set()
        log.warning("round aborted: %s: %s", type(cause).__name__, cause)
        self.barrier.abort()


class Channel:
    """What every rank can do: contribute to gathers, receive from scatters."""

    coordinates = False

    def __init__(self, fabric: Fabric, rank: int):
        self.fabric = fabric
        self.rank = rank

    @property
    def world_size(self) -> int:
        return self.fabric.world_size

    @property
    def root(self) -> int:
        return self.fabric.root

    def barrier(self) -> None:
        try:
            self.fabric.barrier.wait()
        except threading.BrokenBarrierError:
            raise RoundAborted(f"rank {self.rank}: round aborted") from self.fabric.cause

    def _send(self, dst: int, tag: str, payload: Any) -> None:
        self.fabric.inboxes[dst].put(Envelope(tag, self.rank, payload))

    def _recv(self, tag: str) -> Envelope:
        inbox = self.fabric.inboxes[self.rank]
        while True:
            if self.fabric.aborted:
                raise RoundAborted(f"rank {self.rank}: round aborted") from self.fabric.cause
            try:
                env = inbox.get(timeout=self.fabric.poll_interval)
            except queue.Empty:
                continue
            if env.tag != tag:
                raise RoundError(
                    f"rank {self.rank} expected {tag!r}, got {env.tag!r} from rank {env.src}")
            return env

    def gather_counts(self, local_count: int) -> None:
        self._send(self.root, "counts", local_count)
        self.barrier()

    def gather_variable(self, local: np.ndarray) -> None:
        self._send(self.root, "gatherv", np.array(local))
        self.barrier()

    def scatter_fixed(self) -> int:
        value = self._recv("scatter").payload
        self.barrier()
        return int(value)

    def scatter_variable(self, count: int, dtype=None) -> np.ndarray:
        # payloads arrive as arrays already; dtype only matters for transports
        # that have to allocate the receive buffer themselves
        part = np.asarray(self._recv("scatterv").payload)
        if part.shape[0] != count:
            raise ShapeMismatch(
                f"rank {self.rank} received {part.shape[0]} items, expected {count}")
        self.barrier()
        return part


class RootChannel(Channel):
    """The root's side of each collective; it alone sees the whole pool."""

    coordinates = True

    def _collect(self, tag: str, own: Any) -> List[Any]:
        received = {self.rank: own}
        while len(received) < self.world_size:
            env = self._recv(tag)
            if not 0 <= env.src < self.world_size or env.src in received:
                raise RankCountMismatch(f"unexpected {tag!r} from rank {env.src}")
            received[env.src] = env.payload
        return [received[r] for r in range(self.world_size)]

    def _check_pool(self, layout: Layout) -> None:
        if layout.world_size != self.world_size:
            raise RankCountMismatch(
                f"layout covers {layout.world_size} ranks, pool has {self.world_size}")

    def gather_counts(self, local_count: int) -> np.ndarray:
        counts = validate_counts(self._collect("counts", local_count), self.world_size)
        log.debug("gathered counts %s", counts.tolist())
        self.barrier()
        return counts

    def gather_variable(self, local: np.ndarray, layout: Layout) -> np.ndarray:
        self._check_pool(layout)
        parts = self._collect("gatherv", np.asarray(local))
        flat = consolidate(parts, layout)
        log.debug("consolidated %d items from %d ranks", flat.shape[0], self.world_size)
        self.barrier()
        return flat

    def scatter_fixed(self, values: Sequence[int]) -> int:
        if len(values) != self.world_size:
            raise RankCountMismatch(
                f"{len(values)} values for a pool of {self.world_size}")
        for dst in range(self.world_size):
            if dst != self.rank:
                self._send(dst, "scatter", int(values[dst]))
        self.barrier()
        return int(values[self.rank])

    def scatter_variable(self, flat: np.ndarray, layout: Layout) -> np.ndarray:
        self._check_pool(layout)
        parts = split(flat, layout)
        for dst, part in enumerate(parts):
            if dst != self.rank:
                self._send(dst, "scatterv", part)
        log.debug("scattered %s", layout.counts.tolist())
        self.barrier()
        return parts[self.rank]
