# src/rebalance/mpi.py
"""
The same collectives over an mpi4py communicator, one process per rank:

    mpiexec -n 4 python -m rebalance.simulate --backend mpi

Buffers are numpy arrays. Non-root ranks never pass receive buffers for a
gather or send buffers for a scatter; only MPIRootChannel takes them.
"""
from __future__ import annotations
import logging
from typing import Sequence

import numpy as np
from mpi4py import MPI
from mpi4py.util.dtlib import from_numpy_dtype

from .errors import RankCountMismatch, ShapeMismatch
from .partition import COUNT_DTYPE, Layout, validate_counts
from .roles import Worker, role_for
from .transforms import Transform, degree_sine

log = logging.getLogger(__name__)

COUNT_TYPE = MPI.INT64_T


def _count_buffer(value: int) -> list:
    return [np.array([value], dtype=COUNT_DTYPE), COUNT_TYPE]


class MPIChannel:
    coordinates = False

    def __init__(self, comm: MPI.Comm, root: int = 0):
        self.comm = comm
        self.root = root
        self.rank = comm.Get_rank()
        self.world_size = comm.Get_size()

    def barrier(self) -> None:
        self.comm.Barrier()

    def gather_counts(self, local_count: int) -> None:
        self.comm.Gather(_count_buffer(local_count), None, root=self.root)
        self.barrier()

    def gather_variable(self, local: np.ndarray) -> None:
        local = np.ascontiguousarray(local)
        self.comm.Gatherv([local, from_numpy_dtype(local.dtype)], None, root=self.root)
        self.barrier()

    def scatter_fixed(self) -> int:
        out = np.empty(1, dtype=COUNT_DTYPE)
        self.comm.Scatter(None, [out, COUNT_TYPE], root=self.root)
        self.barrier()
        return int(out[0])

    def scatter_variable(self, count: int, dtype) -> np.ndarray:
        part = np.empty(count, dtype=dtype)
        self.comm.Scatterv(None, [part, from_numpy_dtype(part.dtype)], root=self.root)
        self.barrier()
        return part


class MPIRootChannel(MPIChannel):
    coordinates = True

    def _check_pool(self, layout: Layout) -> None:
        if layout.world_size != self.world_size:
            raise RankCountMismatch(
                f"layout covers {layout.world_size} ranks, communicator has {self.world_size}")

    def gather_counts(self, local_count: int) -> np.ndarray:
        counts = np.empty(self.world_size, dtype=COUNT_DTYPE)
        self.comm.Gather(_count_buffer(local_count), [counts, COUNT_TYPE], root=self.root)
        self.barrier()
        return validate_counts(counts.tolist(), self.world_size)

    def gather_variable(self, local: np.ndarray, layout: Layout) -> np.ndarray:
        self._check_pool(layout)
        local = np.ascontiguousarray(local)
        if local.shape[0] != layout.counts[self.rank]:
            raise ShapeMismatch(
                f"root contributes {local.shape[0]} items, layout expects {layout.counts[self.rank]}")
        mpi_type = from_numpy_dtype(local.dtype)
        flat = np.empty(layout.total, dtype=local.dtype)
        self.comm.Gatherv(
            [local, mpi_type],
            [flat, layout.counts.tolist(), layout.offsets.tolist(), mpi_type],
            root=self.root,
        )
        self.barrier()
        return flat

    def scatter_fixed(self, values: Sequence[int]) -> int:
        values = np.ascontiguousarray(values, dtype=COUNT_DTYPE)
        if values.shape[0] != self.world_size:
            raise RankCountMismatch(
                f"{values.shape[0]} values for a communicator of {self.world_size}")
        out = np.empty(1, dtype=COUNT_DTYPE)
        self.comm.Scatter([values, COUNT_TYPE], [out, COUNT_TYPE], root=self.root)
        self.barrier()
        return int(out[0])

    def scatter_variable(self, flat: np.ndarray, layout: Layout) -> np.ndarray:
        self._check_pool(layout)
        layout.check(flat)
        flat = np.ascontiguousarray(flat)
        mpi_type = from_numpy_dtype(flat.dtype)
        part = np.empty(int(layout.counts[self.rank]), dtype=flat.dtype)
        self.comm.Scatterv(
            [flat, layout.counts.tolist(), layout.offsets.tolist(), mpi_type],
            [part, mpi_type],
            root=self.root,
        )
        self.barrier()
        return part


def mpi_channel(comm: MPI.Comm | None = None, root: int = 0) -> MPIChannel:
    comm = MPI.COMM_WORLD if comm is None else comm
    if not 0 <= root < comm.Get_size():
        raise RankCountMismatch(f"root {root} outside communicator of {comm.Get_size()}")
    cls = MPIRootChannel if comm.Get_rank() == root else MPIChannel
    return cls(comm, root)


def run_mpi_round(
    batch: np.ndarray,
    transform: Transform = degree_sine,
    comm: MPI.Comm | None = None,
    root: int = 0,
) -> Worker:
    """
    Run this process's share of a round. Every rank of `comm` must call it.
    Any failure on any rank aborts the communicator, since the other ranks
    would otherwise block in the next collective.
    """
    comm = MPI.COMM_WORLD if comm is None else comm
    try:
        role = role_for(mpi_channel(comm, root), batch, transform)
        role.run()
    except BaseException:
        log.exception("rank %d: round failed, aborting", comm.Get_rank())
        comm.Abort(1)
        raise
    return role
