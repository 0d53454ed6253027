"""
One fixed round under mpiexec, driven by test_mpi.py:

    mpiexec -n 4 python mpi_round_job.py [ok|fail]

Rank sizes are uneven and include an empty batch; rank 1 coordinates.
In "fail" mode rank 1's transform raises.
"""
import sys

import numpy as np
from mpi4py import MPI

from rebalance.mpi import run_mpi_round
from rebalance.transforms import degree_sine

SIZES = [8, 3, 0, 7]
ROOT = 1


def batch_for(rank):
    start = sum(SIZES[:rank])
    return np.arange(start, start + SIZES[rank], dtype=np.int64) * 10 % 181


def main(mode):
    comm = MPI.COMM_WORLD
    rank = comm.Get_rank()
    if comm.Get_size() != len(SIZES):
        raise SystemExit(f"needs {len(SIZES)} ranks, got {comm.Get_size()}")

    def transform(items):
        if mode == "fail" and rank == 1:
            raise ArithmeticError("unlucky")
        return degree_sine(items)

    batch = batch_for(rank)
    role = run_mpi_round(batch, transform, comm=comm, root=ROOT)
    ok = role.results.shape == batch.shape and bool(np.allclose(role.results, degree_sine(batch)))
    print(f"rank {rank} ok {ok} task {role.task.shape[0]}", flush=True)
    if role.channel.coordinates:
        print(f"balanced {role.balanced.counts.tolist()}", flush=True)


if __name__ == "__main__":
    main(sys.argv[1] if len(sys.argv) > 1 else "ok")
