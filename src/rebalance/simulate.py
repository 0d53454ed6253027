from __future__ import annotations
import argparse
import logging
import sys
from typing import List, Optional

import numpy as np

from .batches import random_batch, random_batches
from .config import BACKENDS, RoundConfig
from .round import RoundReport, run_round
from .transforms import TRANSFORMS, get_transform


def _fmt(values: np.ndarray) -> str:
  if np.issubdtype(values.dtype, np.floating):
    return " ".join(f"{v:f}" for v in values)
  return " ".join(str(v) for v in values)


def print_initialize(rank: int, world_size: int, batch: np.ndarray) -> None:
  print(f"INITIALIZE {rank}:    rank {rank} of {world_size} holds {batch.shape[0]} elements: {_fmt(batch)}")


def print_progress(report: RoundReport) -> None:
  r, last = report.root, report.world_size - 1
  print(f"PROGRESS {r}:    element counts of ranks 0 to {last}: {_fmt(report.original.counts)}")
  print(f"PROGRESS {r}:    consolidated elements (rank 0 to {last}): {_fmt(report.flat_items)}")
  print(f"PROGRESS {r}:    target redistribution: {_fmt(report.balanced.counts)}")


def print_report(report: RoundReport) -> None:
  for rank, batch in enumerate(report.batches):
    print_initialize(rank, report.world_size, batch)
  print()
  print_progress(report)
  print()
  for rank, task in enumerate(report.tasks):
    print(f"TASK {rank}:    rank {rank} task array: {_fmt(task)}")
  print()
  print(f"RESULT {report.root}:    combined results: {_fmt(report.flat_results)}")
  for rank, res in enumerate(report.results):
    print(f"RESULT {rank}:    rank {rank} final results: {_fmt(res)}")


def verify(batches: List[np.ndarray], results: List[np.ndarray], transform) -> List[bool]:
  """Each rank's results must equal the transform of its own original batch."""
  checks = []
  for batch, res in zip(batches, results):
    expected = transform(batch)
    checks.append(res.shape == expected.shape and bool(np.allclose(res, expected)))
  return checks


def run_demo(config: RoundConfig) -> bool:
  # 1) each rank draws its own batch
  batches = random_batches(config.world_size, config.seed, config.max_items, config.max_value)
  transform = get_transform(config.transform)

  # 2) one full round
  report = run_round(batches, transform, root=config.root, poll_interval=config.poll_interval)
  print_report(report)

  # 3) verify: every rank should get transform(own batch), in order
  print()
  checks = verify(report.batches, report.results, transform)
  for rank, ok in enumerate(checks):
    print(f"Rank {rank} match expected? {ok}")
  return all(checks)


def run_mpi_demo(config: RoundConfig) -> bool:
  from .mpi import mpi_channel, run_mpi_round

  channel = mpi_channel(root=config.root)
  rank, world_size = channel.rank, channel.world_size
  seed = None if config.seed is None else config.seed + rank
  batch = random_batch(seed, config.max_items, config.max_value)
  transform = get_transform(config.transform)
  print_initialize(rank, world_size, batch)

  role = run_mpi_round(batch, transform, comm=channel.comm, root=config.root)
  print(f"TASK {rank}:    rank {rank} task array: {_fmt(role.task)}")
  if role.channel.coordinates:
    print(f"PROGRESS {rank}:    target redistribution: {_fmt(role.balanced.counts)}")
    print(f"RESULT {rank}:    combined results: {_fmt(role.flat_results)}")
  print(f"RESULT {rank}:    rank {rank} final results: {_fmt(role.results)}")
  (ok,) = verify([batch], [role.results], transform)
  print(f"Rank {rank} match expected? {ok}")
  return ok


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
  parser = argparse.ArgumentParser(
    description="Consolidate, rebalance, transform and return per-rank batches.")
  parser.add_argument("-n", "--world-size", type=int, default=4,
                      help="Number of ranks (threads backend only).")
  parser.add_argument("--root", type=int, default=0, help="Coordinator rank.")
  parser.add_argument("--seed", type=int, default=None,
                      help="Base seed; rank r draws with seed + r.")
  parser.add_argument("--max-items", type=int, default=10,
                      help="Each rank draws between 0 and max-items - 1 elements.")
  parser.add_argument("--max-value", type=int, default=180,
                      help="Largest element value (degrees).")
  parser.add_argument("--transform", choices=sorted(TRANSFORMS), default="sine")
  parser.add_argument("--backend", choices=BACKENDS, default="threads")
  parser.add_argument("--log-level", default="WARNING")
  return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
  args = parse_args(argv)
  logging.basicConfig(
    level=args.log_level.upper(),
    format="%(asctime)s %(threadName)s %(name)s %(levelname)s %(message)s",
  )
  config = RoundConfig(
    world_size=args.world_size,
    root=args.root,
    seed=args.seed,
    max_items=args.max_items,
    max_value=args.max_value,
    transform=args.transform,
    backend=args.backend,
  )
  ok = run_mpi_demo(config) if config.backend == "mpi" else run_demo(config)
  return 0 if ok else 1


if __name__ == "__main__":
  sys.exit(main())
