# src/rebalance/partition.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .errors import NegativeOrMissingCount, RankCountMismatch, ShapeMismatch

COUNT_DTYPE = np.int64


def plan(total: int, world_size: int) -> np.ndarray:
    """
    Balanced target distribution of `total` items over `world_size` ranks.
    Every rank gets total // N; the first total % N ranks (lowest ranks first)
    get one extra item, e.g. 21 items over 4 ranks -> [6, 5, 5, 5].
    """
    if world_size <= 0:
        raise ValueError(f"world_size must be positive, got {world_size}")
    if total < 0:
        raise ValueError(f"total must be non-negative, got {total}")
    base = total // world_size
    rem = total % world_size
    counts = np.full(world_size, base, dtype=COUNT_DTYPE)
    counts[:rem] += 1
    return counts


def offsets_from_counts(counts: Sequence[int]) -> np.ndarray:
    """Exclusive prefix sum: [a, b, c] -> [0, a, a+b]."""
    counts = np.asarray(counts, dtype=COUNT_DTYPE)
    offsets = np.zeros_like(counts)
    if counts.size > 1:
        offsets[1:] = np.cumsum(counts[:-1])
    return offsets


def validate_counts(counts: Sequence, world_size: int) -> np.ndarray:
    if len(counts) != world_size:
        raise RankCountMismatch(
            f"expected {world_size} counts, got {len(counts)}")
    for rank, c in enumerate(counts):
        if c is None:
            raise NegativeOrMissingCount(f"rank {rank} did not report a count")
        if isinstance(c, bool) or not isinstance(c, (int, np.integer)):
            raise NegativeOrMissingCount(
                f"rank {rank} reported a non-integral count {c!r}")
        if c < 0:
            raise NegativeOrMissingCount(
                f"rank {rank} reported a negative count {c}")
    return np.array(counts, dtype=COUNT_DTYPE)


@dataclass(frozen=True)
class Layout:
    """
    One partitioning of a flat sequence across the pool: counts[i] items for
    rank i, stored contiguously from offsets[i].
    """
    counts: np.ndarray
    offsets: np.ndarray

    @classmethod
    def from_counts(cls, counts: Sequence, world_size: int | None = None) -> "Layout":
        if world_size is None:
            world_size = len(counts)
        counts = validate_counts(counts, world_size)
        counts.setflags(write=False)
        offsets = offsets_from_counts(counts)
        offsets.setflags(write=False)
        return cls(counts, offsets)

    @classmethod
    def balanced(cls, total: int, world_size: int) -> "Layout":
        return cls.from_counts(plan(total, world_size))

    @property
    def world_size(self) -> int:
        return int(self.counts.shape[0])

    @property
    def total(self) -> int:
        return int(self.counts.sum())

    def region(self, rank: int) -> slice:
        start = int(self.offsets[rank])
        return slice(start, start + int(self.counts[rank]))

    def check(self, flat: np.ndarray) -> None:
        if len(flat) != self.total:
            raise ShapeMismatch(
                f"flat sequence has {len(flat)} items, layout describes {self.total}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Layout):
            return NotImplemented
        return np.array_equal(self.counts, other.counts)

    def __hash__(self) -> int:
        return hash(tuple(self.counts.tolist()))
