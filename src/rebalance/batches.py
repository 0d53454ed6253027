from __future__ import annotations
import numpy as np
from typing import List, Sequence

from .errors import RankCountMismatch, ShapeMismatch
from .partition import Layout

ITEM_DTYPE = np.int64

def consolidate(parts: Sequence[np.ndarray], layout: Layout) -> np.ndarray:
	"""Place parts[i] at layout.region(i) of one flat 1D array."""
	if len(parts) != layout.world_size:
		raise RankCountMismatch(f"{len(parts)} parts for a pool of {layout.world_size}")
	parts = [np.asarray(p) for p in parts]
	flat = np.empty(layout.total, dtype=np.result_type(*parts))
	for rank, part in enumerate(parts):
		region = layout.region(rank)
		if part.shape[0] != region.stop - region.start:
			raise ShapeMismatch(
				f"rank {rank} contributed {part.shape[0]} items, expected {region.stop - region.start}")
		flat[region] = part
	return flat

def split(flat: np.ndarray, layout: Layout) -> List[np.ndarray]:
	"""Cut a flat array into one contiguous slice per rank."""
	layout.check(flat)
	return [flat[layout.region(rank)].copy() for rank in range(layout.world_size)]

def reconcile(parts: Sequence[np.ndarray], current: Layout, target: Layout) -> List[np.ndarray]:
	"""
	Re-cut per-rank parts shaped by `current` into the shape `target`.
	Items are traced purely by flat position, never by value.
	"""
	if current.total != target.total:
		raise ShapeMismatch(f"cannot reshape {current.total} items into {target.total}")
	return split(consolidate(parts, current), target)

def random_batch(seed: int | None = None, max_items: int = 10, max_value: int = 180) -> np.ndarray:
	"""Between 0 and max_items - 1 angles in degrees, each in [0, max_value]."""
	rng = np.random.default_rng(seed)
	size = int(rng.integers(0, max_items))
	return rng.integers(0, max_value + 1, size=size, dtype=ITEM_DTYPE)

def random_batches(world_size: int, seed: int | None = None, max_items: int = 10,
		max_value: int = 180) -> List[np.ndarray]:
	"""One independent batch per rank, rank r seeded with seed + r."""
	return [
		random_batch(None if seed is None else seed + rank, max_items, max_value)
		for rank in range(world_size)
	]
