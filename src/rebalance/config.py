# src/rebalance/config.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from .transforms import TRANSFORMS

BACKENDS = ("threads", "mpi")


@dataclass(frozen=True)
class RoundConfig:
    """Knobs for one demo round; defaults follow the original workload."""
    world_size: int = 4
    root: int = 0
    seed: Optional[int] = None
    max_items: int = 10
    max_value: int = 180
    transform: str = "sine"
    backend: str = "threads"
    poll_interval: float = 0.05

    def __post_init__(self):
        if self.world_size < 1:
            raise ValueError(f"world_size must be >= 1, got {self.world_size}")
        if not 0 <= self.root < self.world_size:
            raise ValueError(f"root must be in [0, {self.world_size}), got {self.root}")
        if self.max_items < 1:
            raise ValueError(f"max_items must be >= 1, got {self.max_items}")
        if self.max_value < 0:
            raise ValueError(f"max_value must be >= 0, got {self.max_value}")
        if self.transform not in TRANSFORMS:
            raise ValueError(f"unknown transform {self.transform!r}")
        if self.backend not in BACKENDS:
            raise ValueError(f"unknown backend {self.backend!r}")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
