# src/rebalance/transforms.py
from __future__ import annotations
import math
from typing import Callable, Dict

import numpy as np

from .errors import ShapeMismatch

Transform = Callable[[np.ndarray], np.ndarray]

# atan(1) / 45 == pi / 180
DEGREES_TO_RADIANS = math.atan(1) / 45.0


def degree_sine(items: np.ndarray) -> np.ndarray:
    """sin of each item read as an angle in degrees."""
    return np.sin(np.asarray(items) * DEGREES_TO_RADIANS)


def identity(items: np.ndarray) -> np.ndarray:
    return np.asarray(items).copy()


TRANSFORMS: Dict[str, Transform] = {
    "sine": degree_sine,
    "identity": identity,
}


def get_transform(name: str) -> Transform:
    try:
        return TRANSFORMS[name]
    except KeyError:
        choices = ", ".join(sorted(TRANSFORMS))
        raise ValueError(f"unknown transform {name!r} (choose from {choices})") from None


def apply_transform(transform: Transform, items: np.ndarray) -> np.ndarray:
    """
    Run an elementwise transform on one rank's slice. The output has to stay
    positionally aligned with the input, so a length change is fatal.
    """
    out = np.asarray(transform(items))
    if out.ndim != 1 or out.shape[0] != len(items):
        raise ShapeMismatch(
            f"transform returned {out.shape} for {len(items)} items")
    return out
