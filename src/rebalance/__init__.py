from .batches import consolidate, reconcile, split
from .errors import (
    NegativeOrMissingCount,
    RankCountMismatch,
    RoundAborted,
    RoundError,
    ShapeMismatch,
)
from .partition import Layout, offsets_from_counts, plan
from .round import RoundReport, run_round
from .transforms import degree_sine, identity

__version__ = "0.1.0"
