# src/rebalance/errors.py
"""Failures that abort a round. None of them are recoverable mid-round."""


class RoundError(Exception):
    """Base class for anything that fails a round as a whole."""


class ShapeMismatch(RoundError):
    """A count vector / offset table disagrees with the data it describes."""


class RankCountMismatch(RoundError):
    """Participants in a collective do not match the declared pool size."""


class NegativeOrMissingCount(RoundError):
    """A rank reported a negative batch size, or no size at all."""


class RoundAborted(RoundError):
    """Raised on ranks that were waiting when another rank failed."""
