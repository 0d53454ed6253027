import numpy as np
import pytest

from rebalance.batches import consolidate, random_batch, random_batches, reconcile, split
from rebalance.errors import RankCountMismatch, ShapeMismatch
from rebalance.partition import Layout


def _batches(*sizes):
    start = 0
    out = []
    for size in sizes:
        out.append(np.arange(start, start + size, dtype=np.int64))
        start += size
    return out


def test_consolidate_places_runs_in_rank_order():
    parts = [np.array([7, 8]), np.array([], dtype=np.int64), np.array([1, 2, 3])]
    flat = consolidate(parts, Layout.from_counts([2, 0, 3]))
    assert flat.tolist() == [7, 8, 1, 2, 3]


def test_consolidate_rejects_wrong_part_length():
    with pytest.raises(ShapeMismatch):
        consolidate([np.arange(3), np.arange(2)], Layout.from_counts([2, 3]))


def test_consolidate_rejects_wrong_part_count():
    with pytest.raises(RankCountMismatch):
        consolidate([np.arange(2)], Layout.from_counts([2, 0]))


def test_split_is_contiguous():
    parts = split(np.arange(7), Layout.balanced(7, 3))
    assert [p.tolist() for p in parts] == [[0, 1, 2], [3, 4], [5, 6]]


def test_split_rejects_wrong_flat_length():
    with pytest.raises(ShapeMismatch):
        split(np.arange(6), Layout.balanced(7, 3))


def test_reconcile_traces_items_back_by_position():
    original = Layout.from_counts([8, 1, 4, 7])
    balanced = Layout.balanced(original.total, 4)
    batches = _batches(8, 1, 4, 7)
    # what each rank holds after redistribution, then "computed" as x * 10
    computed = [p * 10 for p in split(consolidate(batches, original), balanced)]
    back = reconcile(computed, balanced, original)
    for batch, res in zip(batches, back):
        assert res.tolist() == (batch * 10).tolist()


def test_reconcile_refuses_different_totals():
    with pytest.raises(ShapeMismatch):
        reconcile([np.arange(2)], Layout.from_counts([2]), Layout.from_counts([3]))


def test_random_batch_bounds():
    for seed in range(50):
        batch = random_batch(seed, max_items=10, max_value=180)
        assert batch.dtype == np.int64
        assert 0 <= batch.shape[0] < 10
        assert ((batch >= 0) & (batch <= 180)).all()


def test_random_batches_are_seeded_per_rank():
    first = random_batches(4, seed=11)
    again = random_batches(4, seed=11)
    assert len(first) == 4
    for a, b in zip(first, again):
        assert np.array_equal(a, b)
    assert np.array_equal(first[1], random_batch(12))
