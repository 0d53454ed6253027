import importlib
from types import SimpleNamespace

import numpy as np
import pytest

from rebalance.batches import random_batches
from rebalance.errors import RankCountMismatch, RoundError, ShapeMismatch
from rebalance.roles import Coordinator, Phase, Worker
from rebalance.round import run_round
from rebalance.transforms import degree_sine, identity


def _sized(*sizes):
    """Distinct values per rank so misplaced items show up."""
    start = 0
    out = []
    for size in sizes:
        out.append(np.arange(start, start + size, dtype=np.int64))
        start += size
    return out


@pytest.mark.parametrize("world_size", [1, 2, 3, 4, 6])
@pytest.mark.parametrize("seed", [0, 1, 7])
def test_results_return_to_their_origin(world_size, seed):
    batches = random_batches(world_size, seed=seed * 100)
    report = run_round(batches, degree_sine)
    for batch, res in zip(batches, report.results):
        assert res.shape == batch.shape
        assert np.allclose(res, degree_sine(batch))


def test_items_are_conserved_in_every_phase():
    report = run_round(_sized(8, 2, 4, 7), identity)
    total = 21
    assert report.original.total == total
    assert report.balanced.total == total
    assert report.flat_items.shape[0] == total
    assert report.flat_results.shape[0] == total
    assert sum(t.shape[0] for t in report.tasks) == total
    assert sum(r.shape[0] for r in report.results) == total
    assert report.flat_items.tolist() == list(range(total))


@pytest.mark.parametrize("sizes, balanced", [
    ((8, 1, 4, 7), [5, 5, 5, 5]),
    ((8, 2, 4, 7), [6, 5, 5, 5]),
    ((8, 3, 4, 7), [6, 6, 5, 5]),
])
def test_work_is_rebalanced(sizes, balanced):
    report = run_round(_sized(*sizes), identity)
    assert report.original.counts.tolist() == list(sizes)
    assert report.balanced.counts.tolist() == balanced
    assert [t.shape[0] for t in report.tasks] == balanced
    # rank i computes a contiguous run of the consolidated sequence
    offsets = report.balanced.offsets.tolist()
    for rank, task in enumerate(report.tasks):
        assert task.tolist() == list(range(offsets[rank], offsets[rank] + balanced[rank]))


def test_empty_batches_get_empty_results():
    batches = [np.array([], dtype=np.int64), np.array([10, 20, 30, 40, 50]), np.array([], dtype=np.int64)]
    report = run_round(batches, identity)
    assert report.results[0].shape == (0,)
    assert report.results[2].shape == (0,)
    assert report.results[1].tolist() == [10, 20, 30, 40, 50]
    assert report.balanced.counts.tolist() == [2, 2, 1]
    assert [t.tolist() for t in report.tasks] == [[10, 20], [30, 40], [50]]


def test_round_with_no_items_at_all():
    report = run_round([np.array([], dtype=np.int64)] * 3)
    assert report.balanced.counts.tolist() == [0, 0, 0]
    assert all(r.shape == (0,) for r in report.results)


def test_coordinator_need_not_be_rank_zero():
    batches = _sized(3, 0, 5, 1)
    report = run_round(batches, lambda xs: xs * 2, root=2)
    assert report.root == 2
    for batch, res in zip(batches, report.results):
        assert res.tolist() == (batch * 2).tolist()


def test_phase_traces_per_role():
    report = run_round(_sized(2, 3, 1), identity, root=1)
    assert report.traces[1] == list(Coordinator.PHASES)
    assert report.traces[0] == list(Worker.PHASES)
    assert report.traces[2] == list(Worker.PHASES)
    assert report.traces[1][2:4] == [Phase.AWAIT_CONSOLIDATION, Phase.PLAN]
    assert all(trace[-1] is Phase.DONE for trace in report.traces)


def test_transform_failure_fails_the_round():
    def fragile(xs):
        if 13 in xs:
            raise ArithmeticError("unlucky")
        return xs

    with pytest.raises(ArithmeticError, match="unlucky"):
        run_round(_sized(8, 6, 4), fragile, poll_interval=0.01)


def test_transform_that_drops_items_is_a_shape_mismatch():
    with pytest.raises(ShapeMismatch):
        run_round(_sized(4, 4), lambda xs: xs[1:], poll_interval=0.01)


def test_two_dimensional_batch_is_rejected():
    with pytest.raises(ValueError):
        run_round([np.zeros((2, 2)), np.zeros(3)], identity, poll_interval=0.01)


def test_pool_must_not_be_empty():
    with pytest.raises(RankCountMismatch):
        run_round([])


def test_root_must_be_in_the_pool():
    with pytest.raises(RankCountMismatch):
        run_round(_sized(1, 1), root=5)


def test_phases_cannot_be_skipped():
    worker = Worker(SimpleNamespace(rank=0), np.arange(3), identity)
    with pytest.raises(RoundError):
        worker._enter(Phase.COMPUTE)
    assert worker.phase is Phase.INIT


def test_root_that_did_not_coordinate_is_an_error(monkeypatch):
    round_module = importlib.import_module("rebalance.round")
    monkeypatch.setattr(round_module, "Coordinator", type("NotACoordinator", (), {}))
    with pytest.raises(RoundError, match="without coordinating"):
        run_round(_sized(2, 1), identity)
