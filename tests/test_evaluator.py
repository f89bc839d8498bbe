"""
Test suite for Evaluator caching and commit behavior.

Tests cover:
- Argument packing into points
- Value/derivative cache reuse and engine call counts
- Cache invalidation by new arguments, update() and set_parameter()
- Independence of the value and derivative caches
- Failure atomicity when the engine raises
"""

import pytest
import numpy as np
from termsum import (
    TermModel, TermTable, Evaluator, EngineError, IndexOutOfRange, ArityMismatch,
    StructuralError
)
from termsum.evaluator import pack_arguments


def spy(monkeypatch, obj, name):
    """Replace obj.name with a wrapper recording each call."""
    calls = []
    original = getattr(obj, name)

    def wrapper(*args, **kwargs):
        calls.append(args)
        return original(*args, **kwargs)

    monkeypatch.setattr(obj, name, wrapper)
    return calls


@pytest.fixture
def committed():
    """Evaluator for a*x1^2 + y1 with one committed term (a=2)."""
    model = TermModel(3, "a*x1^2 + y1", {}, ['a'])
    table = TermTable(model.num_per_term_parameters)
    evaluator = Evaluator(model)
    table.add([2.0])
    evaluator.update(table)
    return evaluator, table


class TestPacking:
    """Test argument to point packing."""

    def test_exact_multiple(self):
        """Six arguments fill two points."""
        points = pack_arguments(np.arange(6.0), 2)

        np.testing.assert_array_equal(points, [[0, 1, 2], [3, 4, 5]])

    def test_padding(self):
        """Missing coordinates of the last point are zero."""
        points = pack_arguments(np.array([1.0, 2.0, 3.0, 4.0]), 2)

        np.testing.assert_array_equal(points, [[1, 2, 3], [4, 0, 0]])

    def test_single_argument(self):
        """One argument becomes x of a single point."""
        points = pack_arguments(np.array([7.0]), 1)

        np.testing.assert_array_equal(points, [[7, 0, 0]])


class TestCacheReuse:
    """Test that repeated queries reuse cached results."""

    def test_repeat_evaluate_single_engine_call(self, committed, monkeypatch):
        """Two identical evaluations trigger one engine computation."""
        evaluator, _ = committed
        calls = spy(monkeypatch, evaluator.engine, 'compute_value')

        first = evaluator.evaluate([1.0, 2.0, 3.0])
        second = evaluator.evaluate([1.0, 2.0, 3.0])

        assert first == second == pytest.approx(4.0)
        assert len(calls) == 1

    def test_repeat_derivative_single_engine_call(self, committed, monkeypatch):
        """Derivatives at the same arguments are computed once."""
        evaluator, _ = committed
        calls = spy(monkeypatch, evaluator.engine, 'compute_forces')

        dx = evaluator.evaluate_derivative([1.0, 2.0, 3.0], 0)
        dy = evaluator.evaluate_derivative([1.0, 2.0, 3.0], 1)
        dz = evaluator.evaluate_derivative([1.0, 2.0, 3.0], 2)

        assert (dx, dy, dz) == (pytest.approx(4.0), pytest.approx(1.0), pytest.approx(0.0))
        assert len(calls) == 1

    def test_value_does_not_compute_gradient(self, committed, monkeypatch):
        """A value query never calls the gradient computation."""
        evaluator, _ = committed
        forces = spy(monkeypatch, evaluator.engine, 'compute_forces')

        evaluator.evaluate([1.0, 2.0, 3.0])

        assert len(forces) == 0
        assert evaluator.derivatives_are_stale

    def test_derivative_does_not_reuse_value(self, committed, monkeypatch):
        """A prior evaluate() does not satisfy a derivative query."""
        evaluator, _ = committed
        values = spy(monkeypatch, evaluator.engine, 'compute_value')
        forces = spy(monkeypatch, evaluator.engine, 'compute_forces')

        evaluator.evaluate([1.0, 2.0, 3.0])
        evaluator.evaluate_derivative([1.0, 2.0, 3.0], 0)
        evaluator.evaluate([1.0, 2.0, 3.0])
        evaluator.evaluate_derivative([1.0, 2.0, 3.0], 1)

        assert len(values) == 1
        assert len(forces) == 1

    def test_equal_arrays_hit_cache(self, committed, monkeypatch):
        """Lists, tuples and arrays with equal contents hit the cache."""
        evaluator, _ = committed
        calls = spy(monkeypatch, evaluator.engine, 'compute_value')

        evaluator.evaluate([1.0, 2.0, 3.0])
        evaluator.evaluate((1, 2, 3))
        evaluator.evaluate(np.array([1.0, 2.0, 3.0]))

        assert len(calls) == 1

    def test_caller_array_not_aliased(self, committed, monkeypatch):
        """Mutating the caller's array after a call is detected."""
        evaluator, _ = committed
        calls = spy(monkeypatch, evaluator.engine, 'compute_value')
        args = np.array([1.0, 2.0, 3.0])

        evaluator.evaluate(args)
        args[0] = 2.0
        value = evaluator.evaluate(args)

        assert value == pytest.approx(10.0)
        assert len(calls) == 2


class TestInvalidation:
    """Test events that invalidate the caches."""

    def test_new_arguments(self, committed, monkeypatch):
        """Different arguments recompute value and derivatives."""
        evaluator, _ = committed
        values = spy(monkeypatch, evaluator.engine, 'compute_value')
        forces = spy(monkeypatch, evaluator.engine, 'compute_forces')

        evaluator.evaluate([1.0, 2.0, 3.0])
        evaluator.evaluate_derivatives([1.0, 2.0, 3.0])
        evaluator.evaluate([1.5, 2.0, 3.0])
        evaluator.evaluate_derivatives([1.5, 2.0, 3.0])

        assert len(values) == 2
        assert len(forces) == 2

    def test_update_without_changes(self, committed, monkeypatch):
        """update() with nothing pending still invalidates."""
        evaluator, table = committed
        calls = spy(monkeypatch, evaluator.engine, 'compute_value')

        evaluator.evaluate([1.0, 2.0, 3.0])
        evaluator.update(table)
        evaluator.evaluate([1.0, 2.0, 3.0])

        assert len(calls) == 2

    def test_set_parameter_invalidates(self, monkeypatch):
        """set_parameter() invalidates both caches."""
        model = TermModel(1, "s*x1^2", {'s': 1.0})
        table = TermTable(0)
        evaluator = Evaluator(model)
        table.add([])
        evaluator.update(table)
        calls = spy(monkeypatch, evaluator.engine, 'compute_value')

        assert evaluator.evaluate([2.0]) == pytest.approx(4.0)
        assert evaluator.evaluate_derivative([2.0], 0) == pytest.approx(4.0)
        evaluator.set_parameter('s', 3.0)

        assert evaluator.value_is_stale and evaluator.derivatives_are_stale
        assert evaluator.evaluate([2.0]) == pytest.approx(12.0)
        assert evaluator.evaluate_derivative([2.0], 0) == pytest.approx(12.0)
        assert len(calls) == 2

    def test_update_commits_table(self, committed):
        """update() pushes pending terms and clears the dirty flag."""
        evaluator, table = committed
        table.add([1.0])
        assert table.dirty
        assert evaluator.evaluate([1.0, 0.0, 0.0]) == pytest.approx(2.0)

        evaluator.update(table)

        assert not table.dirty
        assert evaluator.evaluate([1.0, 0.0, 0.0]) == pytest.approx(3.0)
        np.testing.assert_array_equal(evaluator.committed_terms, [[2.0], [1.0]])


class TestFailures:
    """Test that failed calls leave state untouched."""

    def test_bad_index_leaves_cache(self, committed, monkeypatch):
        """Out-of-range derivative index does not touch the caches."""
        evaluator, _ = committed
        evaluator.evaluate_derivatives([1.0, 2.0, 3.0])
        calls = spy(monkeypatch, evaluator.engine, 'compute_forces')

        with pytest.raises(IndexOutOfRange):
            evaluator.evaluate_derivative([9.0, 9.0, 9.0], 3)

        assert not evaluator.derivatives_are_stale
        evaluator.evaluate_derivative([1.0, 2.0, 3.0], 0)
        assert len(calls) == 0

    def test_bad_arity_leaves_cache(self, committed, monkeypatch):
        """Wrong argument count does not touch the caches."""
        evaluator, _ = committed
        evaluator.evaluate([1.0, 2.0, 3.0])
        calls = spy(monkeypatch, evaluator.engine, 'compute_value')

        with pytest.raises(ArityMismatch):
            evaluator.evaluate([1.0, 2.0])

        assert not evaluator.value_is_stale
        evaluator.evaluate([1.0, 2.0, 3.0])
        assert len(calls) == 0

    def test_rejected_update_keeps_state(self, committed, monkeypatch):
        """A StructuralError during update() changes nothing."""
        evaluator, table = committed
        evaluator.evaluate([1.0, 2.0, 3.0])
        table.add([7.0])

        def reject(terms):
            raise StructuralError("rejected")

        monkeypatch.setattr(evaluator.engine, 'set_terms', reject)
        with pytest.raises(StructuralError):
            evaluator.update(table)

        assert table.dirty
        np.testing.assert_array_equal(evaluator.committed_terms, [[2.0]])
        assert not evaluator.value_is_stale
        assert evaluator.evaluate([1.0, 2.0, 3.0]) == pytest.approx(4.0)

    def test_engine_failure_keeps_cache_stale(self, committed, monkeypatch):
        """A failing engine call never marks the cache fresh."""
        evaluator, _ = committed

        def broken():
            raise EngineError("boom")

        monkeypatch.setattr(evaluator.engine, 'compute_value', broken)
        with pytest.raises(EngineError):
            evaluator.evaluate([1.0, 2.0, 3.0])
        assert evaluator.value_is_stale

        monkeypatch.undo()
        assert evaluator.evaluate([1.0, 2.0, 3.0]) == pytest.approx(4.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
