"""
Evaluator for CustomSummation.

Owns the engine handle for one TermModel and maps between the flat argument
vector of the summation and the points the engine works with. Arguments are
packed three at a time into points; the last point is padded with zeros when
the number of arguments is not a multiple of three.

The value and the derivative vector are cached separately. Both caches are
marked stale together (new arguments, a commit, or an overall-parameter
change), but each query only refreshes the one it needs, so a value query
never triggers a gradient computation and vice versa.
"""

import operator
from typing import Mapping, Optional, Sequence

import numpy as np

from . import engine as _engine
from .errors import ArityMismatch, IndexOutOfRange, UnsupportedDerivativeOrder
from .model import TermModel, TermTable
from .utils import check_finite


def pack_arguments(arguments: np.ndarray, point_count: int) -> np.ndarray:
    """Group arguments into points of shape (point_count, 3), zero padded."""
    points = np.zeros((point_count, 3))
    points.flat[:len(arguments)] = arguments
    return points


class Evaluator:
    """
    Cached evaluation of a summation through an engine handle.

    Parameters
    ----------
    model : TermModel
        Summation description
    properties : mapping, optional
        Engine compile options

    Raises
    ------
    EngineInitializationError
        If the engine rejects the configuration
    """

    def __init__(self, model: TermModel,
                 properties: Optional[Mapping[str, object]] = None):
        self._model = model
        self._num_args = model.num_args
        self._engine = _engine.configure(
            model.point_count,
            model.term,
            model.overall_parameters,
            model.per_term_parameters,
            properties
        )
        self._committed = np.zeros((0, model.num_per_term_parameters))

        self._latest_arguments = None
        self._value = 0.0
        self._derivatives = np.zeros(self._num_args)
        self._value_is_stale = True
        self._derivatives_are_stale = True

    # ========== COMMIT ==========
    def update(self, table: TermTable):
        """
        Push every term of ``table`` into the engine in one step.

        Always invalidates the cached value and derivatives, even when the
        table has no pending changes.
        """
        terms = table.snapshot()
        self._engine.set_terms(terms)
        self._committed = terms
        table.mark_committed()
        self._invalidate()

    def _invalidate(self):
        self._value_is_stale = True
        self._derivatives_are_stale = True

    # ========== PARAMETERS ==========
    def get_parameter(self, name: str) -> float:
        return self._engine.get_parameter(name)

    def set_parameter(self, name: str, value: float):
        """Set an overall parameter with immediate effect."""
        self._engine.set_parameter(name, value)
        self._invalidate()

    # ========== EVALUATION ==========
    def _check_arguments(self, arguments) -> np.ndarray:
        array = np.asarray(arguments, dtype=float)
        if array.ndim != 1 or len(array) != self._num_args:
            raise ArityMismatch(
                f"Expected {self._num_args} arguments, got shape {array.shape}"
            )
        check_finite(array, "Arguments")
        return array

    def _set_positions(self, arguments: np.ndarray):
        if self._latest_arguments is not None and np.array_equal(arguments, self._latest_arguments):
            return
        self._engine.set_positions(pack_arguments(arguments, self._model.point_count))
        self._latest_arguments = arguments.copy()
        self._invalidate()

    def evaluate(self, arguments: Sequence[float]) -> float:
        """Value of the summation at ``arguments``."""
        arguments = self._check_arguments(arguments)
        self._set_positions(arguments)
        if self._value_is_stale:
            self._value = self._engine.compute_value()
            self._value_is_stale = False
        return self._value

    def evaluate_derivatives(self, arguments: Sequence[float]) -> np.ndarray:
        """Partial derivatives with respect to every argument."""
        arguments = self._check_arguments(arguments)
        self._set_positions(arguments)
        if self._derivatives_are_stale:
            forces = self._engine.compute_forces()
            self._derivatives = -forces.ravel()[:self._num_args]
            self._derivatives_are_stale = False
        return self._derivatives.copy()

    def evaluate_derivative(self, arguments: Sequence[float], which: int) -> float:
        """Partial derivative with respect to argument ``which``."""
        try:
            which = operator.index(which)
        except TypeError:
            raise IndexOutOfRange(
                f"Derivative index must be an integer, got {which!r}"
            ) from None
        if not 0 <= which < self._num_args:
            raise IndexOutOfRange(
                f"Derivative index {which} out of range [0, {self._num_args})"
            )
        return float(self.evaluate_derivatives(arguments)[which])

    def evaluate_mixed_derivative(self, arguments: Sequence[float],
                                  order: Sequence[int]) -> float:
        """
        Derivative given as a per-argument differentiation order.

        Only a single first derivative (one entry equal to 1, the rest 0) is
        supported; an all-zero order returns the function value.

        Raises
        ------
        ArityMismatch
            If ``order`` does not have one entry per argument
        UnsupportedDerivativeOrder
            For negative entries or a total order above one
        """
        order = list(order)
        if len(order) != self._num_args:
            raise ArityMismatch(
                f"Expected {self._num_args} derivative orders, got {len(order)}"
            )
        which = None
        total = 0
        for i, item in enumerate(order):
            if isinstance(item, bool) or not isinstance(item, (int, np.integer)) or item < 0:
                raise UnsupportedDerivativeOrder(
                    f"Invalid derivative order specification {order}"
                )
            total += item
            if total > 1:
                raise UnsupportedDerivativeOrder(
                    f"Only first derivatives with respect to a single argument "
                    f"are supported, got {order}"
                )
            if item == 1:
                which = i
        if which is None:
            return self.evaluate(arguments)
        return self.evaluate_derivative(arguments, which)

    # ========== PROPERTY ACCESS ==========
    @property
    def model(self) -> TermModel:
        return self._model

    @property
    def engine(self) -> "_engine.EngineHandle":
        """Engine handle owned by this evaluator."""
        return self._engine

    @property
    def committed_terms(self) -> np.ndarray:
        """Copy of the term set the engine currently uses."""
        return self._committed.copy()

    @property
    def parameters(self):
        """Current overall-parameter values."""
        return self._engine.parameters

    @property
    def properties(self):
        """Effective engine compile options."""
        return self._engine.properties

    @property
    def value_is_stale(self) -> bool:
        return self._value_is_stale

    @property
    def derivatives_are_stale(self) -> bool:
        return self._derivatives_are_stale
