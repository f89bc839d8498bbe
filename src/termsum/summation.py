"""
CustomSummation class definition.

A CustomSummation is a scalar function of ``num_args`` arguments written as a
sum of identical terms. Each term is the same algebraic expression evaluated
with its own per-term parameters and the overall parameters shared by all
terms. Arguments are grouped three at a time into points, so the expression
refers to them as ``x1, y1, z1, x2, ...``.
"""

from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .evaluator import Evaluator
from .model import TermModel, TermTable
from .profile import Profile


class CustomSummation:
    """
    Sum of parametrized terms with deferred commits and cached evaluation.

    Parameters
    ----------
    num_args : int
        Number of arguments of the function (at least 1)
    expression : str
        Term expression in terms of the point coordinates ``x1, y1, z1, ...``,
        the overall parameters and the per-term parameters
    overall_parameters : dict of str to float, optional
        Names and default values of parameters shared by all terms
    per_term_parameters : sequence of str, optional
        Names of parameters that take a different value in each term
    properties : dict, optional
        Engine compile options: opt_level, compact_mode, fast_math,
        high_accuracy, parallel_mode

    Raises
    ------
    InvalidConfiguration
        If the arguments or the expression are invalid
    EngineInitializationError
        If the engine rejects the configuration

    Notes
    -----
    - Terms added or replaced with add_term/set_term take effect only after
      update(). Until then evaluations use the last committed term set.
    - Overall parameters changed with set_parameter take effect immediately.
    - Instances are not thread-safe; give each thread its own clone().

    Examples
    --------
    >>> f = CustomSummation(6, "k*(distance(p1, p2) - r0)^2",
    ...                     overall_parameters={'k': 1.0},
    ...                     per_term_parameters=['r0'])
    >>> f.add_term([1.0])
    0
    >>> f.update()
    >>> f.evaluate([0, 0, 0, 2, 0, 0])
    1.0
    """

    # ========== CONSTRUCTION ==========
    def __init__(
        self,
        num_args: int,
        expression: str,
        overall_parameters: Optional[Mapping[str, float]] = None,
        per_term_parameters: Sequence[str] = (),
        properties: Optional[Mapping[str, object]] = None
    ):
        model = TermModel(num_args, expression,
                          dict(overall_parameters or {}),
                          tuple(per_term_parameters))
        self._init_from_model(model, properties)

    @classmethod
    def from_model(cls, model: TermModel,
                   properties: Optional[Mapping[str, object]] = None) -> "CustomSummation":
        """Create an empty summation from an existing TermModel."""
        summation = cls.__new__(cls)
        summation._init_from_model(model, properties)
        return summation

    def _init_from_model(self, model: TermModel, properties):
        self._model = model
        self._table = TermTable(model.num_per_term_parameters)
        self._evaluator = Evaluator(model, properties)

    # ========== TERMS ==========
    def add_term(self, parameters: Sequence[float]) -> int:
        """
        Append a term.

        Parameters
        ----------
        parameters : sequence of float
            One value per per-term parameter

        Returns
        -------
        int
            Index of the new term

        Raises
        ------
        ArityMismatch
            If the number of values is wrong (no term is added)
        """
        return self._table.add(parameters)

    def get_term(self, index: int) -> Tuple[float, ...]:
        """Stored parameters of a term, including uncommitted edits."""
        return self._table.get(index)

    def set_term(self, index: int, parameters: Sequence[float]):
        """
        Replace the parameters of a term.

        Raises
        ------
        IndexOutOfRange
            If no term has this index
        ArityMismatch
            If the number of values is wrong
        """
        self._table.set(index, parameters)

    def update(self):
        """
        Commit all added and replaced terms to the engine.

        Safe to call without pending changes; cached results are discarded
        either way.
        """
        self._evaluator.update(self._table)

    # ========== EVALUATION ==========
    def evaluate(self, arguments: Sequence[float]) -> float:
        """Value of the function at ``arguments``."""
        return self._evaluator.evaluate(arguments)

    def evaluate_derivative(self, arguments: Sequence[float], which: int) -> float:
        """Partial derivative with respect to argument ``which`` (0-based)."""
        return self._evaluator.evaluate_derivative(arguments, which)

    def evaluate_derivatives(self, arguments: Sequence[float]) -> np.ndarray:
        """Gradient of the function at ``arguments``."""
        return self._evaluator.evaluate_derivatives(arguments)

    def evaluate_mixed_derivative(self, arguments: Sequence[float],
                                  order: Sequence[int]) -> float:
        """
        Derivative specified by a per-argument differentiation order.

        ``order`` must contain a single 1 and zeros elsewhere (all zeros
        returns the value); anything else raises UnsupportedDerivativeOrder.
        """
        return self._evaluator.evaluate_mixed_derivative(arguments, order)

    # ========== PARAMETERS ==========
    def get_parameter(self, name: str) -> float:
        """Current value of an overall parameter."""
        return self._evaluator.get_parameter(name)

    def set_parameter(self, name: str, value: float):
        """Set an overall parameter; no update() needed."""
        self._evaluator.set_parameter(name, value)

    # ========== COPYING ==========
    def clone(self) -> "CustomSummation":
        """
        Independent copy with its own engine.

        The copy holds the committed terms and the current overall-parameter
        values of this summation. Uncommitted edits are not copied.
        """
        copy = type(self).from_model(self._model, self.properties)
        for parameters in self._evaluator.committed_terms:
            copy.add_term(parameters)
        for name, value in self._evaluator.parameters.items():
            copy.set_parameter(name, value)
        copy.update()
        return copy

    def __copy__(self):
        return self.clone()

    def __deepcopy__(self, memo):
        return self.clone()

    # ========== EXPORT ==========
    def to_dataframe(self) -> pd.DataFrame:
        """
        Export the term table to a pandas DataFrame.

        Returns
        -------
        DataFrame with one row per term (including uncommitted ones) and one
        column per per-term parameter
        """
        return pd.DataFrame(self._table.snapshot(),
                            columns=list(self._model.per_term_parameters))

    def profile(self, base_arguments: Sequence[float], which: int,
                start: float, stop: float,
                n_points: Optional[int] = None) -> Profile:
        """
        Scan the function along argument ``which``.

        See Profile for details; the other arguments stay at
        ``base_arguments``.
        """
        return Profile(self, base_arguments, which, start, stop, n_points)

    # ========== PROPERTY ACCESS ==========
    @property
    def model(self) -> TermModel:
        return self._model

    @property
    def num_arguments(self) -> int:
        return self._model.num_args

    @property
    def expression(self) -> str:
        return self._model.expression

    @property
    def overall_parameters(self) -> Dict[str, float]:
        """Overall-parameter names and default values."""
        return dict(self._model.overall_parameters)

    @property
    def per_term_parameters(self) -> Tuple[str, ...]:
        return self._model.per_term_parameters

    @property
    def properties(self) -> Dict[str, object]:
        """Effective engine compile options."""
        return self._evaluator.properties

    @property
    def num_terms(self) -> int:
        """Number of terms, including uncommitted ones."""
        return len(self._table)

    @property
    def has_pending_changes(self) -> bool:
        """Whether terms were added or replaced since the last update()."""
        return self._table.dirty

    @property
    def evaluator(self) -> Evaluator:
        return self._evaluator

    # ========== SPECIAL METHODS ==========
    def __call__(self, arguments: Sequence[float]) -> float:
        return self.evaluate(arguments)

    def __repr__(self):
        parts = [f"CustomSummation(num_args={self._model.num_args}"]
        parts.append(f"expression='{self._model.expression}'")
        if self._model.overall_parameters:
            parts.append(f"overall={dict(self._model.overall_parameters)}")
        if self._model.per_term_parameters:
            parts.append(f"per_term={list(self._model.per_term_parameters)}")
        parts.append(f"terms={len(self._table)}")
        return ", ".join(parts) + ")"
