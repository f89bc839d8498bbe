"""
Core data objects for CustomSummation.

TermModel is the immutable description of a summation (arguments, expression,
parameter vocabulary); TermTable is the mutable, ordered list of per-term
parameter vectors together with its "needs commit" flag.
"""

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Sequence, Tuple

import numpy as np

from .errors import ArityMismatch, CompileError, IndexOutOfRange, InvalidConfiguration
from .expression import TermExpression, compile as compile_expression
from .expression import is_reserved_name, is_valid_name
from .utils import check_finite


@dataclass(frozen=True)
class TermModel:
    """
    Immutable description of one summation.

    Attributes
    ----------
    num_args : int
        Number of scalar arguments of the function
    expression : str
        Term expression shared by all terms
    overall_parameters : Mapping[str, float]
        Overall-parameter names and their default values (read-only)
    per_term_parameters : tuple of str
        Ordered per-term parameter names
    term : TermExpression
        Compiled form of the expression (derived)

    Notes
    -----
    Current overall-parameter values live in the evaluator; the defaults
    stored here never change.
    """
    num_args: int
    expression: str
    overall_parameters: Mapping[str, float] = field(default_factory=dict)
    per_term_parameters: Tuple[str, ...] = ()
    term: TermExpression = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        # Validate parameters
        if isinstance(self.num_args, bool) or not isinstance(self.num_args, (int, np.integer)):
            raise InvalidConfiguration(
                f"Number of arguments must be an integer, got {self.num_args!r}"
            )
        if self.num_args < 1:
            raise InvalidConfiguration(
                f"Number of arguments must be at least 1, got {self.num_args}"
            )
        object.__setattr__(self, 'num_args', int(self.num_args))

        overall = dict(self.overall_parameters or {})
        per_term = tuple(self.per_term_parameters or ())
        for name in list(overall) + list(per_term):
            if not is_valid_name(name):
                raise InvalidConfiguration(f"Invalid parameter name {name!r}")
            if is_reserved_name(name):
                raise InvalidConfiguration(
                    f"Parameter name '{name}' is reserved by the expression syntax"
                )
        if len(per_term) != len(set(per_term)):
            raise InvalidConfiguration(
                f"Duplicate per-term parameter names: {per_term}"
            )
        collisions = sorted(set(overall) & set(per_term))
        if collisions:
            raise InvalidConfiguration(
                f"Parameter name(s) {collisions} used both as overall "
                f"and per-term parameters"
            )
        defaults = {}
        for name, value in overall.items():
            try:
                defaults[name] = float(value)
            except (TypeError, ValueError) as exc:
                raise InvalidConfiguration(
                    f"Default value of '{name}' must be a number, got {value!r}"
                ) from exc

        object.__setattr__(self, 'overall_parameters', MappingProxyType(defaults))
        object.__setattr__(self, 'per_term_parameters', per_term)

        try:
            term = compile_expression(self.expression, self.point_count,
                                      tuple(defaults), per_term)
        except CompileError as exc:
            raise InvalidConfiguration(f"Invalid expression: {exc}") from exc
        object.__setattr__(self, 'term', term)

    @property
    def point_count(self) -> int:
        """Number of 3-coordinate points, ceil(num_args / 3)."""
        return math.ceil(self.num_args / 3)

    @property
    def num_per_term_parameters(self) -> int:
        return len(self.per_term_parameters)


class TermTable:
    """
    Ordered, append-only collection of per-term parameter vectors.

    Every write marks the table dirty; the flag is cleared by
    :meth:`mark_committed` once the contents reach the engine.
    """

    def __init__(self, num_parameters: int):
        self._num_parameters = num_parameters
        self._terms = []
        self._dirty = False

    def _check(self, parameters) -> np.ndarray:
        try:
            array = np.array(parameters, dtype=float).ravel()
        except (TypeError, ValueError) as exc:
            raise ArityMismatch(
                f"Term parameters must be a sequence of numbers: {exc}"
            ) from exc
        if np.ndim(parameters) > 1 or len(array) != self._num_parameters:
            raise ArityMismatch(
                f"Expected {self._num_parameters} per-term parameters, "
                f"got {len(array)}"
            )
        check_finite(array, "Term parameters")
        return array

    def _check_index(self, index) -> int:
        if isinstance(index, bool) or not isinstance(index, (int, np.integer)):
            raise IndexOutOfRange(f"Term index must be an integer, got {index!r}")
        if not 0 <= index < len(self._terms):
            raise IndexOutOfRange(
                f"Term index {index} out of range [0, {len(self._terms)})"
            )
        return int(index)

    def add(self, parameters: Sequence[float]) -> int:
        """Append a term and return its index."""
        array = self._check(parameters)
        self._terms.append(array)
        self._dirty = True
        return len(self._terms) - 1

    def set(self, index: int, parameters: Sequence[float]):
        """Replace the parameters of an existing term."""
        index = self._check_index(index)
        self._terms[index] = self._check(parameters)
        self._dirty = True

    def get(self, index: int) -> Tuple[float, ...]:
        """Stored parameters of a term, committed or not."""
        return tuple(float(v) for v in self._terms[self._check_index(index)])

    def snapshot(self) -> np.ndarray:
        """All terms as an array of shape (n_terms, num_parameters)."""
        if not self._terms:
            return np.zeros((0, self._num_parameters))
        return np.vstack(self._terms)

    def mark_committed(self):
        self._dirty = False

    @property
    def dirty(self) -> bool:
        """Whether terms were written since the last commit."""
        return self._dirty

    @property
    def num_parameters(self) -> int:
        return self._num_parameters

    def __len__(self):
        return len(self._terms)

    def __repr__(self):
        state = "dirty" if self._dirty else "committed"
        return f"TermTable({len(self._terms)} terms, {state})"
