"""
Multi-body value/gradient engine.

An engine handle owns two JIT-compiled heyoka functions for one term
expression: one returning the term value and one returning the gradient of
the term with respect to every point coordinate. All terms are evaluated in a
single batched call, one column per term, with the overall parameters
broadcast across the columns and the per-term parameters varying.

Like a force field, the handle reports forces, i.e. the negative gradient of
the summed value. Callers that need true partial derivatives negate them.

Compile options ("properties")
------------------------------
opt_level : int
    LLVM optimisation level, 0-3
compact_mode : bool
    Compact code generation for large expressions
fast_math : bool
    Allow floating-point reassociation
high_accuracy : bool
    Use slower, more accurate elementary functions
parallel_mode : bool
    Evaluate batches in parallel

Values may be given as native Python objects or as strings (``"true"``,
``"0"``, ...).
"""

import warnings
from typing import Dict, Mapping, Optional, Sequence, Union

import numpy as np
import heyoka as hy

from .config import config
from .errors import (
    EngineError, EngineInitializationError, StructuralError, UnknownParameter
)
from .expression import TermExpression, compile as compile_expression
from .utils import Timer

_PROPERTY_TYPES = {
    'opt_level': int,
    'compact_mode': bool,
    'fast_math': bool,
    'high_accuracy': bool,
    'parallel_mode': bool,
}

_TRUE_STRINGS = frozenset(('1', 'true', 'yes', 'on'))
_FALSE_STRINGS = frozenset(('0', 'false', 'no', 'off'))


def _coerce_property(name: str, value):
    """Convert a property value to the type heyoka expects."""
    kind = _PROPERTY_TYPES[name]
    if kind is bool:
        if isinstance(value, str):
            text = value.strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
            raise EngineInitializationError(
                f"Property '{name}' must be a boolean, got '{value}'"
            )
        return bool(value)
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise EngineInitializationError(
            f"Property '{name}' must be an integer, got '{value}'"
        ) from exc
    if name == 'opt_level' and not 0 <= number <= 3:
        raise EngineInitializationError(
            f"Property 'opt_level' must be between 0 and 3, got {number}"
        )
    return number


def resolve_properties(properties: Optional[Mapping[str, object]] = None) -> Dict[str, object]:
    """
    Merge user properties with the configured defaults.

    Raises
    ------
    EngineInitializationError
        If a property name is unknown or its value malformed
    """
    options = {
        'opt_level': config.DEFAULT_OPT_LEVEL,
        'compact_mode': config.DEFAULT_COMPACT_MODE,
        'fast_math': config.DEFAULT_FAST_MATH,
        'high_accuracy': False,
        'parallel_mode': False,
    }
    for name, value in (properties or {}).items():
        if name not in _PROPERTY_TYPES:
            raise EngineInitializationError(
                f"Unknown engine property '{name}'. "
                f"Valid properties: {sorted(_PROPERTY_TYPES)}"
            )
        options[name] = _coerce_property(name, value)
    return options


def configure(
    point_count: int,
    expression: Union[str, TermExpression],
    overall_parameters: Mapping[str, float],
    per_term_parameters: Sequence[str],
    properties: Optional[Mapping[str, object]] = None
) -> "EngineHandle":
    """
    Build an engine handle for one term expression.

    Parameters
    ----------
    point_count : int
        Number of 3-coordinate points
    expression : str or TermExpression
        Term expression, as text or already compiled
    overall_parameters : mapping of str to float
        Overall-parameter names and their initial values
    per_term_parameters : sequence of str
        Per-term parameter names
    properties : mapping, optional
        Compile options (see module documentation)

    Returns
    -------
    EngineHandle
        Handle with zero terms and all positions at the origin

    Raises
    ------
    CompileError
        If the expression text cannot be compiled
    EngineInitializationError
        If the properties are rejected or JIT compilation fails
    """
    if isinstance(expression, TermExpression):
        term = expression
        if (term.point_count != point_count
                or term.overall_parameters != tuple(overall_parameters)
                or term.per_term_parameters != tuple(per_term_parameters)):
            raise EngineInitializationError(
                f"Compiled expression {term!r} does not match the requested "
                f"configuration ({point_count} points, parameters "
                f"{tuple(overall_parameters) + tuple(per_term_parameters)})"
            )
    else:
        term = compile_expression(expression, point_count,
                                  tuple(overall_parameters), per_term_parameters)
    options = resolve_properties(properties)
    return EngineHandle(term, overall_parameters, options)


class EngineHandle:
    """
    Compiled evaluator for a sum of identical terms over a set of points.

    Use :func:`configure` rather than constructing handles directly.

    Notes
    -----
    - Positions, term parameters and overall parameters are independent
      pieces of state; compute_value and compute_forces always use the
      current combination.
    - Instance counting: a ResourceWarning is issued when more than
      config.INSTANCE_WARNING_THRESHOLD handles are alive (each owns
      JIT-compiled code).
    """
    # ========== CLASS CONSTANTS ==========
    _instance_count = 0

    # ========== CONSTRUCTION ==========
    def __init__(self, term: TermExpression,
                 overall_parameters: Mapping[str, float],
                 options: Dict[str, object]):
        self._term = term
        self._options = dict(options)
        self._overall_index = {name: i for i, name in enumerate(overall_parameters)}
        self._overall_values = np.array(
            [float(v) for v in overall_parameters.values()], dtype=float
        )
        self._num_per_term = len(term.per_term_parameters)
        self._terms = np.zeros((0, self._num_per_term))
        self._positions = np.zeros((term.point_count, 3))

        self._value_cfunc, self._gradient_cfunc = self._compile()

        EngineHandle._instance_count += 1
        if EngineHandle._instance_count > config.INSTANCE_WARNING_THRESHOLD:
            warnings.warn(
                f"Created {EngineHandle._instance_count} engine instances. "
                f"Each engine holds JIT-compiled functions, "
                f"which can consume significant memory. Consider reusing "
                f"summations when possible.",
                ResourceWarning,
                stacklevel=2
            )

    def _compile(self):
        """
        JIT-compile the value and gradient functions (expensive operation).
        """
        name = f"{self._term.point_count}-point term '{self._term.text}'"
        with Timer(f"Compiling {name}", verbose=config.VERBOSE_COMPILE):
            try:
                value = hy.cfunc([self._term.term], self._term.variables,
                                 **self._options)
                gradient = hy.cfunc(self._term.gradient, self._term.variables,
                                    **self._options)
            except (TypeError, ValueError, RuntimeError) as exc:
                raise EngineInitializationError(
                    f"Engine rejected {name} with options {self._options}: {exc}"
                ) from exc
        return value, gradient

    # ========== STATE ==========
    def set_terms(self, terms):
        """
        Replace the whole term set.

        Parameters
        ----------
        terms : array_like, shape (n_terms, n_per_term_parameters)
            Per-term parameter vectors

        Raises
        ------
        StructuralError
            If the array has the wrong shape; the previous term set is kept
        """
        try:
            array = np.array(terms, dtype=float)
        except (TypeError, ValueError) as exc:
            raise StructuralError(f"Term parameters are not numeric: {exc}") from exc
        if array.size == 0:
            array = array.reshape(0, self._num_per_term) if array.ndim < 2 else array
        if array.ndim != 2 or array.shape[1] != self._num_per_term:
            raise StructuralError(
                f"Expected term parameters of shape (n, {self._num_per_term}), "
                f"got {array.shape}"
            )
        self._terms = array

    def set_positions(self, points):
        """Set the point coordinates, shape (point_count, 3)."""
        array = np.array(points, dtype=float)
        if array.shape != self._positions.shape:
            raise EngineError(
                f"Expected positions of shape {self._positions.shape}, "
                f"got {array.shape}"
            )
        self._positions = array

    def get_parameter(self, name: str) -> float:
        """Current value of an overall parameter."""
        return float(self._overall_values[self._parameter_index(name)])

    def set_parameter(self, name: str, value: float):
        """Set an overall parameter; takes effect on the next computation."""
        self._overall_values[self._parameter_index(name)] = float(value)

    def _parameter_index(self, name: str) -> int:
        try:
            return self._overall_index[name]
        except KeyError:
            raise UnknownParameter(
                f"Unknown overall parameter '{name}'. "
                f"Valid names: {list(self._overall_index)}"
            ) from None

    # ========== COMPUTATION ==========
    def compute_value(self) -> float:
        """Sum of the term values at the current positions."""
        if len(self._terms) == 0:
            return 0.0
        out = self._call(self._value_cfunc)
        return float(np.sum(out[0]))

    def compute_forces(self) -> np.ndarray:
        """
        Negative gradient of the summed value, shape (point_count, 3).
        """
        if len(self._terms) == 0:
            return np.zeros_like(self._positions)
        out = self._call(self._gradient_cfunc)
        return -np.sum(out, axis=1).reshape(self._positions.shape)

    def _call(self, cfunc) -> np.ndarray:
        """Evaluate a compiled function once per term (one column each)."""
        n_terms = len(self._terms)
        inputs = np.ascontiguousarray(
            np.repeat(self._positions.reshape(-1, 1), n_terms, axis=1)
        )
        # A compiled function only takes parameters up to the highest index
        # it references; differentiation can drop trailing ones.
        n_pars = cfunc.nparams
        try:
            if n_pars == 0:
                return cfunc(inputs)
            pars = np.ascontiguousarray(np.vstack([
                np.repeat(self._overall_values.reshape(-1, 1), n_terms, axis=1),
                self._terms.T,
            ])[:n_pars])
            return cfunc(inputs, pars=pars)
        except (TypeError, ValueError, RuntimeError) as exc:
            raise EngineError(f"Engine evaluation failed: {exc}") from exc

    # ========== PROPERTY ACCESS ==========
    @property
    def term(self) -> TermExpression:
        """Compiled term expression."""
        return self._term

    @property
    def point_count(self) -> int:
        return self._term.point_count

    @property
    def num_terms(self) -> int:
        """Number of terms currently set."""
        return len(self._terms)

    @property
    def properties(self) -> Dict[str, object]:
        """Effective compile options."""
        return dict(self._options)

    @property
    def parameters(self) -> Dict[str, float]:
        """Current overall-parameter values."""
        return {name: float(self._overall_values[i])
                for name, i in self._overall_index.items()}

    # Interface with instance counting
    @classmethod
    def get_instance_count(cls):
        """Get current number of live engine handles."""
        return cls._instance_count

    @classmethod
    def reset_instance_count(cls):
        """Reset instance counter (useful for testing)."""
        cls._instance_count = 0

    # ========== SPECIAL METHODS ==========
    def __del__(self):
        """Decrement instance count when the handle is garbage collected."""
        if hasattr(self, '_gradient_cfunc'):
            EngineHandle._instance_count -= 1

    def __repr__(self):
        return (f"EngineHandle(points={self._term.point_count}, "
                f"terms={len(self._terms)}, expression='{self._term.text}')")
