"""
Term expression compiler.

Turns the text of a term expression into a symbolic heyoka expression whose
variables are the point coordinates ``x1, y1, z1, x2, ...`` and whose runtime
parameters (``hy.par[]``) are the overall parameters followed by the per-term
parameters. Parsing is done with sympy, translation with ``hy.from_sympy``.

Syntax
------
- ``^`` and ``**`` both mean exponentiation.
- ``x<i>``, ``y<i>``, ``z<i>`` are the coordinates of point ``i`` (1-based);
  ``p<i>`` names the whole point and is only valid as an argument of the
  geometric functions below.
- Elementary functions: sqrt, exp, log, sin, cos, tan, asin, acos, atan,
  atan2, sinh, cosh, tanh, erf. The constant ``pi`` is available.
- Geometric functions: ``distance(p1, p2)``, ``angle(p1, p2, p3)``,
  ``dihedral(p1, p2, p3, p4)`` and their coordinate forms
  ``pointdistance``, ``pointangle``, ``pointdihedral`` taking 6, 9 and 12
  scalar arguments.
- Intermediate values may be defined after the main expression, separated
  by semicolons: ``"k*(r - r0)^2; r = distance(p1, p2)"``. A definition may
  use any definition that follows it.
"""

import io
import keyword
import math
import re
import tokenize
from typing import Dict, List, Sequence, Tuple

import numpy as np
import sympy as sp
from sympy.core.function import AppliedUndef
from sympy.parsing.sympy_parser import (
    parse_expr, standard_transformations, convert_xor
)
import heyoka as hy

from .errors import CompileError

_TRANSFORMATIONS = standard_transformations + (convert_xor,)

# Names visible to the parser besides the vocabulary; sympy's own namespace
# is left out so that names like E or gamma are not silently captured
_PARSER_GLOBALS = {
    'Symbol': sp.Symbol,
    'Integer': sp.Integer,
    'Float': sp.Float,
    'Rational': sp.Rational,
    'Function': sp.Function,
}

_LAYOUT_TOKENS = frozenset((tokenize.NEWLINE, tokenize.NL, tokenize.INDENT,
                            tokenize.DEDENT, tokenize.ENDMARKER, tokenize.COMMENT))

# Matches every coordinate/point name, whether or not the point exists
_COORDINATE_NAME = re.compile(r"^[xyzp][1-9][0-9]*$")


class _Point(tuple):
    """The three coordinate symbols of one point."""


def _as_point(obj) -> _Point:
    if not isinstance(obj, _Point):
        raise TypeError(f"expected a point such as p1, got {obj}")
    return obj


def _sub(a, b):
    return tuple(ai - bi for ai, bi in zip(a, b))


def _dot(a, b):
    return sum(ai * bi for ai, bi in zip(a, b))


def _cross(a, b):
    return (a[1] * b[2] - a[2] * b[1],
            a[2] * b[0] - a[0] * b[2],
            a[0] * b[1] - a[1] * b[0])


def _norm(a):
    return sp.sqrt(_dot(a, a))


def _distance(a, b):
    return _norm(_sub(_as_point(b), _as_point(a)))


def _angle(a, b, c):
    # Angle at the middle point b
    u = _sub(_as_point(a), _as_point(b))
    v = _sub(_as_point(c), b)
    return sp.acos(_dot(u, v) / (_norm(u) * _norm(v)))


def _dihedral(a, b, c, d):
    b1 = _sub(_as_point(b), _as_point(a))
    b2 = _sub(_as_point(c), b)
    b3 = _sub(_as_point(d), c)
    n1 = _cross(b1, b2)
    n2 = _cross(b2, b3)
    return sp.atan2(_norm(b2) * _dot(b1, n2), _dot(n1, n2))


def _scalar_points(args, count):
    if len(args) != 3 * count:
        raise TypeError(f"expected {3 * count} coordinates, got {len(args)}")
    return [_Point(args[3 * k:3 * k + 3]) for k in range(count)]


FUNCTIONS = {
    'sqrt': sp.sqrt,
    'exp': sp.exp,
    'log': sp.log,
    'sin': sp.sin,
    'cos': sp.cos,
    'tan': sp.tan,
    'asin': sp.asin,
    'acos': sp.acos,
    'atan': sp.atan,
    'atan2': sp.atan2,
    'sinh': sp.sinh,
    'cosh': sp.cosh,
    'tanh': sp.tanh,
    'erf': sp.erf,
    'distance': _distance,
    'angle': _angle,
    'dihedral': _dihedral,
    'pointdistance': lambda *args: _distance(*_scalar_points(args, 2)),
    'pointangle': lambda *args: _angle(*_scalar_points(args, 3)),
    'pointdihedral': lambda *args: _dihedral(*_scalar_points(args, 4)),
}

CONSTANTS = {
    'pi': sp.Float(math.pi),
}


def is_reserved_name(name: str) -> bool:
    """Return whether ``name`` belongs to the built-in expression vocabulary."""
    return (bool(_COORDINATE_NAME.match(name))
            or name in FUNCTIONS or name in CONSTANTS)


def is_valid_name(name) -> bool:
    """Return whether ``name`` can be used as a parameter or definition name."""
    return (isinstance(name, str) and name.isidentifier()
            and not keyword.iskeyword(name))


def coordinate_names(point_count: int) -> List[str]:
    """Coordinate names in argument order: x1, y1, z1, x2, ..."""
    return [f"{axis}{i}" for i in range(1, point_count + 1) for axis in "xyz"]


class TermExpression:
    """
    Compiled symbolic form of one term of a summation.

    Instances are produced by :func:`compile` and are immutable. The engine
    JIT-compiles :attr:`term` and :attr:`gradient`; :meth:`evaluate` is a
    slower reference path that evaluates the sympy form directly.

    Attributes
    ----------
    text : str
        Expression text as given
    point_count : int
        Number of 3-coordinate points the term depends on
    overall_parameters : tuple of str
        Names bound to ``hy.par[0:G]``
    per_term_parameters : tuple of str
        Names bound to ``hy.par[G:G+P]``
    symbolic : sympy.Expr
        Parsed expression, definitions substituted
    variables : list of heyoka.expression
        Coordinate variables, in argument order
    term : heyoka.expression
        The term as a heyoka expression
    gradient : list of heyoka.expression
        Derivative of the term with respect to each variable
    """

    def __init__(self, text, point_count, overall_parameters,
                 per_term_parameters, symbolic, coordinates, parameters):
        self._text = text
        self._point_count = point_count
        self._overall_parameters = tuple(overall_parameters)
        self._per_term_parameters = tuple(per_term_parameters)
        self._symbolic = symbolic
        self._coordinates = coordinates
        self._parameters = parameters
        self._reference = None

        self._variables = list(hy.make_vars(*coordinate_names(point_count)))
        s_dict = {sym: var for sym, var in zip(coordinates, self._variables)}
        for idx, sym in enumerate(parameters):
            s_dict[sym] = hy.par[idx]
        try:
            self._term = hy.from_sympy(symbolic, s_dict=s_dict)
            self._gradient = [hy.diff(self._term, v) for v in self._variables]
        except (TypeError, ValueError, RuntimeError) as exc:
            raise CompileError(
                f"Expression '{text}' uses operations the engine "
                f"cannot compile: {exc}"
            ) from exc

    @property
    def text(self) -> str:
        return self._text

    @property
    def point_count(self) -> int:
        return self._point_count

    @property
    def overall_parameters(self) -> Tuple[str, ...]:
        return self._overall_parameters

    @property
    def per_term_parameters(self) -> Tuple[str, ...]:
        return self._per_term_parameters

    @property
    def num_parameters(self) -> int:
        """Total number of runtime parameters (overall + per-term)."""
        return len(self._parameters)

    @property
    def symbolic(self) -> sp.Expr:
        return self._symbolic

    @property
    def variables(self) -> list:
        return list(self._variables)

    @property
    def term(self):
        return self._term

    @property
    def gradient(self) -> list:
        return list(self._gradient)

    def evaluate(self, points, overall_values: Sequence[float] = (),
                 per_term_values: Sequence[float] = ()):
        """
        Evaluate one term and its gradient with sympy-generated numpy code.

        Parameters
        ----------
        points : array_like, shape (point_count, 3)
            Point coordinates
        overall_values : sequence of float
            Values of the overall parameters, in declaration order
        per_term_values : sequence of float
            Values of the per-term parameters, in declaration order

        Returns
        -------
        value : float
            Value of the term
        gradient : np.ndarray, shape (point_count, 3)
            Partial derivatives with respect to each coordinate
        """
        if self._reference is None:
            grad = [sp.diff(self._symbolic, c) for c in self._coordinates]
            args = list(self._coordinates) + list(self._parameters)
            self._reference = (sp.lambdify(args, self._symbolic, ['numpy', 'math']),
                               sp.lambdify(args, grad, ['numpy', 'math']))
        values = [float(c) for c in np.asarray(points, dtype=float).ravel()]
        values += [float(v) for v in overall_values]
        values += [float(v) for v in per_term_values]
        if len(values) != len(self._coordinates) + len(self._parameters):
            raise ValueError(
                f"Expected {3 * self._point_count} coordinates and "
                f"{len(self._parameters)} parameters, got {len(values)} values"
            )
        value_fn, grad_fn = self._reference
        value = float(value_fn(*values))
        gradient = np.array([float(g) for g in grad_fn(*values)])
        return value, gradient.reshape(self._point_count, 3)

    def __repr__(self):
        return (f"TermExpression('{self._text}', points={self._point_count}, "
                f"parameters={self._overall_parameters + self._per_term_parameters})")


def _split_definitions(text: str) -> Tuple[str, List[Tuple[str, str]]]:
    """Split ``"main; a = ...; b = ..."`` into the main text and definitions."""
    parts = [part.strip() for part in text.split(';')]
    if not parts[0]:
        raise CompileError(f"Expression '{text}' is empty")
    definitions = []
    for part in parts[1:]:
        if not part:
            continue
        name, sep, rhs = part.partition('=')
        name = name.strip()
        if not sep or not rhs.strip():
            raise CompileError(f"Malformed definition '{part}' in '{text}'")
        if not is_valid_name(name) or is_reserved_name(name):
            raise CompileError(f"Invalid definition name '{name}' in '{text}'")
        definitions.append((name, rhs.strip()))
    return parts[0], definitions


def _check_operators(text: str, whole: str):
    """Reject operator spellings the tokenizer would silently merge or reinterpret."""
    try:
        tokens = [tok for tok in tokenize.generate_tokens(io.StringIO(text).readline)
                  if tok.type not in _LAYOUT_TOKENS]
    except (tokenize.TokenError, SyntaxError) as exc:
        raise CompileError(f"Cannot parse '{text}' in '{whole}': {exc}") from exc
    for previous, current in zip(tokens, tokens[1:]):
        if previous.string == '*' and current.string == '*':
            raise CompileError(
                f"Unexpected '*' at column {current.start[1]} of '{text}' in '{whole}'"
            )
    for tok in tokens:
        if tok.string == '//':
            raise CompileError(
                f"Unsupported operator '//' at column {tok.start[1]} of '{text}' in '{whole}'"
            )


def _parse(text: str, namespace: Dict[str, object], whole: str):
    _check_operators(text, whole)
    try:
        result = parse_expr(text, local_dict=dict(namespace),
                            global_dict=dict(_PARSER_GLOBALS),
                            transformations=_TRANSFORMATIONS)
    except (SyntaxError, TypeError, ValueError, AttributeError, NameError,
            ZeroDivisionError, tokenize.TokenError, sp.SympifyError) as exc:
        raise CompileError(f"Cannot parse '{text}' in '{whole}': {exc}") from exc
    if not isinstance(result, sp.Expr):
        raise CompileError(
            f"'{text}' in '{whole}' is not a scalar expression "
            f"(got {type(result).__name__})"
        )
    return result


def compile(expression: str, point_count: int,
            overall_parameters: Sequence[str] = (),
            per_term_parameters: Sequence[str] = ()) -> TermExpression:
    """
    Compile a term expression against the point/parameter vocabulary.

    Parameters
    ----------
    expression : str
        Expression text (see module documentation for the syntax)
    point_count : int
        Number of points; coordinates ``x1 ... z<point_count>`` are defined
    overall_parameters : sequence of str
        Overall-parameter names, bound to ``hy.par[0:G]``
    per_term_parameters : sequence of str
        Per-term parameter names, bound to ``hy.par[G:G+P]``

    Returns
    -------
    TermExpression

    Raises
    ------
    CompileError
        If the text cannot be parsed, uses an undefined name, or uses an
        operation the engine cannot translate.
    """
    if not isinstance(expression, str):
        raise CompileError(f"Expression must be a string, got {type(expression).__name__}")

    names = coordinate_names(point_count)
    coordinates = [sp.Symbol(name) for name in names]
    parameter_names = list(overall_parameters) + list(per_term_parameters)
    parameters = [sp.Symbol(name) for name in parameter_names]

    namespace: Dict[str, object] = {}
    namespace.update(FUNCTIONS)
    namespace.update(CONSTANTS)
    namespace.update({name: sym for name, sym in zip(names, coordinates)})
    for i in range(point_count):
        namespace[f"p{i + 1}"] = _Point(coordinates[3 * i:3 * i + 3])
    namespace.update({name: sym for name, sym in zip(parameter_names, parameters)})

    main, definitions = _split_definitions(expression)
    defined = set()
    for name, _ in definitions:
        if name in parameter_names:
            raise CompileError(
                f"Definition of '{name}' in '{expression}' shadows a parameter"
            )
        if name in defined:
            raise CompileError(f"'{name}' is defined twice in '{expression}'")
        defined.add(name)
    for name, rhs in reversed(definitions):
        namespace[name] = _parse(rhs, namespace, expression)
    symbolic = _parse(main, namespace, expression)

    unknown = symbolic.free_symbols - set(coordinates) - set(parameters)
    if unknown:
        raise CompileError(
            f"Expression '{expression}' uses undefined name(s): "
            f"{sorted(str(s) for s in unknown)}"
        )
    undefined_functions = symbolic.atoms(AppliedUndef)
    if undefined_functions:
        raise CompileError(
            f"Expression '{expression}' calls undefined function(s): "
            f"{sorted(str(f.func) for f in undefined_functions)}"
        )

    return TermExpression(expression, point_count, overall_parameters,
                          per_term_parameters, symbolic, coordinates, parameters)
