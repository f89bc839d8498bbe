"""
Timing and validation helpers shared by the termsum modules.
"""

from time import perf_counter
import warnings
from typing import Type

import numpy as np

from .config import config
from .errors import NonFiniteValue


class Timer:
    """
    Context manager measuring wall-clock time of a block.

    The engine wraps JIT compilation in a Timer whose ``verbose`` flag is
    ``config.VERBOSE_COMPILE``, so compile times are printed on request only.

    Examples
    --------
    >>> from termsum.utils import Timer
    >>> with Timer("Compiling 2-point term"):
    ...     f = CustomSummation(6, "k*(distance(p1, p2) - r0)^2", {'k': 1.0}, ['r0'])
    Compiling 2-point term: 0.412345 s

    >>> with Timer(verbose=False) as t:
    ...     f.update()
    >>> t.elapsed < 1.0
    True
    """
    def __init__(self, name="Operation", verbose=True):
        """
        Parameters
        ----------
        name : str, optional
            Label printed in front of the elapsed time (default: "Operation")
        verbose : bool, optional
            Print the elapsed time when the block exits (default: True)
        """
        self.name = name
        self.verbose = verbose
        self.elapsed = None

    def __enter__(self):
        self._start = perf_counter()
        return self

    def __exit__(self, *args):
        self.elapsed = perf_counter() - self._start
        if self.verbose:
            print(f"{self.name}: {self.elapsed:.6f} s")


def validation_error(message: str, error_class: Type[Exception] = ValueError):
    """
    Raise ``error_class`` or warn, depending on config.STRICT_VALIDATION.

    Only soft failures go through here (non-finite numbers). Contract
    violations such as wrong argument counts always raise.

    Parameters
    ----------
    message : str
        Description of the offending value
    error_class : Type[Exception], optional
        Exception raised under strict validation (default: ValueError)

    Warns
    -----
    UserWarning
        If config.STRICT_VALIDATION is False

    Examples
    --------
    >>> from termsum import NonFiniteValue, temp_config
    >>> validation_error("Arguments contain NaN", NonFiniteValue)
    Traceback (most recent call last):
    ...
    termsum.errors.NonFiniteValue: Arguments contain NaN
    >>> with temp_config(STRICT_VALIDATION=False):
    ...     validation_error("Arguments contain NaN", NonFiniteValue)  # UserWarning
    """
    if config.STRICT_VALIDATION:
        raise error_class(message)
    warnings.warn(message, UserWarning, stacklevel=3)


def check_finite(values: np.ndarray, what: str):
    """
    Report NaN/Inf entries of ``values`` as NonFiniteValue.

    Does nothing when config.CHECK_FINITE_ARGUMENTS is False.
    """
    if not config.CHECK_FINITE_ARGUMENTS:
        return
    if not np.all(np.isfinite(values)):
        validation_error(
            f"{what} contains NaN or Inf values: {values}",
            NonFiniteValue
        )
