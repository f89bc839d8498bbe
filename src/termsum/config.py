"""
Global Configuration for Termsum Package
========================================

This module provides package-wide configuration settings that users can modify
to control validation behavior, engine compilation defaults, and default
profiling/plotting options.

Examples
--------
View current configuration:

>>> import termsum
>>> print(termsum.config)

Modify settings:

>>> termsum.config.VERBOSE_COMPILE = True  # Report JIT compilation time
>>> termsum.config.DEFAULT_OPT_LEVEL = 2

Reset to defaults:

>>> termsum.config.reset()

Temporarily modify settings:

>>> with termsum.temp_config(CHECK_FINITE_ARGUMENTS=False):
...     # NaN arguments propagate into the result for this block only
...     summation.evaluate([float('nan')])

Notes
-----
These settings affect package-wide behavior. Modifying them will impact
all subsequent operations until changed again or reset. Compilation defaults
are read when an engine is configured, so existing summations keep the
options they were built with.
"""

from dataclasses import dataclass
from contextlib import contextmanager


@dataclass
class TermSumConfig:
    """
    Global configuration for Termsum package.

    Attributes
    ----------
    STRICT_VALIDATION : bool
        If True, soft validation failures (non-finite numbers) raise exceptions.
        If False, they issue warnings and the value is used as given.
        Default: True
    CHECK_FINITE_ARGUMENTS : bool
        If True, argument vectors and per-term parameter vectors are checked
        for NaN/Inf before use.
        Default: True
    INSTANCE_WARNING_THRESHOLD : int
        Number of live engine handles before a ResourceWarning is issued.
        Each handle owns JIT-compiled machine code.
        Default: 32
    VERBOSE_COMPILE : bool
        If True, print the time spent compiling each engine.
        Default: False
    DEFAULT_OPT_LEVEL : int
        LLVM optimisation level (0-3) used when no ``opt_level`` property
        is given.
        Default: 3
    DEFAULT_COMPACT_MODE : bool
        Compile in compact mode when no ``compact_mode`` property is given.
        Trades evaluation speed for shorter compile times on large expressions.
        Default: False
    DEFAULT_FAST_MATH : bool
        Allow floating-point reassociation when no ``fast_math`` property
        is given.
        Default: False
    DEFAULT_SCAN_POINTS : int
        Default number of samples for a Profile scan.
        Default: 200
    DEFAULT_VALUE_COLOR : str
        Default color for the value trace in profile plots.
        Default: 'red'
    DEFAULT_DERIVATIVE_COLOR : str
        Default color for the derivative trace in profile plots.
        Default: 'blue'
    """

    # Validation behavior
    STRICT_VALIDATION: bool = True
    CHECK_FINITE_ARGUMENTS: bool = True

    # Engine defaults
    INSTANCE_WARNING_THRESHOLD: int = 32
    VERBOSE_COMPILE: bool = False
    DEFAULT_OPT_LEVEL: int = 3
    DEFAULT_COMPACT_MODE: bool = False
    DEFAULT_FAST_MATH: bool = False

    # Profile/plotting defaults
    DEFAULT_SCAN_POINTS: int = 200
    DEFAULT_VALUE_COLOR: str = 'red'
    DEFAULT_DERIVATIVE_COLOR: str = 'blue'

    def reset(self):
        """
        Reset all configuration values to package defaults.

        Examples
        --------
        >>> import termsum
        >>> termsum.config.DEFAULT_OPT_LEVEL = 0  # Modify
        >>> termsum.config.reset()  # Back to defaults
        >>> termsum.config.DEFAULT_OPT_LEVEL
        3
        """
        defaults = TermSumConfig()
        for key in self.__dataclass_fields__:
            setattr(self, key, getattr(defaults, key))

    def __repr__(self):
        """Return formatted string showing all configuration values."""
        lines = ["TermSumConfig:"]
        lines.append("  Validation:")
        lines.append(f"    STRICT_VALIDATION = {self.STRICT_VALIDATION}")
        lines.append(f"    CHECK_FINITE_ARGUMENTS = {self.CHECK_FINITE_ARGUMENTS}")
        lines.append("  Engine:")
        lines.append(f"    INSTANCE_WARNING_THRESHOLD = {self.INSTANCE_WARNING_THRESHOLD}")
        lines.append(f"    VERBOSE_COMPILE = {self.VERBOSE_COMPILE}")
        lines.append(f"    DEFAULT_OPT_LEVEL = {self.DEFAULT_OPT_LEVEL}")
        lines.append(f"    DEFAULT_COMPACT_MODE = {self.DEFAULT_COMPACT_MODE}")
        lines.append(f"    DEFAULT_FAST_MATH = {self.DEFAULT_FAST_MATH}")
        lines.append("  Profiles:")
        lines.append(f"    DEFAULT_SCAN_POINTS = {self.DEFAULT_SCAN_POINTS}")
        lines.append(f"    DEFAULT_VALUE_COLOR = '{self.DEFAULT_VALUE_COLOR}'")
        lines.append(f"    DEFAULT_DERIVATIVE_COLOR = '{self.DEFAULT_DERIVATIVE_COLOR}'")
        return "\n".join(lines)


# Global configuration instance
config = TermSumConfig()


@contextmanager
def temp_config(**kwargs):
    """
    Context manager for temporarily modifying configuration values.

    Configuration is automatically restored when the context exits,
    even if an exception occurs.

    Parameters
    ----------
    **kwargs
        Configuration attributes to temporarily modify.

    Examples
    --------
    >>> import termsum
    >>> with termsum.temp_config(STRICT_VALIDATION=False):
    ...     # Non-finite arguments only warn here
    ...     summation.evaluate([float('inf')])
    >>> # Original config restored here
    >>> termsum.config.STRICT_VALIDATION
    True

    Raises
    ------
    AttributeError
        If an invalid configuration attribute is specified.
    """
    old_values = {}
    for key, value in kwargs.items():
        if not hasattr(config, key):
            raise AttributeError(
                f"TermSumConfig has no attribute '{key}'. "
                f"Valid attributes: {list(config.__dataclass_fields__.keys())}"
            )
        old_values[key] = getattr(config, key)
        setattr(config, key, value)

    try:
        yield config
    finally:
        for key, value in old_values.items():
            setattr(config, key, value)
