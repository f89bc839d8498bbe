"""
Exception Hierarchy for Termsum
===============================

Every error raised by the package derives from :class:`TermSumError`, and
also from the builtin exception that best describes it, so callers can catch
either ``termsum.ArityMismatch`` or a plain ``ValueError``.

Engine failures (:class:`EngineInitializationError`, :class:`CompileError`,
:class:`StructuralError`) wrap whatever the compiled-function backend raised;
the original exception is kept as ``__cause__``.
"""


class TermSumError(Exception):
    """Base class for all termsum errors."""


class ArityMismatch(TermSumError, ValueError):
    """Argument or per-term parameter vector has the wrong length."""


class IndexOutOfRange(TermSumError, IndexError):
    """Term index or derivative index outside the valid range."""


class UnknownParameter(TermSumError, KeyError):
    """Overall-parameter name that was never registered."""

    def __str__(self):
        # KeyError quotes its argument; keep the plain message instead
        return str(self.args[0]) if self.args else ""


class UnsupportedDerivativeOrder(TermSumError, ValueError):
    """Derivative order other than a single first derivative."""


class InvalidConfiguration(TermSumError, ValueError):
    """Bad construction arguments for a summation."""


class NonFiniteValue(TermSumError, ValueError):
    """NaN or Inf where a finite number is required."""


class EngineError(TermSumError, RuntimeError):
    """Failure reported by the evaluation engine."""


class EngineInitializationError(EngineError):
    """The engine rejected its configuration or failed to compile."""


class CompileError(EngineError):
    """The term expression could not be parsed or translated."""


class StructuralError(EngineError):
    """The engine rejected a new term set."""
