"""
Termsum: Custom Summation Functions

A Python package for scalar functions written as sums of parametrized
algebraic terms, with JIT-compiled values and gradients, deferred term
commits and cached evaluation.
"""

# Core classes
from .summation import CustomSummation, CustomSummation as CS
from .model import TermModel, TermTable
from .evaluator import Evaluator
from .profile import Profile

# Configuration
from .config import config, temp_config

# Errors
from .errors import (
    TermSumError,
    ArityMismatch,
    IndexOutOfRange,
    UnknownParameter,
    UnsupportedDerivativeOrder,
    InvalidConfiguration,
    NonFiniteValue,
    EngineError,
    EngineInitializationError,
    CompileError,
    StructuralError,
)

# Package metadata
__version__ = "0.1.0"

# Define what gets imported with "from termsum import *"
__all__ = [
    # Classes
    "CustomSummation",
    "TermModel",
    "TermTable",
    "Evaluator",
    "Profile",
    # Abbreviations
    "CS",
    # Configuration
    "config",
    "temp_config",
    # Errors
    "TermSumError",
    "ArityMismatch",
    "IndexOutOfRange",
    "UnknownParameter",
    "UnsupportedDerivativeOrder",
    "InvalidConfiguration",
    "NonFiniteValue",
    "EngineError",
    "EngineInitializationError",
    "CompileError",
    "StructuralError",
]
