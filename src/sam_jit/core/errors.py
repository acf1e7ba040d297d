# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Error taxonomy for SAM-JIT.

Every failure the engine reports derives from :class:`SamJitError` and also
from the closest builtin exception, so callers may catch either
``KeyNotFoundError`` or plain ``KeyError``.
"""

from __future__ import annotations
from typing import Any


class SamJitError(Exception):
    """Base class for all SAM-JIT errors."""


class DuplicateKeyError(SamJitError, KeyError):
    """A key was inserted twice into a Values container or an Ordering."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class KeyNotFoundError(SamJitError, KeyError):
    """A key was looked up but is not present."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class MissingVariableError(KeyNotFoundError):
    """A factor references a variable that has no value."""


class DimensionMismatchError(SamJitError, ValueError):
    """Vector or matrix sizes do not agree (delta blocks, residuals, noise models)."""


class UnderconstrainedSystemError(SamJitError, ArithmeticError):
    """Elimination met a rank-deficient or non-finite block."""

    def __init__(self, message: str, position: int = -1) -> None:
        super().__init__(message)
        self.position = position


class OrderingFailedError(SamJitError, RuntimeError):
    """The elimination ordering could not be computed or is not a bijection."""


class MaxRetriesExceededError(SamJitError, RuntimeError):
    """Levenberg-Marquardt could not find an accepted step.

    ``state`` is the last accepted optimizer state, unchanged.
    """

    def __init__(self, message: str, state: Any = None) -> None:
        super().__init__(message)
        self.state = state


class CheiralityError(SamJitError, ArithmeticError):
    """A landmark projects from behind the camera."""
