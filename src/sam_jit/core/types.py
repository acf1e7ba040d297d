# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Core key types for SAM-JIT.

Every unknown in a factor graph is named by a :class:`Symbol`: a character
tag selecting a namespace (``'x'`` for poses, ``'l'`` for landmarks, ...)
plus an integer index. Symbols are hashable, immutable and totally ordered
(first by tag, then by index), so they can be used as dictionary keys in
:class:`core.values.Values` and :class:`core.ordering.Ordering` and sorted
deterministically.

Classes
-------
Symbol
    ``Symbol('x', 3)`` prints as ``x3``; ``Symbol.parse("x3")`` is the
    inverse.

Functions
---------
pose_key(j), point_key(j)
    Shorthands for the two namespaces used by the SLAM factors.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True, order=True)
class Symbol:
    """Character tag + integer index naming one variable."""
    chr: str
    index: int

    def __post_init__(self) -> None:
        if not isinstance(self.chr, str) or len(self.chr) != 1:
            raise ValueError(f"Symbol tag must be a single character, got {self.chr!r}")
        if int(self.index) < 0:
            raise ValueError(f"Symbol index must be non-negative, got {self.index}")

    @classmethod
    def parse(cls, text: str) -> "Symbol":
        """Parse strings such as ``"x3"`` or ``"l12"``."""
        if len(text) < 2 or not text[1:].isdigit():
            raise ValueError(f"Cannot parse key from {text!r}")
        return cls(text[0], int(text[1:]))

    def __str__(self) -> str:
        return f"{self.chr}{self.index}"

    def __repr__(self) -> str:
        return f"Symbol('{self.chr}', {self.index})"


Key = Symbol
KeyLike = Union[Symbol, str]


def as_key(key: KeyLike) -> Symbol:
    """Accept either a Symbol or its string form."""
    if isinstance(key, Symbol):
        return key
    if isinstance(key, str):
        return Symbol.parse(key)
    raise TypeError(f"Expected a Symbol or key string, got {type(key).__name__}")


def pose_key(j: int) -> Symbol:
    return Symbol("x", j)


def point_key(j: int) -> Symbol:
    return Symbol("l", j)
