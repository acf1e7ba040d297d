# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Values: the current estimate of every variable in a problem.

A :class:`Values` container is an insertion-ordered mapping from
:class:`core.types.Symbol` keys to manifold values (see
:mod:`slam.manifold`). It plays the role the packed state vector plays in a
flat optimizer, but keeps each variable on its own manifold:

    • ``insert`` / ``at`` / ``update``   construction and lookup
    • ``dims(ordering)``                  tangent dimension per position
    • ``retract(delta, ordering)``        apply a VectorValues update
    • ``local_coordinates(other, ordering)``  inverse of retract

Containers are snapshots: ``retract`` and ``update`` always return a new
container and leave the receiver untouched, so an optimizer can keep the
previous iterate around and simply drop a rejected trial step.
``insert`` is the only mutating operation and is meant for problem
construction.
"""

from __future__ import annotations
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import jax.numpy as jnp

from .errors import DimensionMismatchError, DuplicateKeyError, KeyNotFoundError
from .ordering import Ordering
from .types import Key, KeyLike, as_key
from ..linear.vector_values import VectorValues
from ..slam.manifold import Value, is_value


class Values:
    """Insertion-ordered mapping Key -> manifold value."""

    def __init__(self, items: Optional[Iterable[Tuple[KeyLike, Value]]] = None) -> None:
        self._values: Dict[Key, Value] = {}
        if items is not None:
            for key, value in items:
                self.insert(key, value)

    # --- Construction / lookup ---

    def insert(self, key: KeyLike, value: Value) -> None:
        key = as_key(key)
        if not is_value(value):
            raise TypeError(f"Unsupported value type {type(value).__name__} for key {key}")
        if key in self._values:
            raise DuplicateKeyError(f"Key {key} already has a value")
        self._values[key] = value

    def at(self, key: KeyLike) -> Value:
        key = as_key(key)
        try:
            return self._values[key]
        except KeyError:
            raise KeyNotFoundError(f"No value for key {key}") from None

    __getitem__ = at

    def update(self, key: KeyLike, value: Value) -> "Values":
        """Return a copy where ``key`` holds ``value``."""
        key = as_key(key)
        if key not in self._values:
            raise KeyNotFoundError(f"Cannot update missing key {key}")
        if type(value) is not type(self._values[key]):
            raise TypeError(
                f"Key {key} holds a {type(self._values[key]).__name__}, got {type(value).__name__}"
            )
        result = self.copy()
        result._values[key] = value
        return result

    def exists(self, key: KeyLike) -> bool:
        try:
            return as_key(key) in self._values
        except (TypeError, ValueError):
            return False

    __contains__ = exists

    def keys(self) -> List[Key]:
        return list(self._values)

    def items(self):
        return self._values.items()

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Key]:
        return iter(self._values)

    def copy(self) -> "Values":
        result = Values()
        result._values = dict(self._values)
        return result

    # --- Dimensions / orderings ---

    def dim(self) -> int:
        return sum(v.dim for v in self._values.values())

    def dims(self, ordering: Ordering) -> List[int]:
        """Tangent dimension of each variable, indexed by ordering position."""
        dims, _ = ordering.dims(self)
        return dims

    def ordering_arbitrary(self) -> Ordering:
        """Ordering of the keys in insertion order."""
        return Ordering(self._values)

    def zero_vectors(self, ordering: Ordering) -> VectorValues:
        return VectorValues.zero(self.dims(ordering))

    # --- Manifold operations ---

    def retract(self, delta: VectorValues, ordering: Ordering) -> "Values":
        """
        Apply ``delta`` to every variable and return the new container.

        ``delta`` and ``ordering`` may cover more variables than this
        container holds; the extra slots are ignored. Every key held here
        must have an ordering position inside ``delta``.
        """
        result = Values()
        for key, value in self._values.items():
            j = ordering[key]
            if j >= len(delta):
                raise DimensionMismatchError(
                    f"Key {key} maps to position {j} but the delta only has {len(delta)} blocks"
                )
            d = delta[j]
            if d.shape[0] != value.dim:
                raise DimensionMismatchError(
                    f"Delta block for {key} has dimension {d.shape[0]}, expected {value.dim}"
                )
            result._values[key] = value.retract(d)
        return result

    def local_coordinates(self, other: "Values", ordering: Ordering) -> VectorValues:
        """
        Tangent vector ``d`` such that ``self.retract(d, ordering) == other``,
        one block per ordering position.

        Ordering keys that neither container holds get an empty block, so the
        oversized orderings accepted by :meth:`retract` work here too.
        """
        blocks: List[jnp.ndarray] = []
        for key in ordering:
            if key not in self._values and key not in other._values:
                blocks.append(jnp.zeros(0))
                continue
            blocks.append(self.at(key).local_coordinates(other.at(key)))
        return VectorValues(blocks)

    # --- Comparison ---

    def equals(self, other: "Values", tol: float = 1e-9) -> bool:
        if set(self._values) != set(other._values):
            return False
        return all(v.equals(other._values[k], tol) for k, v in self._values.items())

    def __repr__(self) -> str:
        inner = ",\n  ".join(f"{k}: {v!r}" for k, v in self._values.items())
        return f"Values(\n  {inner}\n)"
