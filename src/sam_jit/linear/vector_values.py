# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Block vectors indexed by elimination position.

A :class:`VectorValues` holds one tangent-space block per ordering
position. It is the type of the solution ``Δx`` produced by back
substitution and of the argument to :meth:`core.values.Values.retract`.
"""

from __future__ import annotations
from typing import Iterator, List, Sequence

import jax.numpy as jnp

from ..core.errors import DimensionMismatchError


class VectorValues:
    """Per-position blocks of a stacked vector."""

    def __init__(self, blocks: Sequence[jnp.ndarray] = ()) -> None:
        self._blocks: List[jnp.ndarray] = [jnp.reshape(jnp.asarray(b, dtype=float), (-1,)) for b in blocks]

    @classmethod
    def zero(cls, dims: Sequence[int]) -> "VectorValues":
        return cls([jnp.zeros(int(d)) for d in dims])

    @classmethod
    def from_vector(cls, v: jnp.ndarray, dims: Sequence[int]) -> "VectorValues":
        v = jnp.asarray(v)
        if v.shape != (sum(dims),):
            raise DimensionMismatchError(
                f"Vector of shape {v.shape} does not match total dimension {sum(dims)}"
            )
        blocks, start = [], 0
        for d in dims:
            blocks.append(v[start:start + d])
            start += d
        return cls(blocks)

    def __len__(self) -> int:
        return len(self._blocks)

    def __iter__(self) -> Iterator[jnp.ndarray]:
        return iter(self._blocks)

    def __getitem__(self, j: int) -> jnp.ndarray:
        if not 0 <= j < len(self._blocks):
            raise DimensionMismatchError(
                f"Position {j} is outside this delta (size {len(self._blocks)})"
            )
        return self._blocks[j]

    def __setitem__(self, j: int, value: jnp.ndarray) -> None:
        value = jnp.reshape(jnp.asarray(value, dtype=float), (-1,))
        if value.shape != self[j].shape:
            raise DimensionMismatchError(
                f"Block {j} has dimension {self[j].shape[0]}, got {value.shape[0]}"
            )
        self._blocks[j] = value

    def dims(self) -> List[int]:
        return [int(b.shape[0]) for b in self._blocks]

    def dim(self) -> int:
        return sum(self.dims())

    def vector(self) -> jnp.ndarray:
        if not self._blocks:
            return jnp.zeros((0,))
        return jnp.concatenate(self._blocks)

    def norm(self) -> float:
        return float(jnp.linalg.norm(self.vector()))

    def scale(self, alpha: float) -> "VectorValues":
        return VectorValues([alpha * b for b in self._blocks])

    def __add__(self, other: "VectorValues") -> "VectorValues":
        if self.dims() != other.dims():
            raise DimensionMismatchError("Cannot add VectorValues with different block structure")
        return VectorValues([a + b for a, b in zip(self._blocks, other._blocks)])

    def __neg__(self) -> "VectorValues":
        return self.scale(-1.0)

    def equals(self, other: "VectorValues", tol: float = 1e-9) -> bool:
        if self.dims() != other.dims():
            return False
        return all(bool(jnp.all(jnp.abs(a - b) <= tol)) for a, b in zip(self._blocks, other._blocks))

    def __repr__(self) -> str:
        inner = ", ".join(f"{j}: {b.tolist()}" for j, b in enumerate(self._blocks))
        return f"VectorValues({{{inner}}})"
