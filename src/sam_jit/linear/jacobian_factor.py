# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Linear (Gaussian) factors and conditionals.

JacobianFactor
    The local linear approximation of one nonlinear factor, or the
    separator term produced by eliminating a variable:

        error(Δx) = 0.5 * ‖ whiten( Σ_j A_j Δx_j − b ) ‖²

    Variables are referenced by their integer ordering positions. After
    linearization a factor carries either a ``Unit`` model (rows already
    whitened) or a ``Constrained`` model whose zero-sigma rows are hard
    equality rows.

GaussianConditional
    The triangular relation left behind for one eliminated variable:

        R Δx_frontal + Σ_k S_k Δx_k = d

    ``R`` is upper triangular; ``sigmas`` records the precision of each row
    (0 for rows that came from hard constraints). Back substitution solves
    for ``Δx_frontal`` once all parents are known.
"""

from __future__ import annotations
from typing import Dict, List, Optional, Sequence, Tuple

import jax.numpy as jnp
from jax.scipy.linalg import solve_triangular

from .noise_model import Gaussian, Unit
from .vector_values import VectorValues
from ..core.errors import DimensionMismatchError

Term = Tuple[int, jnp.ndarray]


class JacobianFactor:
    """Affine relation ``Σ A_j Δx_j ≈ b`` with a noise model."""

    def __init__(
        self,
        terms: Sequence[Term],
        b: jnp.ndarray,
        model: Optional[Gaussian] = None,
    ) -> None:
        b = jnp.reshape(jnp.asarray(b, dtype=float), (-1,))
        rows = b.shape[0]

        keys: List[int] = []
        blocks: List[jnp.ndarray] = []
        for key, A in terms:
            key = int(key)
            A = jnp.asarray(A, dtype=float)
            if A.ndim == 1:
                A = A[:, None] if rows != 1 else A[None, :]
            if A.ndim != 2 or A.shape[0] != rows:
                raise DimensionMismatchError(
                    f"Block for position {key} has shape {A.shape}, expected {rows} rows"
                )
            if key in keys:
                raise ValueError(f"Position {key} appears twice in one factor")
            keys.append(key)
            blocks.append(A)

        if model is None:
            model = Unit.create(rows)
        if model.dim != rows:
            raise DimensionMismatchError(
                f"Noise model of dimension {model.dim} for a factor with {rows} rows"
            )

        self._keys = tuple(keys)
        self._blocks = blocks
        self._b = b
        self._model = model

    # --- Accessors ---

    @property
    def keys(self) -> Tuple[int, ...]:
        return self._keys

    def size(self) -> int:
        return len(self._keys)

    @property
    def rows(self) -> int:
        return int(self._b.shape[0])

    @property
    def b(self) -> jnp.ndarray:
        return self._b

    @property
    def model(self) -> Gaussian:
        return self._model

    @property
    def is_constrained(self) -> bool:
        return self._model.is_constrained

    def get_a(self, key: int) -> jnp.ndarray:
        """Jacobian block of the variable at ordering position ``key``."""
        try:
            return self._blocks[self._keys.index(key)]
        except ValueError:
            raise KeyError(f"Position {key} is not involved in this factor") from None

    def blocks(self) -> List[jnp.ndarray]:
        return list(self._blocks)

    def dims(self) -> Dict[int, int]:
        return {k: int(A.shape[1]) for k, A in zip(self._keys, self._blocks)}

    def is_empty(self) -> bool:
        return not self._keys or self.rows == 0

    # --- Evaluation ---

    def error_vector(self, x: VectorValues) -> jnp.ndarray:
        """Unwhitened ``Σ A_j x_j − b``."""
        e = -self._b
        for key, A in zip(self._keys, self._blocks):
            e = e + A @ x[key]
        return e

    def whitened_error(self, x: VectorValues) -> jnp.ndarray:
        return self._model.whiten(self.error_vector(x))

    def error(self, x: VectorValues) -> float:
        w = self.whitened_error(x)
        return 0.5 * float(jnp.dot(w, w))

    def equals(self, other: "JacobianFactor", tol: float = 1e-9) -> bool:
        if not isinstance(other, JacobianFactor) or self._keys != other._keys:
            return False
        for A, B in zip(self._blocks, other._blocks):
            if A.shape != B.shape or not bool(jnp.all(jnp.abs(A - B) <= tol)):
                return False
        if not bool(jnp.all(jnp.abs(self._b - other._b) <= tol)):
            return False
        return self._model.equals(other._model, tol)

    def __repr__(self) -> str:
        parts = [f"A[{k}]={A.tolist()}" for k, A in zip(self._keys, self._blocks)]
        return f"JacobianFactor({', '.join(parts)}, b={self._b.tolist()}, model={self._model!r})"


class GaussianConditional:
    """Triangular relation for one eliminated variable given its parents."""

    def __init__(
        self,
        key: int,
        R: jnp.ndarray,
        parents: Sequence[Term],
        d: jnp.ndarray,
        sigmas: Optional[jnp.ndarray] = None,
    ) -> None:
        self.key = int(key)
        self.R = jnp.asarray(R, dtype=float)
        self.parents: List[Term] = [(int(k), jnp.asarray(S, dtype=float)) for k, S in parents]
        self.d = jnp.reshape(jnp.asarray(d, dtype=float), (-1,))
        if sigmas is None:
            sigmas = jnp.ones(self.d.shape[0])
        self.sigmas = jnp.asarray(sigmas, dtype=float)

    @property
    def dim(self) -> int:
        return int(self.R.shape[1])

    def parent_keys(self) -> List[int]:
        return [k for k, _ in self.parents]

    def solve(self, x: VectorValues) -> jnp.ndarray:
        """Solve for the frontal variable given already-solved parents in ``x``."""
        rhs = self.d
        for key, S in self.parents:
            rhs = rhs - S @ x[key]
        return solve_triangular(self.R, rhs, lower=False)

    def equals(self, other: "GaussianConditional", tol: float = 1e-9) -> bool:
        if self.key != other.key or self.parent_keys() != other.parent_keys():
            return False
        pairs = [(self.R, other.R), (self.d, other.d), (self.sigmas, other.sigmas)]
        pairs += [(S, T) for (_, S), (_, T) in zip(self.parents, other.parents)]
        return all(a.shape == b.shape and bool(jnp.all(jnp.abs(a - b) <= tol)) for a, b in pairs)

    def __repr__(self) -> str:
        return f"GaussianConditional(key={self.key}, parents={self.parent_keys()}, dim={self.dim})"
