# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Noise models: how raw residuals are weighted before they enter the cost.

A noise model *whitens* a residual ``r`` into ``R r`` with unit covariance,
where ``R`` is the square-root information matrix. The per-factor cost is
``0.5 * ‖whiten(r)‖²``.

Families
--------
Gaussian
    Full square-root information matrix (from a covariance or given directly).

Diagonal
    Independent rows with standard deviations ``sigmas``: whiten(r) = r / σ.

Constrained
    Diagonal model where some (or all) sigmas are zero. Zero-sigma rows are
    hard equality constraints: they are never divided by σ, they are passed
    through whitening unchanged, and the elimination step treats them as
    infinite-precision rows that must be satisfied exactly.

Isotropic / Unit
    Diagonal models with a single sigma (``Unit`` has σ = 1).

``Diagonal.from_sigmas`` returns a :class:`Constrained` model as soon as one
sigma is zero, so callers never end up dividing by zero by accident.
"""

from __future__ import annotations
from typing import List, Sequence, Tuple

import jax.numpy as jnp

from ..core.errors import DimensionMismatchError


class Gaussian:
    """Gaussian noise given by an upper-triangular square-root information matrix."""

    def __init__(self, sqrt_information: jnp.ndarray) -> None:
        R = jnp.asarray(sqrt_information, dtype=float)
        if R.ndim != 2 or R.shape[0] != R.shape[1]:
            raise ValueError(f"Square-root information must be square, got shape {R.shape}")
        self._R = R

    @classmethod
    def from_sqrt_information(cls, R: jnp.ndarray) -> "Gaussian":
        return cls(R)

    @classmethod
    def from_covariance(cls, covariance: jnp.ndarray) -> "Gaussian":
        # Σ⁻¹ = Rᵀ R with R upper triangular
        information = jnp.linalg.inv(jnp.asarray(covariance, dtype=float))
        L = jnp.linalg.cholesky(information)
        return cls(L.T)

    @property
    def dim(self) -> int:
        return int(self._R.shape[0])

    @property
    def is_constrained(self) -> bool:
        return False

    def sqrt_information(self) -> jnp.ndarray:
        return self._R

    def _check(self, v: jnp.ndarray) -> jnp.ndarray:
        v = jnp.asarray(v)
        if v.shape[0] != self.dim:
            raise DimensionMismatchError(
                f"Noise model of dimension {self.dim} applied to {v.shape[0]} rows"
            )
        return v

    def whiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return self._R @ self._check(v)

    def unwhiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return jnp.linalg.solve(self._R, self._check(v))

    def whiten_system(
        self, As: Sequence[jnp.ndarray], b: jnp.ndarray
    ) -> Tuple[List[jnp.ndarray], jnp.ndarray]:
        """Whiten every Jacobian block and the right-hand side."""
        return [self.whiten(A) for A in As], self.whiten(b)

    def distance(self, v: jnp.ndarray) -> float:
        """Squared Mahalanobis norm ‖whiten(v)‖²."""
        w = self.whiten(v)
        return float(jnp.dot(w, w))

    def equals(self, other, tol: float = 1e-9) -> bool:
        if type(other) is not type(self) or other.dim != self.dim:
            return False
        return bool(jnp.all(jnp.abs(self.sqrt_information() - other.sqrt_information()) <= tol))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dim={self.dim})"


class Diagonal(Gaussian):
    """Independent rows with per-row standard deviations."""

    def __init__(self, sigmas: jnp.ndarray) -> None:
        sigmas = jnp.reshape(jnp.asarray(sigmas, dtype=float), (-1,))
        if bool(jnp.any(sigmas < 0.0)):
            raise ValueError("Sigmas must be non-negative")
        if not isinstance(self, Constrained) and bool(jnp.any(sigmas == 0.0)):
            raise ValueError(
                f"{type(self).__name__} cannot hold zero sigmas; "
                "use Constrained or Diagonal.from_sigmas for hard rows"
            )
        self._sigmas = sigmas

    @classmethod
    def from_sigmas(cls, sigmas: Sequence[float]) -> "Diagonal":
        sigmas = jnp.reshape(jnp.asarray(sigmas, dtype=float), (-1,))
        if bool(jnp.any(sigmas == 0.0)):
            return Constrained(sigmas)
        return Diagonal(sigmas)

    @classmethod
    def from_variances(cls, variances: Sequence[float]) -> "Diagonal":
        return cls.from_sigmas(jnp.sqrt(jnp.asarray(variances, dtype=float)))

    @classmethod
    def from_precisions(cls, precisions: Sequence[float]) -> "Diagonal":
        return cls.from_sigmas(1.0 / jnp.sqrt(jnp.asarray(precisions, dtype=float)))

    @property
    def dim(self) -> int:
        return int(self._sigmas.shape[0])

    @property
    def sigmas(self) -> jnp.ndarray:
        return self._sigmas

    def precisions(self) -> jnp.ndarray:
        return 1.0 / (self._sigmas * self._sigmas)

    def sqrt_information(self) -> jnp.ndarray:
        return jnp.diag(1.0 / self._sigmas)

    def _scale(self, v: jnp.ndarray) -> jnp.ndarray:
        s = self._sigmas
        return s if v.ndim == 1 else s[:, None]

    def whiten(self, v: jnp.ndarray) -> jnp.ndarray:
        v = self._check(v)
        return v / self._scale(v)

    def unwhiten(self, v: jnp.ndarray) -> jnp.ndarray:
        v = self._check(v)
        return v * self._scale(v)

    def equals(self, other, tol: float = 1e-9) -> bool:
        if type(other) is not type(self) or other.dim != self.dim:
            return False
        return bool(jnp.all(jnp.abs(self._sigmas - other.sigmas) <= tol))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(sigmas={self._sigmas.tolist()})"


class Constrained(Diagonal):
    """
    Diagonal model with hard rows (σ = 0).

    Whitening divides soft rows by their sigma and leaves hard rows as they
    are; the elimination step recognizes the hard rows via
    :meth:`constrained_mask`.
    """

    @classmethod
    def from_mixed_sigmas(cls, sigmas: Sequence[float]) -> "Constrained":
        return cls(sigmas)

    @classmethod
    def all(cls, dim: int) -> "Constrained":
        return cls(jnp.zeros(dim))

    @property
    def is_constrained(self) -> bool:
        return True

    def constrained_mask(self) -> jnp.ndarray:
        return self._sigmas == 0.0

    def _safe_scale(self, v: jnp.ndarray) -> jnp.ndarray:
        s = jnp.where(self._sigmas == 0.0, 1.0, self._sigmas)
        return s if v.ndim == 1 else s[:, None]

    def whiten(self, v: jnp.ndarray) -> jnp.ndarray:
        v = self._check(v)
        return v / self._safe_scale(v)

    def unwhiten(self, v: jnp.ndarray) -> jnp.ndarray:
        v = self._check(v)
        return v * self._safe_scale(v)

    def precisions(self) -> jnp.ndarray:
        safe = jnp.where(self._sigmas == 0.0, 1.0, self._sigmas)
        return jnp.where(self._sigmas == 0.0, jnp.inf, 1.0 / (safe * safe))

    def sqrt_information(self) -> jnp.ndarray:
        raise ArithmeticError("A constrained noise model has no finite square-root information")


class Isotropic(Diagonal):
    """All rows share one sigma."""

    @classmethod
    def from_sigma(cls, dim: int, sigma: float) -> "Isotropic":
        if sigma <= 0.0:
            raise ValueError("Isotropic sigma must be positive; use Constrained for hard rows")
        return cls(jnp.full((dim,), float(sigma)))

    @property
    def sigma(self) -> float:
        return float(self._sigmas[0])


class Unit(Isotropic):
    """Unit covariance: whitening is the identity."""

    def __init__(self, dim_or_sigmas) -> None:
        if isinstance(dim_or_sigmas, int):
            dim_or_sigmas = jnp.ones(dim_or_sigmas)
        super().__init__(dim_or_sigmas)

    @classmethod
    def create(cls, dim: int) -> "Unit":
        return cls(int(dim))

    def whiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return self._check(v)

    def unwhiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return self._check(v)


NoiseModel = Gaussian
