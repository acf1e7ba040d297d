# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Linear factor graph produced by linearizing a nonlinear graph.

The solve is sparse elimination (see :mod:`linear.elimination`) followed by
back substitution; the dense normal equations are never formed.
"""

from __future__ import annotations
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

import jax.numpy as jnp

from .elimination import GaussianBayesNet, eliminate
from .jacobian_factor import JacobianFactor
from .noise_model import Unit
from .vector_values import VectorValues
from ..core.errors import DimensionMismatchError


class GaussianFactorGraph:
    """Ordered collection of JacobianFactors over ordering positions."""

    def __init__(self, factors: Iterable[JacobianFactor] = ()) -> None:
        self.factors: List[JacobianFactor] = list(factors)

    def push_back(self, factor: JacobianFactor) -> None:
        self.factors.append(factor)

    add = push_back

    def __len__(self) -> int:
        return len(self.factors)

    def __iter__(self) -> Iterator[JacobianFactor]:
        return iter(self.factors)

    def __getitem__(self, i: int) -> JacobianFactor:
        return self.factors[i]

    def keys(self) -> List[int]:
        """Sorted positions touched by at least one factor."""
        return sorted({k for f in self.factors for k in f.keys})

    def variable_dims(self) -> Dict[int, int]:
        dims: Dict[int, int] = {}
        for factor in self.factors:
            for key, d in factor.dims().items():
                if dims.setdefault(key, d) != d:
                    raise DimensionMismatchError(
                        f"Position {key} has dimension {dims[key]} in one factor and {d} in another"
                    )
        return dims

    def error(self, x: VectorValues) -> float:
        return sum(f.error(x) for f in self.factors)

    def add_damping(self, lam: float, dims: Sequence[int]) -> "GaussianFactorGraph":
        """
        Copy of this graph with a ``sqrt(lam) * I`` prior on every variable,
        pulling the step towards zero (Levenberg-Marquardt damping).
        """
        damped = GaussianFactorGraph(self.factors)
        scale = float(jnp.sqrt(lam))
        for j, d in enumerate(dims):
            damped.push_back(JacobianFactor([(j, scale * jnp.eye(d))], jnp.zeros(d), Unit.create(d)))
        return damped

    def eliminate(self, num_variables: Optional[int] = None) -> GaussianBayesNet:
        """
        Eliminate positions ``0..num_variables-1``.

        ``num_variables`` defaults to one past the largest position in use.
        """
        keys = self.keys()
        if num_variables is None:
            num_variables = keys[-1] + 1 if keys else 0
        if keys and keys[-1] >= num_variables:
            raise DimensionMismatchError(
                f"Factor touches position {keys[-1]} but only {num_variables} variables are eliminated"
            )
        self.variable_dims()
        return eliminate(self.factors, num_variables)

    def optimize(self, num_variables: Optional[int] = None) -> VectorValues:
        """Least-squares solution ``Δx`` of the whole graph."""
        return self.eliminate(num_variables).back_substitute()

    def equals(self, other: "GaussianFactorGraph", tol: float = 1e-9) -> bool:
        if len(self) != len(other):
            return False
        return all(a.equals(b, tol) for a, b in zip(self.factors, other.factors))

    def __repr__(self) -> str:
        return f"GaussianFactorGraph(num_factors={len(self.factors)})"
