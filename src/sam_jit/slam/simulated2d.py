# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Planar toy problem: robot positions and landmarks in R².

Robot positions are keyed ``x<i>`` and landmarks ``l<j>``, both
:class:`Point2`. Measurement models are linear, so one Gauss-Newton step
solves the problem exactly; this makes it a convenient fixture for checking
linearization and elimination numbers by hand.

    Prior        h(x)      = x
    Odometry     h(x1, x2) = x2 − x1
    Measurement  h(x, l)   = l − x

Every residual is ``h − z``.

The example problem (``create_*``) has two poses and one landmark:

    x1 = (0, 0)   x2 = (1.5, 0)   l1 = (0, −1)

with a prior on x1 (σ = 0.1), odometry x1→x2 (σ = 0.1) and two landmark
measurements (σ = 0.2).
"""

from __future__ import annotations
from typing import Optional

import jax.numpy as jnp

from .manifold import Point2
from ..core.factor_graph import NoiseModelFactor, NonlinearFactorGraph
from ..core.ordering import Ordering
from ..core.types import KeyLike, Symbol
from ..core.values import Values
from ..linear.gaussian_factor_graph import GaussianFactorGraph
from ..linear.jacobian_factor import JacobianFactor
from ..linear.noise_model import Gaussian, Isotropic, Unit


def _as_point2(z) -> jnp.ndarray:
    if isinstance(z, Point2):
        return z.vector()
    return jnp.reshape(jnp.asarray(z, dtype=float), (2,))


class Prior(NoiseModelFactor):
    def __init__(self, z, noise_model: Gaussian, key: KeyLike) -> None:
        super().__init__(noise_model, [key])
        self.z = _as_point2(z)

    def residual(self, x: Point2) -> jnp.ndarray:
        return x.vector() - self.z


class Odometry(NoiseModelFactor):
    def __init__(self, z, noise_model: Gaussian, key1: KeyLike, key2: KeyLike) -> None:
        super().__init__(noise_model, [key1, key2])
        self.z = _as_point2(z)

    def residual(self, x1: Point2, x2: Point2) -> jnp.ndarray:
        return (x2.vector() - x1.vector()) - self.z


class Measurement(NoiseModelFactor):
    def __init__(self, z, noise_model: Gaussian, pose_key: KeyLike, point_key: KeyLike) -> None:
        super().__init__(noise_model, [pose_key, point_key])
        self.z = _as_point2(z)

    def residual(self, x: Point2, l: Point2) -> jnp.ndarray:
        return (l.vector() - x.vector()) - self.z


X1, X2, L1 = Symbol("x", 1), Symbol("x", 2), Symbol("l", 1)


def create_nonlinear_factor_graph() -> NonlinearFactorGraph:
    graph = NonlinearFactorGraph()
    graph.add(Prior((0.0, 0.0), Isotropic.from_sigma(2, 0.1), X1))
    graph.add(Odometry((1.5, 0.0), Isotropic.from_sigma(2, 0.1), X1, X2))
    graph.add(Measurement((0.0, -1.0), Isotropic.from_sigma(2, 0.2), X1, L1))
    graph.add(Measurement((-1.5, -1.0), Isotropic.from_sigma(2, 0.2), X2, L1))
    return graph


def create_values() -> Values:
    """Ground truth of the example problem."""
    return Values([
        (X1, Point2(0.0, 0.0)),
        (X2, Point2(1.5, 0.0)),
        (L1, Point2(0.0, -1.0)),
    ])


def create_noisy_values() -> Values:
    return Values([
        (X1, Point2(0.1, 0.1)),
        (X2, Point2(1.4, 0.2)),
        (L1, Point2(0.1, -1.1)),
    ])


def create_gaussian_factor_graph(ordering: Optional[Ordering] = None) -> GaussianFactorGraph:
    """
    The example graph linearized at :func:`create_noisy_values`, written
    out by hand.
    """
    if ordering is None:
        ordering = Ordering([X1, X2, L1])
    x1, x2, l1 = ordering[X1], ordering[X2], ordering[L1]
    I = jnp.eye(2)
    unit = Unit.create(2)

    graph = GaussianFactorGraph()
    graph.push_back(JacobianFactor([(x1, 10.0 * I)], [-1.0, -1.0], unit))
    graph.push_back(JacobianFactor([(x1, -10.0 * I), (x2, 10.0 * I)], [2.0, -1.0], unit))
    graph.push_back(JacobianFactor([(x1, -5.0 * I), (l1, 5.0 * I)], [0.0, 1.0], unit))
    graph.push_back(JacobianFactor([(x2, -5.0 * I), (l1, 5.0 * I)], [-1.0, 1.5], unit))
    return graph
