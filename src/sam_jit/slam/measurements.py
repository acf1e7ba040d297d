# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Measurement factors for SAM-JIT.

Each class is a :class:`core.factor_graph.NoiseModelFactor` with a fixed
residual. Residuals follow the ``prediction − measurement`` convention,
expressed in the tangent space of the measured value:

    • ``PriorFactor``
          r = local(prior, x)
      Anchors one variable. With a ``Constrained.all(dim)`` noise model it
      becomes a hard equality constraint.

    • ``BetweenFactor``
          r = local(measured, x1⁻¹ ∘ x2)
      Relative measurement (odometry, loop closure) between two variables
      of the same type.

    • ``ProjectionFactor``
          r = project(pose, point) − z
      Pixel reprojection error of a 3D landmark seen by a calibrated
      pinhole camera. A landmark at or behind the image plane raises
      :class:`core.errors.CheiralityError`.

Jacobians are derived by autodiff through the manifold retraction; none of
these factors hand-code them.
"""

from __future__ import annotations

import jax.numpy as jnp

from .camera import Cal3_S2, PinholeCamera
from .manifold import ManifoldValue, Point3, Pose3
from ..core.errors import CheiralityError
from ..core.factor_graph import NoiseModelFactor
from ..core.types import KeyLike
from ..linear.noise_model import Gaussian


class PriorFactor(NoiseModelFactor):
    """Prior (or hard constraint) on one variable."""

    def __init__(self, key: KeyLike, prior: ManifoldValue, noise_model: Gaussian) -> None:
        super().__init__(noise_model, [key])
        self.prior = prior

    def residual(self, x: ManifoldValue) -> jnp.ndarray:
        return self.prior.local_coordinates(x)

    def equals(self, other, tol: float = 1e-9) -> bool:
        return super().equals(other, tol) and self.prior.equals(other.prior, tol)


class BetweenFactor(NoiseModelFactor):
    """Relative measurement between two variables."""

    def __init__(
        self, key1: KeyLike, key2: KeyLike, measured: ManifoldValue, noise_model: Gaussian
    ) -> None:
        super().__init__(noise_model, [key1, key2])
        self.measured = measured

    def residual(self, x1: ManifoldValue, x2: ManifoldValue) -> jnp.ndarray:
        return self.measured.local_coordinates(x1.between(x2))

    def equals(self, other, tol: float = 1e-9) -> bool:
        return super().equals(other, tol) and self.measured.equals(other.measured, tol)


class ProjectionFactor(NoiseModelFactor):
    """Reprojection error of landmark ``point_key`` in camera ``pose_key``."""

    def __init__(
        self,
        measured,
        noise_model: Gaussian,
        pose_key: KeyLike,
        point_key: KeyLike,
        K: Cal3_S2,
    ) -> None:
        super().__init__(noise_model, [pose_key, point_key])
        if isinstance(measured, ManifoldValue):
            measured = measured.vector()
        self.measured = jnp.reshape(jnp.asarray(measured, dtype=float), (2,))
        self.K = K

    def residual(self, pose: Pose3, point: Point3) -> jnp.ndarray:
        return PinholeCamera(pose, self.K).project(point.vector()) - self.measured

    def evaluate_error(self, *values, compute_jacobians: bool = False):
        pose, point = values
        depth = float(PinholeCamera(pose, self.K).depth(point.vector()))
        if depth <= 0.0:
            raise CheiralityError(
                f"Landmark {self.keys[1]} is behind camera {self.keys[0]} (depth {depth:.3g})"
            )
        return super().evaluate_error(*values, compute_jacobians=compute_jacobians)

    def equals(self, other, tol: float = 1e-9) -> bool:
        return (
            super().equals(other, tol)
            and bool(jnp.all(jnp.abs(self.measured - other.measured) <= tol))
            and self.K.equals(other.K, tol)
        )
