# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Pinhole camera model used by the visual SLAM factors.

Camera frame convention: +z looks forward, so a point is visible when its
depth (z in the camera frame) is positive. A camera pose maps camera-frame
points into the world frame.
"""

from __future__ import annotations

import jax.numpy as jnp
from jax.tree_util import register_pytree_node_class

from .manifold import Pose3


@register_pytree_node_class
class Cal3_S2:
    """Five-parameter intrinsic calibration (focal lengths, skew, principal point)."""

    def __init__(self, fx: float, fy: float, s: float, u0: float, v0: float) -> None:
        self.fx = float(fx)
        self.fy = float(fy)
        self.s = float(s)
        self.u0 = float(u0)
        self.v0 = float(v0)

    def matrix(self) -> jnp.ndarray:
        return jnp.array([
            [self.fx, self.s, self.u0],
            [0.0, self.fy, self.v0],
            [0.0, 0.0, 1.0],
        ])

    def uncalibrate(self, p: jnp.ndarray) -> jnp.ndarray:
        """Normalized image coordinates -> pixels."""
        x, y = p[0], p[1]
        return jnp.stack([self.fx * x + self.s * y + self.u0, self.fy * y + self.v0])

    def calibrate(self, uv: jnp.ndarray) -> jnp.ndarray:
        """Pixels -> normalized image coordinates."""
        y = (uv[1] - self.v0) / self.fy
        x = (uv[0] - self.u0 - self.s * y) / self.fx
        return jnp.stack([x, y])

    def equals(self, other: "Cal3_S2", tol: float = 1e-9) -> bool:
        mine = (self.fx, self.fy, self.s, self.u0, self.v0)
        theirs = (other.fx, other.fy, other.s, other.u0, other.v0)
        return all(abs(a - b) <= tol for a, b in zip(mine, theirs))

    def tree_flatten(self):
        return (self.fx, self.fy, self.s, self.u0, self.v0), None

    @classmethod
    def tree_unflatten(cls, aux, children):
        obj = cls.__new__(cls)
        obj.fx, obj.fy, obj.s, obj.u0, obj.v0 = children
        return obj

    def __repr__(self) -> str:
        return f"Cal3_S2(fx={self.fx}, fy={self.fy}, s={self.s}, u0={self.u0}, v0={self.v0})"


class PinholeCamera:
    """Calibrated camera at a given pose."""

    def __init__(self, pose: Pose3, K: Cal3_S2) -> None:
        self.pose = pose
        self.K = K

    def depth(self, point: jnp.ndarray) -> jnp.ndarray:
        return self.pose.transform_to(point)[2]

    def project(self, point: jnp.ndarray) -> jnp.ndarray:
        q = self.pose.transform_to(point)
        return self.K.uncalibrate(q[:2] / q[2])
