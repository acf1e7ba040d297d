# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Visual SLAM problem builder.

Camera poses are keyed ``x<i>`` and landmarks ``l<j>``. The graph only
adds convenience constructors on top of :class:`NonlinearFactorGraph`;
anything it builds can be optimized like any other graph.

Monocular reprojection alone leaves the gauge (global pose and scale) free,
so a solvable problem also needs priors or hard constraints, e.g. three
fixed landmarks or two fixed camera poses.
"""

from __future__ import annotations

from .camera import Cal3_S2
from .manifold import Point3, Pose3
from .measurements import PriorFactor, ProjectionFactor
from ..core.factor_graph import NonlinearFactorGraph
from ..core.types import point_key, pose_key
from ..linear.noise_model import Constrained, Gaussian


class VisualSLAMGraph(NonlinearFactorGraph):
    """Factor graph of camera poses ``x<i>`` and landmarks ``l<j>``."""

    def add_measurement(self, z, noise_model: Gaussian, i: int, j: int, K: Cal3_S2) -> None:
        """Pixel measurement ``z`` of landmark ``j`` from camera ``i``."""
        self.add(ProjectionFactor(z, noise_model, pose_key(i), point_key(j), K))

    def add_point_constraint(self, j: int, p: Point3) -> None:
        """Pin landmark ``j`` exactly at ``p``."""
        self.add(PriorFactor(point_key(j), p, Constrained.all(3)))

    def add_pose_constraint(self, i: int, pose: Pose3) -> None:
        """Pin camera ``i`` exactly at ``pose``."""
        self.add(PriorFactor(pose_key(i), pose, Constrained.all(6)))

    def add_point_prior(self, j: int, p: Point3, noise_model: Gaussian) -> None:
        self.add(PriorFactor(point_key(j), p, noise_model))

    def add_pose_prior(self, i: int, pose: Pose3, noise_model: Gaussian) -> None:
        self.add(PriorFactor(pose_key(i), pose, noise_model))
