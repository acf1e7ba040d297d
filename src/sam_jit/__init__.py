# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
SAM-JIT: smoothing and mapping on nonlinear factor graphs, written in JAX.

Variables live on manifolds (points, rotations, poses), factors relate them
through residual functions with Gaussian noise models, and the optimizer
solves the resulting nonlinear least-squares problem by repeated
linearization and sparse variable elimination.

Typical use::

    from sam_jit import (
        NonlinearFactorGraph, Values, Pose3, PriorFactor, BetweenFactor,
        Diagonal, NonlinearOptimizer, levenberg_marquardt,
    )

    graph = NonlinearFactorGraph()
    graph.add(PriorFactor("x0", Pose3(), Diagonal.from_sigmas([0.1] * 6)))
    ...
    result = levenberg_marquardt(NonlinearOptimizer.create(graph, initial))
"""

import jax

# Elimination and the convergence tests need double precision.
jax.config.update("jax_enable_x64", True)

from .core.errors import (
    CheiralityError,
    DimensionMismatchError,
    DuplicateKeyError,
    KeyNotFoundError,
    MaxRetriesExceededError,
    MissingVariableError,
    OrderingFailedError,
    SamJitError,
    UnderconstrainedSystemError,
)
from .core.types import Key, Symbol, point_key, pose_key
from .core.ordering import Ordering, compute_ordering, minimum_degree
from .core.values import Values
from .core.factor_graph import NoiseModelFactor, NonlinearFactor, NonlinearFactorGraph
from .linear.noise_model import Constrained, Diagonal, Gaussian, Isotropic, Unit
from .linear.vector_values import VectorValues
from .linear.jacobian_factor import GaussianConditional, JacobianFactor
from .linear.elimination import GaussianBayesNet
from .linear.gaussian_factor_graph import GaussianFactorGraph
from .slam.manifold import Point2, Point3, Pose3, Rot3, Vector
from .slam.camera import Cal3_S2, PinholeCamera
from .slam.measurements import BetweenFactor, PriorFactor, ProjectionFactor
from .slam.visual_slam import VisualSLAMGraph
from .optimization.solvers import (
    GNConfig,
    LMConfig,
    NonlinearOptimizer,
    OptimizationResult,
    OptimizerStatus,
    check_convergence,
    gauss_newton,
    levenberg_marquardt,
)

__version__ = "0.1.0"
