# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.

import time
import jax.numpy as jnp

from sam_jit.core.factor_graph import NonlinearFactorGraph
from sam_jit.core.types import pose_key
from sam_jit.core.values import Values
from sam_jit.linear.noise_model import Diagonal
from sam_jit.optimization.solvers import (
    GNConfig,
    LMConfig,
    NonlinearOptimizer,
    gauss_newton,
    levenberg_marquardt,
)
from sam_jit.slam.manifold import Pose3, Rot3
from sam_jit.slam.measurements import BetweenFactor, PriorFactor


def build_pose_chain(num_poses: int = 10):
    """
    SE3 pose chain:
        x0 --odom--> x1 --odom--> ... --odom--> x_{N-1}
    Prior on x0, odom edges of +1m in x with a small yaw.
    """
    step = Pose3(Rot3.expmap(jnp.array([0.0, 0.0, 0.1])), jnp.array([1.0, 0.0, 0.0]))
    noise = Diagonal.from_sigmas([0.05, 0.05, 0.05, 0.1, 0.1, 0.1])

    graph = NonlinearFactorGraph()
    graph.add(PriorFactor(pose_key(0), Pose3(), noise))
    for i in range(num_poses - 1):
        graph.add(BetweenFactor(pose_key(i), pose_key(i + 1), step, noise))

    # Initial guesses: slightly perturbed around ground truth
    initial = Values()
    pose = Pose3()
    for i in range(num_poses):
        wobble = jnp.array([
            0.0, 0.0, 0.02 * jnp.cos(0.2 * i),
            0.1 * jnp.sin(0.3 * i), 0.05 * jnp.cos(0.2 * i), 0.0,
        ])
        initial.insert(pose_key(i), pose.retract(wobble))
        pose = pose.compose(step)

    return graph, initial


def run_benchmark(num_poses: int = 50, max_iters: int = 20, workers=None):
    print("=== SE3 pose chain benchmark ===")
    print(f"num_poses = {num_poses}, max_iters = {max_iters}, linearize_workers = {workers}")

    graph, initial = build_pose_chain(num_poses)

    for name, run, cfg in (
        ("Gauss-Newton", gauss_newton, GNConfig(max_iters=max_iters, linearize_workers=workers)),
        ("Levenberg-Marquardt", levenberg_marquardt, LMConfig(max_iters=max_iters, linearize_workers=workers)),
    ):
        optimizer = NonlinearOptimizer.create(graph, initial, config=cfg)

        t0 = time.time()
        result = run(optimizer)
        t1 = time.time()

        print(f"[{name}] status={result.status.value} iters={result.num_iterations} "
              f"error {result.initial_error:.4g} -> {result.final_error:.4g}")
        print(f"[{name}] elapsed time: {(t1 - t0) * 1000:.3f} ms")

    last = result.values.at(pose_key(num_poses - 1))
    print(f"x{num_poses - 1} (opt): t = {last.translation}")


if __name__ == "__main__":
    run_benchmark(num_poses=50, max_iters=20)
