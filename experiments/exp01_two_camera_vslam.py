import jax.numpy as jnp

from sam_jit.core.types import point_key, pose_key
from sam_jit.core.values import Values
from sam_jit.linear.noise_model import Unit
from sam_jit.optimization.solvers import LMConfig, NonlinearOptimizer, levenberg_marquardt
from sam_jit.slam.camera import Cal3_S2, PinholeCamera
from sam_jit.slam.manifold import Point3, Pose3, Rot3
from sam_jit.slam.visual_slam import VisualSLAMGraph


def build_demo_graph():
    """
    Two downward-looking cameras at heights 6.25 and 5.0 observe four
    landmarks on the ground plane. Three landmarks are pinned with hard
    constraints to fix the gauge.
    """
    K = Cal3_S2(625.0, 625.0, 0.0, 0.0, 0.0)
    down = Rot3(jnp.diag(jnp.array([1.0, -1.0, -1.0])))

    landmarks = {
        1: Point3(-1.0, -1.0, 0.0),
        2: Point3(-1.0, 1.0, 0.0),
        3: Point3(1.0, 1.0, 0.0),
        4: Point3(1.0, -1.0, 0.0),
    }
    cameras = {
        1: Pose3(down, jnp.array([0.0, 0.0, 6.25])),
        2: Pose3(down, jnp.array([0.0, 0.0, 5.0])),
    }

    graph = VisualSLAMGraph()
    for i, pose in cameras.items():
        camera = PinholeCamera(pose, K)
        for j, p in landmarks.items():
            graph.add_measurement(camera.project(p.vector()), Unit.create(2), i, j, K)
    for j in (1, 2, 3):
        graph.add_point_constraint(j, landmarks[j])

    # Initial guesses: cameras and the free landmark off their true values
    initial = Values()
    for i, pose in cameras.items():
        initial.insert(pose_key(i), pose.retract(jnp.array([0.02, -0.01, 0.03, 0.1, -0.1, 0.2])))
    for j, p in landmarks.items():
        initial.insert(point_key(j), p.retract(jnp.array([0.1, 0.1, -0.1])) if j == 4 else p)

    return graph, initial


def main():
    graph, initial = build_demo_graph()

    optimizer = NonlinearOptimizer.create(graph, initial, config=LMConfig(max_iters=30))
    print(f"Ordering: {optimizer.ordering}")
    result = levenberg_marquardt(optimizer)

    print(f"Status: {result.status.value} after {result.num_iterations} iterations")
    print(f"Error: {result.initial_error:.6g} -> {result.final_error:.6g}")
    print("Optimized values:")
    for key, value in result.values.items():
        print(f"  {key}: {value}")


if __name__ == "__main__":
    main()
