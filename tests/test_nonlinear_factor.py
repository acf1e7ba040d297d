from __future__ import annotations

import jax.numpy as jnp
import pytest

from sam_jit.core.errors import DimensionMismatchError, KeyNotFoundError, MissingVariableError
from sam_jit.core.factor_graph import (
    NoiseModelFactor,
    NonlinearFactorGraph,
    linearization_kernel,
    tangent_jacobians,
)
from sam_jit.core.ordering import Ordering
from sam_jit.core.types import Symbol
from sam_jit.core.values import Values
from sam_jit.linear.jacobian_factor import JacobianFactor
from sam_jit.linear.noise_model import Constrained, Diagonal, Isotropic, Unit
from sam_jit.slam import simulated2d
from sam_jit.slam.camera import Cal3_S2
from sam_jit.slam.manifold import Point2, Point3, Pose3, Rot3, Vector
from sam_jit.slam.measurements import BetweenFactor, PriorFactor, ProjectionFactor

x1, x2, l1 = Symbol("x", 1), Symbol("x", 2), Symbol("l", 1)


# ----------------------------------------------------------------------
# Planar example problem
# ----------------------------------------------------------------------

def test_prior_error_at_noisy_values():
    graph = simulated2d.create_nonlinear_factor_graph()
    values = simulated2d.create_noisy_values()
    prior = graph[0]
    assert jnp.allclose(prior.unwhitened_error(values), jnp.array([0.1, 0.1]))
    assert prior.error(values) == pytest.approx(1.0)


def test_ground_truth_has_zero_error():
    graph = simulated2d.create_nonlinear_factor_graph()
    assert graph.error(simulated2d.create_values()) == pytest.approx(0.0, abs=1e-18)


def test_linearize_matches_hand_written_graph():
    graph = simulated2d.create_nonlinear_factor_graph()
    values = simulated2d.create_noisy_values()
    ordering = Ordering([x1, x2, l1])
    linear = graph.linearize(values, ordering)
    expected = simulated2d.create_gaussian_factor_graph(ordering)
    assert linear.equals(expected, tol=1e-9)


def test_linearize_on_thread_pool_matches_sequential():
    graph = simulated2d.create_nonlinear_factor_graph()
    values = simulated2d.create_noisy_values()
    ordering = Ordering([l1, x1, x2])
    sequential = graph.linearize(values, ordering)
    threaded = graph.linearize(values, ordering, max_workers=4)
    assert threaded.equals(sequential, tol=1e-12)


def test_linear_error_equals_nonlinear_error_at_zero_delta():
    graph = simulated2d.create_nonlinear_factor_graph()
    values = simulated2d.create_noisy_values()
    ordering = values.ordering_arbitrary()
    linear = graph.linearize(values, ordering)
    zero = values.zero_vectors(ordering)
    assert linear.error(zero) == pytest.approx(graph.error(values))


# ----------------------------------------------------------------------
# Constrained rows
# ----------------------------------------------------------------------

def test_linearize_constrained_prior():
    model = Constrained.from_mixed_sigmas([0.2, 0.0])
    factor = simulated2d.Prior((1.0, -1.0), model, x1)
    values = Values([(x1, Point2(1.0, 2.0))])

    actual = factor.linearize(values, Ordering([x1]))

    expected = JacobianFactor([(0, jnp.eye(2))], [0.0, -3.0], model)
    assert actual.equals(expected)
    assert actual.is_constrained


def test_linearize_constrained_measurement():
    model = Constrained.from_mixed_sigmas([0.2, 0.0])
    factor = simulated2d.Measurement((1.0, -1.0), model, x1, l1)
    values = Values([(x1, Point2(1.0, 2.0)), (l1, Point2(5.0, 4.0))])

    actual = factor.linearize(values, Ordering([x1, l1]))

    expected = JacobianFactor([(0, -jnp.eye(2)), (1, jnp.eye(2))], [-3.0, -3.0], model)
    assert actual.equals(expected)


def test_constrained_error_uses_raw_hard_rows():
    model = Constrained.from_mixed_sigmas([0.5, 0.0])
    factor = simulated2d.Prior((0.0, 0.0), model, x1)
    values = Values([(x1, Point2(1.0, 2.0))])
    # soft row whitened to 2, hard row left as 2
    assert factor.error(values) == pytest.approx(0.5 * (4.0 + 4.0))


# ----------------------------------------------------------------------
# Runtime arity with analytic Jacobians
# ----------------------------------------------------------------------

def _sum_factor(n: int) -> NoiseModelFactor:
    keys = [Symbol("x", i) for i in range(1, n + 1)]
    return NoiseModelFactor(
        Isotropic.from_sigma(1, 2.0),
        keys,
        residual_fn=lambda *vs: jnp.reshape(sum(v.vector() for v in vs), (1,)),
        jacobian_fn=lambda *vs: [jnp.array([[float(i)]]) for i in range(1, len(vs) + 1)],
    )


@pytest.mark.parametrize(
    "n, expected_b, expected_error",
    [(4, -5.0, 12.5), (5, -7.5, 28.125), (6, -10.5, 55.125)],
)
def test_arity_factor_linearization(n, expected_b, expected_error):
    factor = _sum_factor(n)
    keys = [Symbol("x", i) for i in range(1, n + 1)]
    values = Values([(k, Vector(float(i))) for i, k in enumerate(keys, start=1)])
    ordering = Ordering(keys)

    assert factor.size() == n
    assert factor.error(values) == pytest.approx(expected_error)

    r, H = factor.evaluate_error(*[values.at(k) for k in keys], compute_jacobians=True)
    assert len(H) == n

    linear = factor.linearize(values, ordering)
    assert linear.keys == tuple(range(n))
    assert isinstance(linear.model, Unit)
    assert float(linear.b[0]) == pytest.approx(expected_b)
    for i in range(n):
        assert float(linear.get_a(i)[0, 0]) == pytest.approx((i + 1) / 2.0)


def test_evaluate_error_without_jacobians():
    factor = _sum_factor(4)
    r, H = factor.evaluate_error(Vector(1.0), Vector(2.0), Vector(3.0), Vector(4.0))
    assert H is None
    assert jnp.allclose(r, jnp.array([10.0]))


# ----------------------------------------------------------------------
# Autodiff Jacobians on manifolds
# ----------------------------------------------------------------------

def test_pose_prior_jacobian_is_identity_at_prior():
    pose = Pose3(Rot3.expmap(jnp.array([0.3, -0.2, 0.1])), jnp.array([1.0, 2.0, 3.0]))
    factor = PriorFactor(x1, pose, Diagonal.from_sigmas([1.0] * 6))
    r, H = factor.evaluate_error(pose, compute_jacobians=True)
    assert jnp.allclose(r, jnp.zeros(6), atol=1e-12)
    assert jnp.allclose(H[0], jnp.eye(6), atol=1e-9)


def test_between_jacobians_match_finite_differences():
    T1 = Pose3(Rot3.expmap(jnp.array([0.1, 0.0, 0.2])), jnp.array([0.0, 1.0, 0.0]))
    T2 = Pose3(Rot3.expmap(jnp.array([0.0, 0.3, -0.1])), jnp.array([1.0, 1.5, 0.2]))
    measured = Pose3(Rot3.expmap(jnp.array([0.0, 0.2, -0.2])), jnp.array([0.9, 0.4, 0.1]))
    factor = BetweenFactor(x1, x2, measured, Diagonal.from_sigmas([0.1] * 6))

    _, H = factor.evaluate_error(T1, T2, compute_jacobians=True)

    eps = 1e-6
    for which, (A, base) in enumerate(zip(H, (T1, T2))):
        for j in range(6):
            d = jnp.zeros(6).at[j].set(eps)
            args = [T1, T2]
            args[which] = base.retract(d)
            plus = factor.residual(*args)
            args[which] = base.retract(-d)
            minus = factor.residual(*args)
            numeric = (plus - minus) / (2 * eps)
            assert jnp.allclose(A[:, j], numeric, atol=1e-6)


def test_tangent_jacobians_of_euclidean_residual():
    H = tangent_jacobians(lambda a, b: b.vector() - 2.0 * a.vector(), [Point2(1.0, 1.0), Point2(0.0, 3.0)])
    assert jnp.allclose(H[0], -2.0 * jnp.eye(2))
    assert jnp.allclose(H[1], jnp.eye(2))


# ----------------------------------------------------------------------
# Compiled linearization
# ----------------------------------------------------------------------

class _EagerBetween(BetweenFactor):
    jit_compile = False


def test_compiled_jacobians_match_eager():
    T1 = Pose3(Rot3.expmap(jnp.array([0.2, -0.1, 0.3])), jnp.array([0.5, 1.0, -0.2]))
    T2 = Pose3(Rot3.expmap(jnp.array([-0.1, 0.4, 0.0])), jnp.array([1.5, 0.2, 0.3]))
    measured = Pose3(Rot3.expmap(jnp.array([0.0, 0.3, -0.1])), jnp.array([1.0, -0.5, 0.4]))
    noise = Diagonal.from_sigmas([0.1] * 6)

    r_jit, H_jit = BetweenFactor(x1, x2, measured, noise).evaluate_error(T1, T2, compute_jacobians=True)
    r_eager, H_eager = _EagerBetween(x1, x2, measured, noise).evaluate_error(T1, T2, compute_jacobians=True)

    assert jnp.allclose(r_jit, r_eager, atol=1e-12)
    for A, B in zip(H_jit, H_eager):
        assert jnp.allclose(A, B, atol=1e-12)


def test_kernel_shared_across_measurements():
    K = Cal3_S2(500.0, 500.0, 0.0, 320.0, 240.0)
    f1 = ProjectionFactor((320.0, 240.0), Unit.create(2), x1, l1, K)
    f2 = ProjectionFactor((300.0, 250.0), Unit.create(2), x2, l1, Cal3_S2(400.0, 400.0, 0.0, 0.0, 0.0))
    assert linearization_kernel(f1) is linearization_kernel(f2)

    pose, point = Pose3(), Point3(0.0, 0.0, 5.0)
    r1, _ = f1.evaluate_error(pose, point, compute_jacobians=True)
    r2, _ = f2.evaluate_error(pose, point, compute_jacobians=True)
    # each factor sees its own measurement and calibration
    assert jnp.allclose(r1, jnp.array([0.0, 0.0]), atol=1e-9)
    assert jnp.allclose(r2, jnp.array([-300.0, -250.0]), atol=1e-9)
    assert jnp.allclose(f2.unwhitened_error(Values([(x2, pose), (l1, point)])), r2)


def test_kernel_keyed_by_residual_function():
    a = NoiseModelFactor(Unit.create(2), [x1], residual_fn=lambda x: x.vector())
    b = NoiseModelFactor(Unit.create(2), [x1], residual_fn=lambda x: 2.0 * x.vector())
    assert linearization_kernel(a) is not linearization_kernel(b)
    _, H = b.evaluate_error(Point2(1.0, 1.0), compute_jacobians=True)
    assert jnp.allclose(H[0], 2.0 * jnp.eye(2))


# ----------------------------------------------------------------------
# Failures
# ----------------------------------------------------------------------

def test_missing_variable():
    graph = simulated2d.create_nonlinear_factor_graph()
    values = Values([(x1, Point2(0.0, 0.0))])
    with pytest.raises(MissingVariableError):
        graph.error(values)
    with pytest.raises(KeyNotFoundError):
        graph[1].linearize(values, Ordering([x1, x2]))


def test_residual_dimension_mismatch():
    factor = simulated2d.Prior((0.0, 0.0), Isotropic.from_sigma(3, 1.0), x1)
    values = Values([(x1, Point2(1.0, 1.0))])
    with pytest.raises(DimensionMismatchError):
        factor.error(values)
    with pytest.raises(DimensionMismatchError):
        factor.linearize(values, Ordering([x1]))


def test_graph_keys_and_adjacency():
    graph = simulated2d.create_nonlinear_factor_graph()
    assert graph.keys() == [x1, x2, l1]
    adjacency = graph.variable_adjacency()
    assert adjacency[x1] == {x2, l1}
    assert adjacency[l1] == {x1, x2}


def test_factor_equality():
    a = PriorFactor(x1, Point2(1.0, 2.0), Isotropic.from_sigma(2, 0.1))
    b = PriorFactor("x1", Point2(1.0, 2.0), Isotropic.from_sigma(2, 0.1))
    c = PriorFactor(x1, Point2(1.0, 2.5), Isotropic.from_sigma(2, 0.1))
    assert a.equals(b)
    assert not a.equals(c)
    assert NonlinearFactorGraph([a]).equals(NonlinearFactorGraph([b]))
