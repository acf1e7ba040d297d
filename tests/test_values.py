import jax.numpy as jnp
import pytest

from sam_jit.core.errors import DimensionMismatchError, DuplicateKeyError, KeyNotFoundError
from sam_jit.core.ordering import Ordering
from sam_jit.core.types import Symbol
from sam_jit.core.values import Values
from sam_jit.linear.vector_values import VectorValues
from sam_jit.slam.manifold import Point2, Point3, Pose3, Rot3


def _pose_and_point():
    values = Values()
    values.insert("x1", Pose3(Rot3.expmap(jnp.array([0.1, 0.2, -0.1])), jnp.array([1.0, 0.0, 2.0])))
    values.insert("l1", Point3(1.0, 2.0, 3.0))
    return values


def test_insert_and_lookup():
    values = _pose_and_point()
    assert len(values) == 2
    assert values.exists("x1")
    assert Symbol("l", 1) in values
    assert "l2" not in values
    assert values.at("l1").equals(Point3(1.0, 2.0, 3.0))
    assert values.keys() == [Symbol("x", 1), Symbol("l", 1)]
    assert values.dim() == 9


def test_duplicate_insert_raises():
    values = _pose_and_point()
    with pytest.raises(DuplicateKeyError):
        values.insert("l1", Point3(0.0, 0.0, 0.0))
    # builtin base class still catches it
    with pytest.raises(KeyError):
        values.insert("x1", Pose3())


def test_missing_key_raises():
    values = _pose_and_point()
    with pytest.raises(KeyNotFoundError):
        values.at("x7")
    with pytest.raises(KeyNotFoundError):
        values.update("x7", Pose3())


def test_insert_rejects_non_manifold_values():
    with pytest.raises(TypeError):
        Values().insert("x1", jnp.zeros(3))


def test_update_returns_copy():
    values = _pose_and_point()
    updated = values.update("l1", Point3(0.0, 0.0, 0.0))
    assert updated.at("l1").equals(Point3(0.0, 0.0, 0.0))
    assert values.at("l1").equals(Point3(1.0, 2.0, 3.0))
    with pytest.raises(TypeError):
        values.update("l1", Point2(0.0, 0.0))


def test_retract_zero_delta_is_identity():
    values = _pose_and_point()
    ordering = values.ordering_arbitrary()
    retracted = values.retract(values.zero_vectors(ordering), ordering)
    assert retracted.equals(values, tol=1e-12)
    assert retracted is not values


def test_local_coordinates_inverts_retract():
    values = _pose_and_point()
    ordering = Ordering(["l1", "x1"])
    delta = VectorValues([
        jnp.array([0.3, -0.2, 0.1]),
        jnp.array([0.01, -0.02, 0.03, 0.4, 0.5, -0.6]),
    ])
    moved = values.retract(delta, ordering)
    assert values.local_coordinates(moved, ordering).equals(delta, tol=1e-9)


def test_retract_with_larger_delta():
    values = Values()
    values.insert("x1", Pose3())
    values.insert("l1", Point3(1.0, 2.0, 3.0))
    ordering = Ordering(["x1", "l1", "x2"])
    delta = VectorValues([
        jnp.array([0.0, 0.0, 0.0, 0.1, 0.1, 0.1]),
        jnp.array([0.1, 0.1, 0.1]),
        jnp.array([0.0, 0.0, 0.0, 100.1, 4.1, 9.1]),
    ])

    actual = values.retract(delta, ordering)

    expected = Values()
    expected.insert("x1", Pose3(Rot3.identity(), jnp.array([0.1, 0.1, 0.1])))
    expected.insert("l1", Point3(1.1, 2.1, 3.1))
    assert actual.equals(expected, tol=1e-12)


def test_retract_key_missing_from_ordering():
    values = _pose_and_point()
    ordering = Ordering(["x1"])
    with pytest.raises(KeyNotFoundError):
        values.retract(VectorValues.zero([6]), ordering)


def test_retract_dimension_mismatch():
    values = _pose_and_point()
    ordering = Ordering(["x1", "l1"])
    with pytest.raises(DimensionMismatchError):
        values.retract(VectorValues.zero([6]), ordering)
    with pytest.raises(DimensionMismatchError):
        values.retract(VectorValues.zero([6, 2]), ordering)


def test_dims_follow_ordering():
    values = _pose_and_point()
    assert values.dims(Ordering(["l1", "x1"])) == [3, 6]
    with pytest.raises(KeyNotFoundError):
        values.dims(Ordering(["l1", "x9"]))


def test_local_coordinates_with_larger_ordering():
    values = Values()
    values.insert("x1", Pose3())
    ordering = Ordering(["x1", "x2"])
    delta = VectorValues([jnp.array([0.0, 0.1, 0.0, 1.0, -2.0, 0.5]), jnp.zeros(6)])

    moved = values.retract(delta, ordering)
    local = values.local_coordinates(moved, ordering)

    assert len(local) == 2
    assert jnp.allclose(local[0], delta[0], atol=1e-9)
    assert local[1].shape == (0,)
    assert values.retract(local, ordering).equals(moved, tol=1e-9)


def test_local_coordinates_key_held_by_one_side():
    values = Values()
    values.insert("x1", Pose3())
    other = Values()
    other.insert("x1", Pose3())
    other.insert("x2", Pose3())
    with pytest.raises(KeyNotFoundError):
        values.local_coordinates(other, Ordering(["x1", "x2"]))
