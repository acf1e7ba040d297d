import jax.numpy as jnp
import pytest

from sam_jit.core.errors import DimensionMismatchError
from sam_jit.linear.noise_model import Constrained, Diagonal, Gaussian, Isotropic, Unit


def test_diagonal_whiten_unwhiten():
    model = Diagonal.from_sigmas([0.5, 2.0])
    v = jnp.array([1.0, 4.0])
    assert jnp.allclose(model.whiten(v), jnp.array([2.0, 2.0]))
    assert jnp.allclose(model.unwhiten(model.whiten(v)), v)
    assert model.distance(v) == pytest.approx(8.0)
    assert jnp.allclose(model.precisions(), jnp.array([4.0, 0.25]))


def test_diagonal_whitens_matrix_rows():
    model = Diagonal.from_sigmas([0.5, 2.0])
    A = jnp.array([[1.0, 1.0], [2.0, 2.0]])
    assert jnp.allclose(model.whiten(A), jnp.array([[2.0, 2.0], [1.0, 1.0]]))


def test_zero_sigma_gives_constrained():
    model = Diagonal.from_sigmas([0.2, 0.0])
    assert isinstance(model, Constrained)
    assert model.is_constrained
    assert jnp.array_equal(model.constrained_mask(), jnp.array([False, True]))
    # hard rows pass through unchanged
    assert jnp.allclose(model.whiten(jnp.array([1.0, 3.0])), jnp.array([5.0, 3.0]))
    assert jnp.isinf(model.precisions()[1])
    assert not bool(jnp.any(jnp.isnan(model.whiten(jnp.array([0.0, 0.0])))))


def test_constrained_all():
    model = Constrained.all(3)
    assert model.dim == 3
    assert bool(jnp.all(model.constrained_mask()))


def test_isotropic_and_unit():
    iso = Isotropic.from_sigma(3, 2.0)
    assert iso.sigma == pytest.approx(2.0)
    assert jnp.allclose(iso.whiten(jnp.ones(3)), 0.5 * jnp.ones(3))
    unit = Unit.create(2)
    assert jnp.allclose(unit.whiten(jnp.array([3.0, 4.0])), jnp.array([3.0, 4.0]))
    assert unit.equals(Unit.create(2))
    assert not unit.equals(Diagonal.from_sigmas([1.0, 1.0]))
    with pytest.raises(ValueError):
        Isotropic.from_sigma(2, 0.0)


def test_full_gaussian_from_covariance():
    cov = jnp.array([[4.0, 0.0], [0.0, 0.25]])
    model = Gaussian.from_covariance(cov)
    v = jnp.array([2.0, 1.0])
    assert model.distance(v) == pytest.approx(float(v @ jnp.linalg.solve(cov, v)))
    assert jnp.allclose(model.unwhiten(model.whiten(v)), v)


def test_dimension_checked():
    with pytest.raises(DimensionMismatchError):
        Unit.create(2).whiten(jnp.ones(3))


def test_zero_sigma_rejected_outside_constrained():
    with pytest.raises(ValueError):
        Diagonal([0.2, 0.0])
    with pytest.raises(ValueError):
        Isotropic(jnp.zeros(2))
    with pytest.raises(ValueError):
        Unit(jnp.zeros(2))
    # the hard-row spellings still work
    assert isinstance(Diagonal.from_sigmas([0.2, 0.0]), Constrained)
    assert Constrained([0.2, 0.0]).is_constrained
