# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Manifold value types for SAM-JIT.

This module centralizes the *geometric* logic behind every variable the
optimizer can estimate. The state of a variable lives on a manifold while
the optimizer works in a local tangent space; each value type therefore
implements the same small plug-in contract:

    • ``dim``                         tangent-space dimension
    • ``retract(delta)``              value ⊕ δ (local update rule)
    • ``local_coordinates(other)``    inverse of retract: δ with value ⊕ δ = other
    • ``between(other)``              relative value ``self⁻¹ ∘ other``
    • ``vector()`` / ``equals()``     flattening and tolerance comparison

The supported set is closed: :data:`Value` is the union of

    ``Vector``  arbitrary-length Euclidean vector (additive)
    ``Point2``  2D point (additive)
    ``Point3``  3D point (additive)
    ``Rot3``    rotation, R ⊕ ω = R · Exp(ω)
    ``Pose3``   rigid pose with tangent [ω, v] (rotation first),
                (R, t) ⊕ [ω, v] = (R · Exp(ω), t + R v)

Values hold JAX arrays only and never coerce their contents to Python
floats, so ``retract`` can be traced by ``jax.jacfwd`` when a factor is
linearized. Every concrete type is registered as a JAX pytree, so values
can be passed straight into ``jax.jit``-compiled functions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Tuple, Union

import jax.numpy as jnp
from jax.tree_util import register_pytree_node_class

from ..core.math3d import so3_exp, so3_log


def _as_vector(v, dim: int = -1) -> jnp.ndarray:
    v = jnp.asarray(v)
    if not jnp.issubdtype(v.dtype, jnp.floating):
        v = v.astype(float)
    if v.ndim == 0:
        v = jnp.reshape(v, (1,))
    if v.ndim != 1 or (dim >= 0 and v.shape[0] != dim):
        raise ValueError(f"Expected a vector of length {dim}, got shape {v.shape}")
    return v


class ManifoldValue(ABC):
    """Common interface of all variable types."""

    _FIELDS: Tuple[str, ...] = ()

    @property
    @abstractmethod
    def dim(self) -> int:
        ...

    @abstractmethod
    def retract(self, delta: jnp.ndarray) -> "ManifoldValue":
        ...

    @abstractmethod
    def local_coordinates(self, other: "ManifoldValue") -> jnp.ndarray:
        ...

    @abstractmethod
    def between(self, other: "ManifoldValue") -> "ManifoldValue":
        ...

    @abstractmethod
    def vector(self) -> jnp.ndarray:
        """Flat array representation (not necessarily of length ``dim``)."""

    def equals(self, other: "ManifoldValue", tol: float = 1e-9) -> bool:
        if type(other) is not type(self):
            return False
        a, b = self.vector(), other.vector()
        return a.shape == b.shape and bool(jnp.all(jnp.abs(a - b) <= tol))

    def _check_delta(self, delta) -> jnp.ndarray:
        return _as_vector(delta, self.dim)

    # pytree protocol: children may be tracers or placeholders, so no __init__ checks

    def tree_flatten(self):
        return tuple(getattr(self, name) for name in self._FIELDS), None

    @classmethod
    def tree_unflatten(cls, aux, children):
        obj = cls.__new__(cls)
        for name, child in zip(cls._FIELDS, children):
            setattr(obj, name, child)
        return obj


class _EuclideanValue(ManifoldValue):
    """Shared implementation for additive vector spaces."""

    _DIM = -1
    _FIELDS = ("_data",)

    def __init__(self, *coords) -> None:
        if len(coords) == 1:
            data = _as_vector(coords[0], self._DIM)
        else:
            data = _as_vector(jnp.stack([jnp.asarray(c, dtype=float) for c in coords]), self._DIM)
        self._data = data

    @classmethod
    def from_vector(cls, v: jnp.ndarray):
        return cls(jnp.asarray(v))

    @property
    def dim(self) -> int:
        return int(self._data.shape[0])

    def vector(self) -> jnp.ndarray:
        return self._data

    def retract(self, delta: jnp.ndarray):
        return type(self).from_vector(self._data + self._check_delta(delta))

    def local_coordinates(self, other) -> jnp.ndarray:
        return other.vector() - self._data

    def between(self, other):
        return type(self).from_vector(other.vector() - self._data)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(map(float, self._data))})"


@register_pytree_node_class
class Vector(_EuclideanValue):
    """Euclidean vector variable of any length."""

    def __init__(self, *coords) -> None:
        super().__init__(*coords)
        if self._data.shape[0] == 0:
            raise ValueError("Vector variables must have at least one component")


@register_pytree_node_class
class Point2(_EuclideanValue):
    """2D point."""
    _DIM = 2

    @property
    def x(self):
        return self._data[0]

    @property
    def y(self):
        return self._data[1]


@register_pytree_node_class
class Point3(_EuclideanValue):
    """3D point."""
    _DIM = 3

    @property
    def x(self):
        return self._data[0]

    @property
    def y(self):
        return self._data[1]

    @property
    def z(self):
        return self._data[2]


@register_pytree_node_class
class Rot3(ManifoldValue):
    """3D rotation stored as a 3×3 matrix."""

    _FIELDS = ("_R",)

    def __init__(self, matrix=None) -> None:
        if matrix is None:
            matrix = jnp.eye(3)
        matrix = jnp.asarray(matrix, dtype=float)
        if matrix.shape != (3, 3):
            raise ValueError(f"Rot3 expects a 3x3 matrix, got shape {matrix.shape}")
        self._R = matrix

    @classmethod
    def identity(cls) -> "Rot3":
        return cls(jnp.eye(3))

    @classmethod
    def expmap(cls, w: jnp.ndarray) -> "Rot3":
        return cls(so3_exp(_as_vector(w, 3)))

    def logmap(self) -> jnp.ndarray:
        return so3_log(self._R)

    def matrix(self) -> jnp.ndarray:
        return self._R

    @property
    def dim(self) -> int:
        return 3

    def vector(self) -> jnp.ndarray:
        return jnp.reshape(self._R, (9,))

    def compose(self, other: "Rot3") -> "Rot3":
        return Rot3(self._R @ other._R)

    def inverse(self) -> "Rot3":
        return Rot3(self._R.T)

    def rotate(self, p: jnp.ndarray) -> jnp.ndarray:
        return self._R @ p

    def unrotate(self, p: jnp.ndarray) -> jnp.ndarray:
        return self._R.T @ p

    def retract(self, delta: jnp.ndarray) -> "Rot3":
        return Rot3(self._R @ so3_exp(self._check_delta(delta)))

    def local_coordinates(self, other: "Rot3") -> jnp.ndarray:
        return so3_log(self._R.T @ other._R)

    def between(self, other: "Rot3") -> "Rot3":
        return Rot3(self._R.T @ other._R)

    def __repr__(self) -> str:
        return f"Rot3({self._R.tolist()})"


@register_pytree_node_class
class Pose3(ManifoldValue):
    """
    Rigid 3D pose (R, t), mapping points from the body frame to the world
    frame: p_world = R p_body + t.

    Tangent vectors are ordered [ω, v]: the first three components rotate,
    the last three translate in the body frame.
    """

    _FIELDS = ("_rotation", "_t")

    def __init__(self, rotation: Union[Rot3, jnp.ndarray, None] = None, translation=None) -> None:
        if rotation is None:
            rotation = Rot3.identity()
        elif not isinstance(rotation, Rot3):
            rotation = Rot3(rotation)
        if translation is None:
            translation = jnp.zeros(3)
        elif isinstance(translation, Point3):
            translation = translation.vector()
        self._rotation = rotation
        self._t = _as_vector(translation, 3)

    @classmethod
    def identity(cls) -> "Pose3":
        return cls()

    @property
    def rotation(self) -> Rot3:
        return self._rotation

    @property
    def translation(self) -> jnp.ndarray:
        return self._t

    def matrix(self) -> jnp.ndarray:
        top = jnp.concatenate([self._rotation.matrix(), self._t[:, None]], axis=1)
        return jnp.concatenate([top, jnp.array([[0.0, 0.0, 0.0, 1.0]])], axis=0)

    @property
    def dim(self) -> int:
        return 6

    def vector(self) -> jnp.ndarray:
        return jnp.concatenate([self._rotation.vector(), self._t])

    def compose(self, other: "Pose3") -> "Pose3":
        R = self._rotation.matrix()
        return Pose3(Rot3(R @ other._rotation.matrix()), R @ other._t + self._t)

    def inverse(self) -> "Pose3":
        Rt = self._rotation.matrix().T
        return Pose3(Rot3(Rt), -(Rt @ self._t))

    def transform_from(self, p: jnp.ndarray) -> jnp.ndarray:
        """Body frame -> world frame."""
        return self._rotation.matrix() @ p + self._t

    def transform_to(self, p: jnp.ndarray) -> jnp.ndarray:
        """World frame -> body frame."""
        return self._rotation.matrix().T @ (p - self._t)

    def retract(self, delta: jnp.ndarray) -> "Pose3":
        d = self._check_delta(delta)
        R = self._rotation.matrix()
        return Pose3(Rot3(R @ so3_exp(d[:3])), self._t + R @ d[3:])

    def local_coordinates(self, other: "Pose3") -> jnp.ndarray:
        R = self._rotation.matrix()
        w = so3_log(R.T @ other._rotation.matrix())
        v = R.T @ (other._t - self._t)
        return jnp.concatenate([w, v])

    def between(self, other: "Pose3") -> "Pose3":
        return self.inverse().compose(other)

    def __repr__(self) -> str:
        return f"Pose3(R={self._rotation.matrix().tolist()}, t={self._t.tolist()})"


Value = Union[Vector, Point2, Point3, Rot3, Pose3]
VALUE_TYPES: Tuple[type, ...] = (Vector, Point2, Point3, Rot3, Pose3)


def is_value(obj) -> bool:
    return isinstance(obj, VALUE_TYPES)
