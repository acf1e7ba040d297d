"""
SO(3) manifold operations for SAM-JIT.

This module implements the minimal 3D Lie-group mathematics required by the
rotation and pose variables in :mod:`slam.manifold`:

    • hat / vee between R^3 and so(3)
    • SO(3) exponential & logarithm maps

All functions are written in JAX and support:
    - JIT compilation
    - Forward-mode automatic differentiation (used by factor linearization)
    - Numerically stable behavior near the zero-rotation and pi-rotation
      limits

Branching is done with ``jnp.where`` on "safe" operands rather than
``lax.cond``: Jacobians are always taken *at* the identity (zero tangent
delta), so every branch must have finite derivatives there, including the
branch that is not selected.

Key Functions
-------------
so3_exp(w)
    Maps a 3-vector (axis-angle) to a 3×3 rotation matrix.

so3_log(R)
    Maps a rotation matrix back to its axis-angle representation.

Utilities
---------
hat(ω)
    Converts a 3-vector to its skew-symmetric matrix.

vee(Ω)
    Converts a 3×3 skew matrix back into a 3-vector.
"""

from __future__ import annotations

import jax.numpy as jnp

# Below this squared angle the Taylor expansions are used.
_SMALL_ANGLE_SQ = 1e-10
# cos(theta) below -1 + this is treated as a rotation by ~pi.
_NEAR_PI_COS = 1e-6


def hat(v: jnp.ndarray) -> jnp.ndarray:
    """so(3) hat operator: R^3 -> 3x3 skew-symmetric matrix."""
    x, y, z = v[0], v[1], v[2]
    zero = jnp.zeros_like(x)
    return jnp.stack(
        [
            jnp.stack([zero, -z, y]),
            jnp.stack([z, zero, -x]),
            jnp.stack([-y, x, zero]),
        ]
    )


def vee(R: jnp.ndarray) -> jnp.ndarray:
    """
    vee: so(3) -> R^3, inverse of hat.
    Assumes R is a 3x3 skew-symmetric-like matrix.
    """
    return jnp.stack([
        R[2, 1] - R[1, 2],
        R[0, 2] - R[2, 0],
        R[1, 0] - R[0, 1],
    ]) / 2.0


def so3_exp(w: jnp.ndarray) -> jnp.ndarray:
    """
    Exponential map from so(3) (rotation vector) to SO(3).

    Rodrigues' formula R = I + A W + B W², with Taylor expansions of
    A = sin(θ)/θ and B = (1 − cos θ)/θ² for small θ.
    """
    w = jnp.asarray(w)
    theta_sq = jnp.dot(w, w)
    small = theta_sq < _SMALL_ANGLE_SQ

    safe_theta_sq = jnp.where(small, 1.0, theta_sq)
    theta = jnp.sqrt(safe_theta_sq)

    A = jnp.where(small, 1.0 - theta_sq / 6.0, jnp.sin(theta) / theta)
    B = jnp.where(small, 0.5 - theta_sq / 24.0, (1.0 - jnp.cos(theta)) / safe_theta_sq)

    W = hat(w)
    return jnp.eye(3, dtype=W.dtype) + A * W + B * (W @ W)


def _so3_log_near_pi(R: jnp.ndarray, s_vec: jnp.ndarray, theta: jnp.ndarray) -> jnp.ndarray:
    # R + I ~ 2 k kᵀ when θ ~ π: take the best-conditioned column.
    diag = jnp.diagonal(R)
    i = jnp.argmax(diag)
    col = R[:, i] + jnp.eye(3, dtype=R.dtype)[i]
    k = col / jnp.sqrt(2.0 * (1.0 + diag[i]))
    k = jnp.where(jnp.dot(k, s_vec) < 0.0, -k, k)
    return theta * k


def so3_log(R: jnp.ndarray) -> jnp.ndarray:
    """
    Numerically stable logarithm map for SO(3).

    Handles:
      - small angles via a Taylor expansion of θ / sin θ
      - angles close to π via the symmetric part of R
      - trace slightly outside [-1, 3] via clamping

    Returns w in R^3 such that Exp(w) ~ R.
    """
    R = jnp.asarray(R)
    cos_theta = jnp.clip((jnp.trace(R) - 1.0) / 2.0, -1.0, 1.0)

    # sin(θ) · axis
    s_vec = vee(R - R.T) / 2.0
    s_sq = jnp.dot(s_vec, s_vec)

    near_zero = s_sq < _SMALL_ANGLE_SQ
    near_zero = jnp.logical_and(near_zero, cos_theta > 0.0)
    near_pi = cos_theta < -1.0 + _NEAR_PI_COS

    safe_s_sq = jnp.where(near_zero, 1.0, jnp.maximum(s_sq, 1e-300))
    sin_theta = jnp.sqrt(safe_s_sq)
    theta = jnp.arctan2(sin_theta, cos_theta)

    factor = jnp.where(
        near_zero,
        1.0 + s_sq / 6.0 + 3.0 * s_sq * s_sq / 40.0,
        theta / sin_theta,
    )
    w = factor * s_vec

    w_pi = _so3_log_near_pi(R, s_vec, theta)
    return jnp.where(near_pi, w_pi, w)


def rot_x(angle: float) -> jnp.ndarray:
    """Rotation about the x axis."""
    c, s = jnp.cos(angle), jnp.sin(angle)
    return jnp.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])
