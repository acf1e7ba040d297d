# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Sequential variable elimination for linear factor graphs.

Given JacobianFactors over integer positions ``0..N-1``, variables are
eliminated strictly in position order. Each step:

    1. takes every live factor touching the variable out of the arena,
    2. stacks their (whitened) rows into one dense system ``[A | b]`` with
       the eliminated variable's columns first,
    3. factors that system into a :class:`GaussianConditional` for the
       variable plus a new separator factor on the remaining variables,
    4. appends the separator factor back into the arena.

The result is a :class:`GaussianBayesNet`, solved by back substitution in
reverse position order.

Two factorization paths are used:

    • Householder QR (``jnp.linalg.qr``) when every stacked row is a
      unit-weight row. This is the common case.
    • Weighted Gram-Schmidt when hard rows (zero sigma) are present. Each
      frontal column pivots on the hard rows if any of them touches it
      (infinite precision, sigma 0 in the conditional); otherwise it pivots
      on the unit rows. Hard rows that survive stay hard in the separator,
      surviving unit rows are re-compressed with QR.

Rank deficiency in the frontal columns (fewer rows than the variable's
dimension, or a numerically zero pivot) means the problem does not
determine that variable: :class:`UnderconstrainedSystemError`.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import jax.numpy as jnp

from .jacobian_factor import GaussianConditional, JacobianFactor, Term
from .noise_model import Constrained, Unit
from .vector_values import VectorValues
from ..core.errors import DimensionMismatchError, UnderconstrainedSystemError
from ..logging_config import get_logger

logger = get_logger(__name__)

# Pivots and row norms below this are treated as zero.
RANK_TOL = 1e-9


@dataclass
class EliminationStep:
    """Log entry for one eliminated position."""

    position: int
    consumed: List[int]
    produced: Optional[int]
    rows: int
    hard_rows: int


class EliminationArena:
    """
    Flat store of factors during elimination.

    Factors are never removed, only marked consumed, so factor indices in
    the step log stay valid for the whole run.
    """

    def __init__(self, factors: Sequence[JacobianFactor] = ()) -> None:
        self.factors: List[JacobianFactor] = []
        self.consumed: List[bool] = []
        self.steps: List[EliminationStep] = []
        self._involved: Dict[int, List[int]] = defaultdict(list)
        for factor in factors:
            self.add(factor)

    def add(self, factor: JacobianFactor) -> int:
        index = len(self.factors)
        self.factors.append(factor)
        self.consumed.append(False)
        for key in factor.keys:
            self._involved[key].append(index)
        return index

    def take(self, position: int) -> List[int]:
        """Mark every live factor touching ``position`` consumed and return their indices."""
        indices = [i for i in self._involved.pop(position, []) if not self.consumed[i]]
        for i in indices:
            self.consumed[i] = True
        return indices

    def live(self) -> List[JacobianFactor]:
        return [f for f, used in zip(self.factors, self.consumed) if not used]


class GaussianBayesNet:
    """Conditionals in elimination order, one per position."""

    def __init__(
        self,
        conditionals: Sequence[GaussianConditional],
        steps: Sequence[EliminationStep] = (),
    ) -> None:
        self.conditionals = list(conditionals)
        self.steps = list(steps)

    def __len__(self) -> int:
        return len(self.conditionals)

    def __iter__(self) -> Iterator[GaussianConditional]:
        return iter(self.conditionals)

    def __getitem__(self, position: int) -> GaussianConditional:
        return self.conditionals[position]

    def back_substitute(self) -> VectorValues:
        """Solve every conditional in reverse order."""
        x = VectorValues.zero([c.dim for c in self.conditionals])
        for conditional in reversed(self.conditionals):
            x[conditional.key] = conditional.solve(x)
        return x

    optimize = back_substitute


# ----------------------------------------------------------------------
# Single-variable elimination
# ----------------------------------------------------------------------

def _split(M: jnp.ndarray, keys: Sequence[int], dims: Dict[int, int], offset: int) -> List[Term]:
    blocks, col = [], offset
    for key in keys:
        blocks.append((key, M[:, col:col + dims[key]]))
        col += dims[key]
    return blocks


def _stack(
    factors: Sequence[JacobianFactor], position: int
) -> Tuple[List[int], Dict[int, int], jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    """Stack whitened factor rows with the frontal variable's columns first."""
    dims: Dict[int, int] = {}
    for factor in factors:
        for key, d in factor.dims().items():
            if dims.setdefault(key, d) != d:
                raise DimensionMismatchError(
                    f"Position {key} has dimension {dims[key]} in one factor and {d} in another"
                )

    separator = sorted(k for k in dims if k != position)
    columns = [position] + separator
    offsets, col = {}, 0
    for key in columns:
        offsets[key] = col
        col += dims[key]

    A_rows, b_rows, masks = [], [], []
    for factor in factors:
        As, b = factor.model.whiten_system(factor.blocks(), factor.b)
        block = jnp.zeros((factor.rows, col))
        for key, A in zip(factor.keys, As):
            block = block.at[:, offsets[key]:offsets[key] + dims[key]].set(A)
        A_rows.append(block)
        b_rows.append(b)
        if factor.is_constrained:
            masks.append(factor.model.constrained_mask())
        else:
            masks.append(jnp.zeros(factor.rows, dtype=bool))

    return columns, dims, jnp.vstack(A_rows), jnp.concatenate(b_rows), jnp.concatenate(masks)


def _separator(
    A: jnp.ndarray,
    b: jnp.ndarray,
    hard: jnp.ndarray,
    keys: Sequence[int],
    dims: Dict[int, int],
) -> Optional[JacobianFactor]:
    """New factor on the remaining variables, or None when nothing is left."""
    if not keys or A.shape[0] == 0:
        return None
    keep = jnp.any(jnp.abs(A) > RANK_TOL, axis=1)
    A, b, hard = A[keep], b[keep], hard[keep]
    if A.shape[0] == 0:
        return None
    if bool(jnp.any(hard)):
        model = Constrained.from_mixed_sigmas(jnp.where(hard, 0.0, 1.0))
    else:
        model = Unit.create(A.shape[0])
    return JacobianFactor(_split(A, keys, dims, 0), b, model)


def _eliminate_qr(columns, dims, A, b, position):
    d = dims[position]
    n = A.shape[1]
    R = jnp.linalg.qr(jnp.hstack([A, b[:, None]]), mode="r")
    if R.shape[0] < d:
        raise UnderconstrainedSystemError(
            f"Position {position} has only {R.shape[0]} independent rows for dimension {d}",
            position,
        )
    if bool(jnp.any(jnp.abs(jnp.diag(R[:d, :d])) < RANK_TOL)):
        raise UnderconstrainedSystemError(
            f"Zero pivot while eliminating position {position}", position
        )

    conditional = GaussianConditional(
        position, R[:d, :d], _split(R[:d], columns[1:], dims, d), R[:d, n]
    )
    rest = R[d:]
    separator = _separator(
        rest[:, d:n], rest[:, n], jnp.zeros(rest.shape[0], dtype=bool), columns[1:], dims
    )
    return conditional, separator


def _eliminate_constrained(columns, dims, A, b, hard, position):
    d = dims[position]
    R_rows, rhs, sigmas = [], [], []

    for c in range(d):
        a = A[:, c]
        hard_a = jnp.where(hard, a, 0.0)
        if bool(jnp.any(jnp.abs(hard_a) > RANK_TOL)):
            precision = float(jnp.dot(hard_a, hard_a))
            pseudo = hard_a / precision
            sigma = 0.0
        else:
            soft_a = jnp.where(hard, 0.0, a)
            precision = float(jnp.dot(soft_a, soft_a))
            if precision < RANK_TOL:
                raise UnderconstrainedSystemError(
                    f"Zero pivot in column {c} while eliminating position {position}", position
                )
            pseudo = soft_a / precision
            sigma = float(1.0 / jnp.sqrt(precision))

        r = (pseudo @ A).at[:c].set(0.0).at[c].set(1.0)
        d_c = jnp.dot(pseudo, b)
        A = A - jnp.outer(a, r)
        b = b - a * d_c

        R_rows.append(r)
        rhs.append(d_c)
        sigmas.append(sigma)

    R = jnp.stack(R_rows)
    conditional = GaussianConditional(
        position, R[:, :d], _split(R, columns[1:], dims, d), jnp.stack(rhs), jnp.asarray(sigmas)
    )

    A_sep = A[:, d:]
    keep = jnp.any(jnp.abs(A_sep) > RANK_TOL, axis=1)
    A_sep, b, hard = A_sep[keep], b[keep], hard[keep]

    A_hard, b_hard = A_sep[hard], b[hard]
    A_soft, b_soft = A_sep[~hard], b[~hard]
    if A_soft.shape[0] > 0:
        Rs = jnp.linalg.qr(jnp.hstack([A_soft, b_soft[:, None]]), mode="r")
        A_soft, b_soft = Rs[:, :-1], Rs[:, -1]

    separator = _separator(
        jnp.vstack([A_hard, A_soft]),
        jnp.concatenate([b_hard, b_soft]),
        jnp.concatenate([jnp.ones(A_hard.shape[0], dtype=bool), jnp.zeros(A_soft.shape[0], dtype=bool)]),
        columns[1:],
        dims,
    )
    return conditional, separator


def eliminate_one(
    factors: Sequence[JacobianFactor], position: int
) -> Tuple[GaussianConditional, Optional[JacobianFactor]]:
    """
    Eliminate one variable from the factors that touch it.

    :param factors: Every live factor involving ``position``.
    :param position: Ordering position of the variable to eliminate.
    :return: ``(conditional, separator)``; ``separator`` is None when no
        other variable remains.
    :raises UnderconstrainedSystemError: Non-finite entries, too few rows,
        or a zero pivot.
    """
    columns, dims, A, b, hard = _stack(factors, position)
    d = dims[position]

    if not bool(jnp.all(jnp.isfinite(A))) or not bool(jnp.all(jnp.isfinite(b))):
        raise UnderconstrainedSystemError(
            f"Non-finite entries in the system for position {position}", position
        )
    if A.shape[0] < d:
        raise UnderconstrainedSystemError(
            f"Position {position} has {A.shape[0]} rows for dimension {d}", position
        )

    if bool(jnp.any(hard)):
        return _eliminate_constrained(columns, dims, A, b, hard, position)
    return _eliminate_qr(columns, dims, A, b, position)


def eliminate(factors: Sequence[JacobianFactor], num_variables: int) -> GaussianBayesNet:
    """Eliminate positions ``0..num_variables-1`` in order."""
    arena = EliminationArena(factors)
    conditionals: List[GaussianConditional] = []

    for position in range(num_variables):
        indices = arena.take(position)
        if not indices:
            raise UnderconstrainedSystemError(
                f"No factor constrains position {position}", position
            )
        involved = [arena.factors[i] for i in indices]
        conditional, separator = eliminate_one(involved, position)
        produced = arena.add(separator) if separator is not None else None

        rows = sum(f.rows for f in involved)
        hard_rows = sum(int(jnp.sum(f.model.constrained_mask())) for f in involved if f.is_constrained)
        arena.steps.append(EliminationStep(position, indices, produced, rows, hard_rows))
        conditionals.append(conditional)
        logger.debug(
            "Eliminated position %d from %d factors (%d rows, %d hard), separator=%s",
            position, len(indices), rows, hard_rows,
            None if separator is None else list(separator.keys),
        )

    return GaussianBayesNet(conditionals, arena.steps)
