# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Nonlinear factor graph engine for SAM-JIT.

A nonlinear factor connects a small, fixed set of variable keys through a
residual function ``r(x_1, ..., x_n)`` and a noise model. The graph is the
sum of the factors' costs:

    E(X) = Σ_f 0.5 * ‖ whiten_f( r_f(X_f) ) ‖²

and is optimized by repeatedly linearizing it around the current
:class:`core.values.Values` estimate.

Key Features
------------
• Manifold-aware Jacobians
    Jacobians are taken with respect to each variable's *tangent* delta at
    zero, ``∂ r(x_i ⊕ δ_i) / ∂ δ_i``. By default they come from
    ``jax.jacfwd`` through the value's ``retract``; a factor may supply
    analytic Jacobians instead.

• Compiled linearization
    Autodiff linearization runs through ``jax.jit``. One compiled kernel is
    shared by every factor with the same class, arity and residual function;
    the factor's own data (measurements, calibration) and the variable
    values are passed in as pytree arguments, so adding factors of a known
    type costs no recompilation.

• Runtime arity
    :class:`NoiseModelFactor` takes any number of keys, so factors on one,
    two or six variables share one implementation.

• Hard constraints
    Factors with a ``Constrained`` noise model are linearized without
    whitening, so zero-sigma rows stay exact equality rows for elimination.

• Parallel linearization
    ``NonlinearFactorGraph.linearize(..., max_workers=k)`` linearizes the
    factors on a thread pool. Factors only read the shared Values.

Primary Methods
---------------
NoiseModelFactor.evaluate_error(*values, compute_jacobians=False)
    Residual and (optionally) per-variable Jacobians.

NoiseModelFactor.linearize(values, ordering)
    Whitened JacobianFactor over ordering positions.

NonlinearFactorGraph.linearize(values, ordering)
    GaussianFactorGraph ready for elimination.

NonlinearFactorGraph.ordering_heuristic(values)
    Fill-reducing elimination ordering from the variable adjacency.
"""

from __future__ import annotations
import copy
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

import jax
import jax.numpy as jnp

from .errors import DimensionMismatchError, KeyNotFoundError, MissingVariableError, OrderingFailedError
from .ordering import Ordering, OrderingHeuristic, compute_ordering, minimum_degree
from .types import Key, KeyLike, as_key
from .values import Values
from ..linear.gaussian_factor_graph import GaussianFactorGraph
from ..linear.jacobian_factor import JacobianFactor
from ..linear.noise_model import Gaussian, Unit
from ..logging_config import get_logger

logger = get_logger(__name__)

# Type aliases for clarity
ResidualFn = Callable[..., jnp.ndarray]
JacobianFn = Callable[..., Sequence[jnp.ndarray]]


def tangent_jacobians(residual: ResidualFn, values: Sequence) -> List[jnp.ndarray]:
    """
    Jacobians of ``residual`` with respect to each argument's tangent delta.

    Returns one ``(m, dim_i)`` block per value, evaluated at ``δ = 0``.
    """

    def local_residual(*deltas):
        return jnp.reshape(residual(*[v.retract(d) for v, d in zip(values, deltas)]), (-1,))

    zeros = [jnp.zeros(v.dim) for v in values]
    blocks = jax.jacfwd(local_residual, argnums=tuple(range(len(values))))(*zeros)
    return [jnp.reshape(H, (-1, v.dim)) for H, v in zip(blocks, values)]


# Attributes every NoiseModelFactor carries; everything else a subclass
# stores is factor data and becomes an argument of the compiled kernel.
_BASE_ATTRS = frozenset({"_keys", "noise_model", "_residual_fn", "_jacobian_fn"})

_KERNELS: Dict[Tuple, Callable] = {}
_KERNELS_LOCK = threading.Lock()


def _factor_data(factor: "NoiseModelFactor") -> Dict[str, object]:
    return {k: v for k, v in vars(factor).items() if k not in _BASE_ATTRS}


def linearization_kernel(factor: "NoiseModelFactor") -> Callable:
    """
    Compiled ``(data, values) -> (residual, jacobians)`` for ``factor``.

    Kernels are cached per (factor class, arity, residual function). The
    cached kernel rebuilds a factor from a template and the ``data`` it is
    called with, so it serves every factor sharing that key.
    """
    cache_key = (type(factor), factor.size(), factor._residual_fn)
    with _KERNELS_LOCK:
        kernel = _KERNELS.get(cache_key)
        if kernel is not None:
            return kernel

        template = copy.copy(factor)

        def linearize(data, values):
            f = copy.copy(template)
            f.__dict__.update(data)
            r = jnp.reshape(f.residual(*values), (-1,))
            return r, tangent_jacobians(f.residual, values)

        kernel = jax.jit(linearize)
        _KERNELS[cache_key] = kernel
        logger.debug("Compiling linearization kernel for %s/%d", type(factor).__name__, factor.size())
        return kernel


class NonlinearFactor(ABC):
    """Contract every factor in a NonlinearFactorGraph fulfils."""

    def __init__(self, keys: Iterable[KeyLike]) -> None:
        self._keys: Tuple[Key, ...] = tuple(as_key(k) for k in keys)

    @property
    def keys(self) -> Tuple[Key, ...]:
        return self._keys

    def size(self) -> int:
        """Number of variables this factor connects."""
        return len(self._keys)

    @abstractmethod
    def dim(self) -> int:
        ...

    @abstractmethod
    def error(self, values: Values) -> float:
        ...

    @abstractmethod
    def linearize(self, values: Values, ordering: Ordering) -> JacobianFactor:
        ...

    def equals(self, other: "NonlinearFactor", tol: float = 1e-9) -> bool:
        return type(other) is type(self) and other.keys == self.keys


class NoiseModelFactor(NonlinearFactor):
    """
    Factor with residual ``r(x_1, ..., x_n)`` and a Gaussian noise model.

    Subclasses override :meth:`residual` (and optionally :meth:`jacobians`);
    alternatively the functions can be passed to the constructor.

    Without analytic Jacobians, linearization runs through a compiled kernel
    (see :func:`linearization_kernel`). The residual must then be traceable
    by JAX and the attributes a subclass adds must be pytrees. Subclasses
    that cannot meet this set ``jit_compile = False``.
    """

    jit_compile: bool = True

    def __init__(
        self,
        noise_model: Gaussian,
        keys: Iterable[KeyLike],
        residual_fn: Optional[ResidualFn] = None,
        jacobian_fn: Optional[JacobianFn] = None,
    ) -> None:
        super().__init__(keys)
        if not self._keys:
            raise ValueError("A factor needs at least one key")
        self.noise_model = noise_model
        self._residual_fn = residual_fn
        self._jacobian_fn = jacobian_fn

    def dim(self) -> int:
        return self.noise_model.dim

    def residual(self, *values) -> jnp.ndarray:
        if self._residual_fn is None:
            raise NotImplementedError(f"{type(self).__name__} does not define a residual")
        return self._residual_fn(*values)

    def jacobians(self, *values) -> Optional[Sequence[jnp.ndarray]]:
        """Analytic Jacobians, or None to differentiate :meth:`residual`."""
        if self._jacobian_fn is None:
            return None
        return self._jacobian_fn(*values)

    def _has_analytic_jacobians(self) -> bool:
        return self._jacobian_fn is not None or type(self).jacobians is not NoiseModelFactor.jacobians

    def evaluate_error(self, *values, compute_jacobians: bool = False):
        """
        Residual at ``values`` (given in key order) and, when requested, one
        Jacobian block per variable.

        :return: ``(residual, jacobians)``; ``jacobians`` is None unless
            ``compute_jacobians`` is set.
        """
        if compute_jacobians and self.jit_compile and not self._has_analytic_jacobians():
            r, H = linearization_kernel(self)(_factor_data(self), list(values))
            return r, list(H)

        r = jnp.reshape(jnp.asarray(self.residual(*values), dtype=float), (-1,))
        if not compute_jacobians:
            return r, None
        H = self.jacobians(*values)
        if H is None:
            H = tangent_jacobians(self.residual, values)
        return r, [jnp.asarray(h, dtype=float) for h in H]

    def _gather(self, values: Values) -> List:
        gathered = []
        for key in self._keys:
            try:
                gathered.append(values.at(key))
            except KeyNotFoundError:
                raise MissingVariableError(
                    f"{type(self).__name__} needs variable {key}, which has no value"
                ) from None
        return gathered

    def _check_dim(self, r: jnp.ndarray) -> jnp.ndarray:
        if r.shape[0] != self.noise_model.dim:
            raise DimensionMismatchError(
                f"{type(self).__name__} produced a residual of size {r.shape[0]} "
                f"for a noise model of dimension {self.noise_model.dim}"
            )
        return r

    def unwhitened_error(self, values: Values) -> jnp.ndarray:
        r, _ = self.evaluate_error(*self._gather(values))
        return self._check_dim(r)

    def whitened_error(self, values: Values) -> jnp.ndarray:
        return self.noise_model.whiten(self.unwhitened_error(values))

    def error(self, values: Values) -> float:
        w = self.whitened_error(values)
        return 0.5 * float(jnp.dot(w, w))

    def linearize(self, values: Values, ordering: Ordering) -> JacobianFactor:
        """
        Linear approximation ``A Δx − b`` around ``values``.

        Soft models are folded into the rows (``A = whiten(H)``,
        ``b = −whiten(r)``, unit model). Constrained models are kept on the
        factor and the rows are left unwhitened.
        """
        r, H = self.evaluate_error(*self._gather(values), compute_jacobians=True)
        r = self._check_dim(r)
        positions = [ordering[k] for k in self._keys]

        if self.noise_model.is_constrained:
            return JacobianFactor(list(zip(positions, H)), -r, self.noise_model)
        As, b = self.noise_model.whiten_system(H, -r)
        return JacobianFactor(list(zip(positions, As)), b, Unit.create(r.shape[0]))

    def equals(self, other: "NonlinearFactor", tol: float = 1e-9) -> bool:
        return (
            super().equals(other, tol)
            and self.noise_model.equals(other.noise_model, tol)
        )

    def __repr__(self) -> str:
        keys = ", ".join(str(k) for k in self._keys)
        return f"{type(self).__name__}({keys}; {self.noise_model!r})"


class NonlinearFactorGraph:
    """Ordered collection of nonlinear factors."""

    def __init__(self, factors: Iterable[NonlinearFactor] = ()) -> None:
        self.factors: List[NonlinearFactor] = list(factors)

    def add(self, factor: NonlinearFactor) -> None:
        self.factors.append(factor)

    push_back = add

    def __len__(self) -> int:
        return len(self.factors)

    def __iter__(self) -> Iterator[NonlinearFactor]:
        return iter(self.factors)

    def __getitem__(self, i: int) -> NonlinearFactor:
        return self.factors[i]

    def keys(self) -> List[Key]:
        """Every key used by a factor, in order of first appearance."""
        seen: Dict[Key, None] = {}
        for factor in self.factors:
            for key in factor.keys:
                seen.setdefault(key, None)
        return list(seen)

    # --- Evaluation ---

    def error(self, values: Values) -> float:
        return sum(f.error(values) for f in self.factors)

    def linearize(
        self,
        values: Values,
        ordering: Ordering,
        max_workers: Optional[int] = None,
    ) -> GaussianFactorGraph:
        """
        Linearize every factor around ``values``.

        :param max_workers: Linearize on a thread pool of this size;
            None or 1 linearizes sequentially.
        """
        if max_workers is None or max_workers <= 1:
            linear = [f.linearize(values, ordering) for f in self.factors]
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                linear = list(pool.map(lambda f: f.linearize(values, ordering), self.factors))
        logger.debug("Linearized %d factors (workers=%s)", len(linear), max_workers)
        return GaussianFactorGraph(linear)

    # --- Structure ---

    def variable_adjacency(self) -> Dict[Key, Set[Key]]:
        """Key -> every other key sharing at least one factor with it."""
        adjacency: Dict[Key, Set[Key]] = {k: set() for k in self.keys()}
        for factor in self.factors:
            for key in factor.keys:
                adjacency[key].update(k for k in factor.keys if k != key)
        return adjacency

    def ordering_heuristic(
        self,
        values: Optional[Values] = None,
        heuristic: OrderingHeuristic = minimum_degree,
    ) -> Ordering:
        """
        Elimination ordering for this graph.

        :raises OrderingFailedError: ``values`` lacks a key used by the
            graph, or the heuristic failed.
        """
        if values is not None:
            missing = [k for k in self.keys() if not values.exists(k)]
            if missing:
                raise OrderingFailedError(
                    f"Graph variables without values: {', '.join(map(str, missing))}"
                )
        return compute_ordering(self.variable_adjacency(), heuristic)

    def equals(self, other: "NonlinearFactorGraph", tol: float = 1e-9) -> bool:
        if len(self) != len(other):
            return False
        return all(a.equals(b, tol) for a, b in zip(self.factors, other.factors))

    def __repr__(self) -> str:
        return f"NonlinearFactorGraph(num_factors={len(self.factors)}, num_keys={len(self.keys())})"
