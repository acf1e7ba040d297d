# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Nonlinear optimization solvers for SAM-JIT.

This module drives a :class:`core.factor_graph.NonlinearFactorGraph` to a
local minimum of its cost by repeated linearization, sparse elimination and
manifold retraction.

Key Concepts
------------
GNConfig / LMConfig
    Dataclasses holding the stopping criteria (and, for LM, the damping
    schedule). Both can be built from plain dicts with ``from_dict``.

NonlinearOptimizer
    An immutable optimizer *state*: graph, current values, ordering,
    config, current error, LM damping ``lam``, iteration count and status.
    Every step returns a new state and leaves the receiver untouched, so a
    rejected Levenberg-Marquardt step simply keeps the previous state.

    iterate()
        Gauss-Newton step: linearize, eliminate, retract. Always accepted.

    iterate_lm()
        Levenberg-Marquardt step. The *same* linearization is damped with
        ``sqrt(lam) * I`` priors on every variable and solved; the step is
        accepted when the true nonlinear error does not increase (and
        ``lam`` shrinks), otherwise ``lam`` grows and the damped system is
        solved again. After ``max_retries`` rejected attempts
        :class:`MaxRetriesExceededError` is raised, carrying the unchanged
        state.

check_convergence(rel_tol, abs_tol, err_tol, current, new)
    Pure stopping test shared by both loops.

gauss_newton(optimizer) / levenberg_marquardt(optimizer)
    Iterate until convergence, failure or ``max_iters`` and return an
    :class:`OptimizationResult`.
"""

from __future__ import annotations
import time
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from ..core.errors import MaxRetriesExceededError
from ..core.factor_graph import NonlinearFactorGraph
from ..core.ordering import Ordering
from ..core.values import Values
from ..linear.gaussian_factor_graph import GaussianFactorGraph
from ..linear.vector_values import VectorValues
from ..logging_config import get_logger

logger = get_logger(__name__)


class OptimizerStatus(Enum):
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    FAILED = "failed"


@dataclass
class GNConfig:
    max_iters: int = 100
    relative_error_tol: float = 1e-5
    absolute_error_tol: float = 1e-5
    error_tol: float = 0.0
    linearize_workers: Optional[int] = None  # thread pool size for linearization

    @classmethod
    def from_dict(cls, mapping: Mapping[str, Any]):
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ValueError(f"Unknown {cls.__name__} options: {', '.join(unknown)}")
        return cls(**dict(mapping))


@dataclass
class LMConfig(GNConfig):
    lambda_initial: float = 1e-5
    lambda_factor: float = 10.0
    lambda_upper_bound: float = 1e10
    max_retries: int = 10


def check_convergence(
    relative_error_tol: float,
    absolute_error_tol: float,
    error_tol: float,
    current_error: float,
    new_error: float,
) -> bool:
    """
    True when the error is small enough or stopped decreasing.

    An increase in error also counts as converged: the caller should stop
    rather than keep stepping uphill.
    """
    if new_error <= error_tol:
        return True
    if current_error <= 0.0:
        return True
    absolute_decrease = current_error - new_error
    relative_decrease = absolute_decrease / current_error
    return relative_decrease <= relative_error_tol or absolute_decrease <= absolute_error_tol


@dataclass(frozen=True)
class NonlinearOptimizer:
    """Immutable optimization state."""

    graph: NonlinearFactorGraph
    values: Values
    ordering: Ordering
    config: GNConfig
    current_error: float
    lam: float = 0.0
    iterations: int = 0
    status: OptimizerStatus = OptimizerStatus.INITIALIZED

    @classmethod
    def create(
        cls,
        graph: NonlinearFactorGraph,
        values: Values,
        ordering: Optional[Ordering] = None,
        config: Optional[GNConfig] = None,
    ) -> "NonlinearOptimizer":
        """
        Initial state. The ordering defaults to the graph's heuristic and
        the config to :class:`LMConfig` defaults.
        """
        if config is None:
            config = LMConfig()
        if ordering is None:
            ordering = graph.ordering_heuristic(values)
        lam = getattr(config, "lambda_initial", 0.0)
        error = graph.error(values)
        logger.debug(
            "Created optimizer: %d factors, %d variables, initial error %.6g",
            len(graph), len(ordering), error,
        )
        return cls(graph, values, ordering, config, error, lam)

    def error(self) -> float:
        return self.current_error

    def linearize(self) -> GaussianFactorGraph:
        return self.graph.linearize(
            self.values, self.ordering, max_workers=self.config.linearize_workers
        )

    def _solve(self, linear: GaussianFactorGraph) -> VectorValues:
        return linear.optimize(len(self.ordering))

    def iterate(self) -> "NonlinearOptimizer":
        """One Gauss-Newton step."""
        delta = self._solve(self.linearize())
        values = self.values.retract(delta, self.ordering)
        error = self.graph.error(values)
        logger.debug(
            "GN iteration %d: error %.6g -> %.6g (|dx|=%.3g)",
            self.iterations + 1, self.current_error, error, delta.norm(),
        )
        return replace(
            self,
            values=values,
            current_error=error,
            iterations=self.iterations + 1,
            status=OptimizerStatus.ITERATING,
        )

    def iterate_lm(self) -> "NonlinearOptimizer":
        """
        One Levenberg-Marquardt step.

        :raises MaxRetriesExceededError: No damping within the retry budget
            (or below ``lambda_upper_bound``) reduced the error.
        :raises TypeError: The state was created with a plain :class:`GNConfig`.
        """
        cfg = self.config
        if not isinstance(cfg, LMConfig):
            raise TypeError(
                f"iterate_lm needs an LMConfig, got {type(cfg).__name__}; "
                "create the optimizer with LMConfig() for Levenberg-Marquardt"
            )
        linear = self.linearize()
        dims = self.values.dims(self.ordering)
        lam = self.lam

        for attempt in range(cfg.max_retries + 1):
            delta = self._solve(linear.add_damping(lam, dims))
            trial = self.values.retract(delta, self.ordering)
            trial_error = self.graph.error(trial)
            logger.debug(
                "LM iteration %d attempt %d: lambda %.3g, error %.6g -> %.6g",
                self.iterations + 1, attempt, lam, self.current_error, trial_error,
            )

            if trial_error <= self.current_error:
                return replace(
                    self,
                    values=trial,
                    current_error=trial_error,
                    lam=lam / cfg.lambda_factor,
                    iterations=self.iterations + 1,
                    status=OptimizerStatus.ITERATING,
                )

            lam *= cfg.lambda_factor
            if lam > cfg.lambda_upper_bound:
                break

        raise MaxRetriesExceededError(
            f"Levenberg-Marquardt found no decreasing step after {attempt + 1} attempts "
            f"(lambda reached {lam:.3g})",
            state=self,
        )


@dataclass
class OptimizationResult:
    """Results from an optimization run."""

    success: bool
    initial_error: float
    final_error: float
    state: NonlinearOptimizer
    num_iterations: int
    time_seconds: float
    status: OptimizerStatus
    convergence_info: Dict[str, Any] = field(default_factory=dict)

    @property
    def values(self) -> Values:
        return self.state.values


def _run(
    optimizer: NonlinearOptimizer,
    step: Callable[[NonlinearOptimizer], NonlinearOptimizer],
    method: str,
) -> OptimizationResult:
    cfg = optimizer.config
    start = time.perf_counter()
    initial_error = optimizer.error()
    state = optimizer
    info: Dict[str, Any] = {"method": method}

    if initial_error <= cfg.error_tol:
        state = replace(state, status=OptimizerStatus.CONVERGED)

    while state.status is not OptimizerStatus.CONVERGED and state.iterations < cfg.max_iters:
        try:
            new_state = step(state)
        except MaxRetriesExceededError as e:
            state = replace(e.state, status=OptimizerStatus.FAILED)
            info["failure"] = str(e)
            logger.warning("%s failed after %d iterations: %s", method, state.iterations, e)
            break

        converged = check_convergence(
            cfg.relative_error_tol,
            cfg.absolute_error_tol,
            cfg.error_tol,
            state.error(),
            new_state.error(),
        )
        state = new_state
        if converged:
            state = replace(state, status=OptimizerStatus.CONVERGED)

    elapsed = time.perf_counter() - start
    if state.status is OptimizerStatus.CONVERGED:
        logger.info(
            "%s converged in %d iterations: error %.6g -> %.6g (%.3fs)",
            method, state.iterations, initial_error, state.error(), elapsed,
        )
    elif state.status is not OptimizerStatus.FAILED:
        logger.warning(
            "%s stopped at max_iters=%d with error %.6g", method, cfg.max_iters, state.error()
        )

    return OptimizationResult(
        success=state.status is OptimizerStatus.CONVERGED,
        initial_error=initial_error,
        final_error=state.error(),
        state=state,
        num_iterations=state.iterations,
        time_seconds=elapsed,
        status=state.status,
        convergence_info=info,
    )


def gauss_newton(optimizer: NonlinearOptimizer) -> OptimizationResult:
    """Run Gauss-Newton iterations until convergence or ``max_iters``."""
    return _run(optimizer, NonlinearOptimizer.iterate, "Gauss-Newton")


def levenberg_marquardt(optimizer: NonlinearOptimizer) -> OptimizationResult:
    """Run Levenberg-Marquardt iterations until convergence, failure or ``max_iters``."""
    return _run(optimizer, NonlinearOptimizer.iterate_lm, "Levenberg-Marquardt")
