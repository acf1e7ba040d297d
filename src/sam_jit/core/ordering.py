# Copyright (c) 2025.
# This file is part of SAM-JIT, released under the MIT License.
"""
Variable orderings for elimination.

An :class:`Ordering` assigns every variable key a dense integer position
``0..N-1``. Linearized factors refer to variables by these positions, and
elimination processes them in increasing order, so the ordering decides how
much fill-in the sparse solve produces (but never the solution itself).

Orderings are either given explicitly::

    ordering = Ordering(["l1", "l2", "x1"])

or computed from the graph structure by a pluggable heuristic service::

    ordering = compute_ordering(graph.variable_adjacency())

The default heuristic, :func:`minimum_degree`, is the classic greedy
minimum-degree strategy: repeatedly eliminate the variable with the fewest
current neighbours and connect its neighbours into a clique (the fill-in
that eliminating it would create). Any callable with the same signature can
be passed instead; the result is always checked to be a bijection over the
adjacency's keys.
"""

from __future__ import annotations
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Sequence, Set, Tuple

from .errors import DuplicateKeyError, KeyNotFoundError, OrderingFailedError
from .types import Key, KeyLike, as_key
from ..logging_config import get_logger

logger = get_logger(__name__)

Adjacency = Mapping[Key, Set[Key]]
OrderingHeuristic = Callable[[Adjacency], Sequence[Key]]


class Ordering:
    """Bijection between variable keys and elimination positions."""

    def __init__(self, keys: Iterable[KeyLike] = ()) -> None:
        self._positions: Dict[Key, int] = {}
        self._keys: List[Key] = []
        self.extend(keys)

    def push_back(self, key: KeyLike) -> int:
        key = as_key(key)
        if key in self._positions:
            raise DuplicateKeyError(f"Key {key} is already in the ordering")
        self._positions[key] = len(self._keys)
        self._keys.append(key)
        return self._positions[key]

    def extend(self, keys: Iterable[KeyLike]) -> None:
        for key in keys:
            self.push_back(key)

    def __getitem__(self, key: KeyLike) -> int:
        key = as_key(key)
        try:
            return self._positions[key]
        except KeyError:
            raise KeyNotFoundError(f"Key {key} is not in the ordering") from None

    def key_at(self, position: int) -> Key:
        return self._keys[position]

    def __contains__(self, key) -> bool:
        try:
            return as_key(key) in self._positions
        except (TypeError, ValueError):
            return False

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[Key]:
        return iter(self._keys)

    def keys(self) -> List[Key]:
        return list(self._keys)

    def dims(self, values) -> Tuple[List[int], int]:
        """
        Tangent dimension of every ordered variable, by position, plus the
        total. Every ordered key must exist in ``values``.
        """
        dims = [values.at(key).dim for key in self._keys]
        return dims, sum(dims)

    def equals(self, other: "Ordering") -> bool:
        return self._keys == other._keys

    def __eq__(self, other) -> bool:
        return isinstance(other, Ordering) and self.equals(other)

    def __repr__(self) -> str:
        return "Ordering(" + ", ".join(f"{k}:{i}" for i, k in enumerate(self._keys)) + ")"


def minimum_degree(adjacency: Adjacency) -> List[Key]:
    """
    Greedy minimum-degree elimination order.

    Ties are broken by key order so the result is deterministic.
    """
    graph: Dict[Key, Set[Key]] = {k: set(n) for k, n in adjacency.items()}
    for k, nbrs in graph.items():
        nbrs.discard(k)
        for n in nbrs:
            if n not in graph:
                raise OrderingFailedError(f"Neighbour {n} of {k} is not a variable of the graph")

    order: List[Key] = []
    while graph:
        key = min(graph, key=lambda k: (len(graph[k]), k))
        nbrs = graph.pop(key)
        for n in nbrs:
            graph[n].discard(key)
            graph[n].update(m for m in nbrs if m != n)
        order.append(key)
    return order


def compute_ordering(
    adjacency: Adjacency,
    heuristic: OrderingHeuristic = minimum_degree,
) -> Ordering:
    """
    Run an ordering heuristic and validate its output.

    :param adjacency: Variable adjacency: key -> keys sharing a factor with it.
    :param heuristic: Callable returning the keys in elimination order.
    :raises OrderingFailedError: Empty input, or the heuristic did not return
        a bijection over exactly the adjacency's keys.
    """
    if not adjacency:
        raise OrderingFailedError("Cannot order an empty set of variables")

    keys = heuristic(adjacency)
    expected = set(adjacency)
    if len(keys) != len(expected) or set(keys) != expected:
        missing = sorted(expected - set(keys))
        extra = sorted(set(keys) - expected)
        raise OrderingFailedError(
            f"Ordering heuristic returned {len(keys)} keys for {len(expected)} variables "
            f"(missing={missing}, unexpected={extra})"
        )
    try:
        ordering = Ordering(keys)
    except DuplicateKeyError as e:
        raise OrderingFailedError(f"Ordering heuristic repeated a key: {e}") from e

    logger.debug("Computed ordering over %d variables: %s", len(ordering), ordering)
    return ordering
