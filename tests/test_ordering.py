import pytest

from sam_jit.core.errors import DuplicateKeyError, KeyNotFoundError, OrderingFailedError
from sam_jit.core.ordering import Ordering, compute_ordering, minimum_degree
from sam_jit.core.types import Symbol
from sam_jit.core.values import Values
from sam_jit.slam import simulated2d
from sam_jit.slam.manifold import Point2

x1, x2, x3, l1 = Symbol("x", 1), Symbol("x", 2), Symbol("x", 3), Symbol("l", 1)


def test_symbol_parse_and_order():
    assert Symbol.parse("x12") == Symbol("x", 12)
    assert str(Symbol("l", 3)) == "l3"
    assert sorted([x2, l1, x1]) == [l1, x1, x2]
    with pytest.raises(ValueError):
        Symbol.parse("x")


def test_ordering_positions():
    ordering = Ordering(["x1", "l1"])
    ordering.push_back("x2")
    assert len(ordering) == 3
    assert ordering[x2] == 2
    assert ordering.key_at(1) == l1
    assert "l1" in ordering
    assert ordering.keys() == [x1, l1, x2]
    assert ordering == Ordering([x1, l1, x2])


def test_ordering_errors():
    ordering = Ordering(["x1"])
    with pytest.raises(DuplicateKeyError):
        ordering.push_back("x1")
    with pytest.raises(KeyNotFoundError):
        ordering["x5"]


def test_ordering_dims():
    values = simulated2d.create_values()
    dims, total = Ordering(["l1", "x1"]).dims(values)
    assert dims == [2, 2]
    assert total == 4


def test_minimum_degree_chain_starts_at_leaf():
    # x1 - x2 - x3 chain plus a landmark on x2
    adjacency = {
        x1: {x2},
        x2: {x1, x3, l1},
        x3: {x2},
        l1: {x2},
    }
    order = minimum_degree(adjacency)
    assert sorted(order) == sorted(adjacency)
    # degree-1 nodes go first, ties broken by key order
    assert order[0] == l1
    assert order[-1] in (x2, x3)


def test_compute_ordering_validates_heuristic():
    adjacency = {x1: {x2}, x2: {x1}}
    assert compute_ordering(adjacency).keys() == [x1, x2]

    with pytest.raises(OrderingFailedError):
        compute_ordering(adjacency, heuristic=lambda adj: [x1])
    with pytest.raises(OrderingFailedError):
        compute_ordering(adjacency, heuristic=lambda adj: [x1, x1])
    with pytest.raises(OrderingFailedError):
        compute_ordering({})
    with pytest.raises(OrderingFailedError):
        compute_ordering({x1: {x3}})


def test_graph_ordering_heuristic():
    graph = simulated2d.create_nonlinear_factor_graph()
    ordering = graph.ordering_heuristic(simulated2d.create_noisy_values())
    assert sorted(ordering.keys()) == sorted([x1, x2, l1])

    incomplete = Values([(x1, Point2(0.0, 0.0))])
    with pytest.raises(OrderingFailedError):
        graph.ordering_heuristic(incomplete)
