"""Provides utilities to inspect logical expressions and optimized plans."""
from __future__ import annotations

import collections

import networkx as nx

from .logical import DrmLike


def expression_graph(expression: DrmLike) -> nx.DiGraph:
    """Converts an expression into a directed graph with edges from each operator to its inputs.

    The graph nodes are the identities (``id()``) of the operators, such that shared subexpressions appear only once. Each
    node carries the operator itself in the *operator* attribute and its label in the *label* attribute.
    """
    graph = nx.DiGraph()
    visited: set[int] = set()
    stack = [expression]
    while stack:
        current = stack.pop()
        if id(current) in visited:
            continue
        visited.add(id(current))
        graph.add_node(id(current), operator=current, label=str(current))
        for child in current.children():
            graph.add_edge(id(current), id(child))
            stack.append(child)

    return graph


def shared_subexpressions(expression: DrmLike) -> list[DrmLike]:
    """Provides all operators that are used as input by more than one operator, in depth-first order."""
    graph = expression_graph(expression)
    shared = [node for node in graph.nodes if graph.in_degree(node) > 1]
    order: dict[int, int] = {}
    for idx, node in enumerate(expression.dfs_walk()):
        order.setdefault(id(node), idx)
    return [graph.nodes[node]["operator"] for node in sorted(shared, key=lambda node: order[node])]


def operator_counts(expression: DrmLike) -> collections.Counter[str]:
    """Counts how often each operator type occurs in an expression. Shared subexpressions are counted once."""
    graph = expression_graph(expression)
    return collections.Counter(type(graph.nodes[node]["operator"]).__name__ for node in graph.nodes)


def explain(expression: DrmLike, *, indent: int = 2) -> str:
    """Renders an expression as an indented tree, one operator per line. Inputs are indented below their operator.

    Subexpressions that occur multiple times are rendered in full at each occurrence.
    """
    lines: list[str] = []

    def _render(node: DrmLike, depth: int) -> None:
        prefix = " " * (indent * depth) + ("<- " if depth else "")
        lines.append(f"{prefix}{node} [{node.nrow}x{node.ncol}]")
        for child in node.children():
            _render(child, depth + 1)

    _render(expression, 0)
    return "\n".join(lines)
