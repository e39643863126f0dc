"""Utilities to visualize logical expressions and optimized plans."""

from __future__ import annotations

from collections.abc import Sequence

import graphviz as gv

from ..logical import (
    DrmLike, Checkpoint, MatMulTransA, MatMulTransB, SelfGramian, Transpose, TransposeAnyKey, MapBlock
)
from . import trees


def _expression_labels(node: DrmLike) -> tuple[str, dict]:
    label = f"{node}\n{node.nrow}x{node.ncol}"
    match node:
        case Checkpoint():
            params = {"shape": "box", "color": "grey"}
        case SelfGramian() | MatMulTransA() | MatMulTransB():
            params = {"style": "bold"}
        case Transpose() | TransposeAnyKey():
            params = {"style": "dashed"}
        case MapBlock():
            params = {"shape": "hexagon"}
        case _:
            params = {}
    return label, params


def _expression_children(node: DrmLike) -> Sequence[DrmLike]:
    return node.children()


def plot_expression(expression: DrmLike, **kwargs) -> gv.Digraph:
    """Creates a Graphviz visualization of a logical expression or an optimized plan.

    Specialized products are drawn in bold, transpositions dashed and checkpoints as grey boxes. Shared subexpressions
    are drawn only once. Additional keyword arguments are passed to `plot_tree`.
    """
    return trees.plot_tree(expression, _expression_labels, _expression_children, node_id_generator=id, strict=True,
                           **kwargs)
