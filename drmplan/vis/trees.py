"""Provides generic utilities to transform arbitrary tree-like structures into Graphviz objects."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Optional, TypeVar

import graphviz as gv

T = TypeVar("T")


def _gv_escape(node: T, node_id_generator: Callable[[T], int] = id) -> str:
    return str(node_id_generator(node))


def plot_tree(node: T, label_generator: Callable[[T], tuple[str, dict]], child_supplier: Callable[[T], Sequence[T]], *,
              escape_labels: bool = True, out_path: str = "", out_format: str = "svg",
              node_id_generator: Callable[[T], int] = id, _graph: Optional[gv.Digraph] = None,
              _drawn: Optional[set[str]] = None, **kwargs) -> gv.Digraph:
    """Transforms an arbitrary tree into a Graphviz graph. The tree traversal is achieved via callback functions.

    Start the traversal at the root node. Nodes that are reachable from multiple parents are drawn once, with one edge per
    parent.

    Parameters
    ----------
    node : T
        The node to plot.
    label_generator : Callable[[T], tuple[str, dict]]
        Callback function to generate labels of the nodes in the graph. The dictionary can contain additional formatting
        attributes (e.g. bold font). Consult the Graphviz documentation for allowed values
    child_supplier : Callable[[T], Sequence[T]]
        Provides the children of the current node.
    escape_labels : bool, optional
        Whether to escape the labels of the nodes. Defaults to True.
    out_path : str, optional
        An optional file path to store the graph at. If empty, the graph will only be provided as a Graphviz object.
    out_format : str, optional
        The output format of the graph. Defaults to SVG and will only be used if the graph should be stored to disk.
    node_id_generator : Callable[[T], int], optional
        Callback function to generate unique identifiers for the nodes. Defaults to the identity of the nodes.
    _graph : Optional[gv.Digraph], optional
        Internal parameter used for state-management within the plotting function. Do not set this parameter yourself!
    _drawn : Optional[set[str]], optional
        Internal parameter that tracks the identifiers of all nodes drawn so far. Do not set this parameter yourself!

    Returns
    -------
    gv.Digraph
        The graph, with edges pointing from each node to its children

    References
    ----------

    .. Graphviz project: https://graphviz.org/
    """
    initial = _graph is None
    _graph = gv.Digraph(**kwargs) if initial else _graph
    _drawn = set() if _drawn is None else _drawn
    label, params = label_generator(node)
    if escape_labels:
        label = gv.escape(label)
    node_key = _gv_escape(node, node_id_generator=node_id_generator)
    _graph.node(node_key, label=label, **params)
    _drawn.add(node_key)

    for child in child_supplier(node):
        child_key = _gv_escape(child, node_id_generator=node_id_generator)
        _graph.edge(node_key, child_key)
        if child_key in _drawn:
            continue
        _graph = plot_tree(child, label_generator, child_supplier, escape_labels=escape_labels,
                           node_id_generator=node_id_generator, _graph=_graph, _drawn=_drawn)

    if initial and out_path:
        _graph.render(out_path, format=out_format, cleanup=True)
    return _graph
