"""Contains utilities to visualize expression trees. This module requires the optional *graphviz* dependency."""

from .plans import plot_expression
from .trees import plot_tree

__all__ = ["plot_expression", "plot_tree"]
