"""forest provides the cross-validation step of partial decision forests.

Partial forests are built in two phases. During the first phase, each of the *num_maps* partitions of the data set builds
some of the trees on its own data. The trees are stored along with their `TreeID` (the building partition and the global
tree index) via `store_inter_results`. During the second phase, each partition classifies its own instances with all trees
that were built by the *other* partitions (`CrossValidationMapper`). This provides out-of-bag predictions for every tree.
"""
from __future__ import annotations

import abc
import json
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NamedTuple, Optional

import numpy as np

from . import util

UnknownPrediction = -1
"""Prediction of an instance that was not classified (yet)."""


class TreeID(NamedTuple):
    """Identifies a tree of the forest.

    Attributes
    ----------
    partition : int
        The partition that owns the tree. During the first phase this is the partition that built it, during the second
        phase it is the partition that classifies with it.
    tree_id : int
        The global index of the tree within the forest
    """
    partition: int
    tree_id: int

    def __json__(self) -> util.jsondict:
        return {"partition": self.partition, "tree_id": self.tree_id}


class Node(abc.ABC):
    """A node of a decision tree."""

    @staticmethod
    def from_json(data: util.jsondict) -> Node:
        """Restores a tree from its JSON representation, as produced by `__json__`."""
        match data:
            case {"type": "leaf", "label": label}:
                return Leaf(label)
            case {"type": "numerical", "attribute": attribute, "split": split, "lo": lo, "hi": hi}:
                return NumericalSplit(attribute, split, Node.from_json(lo), Node.from_json(hi))
            case _:
                raise ValueError(f"Unknown tree node: {data}")

    @abc.abstractmethod
    def classify(self, instance: Sequence[float]) -> int:
        """Predicts the label of an instance."""
        raise NotImplementedError

    @abc.abstractmethod
    def __json__(self) -> util.jsondict:
        raise NotImplementedError


@dataclass(frozen=True)
class Leaf(Node):
    label: int

    def classify(self, instance: Sequence[float]) -> int:
        return self.label

    def __json__(self) -> util.jsondict:
        return {"type": "leaf", "label": self.label}


@dataclass(frozen=True)
class NumericalSplit(Node):
    """Routes instances with ``instance[attribute] < split`` to the `lo` child and all others to the `hi` child."""
    attribute: int
    split: float
    lo: Node
    hi: Node

    def classify(self, instance: Sequence[float]) -> int:
        if instance[self.attribute] < self.split:
            return self.lo.classify(instance)
        return self.hi.classify(instance)

    def __json__(self) -> util.jsondict:
        return {"type": "numerical", "attribute": self.attribute, "split": self.split, "lo": self.lo, "hi": self.hi}


@dataclass
class MapredOutput:
    """The result of a tree for one partition: the tree itself (optional) and the predictions for each instance."""
    tree: Optional[Node]
    predictions: np.ndarray

    def __eq__(self, other: object) -> bool:
        return (isinstance(other, MapredOutput) and self.tree == other.tree
                and np.array_equal(self.predictions, other.predictions))


def nb_trees(num_maps: int, num_trees: int, partition: int) -> int:
    """Determines how many trees a partition builds during the first phase.

    All partitions build the same number of trees, except for the first one that additionally builds the remaining trees.
    """
    trees = num_trees // num_maps
    if partition == 0:
        trees += num_trees - trees * num_maps
    return trees


def nb_concerned(num_maps: int, num_trees: int, partition: int) -> int:
    """Determines how many trees a partition classifies with during the second phase, i.e. all trees of other partitions."""
    if partition < 0:
        raise ValueError(f"Partition must not be negative, not {partition}")
    return num_trees - nb_trees(num_maps, num_trees, partition)


def store_inter_results(path: str | Path, keys: Sequence[TreeID], trees: Sequence[Node], sizes: Sequence[int]) -> None:
    """Stores the output of the first phase.

    Parameters
    ----------
    path : str | Path
        The target file. It is overwritten if it exists.
    keys : Sequence[TreeID]
        The identifiers of all trees, ordered by tree index
    trees : Sequence[Node]
        The trees, in the same order as the keys
    sizes : Sequence[int]
        The number of instances of each partition
    """
    if len(keys) != len(trees):
        raise ValueError(f"Got {len(keys)} keys for {len(trees)} trees")
    contents = {"sizes": list(sizes),
                "trees": [{"key": key.__json__(), "tree": tree} for key, tree in zip(keys, trees)]}
    with open(path, "w") as f:
        util.to_json_dump(contents, f)


def load_inter_results(path: str | Path, num_maps: int, num_trees: int,
                       partition: int) -> tuple[list[TreeID], list[Node]]:
    """Loads all trees that a partition needs for the second phase.

    The trees that have been built by the partition itself are skipped. All other trees are assigned to the partition,
    but keep their global tree index.

    Returns
    -------
    tuple[list[TreeID], list[Node]]
        The keys and the trees, in the order in which they were stored

    Raises
    ------
    ValueError
        If the file does not match the forest, i.e. it describes a different number of partitions or trees
    """
    with open(path, "r") as f:
        contents = json.load(f)

    if len(contents["sizes"]) != num_maps:
        raise ValueError(f"Stored results describe {len(contents['sizes'])} partitions, expected {num_maps}")
    if len(contents["trees"]) != num_trees:
        raise ValueError(f"Stored results describe {len(contents['trees'])} trees, expected {num_trees}")

    keys: list[TreeID] = []
    trees: list[Node] = []
    for entry in contents["trees"]:
        key = TreeID(**entry["key"])
        if key.partition == partition:
            continue
        keys.append(TreeID(partition, key.tree_id))
        trees.append(Node.from_json(entry["tree"]))

    expected = nb_concerned(num_maps, num_trees, partition)
    if len(keys) != expected:
        raise ValueError(f"Partition {partition} should receive {expected} trees, but {len(keys)} were stored")
    return keys, trees


class CrossValidationMapper:
    """Classifies the instances of one partition with the trees of all other partitions.

    Parameters
    ----------
    partition : int
        The partition whose instances are classified
    keys : Sequence[TreeID]
        The keys of the trees, as produced by `load_inter_results`
    trees : Sequence[Node]
        The trees to classify with
    num_instances : int
        The number of instances in the partition
    """

    def __init__(self, partition: int, keys: Sequence[TreeID], trees: Sequence[Node], num_instances: int) -> None:
        if partition < 0:
            raise ValueError(f"Partition must not be negative, not {partition}")
        if len(keys) != len(trees):
            raise ValueError(f"Got {len(keys)} keys for {len(trees)} trees")
        if any(key.partition != partition for key in keys):
            raise ValueError(f"All trees must be assigned to partition {partition}")
        self.partition = partition
        self.keys = list(keys)
        self.trees = list(trees)
        self.num_instances = num_instances
        self._predictions = np.full((len(self.trees), num_instances), UnknownPrediction, dtype=int)

    def map(self, instance_id: int, instance: Sequence[Any]) -> None:
        """Classifies a single instance with all trees.

        Raises
        ------
        IndexError
            If the instance id is outside of the partition
        """
        if not 0 <= instance_id < self.num_instances:
            raise IndexError(f"Instance {instance_id} is not part of partition {self.partition} "
                             f"({self.num_instances} instances)")
        for tree_idx, tree in enumerate(self.trees):
            self._predictions[tree_idx, instance_id] = tree.classify(instance)

    def cleanup(self) -> list[tuple[TreeID, MapredOutput]]:
        """Provides the predictions of each tree, in the order in which the trees were loaded."""
        return [(key, MapredOutput(None, self._predictions[tree_idx].copy()))
                for tree_idx, key in enumerate(self.keys)]


def split_data(data: Sequence[Any], num_splits: int) -> list[list[Any]]:
    """Splits a data set into contiguous parts of equal size. The last split additionally receives the remaining instances."""
    if num_splits < 1:
        raise ValueError(f"At least one split is required, not {num_splits}")
    split_size = len(data) // num_splits
    splits = [list(data[idx * split_size:(idx + 1) * split_size]) for idx in range(num_splits - 1)]
    splits.append(list(data[(num_splits - 1) * split_size:]))
    return splits
