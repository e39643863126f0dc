"""Checkpoints materialize logical expressions: they run the optimizer, execute the optimized plan and cache the result.

The `CheckpointManager` is responsible for this process. It remembers the checkpoint of each expression that it has
materialized, such that an expression is computed at most once. The cache is keyed by the identity of the expression's root
operator (not by structural equality): two equal but distinct expression objects are materialized independently. An entry
is released as soon as its expression is garbage collected, or when it is evicted explicitly via `uncache()`.

In addition, the manager owns the source of partitioning tags. Each new checkpoint whose partitioning cannot be derived
from its inputs receives a fresh random 64-bit tag. Tags are only unique with high probability. Collisions are not
handled, since the planner only treats tag equality as evidence of identical partitioning, never as a proof.
"""
from __future__ import annotations

import random
import weakref
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from . import util
from ._core import NonZeroCount, PartitioningTag, UnknownPartitioning, StorageLevel
from .logical import DrmLike, Checkpoint
from .lowering import exec_plan
from .physical import DrmHandle, PhysicalOperatorLibrary, RowCollection
from .planner import optimize
from .util.errors import UnsupportedOperationError


class PartitioningTagGenerator:
    """Produces random, non-zero, signed 64-bit partitioning tags.

    Parameters
    ----------
    seed : Optional[int], optional
        Seed of the random number generator. Use this to obtain reproducible tags, e.g. for testing.
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        self._rng = random.Random(seed)

    def next_tag(self) -> PartitioningTag:
        """Generates a new tag. The tag is never equal to `UnknownPartitioning`."""
        tag = UnknownPartitioning
        while tag == UnknownPartitioning:
            tag = self._rng.getrandbits(64) - 2**63
        return tag

    def __call__(self) -> PartitioningTag:
        return self.next_tag()


def determine_non_zero_count(expression: DrmLike) -> NonZeroCount:
    """Computes the number of non-zero elements of an expression, if possible.

    Non-zero counts are only supported by few logical operators. For all others, an unknown count is returned instead of
    failing.
    """
    try:
        return expression.non_zero_count()
    except UnsupportedOperationError:
        return NonZeroCount.unknown()


@dataclass
class _CacheEntry:
    expression: weakref.ref
    checkpoint: Checkpoint
    finalizer: weakref.finalize


class CheckpointManager:
    """The checkpoint manager materializes logical expressions and caches the results.

    Parameters
    ----------
    library : PhysicalOperatorLibrary
        The library that executes the optimized plans.
    tag_generator : Optional[PartitioningTagGenerator], optional
        The source of partitioning tags for new checkpoints. Defaults to an unseeded generator.
    verbose : bool, optional
        Whether optimized plans and the metadata of new checkpoints should be logged. Off by default.

    Notes
    -----
    The manager is not thread-safe. Plans are assumed to be built and checkpointed by a single driver thread.
    """

    def __init__(self, library: PhysicalOperatorLibrary, *, tag_generator: Optional[PartitioningTagGenerator] = None,
                 verbose: bool = False) -> None:
        self._library = library
        self._tag_generator = tag_generator if tag_generator is not None else PartitioningTagGenerator()
        self._cache: dict[int, _CacheEntry] = {}
        self._log = util.make_logger(verbose, prefix=util.timestamp)

    @property
    def library(self) -> PhysicalOperatorLibrary:
        """Get the physical operator library that executes the plans."""
        return self._library

    def checkpoint(self, expression: DrmLike, storage_level: StorageLevel = StorageLevel.MemoryOnly) -> Checkpoint:
        """Materializes an expression, or provides the checkpoint of an earlier materialization.

        Parameters
        ----------
        expression : DrmLike
            The root of the expression to materialize
        storage_level : StorageLevel, optional
            How the result should be cached. This is ignored if the expression has been materialized already.

        Returns
        -------
        Checkpoint
            The materialized result. Repeated calls for the same expression object provide the same checkpoint.

        Raises
        ------
        InvariantViolationError
            If the expression contains a transposition that cannot be carried out.
        UnsupportedOperatorError
            If the planner cannot handle some of the operators.
        """
        if isinstance(expression, Checkpoint):
            return expression
        cached = self.cached_checkpoint(expression)
        if cached is not None:
            return cached

        non_zero_count = determine_non_zero_count(expression)
        plan = optimize(expression)
        self._log("Optimized plan for", repr(expression), "::", repr(plan))

        handle = self._library.cache(exec_plan(plan, self._library), storage_level)
        partitioning_tag = plan.partitioning_tag
        if partitioning_tag == UnknownPartitioning:
            partitioning_tag = self._tag_generator.next_tag()

        checkpoint = Checkpoint(handle, nrow=expression.nrow, ncol=expression.ncol, non_zero_count=non_zero_count,
                                storage_level=storage_level, partitioning_tag=partitioning_tag,
                                key_type=expression.key_type)
        self._remember(expression, checkpoint)
        self._log("Created", checkpoint, "with", non_zero_count, "non-zero elements at", storage_level.name)
        return checkpoint

    def cached_checkpoint(self, expression: DrmLike) -> Optional[Checkpoint]:
        """Provides the checkpoint of an expression, if it has been materialized already."""
        entry = self._cache.get(id(expression))
        if entry is None or entry.expression() is not expression:
            return None
        return entry.checkpoint

    def is_checkpointed(self, expression: DrmLike) -> bool:
        """Checks, whether an expression has been materialized already."""
        return self.cached_checkpoint(expression) is not None

    def uncache(self, expression: DrmLike) -> None:
        """Forgets the checkpoint of an expression and releases its storage.

        The next call to `checkpoint()` for the expression materializes it again. If the expression has not been
        materialized, nothing happens.
        """
        if not self.is_checkpointed(expression):
            return
        entry = self._cache.pop(id(expression))
        entry.finalizer.detach()
        self._library.uncache(entry.checkpoint.handle)

    def clear(self) -> None:
        """Forgets all checkpoints and releases their storage."""
        for key in list(self._cache.keys()):
            entry = self._cache.pop(key)
            entry.finalizer.detach()
            self._library.uncache(entry.checkpoint.handle)

    def parallelize(self, matrix: Any, num_partitions: int = 1, *, keys: Optional[Sequence[Any]] = None,
                    storage_level: StorageLevel = StorageLevel.MemoryOnly) -> Checkpoint:
        """Distributes an in-core matrix and provides the checkpoint of the distributed version.

        Parameters
        ----------
        matrix : Any
            The matrix to distribute. Anything that numpy can convert into a two-dimensional float matrix works.
        num_partitions : int, optional
            The number of partitions to distribute the rows into. Defaults to a single partition.
        keys : Optional[Sequence[Any]], optional
            The row keys. If omitted, the rows are keyed by their index. Otherwise, each row needs a key and all keys must have
            the same type.
        storage_level : StorageLevel, optional
            How the rows should be cached.

        Returns
        -------
        Checkpoint
            The distributed matrix. It receives a fresh partitioning tag.
        """
        matrix = np.array(matrix, dtype=float)
        if matrix.ndim != 2:
            raise ValueError(f"Only two-dimensional matrices can be distributed, not of shape {matrix.shape}")
        keys = list(range(matrix.shape[0])) if keys is None else list(keys)
        if len(keys) != matrix.shape[0]:
            raise ValueError(f"Expected {matrix.shape[0]} row keys, but got {len(keys)}")
        key_type = type(keys[0]) if keys else int
        if any(type(key) is not key_type for key in keys):
            raise ValueError("All row keys must have the same type")

        collection = RowCollection.parallelize(list(zip(keys, matrix)), num_partitions, key_type=key_type)
        handle = self._library.cache(DrmHandle(collection, matrix.shape[1]), storage_level)
        return Checkpoint(handle, nrow=matrix.shape[0], ncol=matrix.shape[1],
                          non_zero_count=NonZeroCount.of(int(np.count_nonzero(matrix))),
                          storage_level=storage_level, partitioning_tag=self._tag_generator.next_tag(),
                          key_type=key_type)

    def _remember(self, expression: DrmLike, checkpoint: Checkpoint) -> None:
        key = id(expression)
        finalizer = weakref.finalize(expression, self._release, key)
        self._cache[key] = _CacheEntry(weakref.ref(expression), checkpoint, finalizer)

    def _release(self, key: int) -> None:
        entry = self._cache.pop(key, None)
        if entry is not None:
            self._library.uncache(entry.checkpoint.handle)

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, expression: object) -> bool:
        return isinstance(expression, DrmLike) and self.is_checkpointed(expression)

    def __repr__(self) -> str:
        return f"CheckpointManager(library={self._library!r}, checkpoints={len(self._cache)})"
