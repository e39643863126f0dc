"""physical contains the interface between the planner and the collection substrate that actually stores and computes DRMs.

The planner only ever talks to a `PhysicalOperatorLibrary`. The library provides one method per physical operator family,
e.g. the transposition of a matrix or the product *A'B*. Each method receives the logical operator that it should compute
(to access its metadata) as well as the physical handles of the already computed inputs, and produces a new handle.

Physical handles (`DrmHandle`) reference a `RowCollection`: a partitioned collection of *(row key, row vector)* pairs. The
collection also carries the caching state of the rows.

This module ships with the `LocalOperatorLibrary`, which computes all operators in-process based on numpy. It is intended
for small data, testing and for understanding the execution of optimized plans: every invocation of a physical operator is
recorded in a `CallTrace`.
"""
from __future__ import annotations

import abc
import collections
from collections.abc import Callable, Generator, Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

import numpy as np
import pandas as pd

from ._core import StorageLevel, is_int_keyed
from .util import df as df_util

if TYPE_CHECKING:
    from .logical import (
        Checkpoint, Transpose, MatMulTransA, MatMulTransB, SelfGramian, ElementwiseBinary, ElementwiseScalar,
        RowRange, RightMatrixMultiply, MapBlock
    )

Row = tuple[Any, np.ndarray]
"""A single row of a distributed matrix: the row key and the row vector."""


class RowCollection:
    """A partitioned collection of matrix rows.

    This is the in-process stand-in of a distributed collection: each partition is a list of rows. Operations on the
    collection never modify it but produce a new collection instead. The only exception is the caching state, which can be
    changed via `persist()` and `unpersist()`.

    Parameters
    ----------
    partitions : Iterable[Iterable[Row]]
        The rows of each partition.
    key_type : type, optional
        The type of the row keys. Defaults to integer keys.
    """

    @staticmethod
    def parallelize(rows: Sequence[Row], num_partitions: int, *, key_type: type = int) -> RowCollection:
        """Distributes a sequence of rows into contiguous partitions of (almost) equal size.

        Parameters
        ----------
        rows : Sequence[Row]
            The rows to distribute.
        num_partitions : int
            The desired number of partitions. Must be positive.
        key_type : type, optional
            The type of the row keys.

        Returns
        -------
        RowCollection
            The collection
        """
        if num_partitions < 1:
            raise ValueError(f"At least one partition is required, not {num_partitions}")
        splits = np.array_split(np.arange(len(rows)), num_partitions)
        return RowCollection([[rows[idx] for idx in split] for split in splits], key_type=key_type)

    def __init__(self, partitions: Iterable[Iterable[Row]], *, key_type: type = int) -> None:
        self._partitions = tuple(tuple(partition) for partition in partitions)
        self._key_type = key_type
        self._storage_level = StorageLevel.NoStorage

    @property
    def partitions(self) -> Sequence[Sequence[Row]]:
        """Get the rows of all partitions."""
        return self._partitions

    @property
    def num_partitions(self) -> int:
        """Get the number of partitions of the collection."""
        return len(self._partitions)

    @property
    def key_type(self) -> type:
        """Get the type of the row keys."""
        return self._key_type

    @property
    def storage_level(self) -> StorageLevel:
        """Get the current caching level. `StorageLevel.NoStorage` indicates that the collection is not cached."""
        return self._storage_level

    @property
    def is_cached(self) -> bool:
        """Checks, whether the collection is currently cached."""
        return self._storage_level != StorageLevel.NoStorage

    def rows(self) -> Generator[Row, None, None]:
        """Provides all rows of the collection, partition by partition."""
        for partition in self._partitions:
            yield from partition

    def keys(self) -> list[Any]:
        """Provides the keys of all rows, partition by partition."""
        return [key for key, _ in self.rows()]

    def partition_keys(self) -> list[tuple[Any, ...]]:
        """Provides the keys of each partition."""
        return [tuple(key for key, _ in partition) for partition in self._partitions]

    def count(self) -> int:
        """Determines the number of rows in the collection."""
        return sum(len(partition) for partition in self._partitions)

    def map_partitions(self, fn: Callable[[Sequence[Row]], Iterable[Row]], *,
                       key_type: Optional[type] = None) -> RowCollection:
        """Transforms each partition. The rows stay in their partitions, hence the partitioning is retained."""
        key_type = self._key_type if key_type is None else key_type
        return RowCollection((fn(partition) for partition in self._partitions), key_type=key_type)

    def map_rows(self, fn: Callable[[np.ndarray], np.ndarray]) -> RowCollection:
        """Transforms each row vector, keeping the row keys."""
        return self.map_partitions(lambda partition: [(key, fn(row)) for key, row in partition])

    def persist(self, storage_level: StorageLevel) -> RowCollection:
        """Marks the collection as cached at a specific storage level."""
        self._storage_level = storage_level
        return self

    def unpersist(self) -> RowCollection:
        """Releases the cached collection."""
        self._storage_level = StorageLevel.NoStorage
        return self

    def __len__(self) -> int:
        return self.count()

    def __repr__(self) -> str:
        return f"RowCollection(partitions={self.num_partitions}, rows={self.count()}, cached={self._storage_level.name})"


@dataclass(frozen=True)
class DrmHandle:
    """The physical result of an operator: a row collection along with the number of columns of the matrix.

    Attributes
    ----------
    collection : RowCollection
        The matrix rows
    ncol : int
        The number of columns of the matrix
    """
    collection: RowCollection
    ncol: int

    def collect(self, nrow: Optional[int] = None) -> np.ndarray:
        """Gathers an int-keyed matrix into a dense in-core matrix.

        Rows that are missing from the collection are treated as zero rows.

        Parameters
        ----------
        nrow : Optional[int], optional
            The number of rows of the matrix. If omitted, the largest row key determines the number of rows.

        Returns
        -------
        np.ndarray
            The dense matrix
        """
        if not is_int_keyed(self.collection.key_type):
            raise ValueError(f"Only int-keyed matrices can be collected, not {self.collection.key_type.__name__}-keyed ones")
        if nrow is None:
            nrow = max((key + 1 for key in self.collection.keys()), default=0)
        dense = np.zeros((nrow, self.ncol))
        for key, row in self.collection.rows():
            dense[key] = row
        return dense


@dataclass(frozen=True)
class PhysicalCall:
    """A single invocation of a physical operator.

    Attributes
    ----------
    family : str
        The name of the operator family, e.g. *ata* or *atb*
    operator : object
        The logical operator that was computed by the call
    params : dict[str, Any]
        Additional parameters of the call, e.g. the *zippable* flag of an *A'B* product
    """
    family: str
    operator: object
    params: dict[str, Any] = field(default_factory=dict)


class CallTrace:
    """Records the invocations of physical operators in the order in which they occurred."""

    def __init__(self) -> None:
        self._calls: list[PhysicalCall] = []

    @property
    def calls(self) -> Sequence[PhysicalCall]:
        return list(self._calls)

    def record(self, family: str, operator: object, **params) -> None:
        self._calls.append(PhysicalCall(family, operator, params))

    def families(self) -> list[str]:
        """Provides the operator families of all calls, in invocation order."""
        return [call.family for call in self._calls]

    def counts(self) -> collections.Counter[str]:
        """Determines how often each operator family was invoked."""
        return collections.Counter(self.families())

    def clear(self) -> None:
        self._calls.clear()

    def as_df(self) -> pd.DataFrame:
        """Provides the trace as a data frame with one row per call, in invocation order."""
        records = [{"family": call.family, "operator": str(call.operator), "params": dict(call.params)}
                   for call in self._calls]
        return df_util.as_df(records, columns=["family", "operator", "params"])

    def __len__(self) -> int:
        return len(self._calls)

    def __iter__(self):
        return iter(self._calls)


class PhysicalOperatorLibrary(abc.ABC):
    """The physical operator library computes the operators of optimized plans on the collection substrate.

    Each method corresponds to exactly one family of physical operators. The first argument is always the logical operator
    that should be computed. It provides metadata such as the shape of the result or the in-core operand of a product.
    """

    @abc.abstractmethod
    def at(self, op: Transpose, a: DrmHandle) -> DrmHandle:
        """Computes *A'*."""
        raise NotImplementedError

    @abc.abstractmethod
    def abt(self, op: MatMulTransB, a: DrmHandle, b: DrmHandle) -> DrmHandle:
        """Computes *AB'*."""
        raise NotImplementedError

    @abc.abstractmethod
    def atb(self, op: MatMulTransA, a: DrmHandle, b: DrmHandle, *, zippable: bool) -> DrmHandle:
        """Computes *A'B*.

        If `zippable` is true, both operands are known to be identically partitioned and the rows with equal keys can be
        paired partition by partition. Otherwise, the rows have to be joined by key.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def ata(self, op: SelfGramian, a: DrmHandle) -> DrmHandle:
        """Computes *A'A*."""
        raise NotImplementedError

    @abc.abstractmethod
    def a_plus_b(self, op: ElementwiseBinary, a: DrmHandle, b: DrmHandle) -> DrmHandle:
        raise NotImplementedError

    @abc.abstractmethod
    def a_minus_b(self, op: ElementwiseBinary, a: DrmHandle, b: DrmHandle) -> DrmHandle:
        raise NotImplementedError

    @abc.abstractmethod
    def a_hadamard_b(self, op: ElementwiseBinary, a: DrmHandle, b: DrmHandle) -> DrmHandle:
        raise NotImplementedError

    @abc.abstractmethod
    def a_eldiv_b(self, op: ElementwiseBinary, a: DrmHandle, b: DrmHandle) -> DrmHandle:
        raise NotImplementedError

    @abc.abstractmethod
    def a_plus_scalar(self, op: ElementwiseScalar, a: DrmHandle, scalar: float) -> DrmHandle:
        raise NotImplementedError

    @abc.abstractmethod
    def a_minus_scalar(self, op: ElementwiseScalar, a: DrmHandle, scalar: float) -> DrmHandle:
        raise NotImplementedError

    @abc.abstractmethod
    def scalar_minus_a(self, op: ElementwiseScalar, a: DrmHandle, scalar: float) -> DrmHandle:
        raise NotImplementedError

    @abc.abstractmethod
    def a_times_scalar(self, op: ElementwiseScalar, a: DrmHandle, scalar: float) -> DrmHandle:
        raise NotImplementedError

    @abc.abstractmethod
    def a_div_scalar(self, op: ElementwiseScalar, a: DrmHandle, scalar: float) -> DrmHandle:
        raise NotImplementedError

    @abc.abstractmethod
    def scalar_div_a(self, op: ElementwiseScalar, a: DrmHandle, scalar: float) -> DrmHandle:
        raise NotImplementedError

    @abc.abstractmethod
    def row_range(self, op: RowRange, a: DrmHandle) -> DrmHandle:
        """Selects the rows of `op.rows` and re-keys them to start at *0*."""
        raise NotImplementedError

    @abc.abstractmethod
    def right_multiply(self, op: RightMatrixMultiply, a: DrmHandle) -> DrmHandle:
        """Computes *AM* for the in-core matrix *M* of the operator."""
        raise NotImplementedError

    @abc.abstractmethod
    def map_block(self, op: MapBlock, a: DrmHandle) -> DrmHandle:
        """Applies the user-defined block function of the operator to each partition."""
        raise NotImplementedError

    @abc.abstractmethod
    def from_checkpoint(self, checkpoint: Checkpoint) -> DrmHandle:
        """Provides the materialized rows of an existing checkpoint.

        The rows may be shared with the checkpoint, but the storage of the returned handle has to be independent: caching or
        releasing it must not affect the checkpoint.
        """
        raise NotImplementedError

    def cache(self, handle: DrmHandle, storage_level: StorageLevel) -> DrmHandle:
        """Caches the rows of a handle at a specific storage level."""
        handle.collection.persist(storage_level)
        return handle

    def uncache(self, handle: DrmHandle) -> None:
        """Releases the cached rows of a handle."""
        handle.collection.unpersist()


def _stack_rows(partition: Sequence[Row], ncol: int) -> tuple[list[Any], np.ndarray]:
    keys = [key for key, _ in partition]
    block = np.vstack([row for _, row in partition]) if partition else np.zeros((0, ncol))
    return keys, block


class LocalOperatorLibrary(PhysicalOperatorLibrary):
    """Computes all physical operators in-process, based on numpy.

    Products with distributed results keep the partitioning of their left operand. Products with a small (square) result,
    i.e. *A'A* and *A'B*, aggregate the partial results of all partitions and redistribute the final matrix into the same
    number of partitions as their input.

    All invocations are recorded in the `trace` of the library.
    """

    def __init__(self) -> None:
        self.trace = CallTrace()

    def _dense_result(self, matrix: np.ndarray, num_partitions: int) -> DrmHandle:
        rows = [(idx, row) for idx, row in enumerate(matrix)]
        num_partitions = max(1, min(num_partitions, len(rows)))
        return DrmHandle(RowCollection.parallelize(rows, num_partitions), matrix.shape[1])

    def _elementwise(self, op: ElementwiseBinary, a: DrmHandle, b: DrmHandle,
                     fn: Callable[[np.ndarray, np.ndarray], np.ndarray]) -> DrmHandle:
        b_rows = dict(b.collection.rows())
        zero_row = np.zeros(op.ncol)
        result = a.collection.map_partitions(
            lambda partition: [(key, fn(row, b_rows.get(key, zero_row))) for key, row in partition])

        # rows that only exist in B are (implicitly) zero rows in A
        a_keys = set(a.collection.keys())
        missing = [(key, fn(zero_row, row)) for key, row in b.collection.rows() if key not in a_keys]
        if missing:
            partitions = list(result.partitions)
            partitions[-1] = list(partitions[-1]) + missing
            result = RowCollection(partitions, key_type=result.key_type)
        return DrmHandle(result, op.ncol)

    def at(self, op: Transpose, a: DrmHandle) -> DrmHandle:
        self.trace.record("at", op)
        dense = a.collect(nrow=op.ncol)
        return self._dense_result(dense.T, a.collection.num_partitions)

    def abt(self, op: MatMulTransB, a: DrmHandle, b: DrmHandle) -> DrmHandle:
        self.trace.record("abt", op)
        b_dense = b.collect(nrow=op.ncol)
        return DrmHandle(a.collection.map_rows(lambda row: b_dense @ row), op.ncol)

    def atb(self, op: MatMulTransA, a: DrmHandle, b: DrmHandle, *, zippable: bool) -> DrmHandle:
        self.trace.record("atb", op, zippable=zippable)
        result = np.zeros((op.nrow, op.ncol))
        if zippable:
            if a.collection.partition_keys() != b.collection.partition_keys():
                raise ValueError("Operands of a zipped A'B product are not identically partitioned")
            for a_partition, b_partition in zip(a.collection.partitions, b.collection.partitions):
                for (_, a_row), (_, b_row) in zip(a_partition, b_partition):
                    result += np.outer(a_row, b_row)
        else:
            b_rows = dict(b.collection.rows())
            for key, a_row in a.collection.rows():
                b_row = b_rows.get(key)
                if b_row is not None:
                    result += np.outer(a_row, b_row)
        return self._dense_result(result, a.collection.num_partitions)

    def ata(self, op: SelfGramian, a: DrmHandle) -> DrmHandle:
        self.trace.record("ata", op)
        result = np.zeros((op.nrow, op.ncol))
        for _, row in a.collection.rows():
            result += np.outer(row, row)
        return self._dense_result(result, a.collection.num_partitions)

    def a_plus_b(self, op: ElementwiseBinary, a: DrmHandle, b: DrmHandle) -> DrmHandle:
        self.trace.record("a_plus_b", op)
        return self._elementwise(op, a, b, np.add)

    def a_minus_b(self, op: ElementwiseBinary, a: DrmHandle, b: DrmHandle) -> DrmHandle:
        self.trace.record("a_minus_b", op)
        return self._elementwise(op, a, b, np.subtract)

    def a_hadamard_b(self, op: ElementwiseBinary, a: DrmHandle, b: DrmHandle) -> DrmHandle:
        self.trace.record("a_hadamard_b", op)
        return self._elementwise(op, a, b, np.multiply)

    def a_eldiv_b(self, op: ElementwiseBinary, a: DrmHandle, b: DrmHandle) -> DrmHandle:
        self.trace.record("a_eldiv_b", op)
        return self._elementwise(op, a, b, np.divide)

    def a_plus_scalar(self, op: ElementwiseScalar, a: DrmHandle, scalar: float) -> DrmHandle:
        self.trace.record("a_plus_scalar", op, scalar=scalar)
        return DrmHandle(a.collection.map_rows(lambda row: row + scalar), a.ncol)

    def a_minus_scalar(self, op: ElementwiseScalar, a: DrmHandle, scalar: float) -> DrmHandle:
        self.trace.record("a_minus_scalar", op, scalar=scalar)
        return DrmHandle(a.collection.map_rows(lambda row: row - scalar), a.ncol)

    def scalar_minus_a(self, op: ElementwiseScalar, a: DrmHandle, scalar: float) -> DrmHandle:
        self.trace.record("scalar_minus_a", op, scalar=scalar)
        return DrmHandle(a.collection.map_rows(lambda row: scalar - row), a.ncol)

    def a_times_scalar(self, op: ElementwiseScalar, a: DrmHandle, scalar: float) -> DrmHandle:
        self.trace.record("a_times_scalar", op, scalar=scalar)
        return DrmHandle(a.collection.map_rows(lambda row: row * scalar), a.ncol)

    def a_div_scalar(self, op: ElementwiseScalar, a: DrmHandle, scalar: float) -> DrmHandle:
        self.trace.record("a_div_scalar", op, scalar=scalar)
        return DrmHandle(a.collection.map_rows(lambda row: row / scalar), a.ncol)

    def scalar_div_a(self, op: ElementwiseScalar, a: DrmHandle, scalar: float) -> DrmHandle:
        self.trace.record("scalar_div_a", op, scalar=scalar)
        return DrmHandle(a.collection.map_rows(lambda row: scalar / row), a.ncol)

    def row_range(self, op: RowRange, a: DrmHandle) -> DrmHandle:
        self.trace.record("row_range", op)
        rows = op.rows
        result = a.collection.map_partitions(
            lambda partition: [(key - rows.start, row) for key, row in partition if key in rows])
        return DrmHandle(result, a.ncol)

    def right_multiply(self, op: RightMatrixMultiply, a: DrmHandle) -> DrmHandle:
        self.trace.record("right_multiply", op)
        matrix = op.matrix
        return DrmHandle(a.collection.map_rows(lambda row: row @ matrix), op.ncol)

    def map_block(self, op: MapBlock, a: DrmHandle) -> DrmHandle:
        self.trace.record("map_block", op)

        def _apply(partition: Sequence[Row]) -> list[Row]:
            if not partition:
                return []
            keys, block = _stack_rows(partition, a.ncol)
            new_keys, new_block = op.fn(keys, block)
            new_block = np.asarray(new_block, dtype=float)
            if new_block.shape != (len(keys), op.ncol) or len(new_keys) != len(keys):
                raise ValueError(f"Block function of {op} produced a block of shape {new_block.shape}, expected "
                                 f"{(len(keys), op.ncol)}")
            if op.identically_partitioned and list(new_keys) != keys:
                raise ValueError(f"Block function of {op} is declared to be identically partitioned, but changed the "
                                 "row keys")
            return list(zip(new_keys, new_block))

        return DrmHandle(a.collection.map_partitions(_apply), op.ncol)

    def from_checkpoint(self, checkpoint: Checkpoint) -> DrmHandle:
        self.trace.record("checkpoint", checkpoint)
        # the rows are shared, but caching the result must not touch the storage of the checkpoint
        collection = checkpoint.handle.collection
        return DrmHandle(RowCollection(collection.partitions, key_type=collection.key_type), checkpoint.ncol)

    def __repr__(self) -> str:
        return f"LocalOperatorLibrary(calls={len(self.trace)})"
