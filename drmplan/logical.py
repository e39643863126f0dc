"""logical provides the operator tree model of the distributed matrix algebra.

The central component of the model is the `DrmLike` class. All logical operators inherit from this abstract class. Logical
operators describe *what* should be computed on distributed row matrices (DRMs), not *how*. Following the design of the
algebra in the database world, all operator trees are immutable: once a tree has been built, its shape can no longer be
modified. Optimizer passes produce new trees via `mutate()` instead and reuse all subtrees that did not change.

Trees are built from materialized `Checkpoint` leaves using the usual Python operators:

- ``A.t`` transposes a matrix,
- ``A @ B`` multiplies two distributed matrices, ``A @ M`` and ``M @ A`` multiply with an in-core numpy matrix,
- ``A + B``, ``A - B``, ``A * B`` and ``A / B`` compute element-wise results, either with another DRM or with a scalar,
- ``A[10:20]`` selects a range of rows,
- ``A.map_block(fn)`` applies a user-defined transformation to each block of rows.

Calling `checkpoint()` on any expression optimizes, executes and caches it (see the `checkpoint` module).

The operators come in two flavors: the *user-facing* operators that are created by the algebra above (`Transpose`, `MatMul`,
`LeftMatrixMultiply`, ...) and the *specialized* operators that are only reached through optimization (`MatMulTransA`,
`MatMulTransB`, `SelfGramian`). Both kinds share the same base classes, which allows the optimizer to treat all
operators that it does not care about in a uniform manner.

Row keys are typed. Matrices with integer row keys can be transposed physically. Matrices with other keys (e.g. document
identifiers) can only appear transposed as part of a product that the optimizer can rewrite into a transposition-free form.
Such transpositions are modelled by `TransposeAnyKey`.
"""
from __future__ import annotations

import abc
import numbers
from collections.abc import Callable, Generator, Sequence
from typing import TYPE_CHECKING, Any, Optional

import numpy as np

from ._core import (
    NonZeroCount, PartitioningTag, UnknownPartitioning, StorageLevel, ElementwiseOp, ScalarOp,
    tags_match, is_int_keyed
)
from .util.errors import UnsupportedOperationError

if TYPE_CHECKING:
    from .checkpoint import CheckpointManager
    from .physical import DrmHandle


BlockFunction = Callable[[Sequence[Any], np.ndarray], tuple[Sequence[Any], np.ndarray]]
"""User-defined block transformations receive the row keys and the row block of a partition and produce a new pair."""


def _as_matrix(matrix: Any) -> np.ndarray:
    """Converts an in-core matrix into a read-only float matrix, making sure it is actually two-dimensional."""
    matrix = np.array(matrix, dtype=float)
    if matrix.ndim != 2:
        raise ValueError(f"In-core operands must be two-dimensional matrices, not of shape {matrix.shape}")
    matrix.setflags(write=False)
    return matrix


class DrmLike(abc.ABC):
    """Models a logical operator of the distributed matrix algebra. All specific operators inherit from it.

    Each operator knows the shape of its result (`nrow` and `ncol`), the type of its row keys and its partitioning tag. The
    partitioning tag identifies the physical partitioning of the operator's result, if the operator does not change the
    partitioning of its input. All other operators use `UnknownPartitioning`.

    Notes
    -----
    Operators are compared structurally: two operators are equal if they are of the same type, have equal parameters and
    equal inputs. The only exception are `Checkpoint` nodes, which are only equal to themselves.
    """

    __array_ufunc__ = None
    """Makes numpy defer to our reflected operators, such that ``M @ A`` produces a `LeftMatrixMultiply`."""

    def __init__(self) -> None:
        self._node_type = type(self).__name__
        self._hash_val = hash((self._node_type, self._recalc_hash_val()))

    @property
    def node_type(self) -> str:
        """Get the current operator as a string."""
        return self._node_type

    @property
    @abc.abstractmethod
    def nrow(self) -> int:
        """Get the number of rows of the operator's result."""
        raise NotImplementedError

    @property
    @abc.abstractmethod
    def ncol(self) -> int:
        """Get the number of columns of the operator's result."""
        raise NotImplementedError

    @property
    @abc.abstractmethod
    def key_type(self) -> type:
        """Get the type of the row keys of the operator's result."""
        raise NotImplementedError

    @property
    def partitioning_tag(self) -> PartitioningTag:
        """Get the tag of the physical partitioning of the operator's result. *0* indicates an unknown partitioning."""
        return UnknownPartitioning

    @abc.abstractmethod
    def children(self) -> Sequence[DrmLike]:
        """Provides all input operators of the current operator, from left to right. Leaves provide an empty sequence."""
        raise NotImplementedError

    def non_zero_count(self) -> NonZeroCount:
        """Determines the number of non-zero elements of the operator's result without executing it.

        Raises
        ------
        UnsupportedOperationError
            If the operator does not support deriving the non-zero count. This is the default for most operators.
        """
        raise UnsupportedOperationError(f"Non-zero count is not supported for {self._node_type}")

    def is_identically_partitioned(self, other: DrmLike) -> bool:
        """Checks, whether there is evidence that this operator and `other` produce identically partitioned results."""
        return tags_match(self.partitioning_tag, other.partitioning_tag)

    def dfs_walk(self) -> Generator[DrmLike, None, None]:
        """Performs a depth-first search on the expression, starting with (and including) the current operator."""
        yield self
        for child in self.children():
            yield from child.dfs_walk()

    @property
    def t(self) -> DrmLike:
        """Transposes the current matrix. See `transposed()` for details."""
        return transposed(self)

    def map_block(self, fn: BlockFunction, ncol: Optional[int] = None, *,
                  identically_partitioned: bool = False) -> MapBlock:
        """Applies a user-defined transformation to each block of rows.

        Parameters
        ----------
        fn : BlockFunction
            The transformation. It receives the keys and the rows of one partition and has to produce the keys and rows of
            the resulting partition. The number of rows must not change.
        ncol : Optional[int], optional
            The number of columns of the resulting matrix. Defaults to the number of columns of the current matrix.
        identically_partitioned : bool, optional
            Whether the transformation keeps the row keys of each block. Only then does the result share the partitioning
            of the current matrix. Defaults to *False*.
        """
        return MapBlock(self, fn, ncol, identically_partitioned=identically_partitioned)

    def checkpoint(self, storage_level: StorageLevel = StorageLevel.MemoryOnly, *,
                   manager: Optional[CheckpointManager] = None) -> Checkpoint:
        """Optimizes, executes and caches the expression rooted at this operator.

        Checkpointing is idempotent: repeated calls for the same operator return the same checkpoint without doing any work.

        Parameters
        ----------
        storage_level : StorageLevel, optional
            How the materialized result should be cached. Defaults to memory-only caching.
        manager : Optional[CheckpointManager], optional
            The manager that materializes the expression. Defaults to the manager of the current session.

        Returns
        -------
        Checkpoint
            The materialized result
        """
        if manager is None:
            from .session import SessionPool
            manager = SessionPool.get_instance().current_session().manager
        return manager.checkpoint(self, storage_level)

    def _combine(self, other: object, elementwise: ElementwiseOp, scalar: ScalarOp) -> DrmLike:
        if isinstance(other, DrmLike):
            return ElementwiseBinary(self, other, elementwise)
        if isinstance(other, numbers.Real):
            return ElementwiseScalar(self, other, scalar)
        return NotImplemented

    def _rcombine(self, other: object, scalar: ScalarOp) -> DrmLike:
        if isinstance(other, numbers.Real):
            return ElementwiseScalar(self, other, scalar)
        return NotImplemented

    def __matmul__(self, other: object) -> DrmLike:
        if isinstance(other, DrmLike):
            return MatMul(self, other)
        if isinstance(other, (np.ndarray, list)):
            return RightMatrixMultiply(self, other)
        return NotImplemented

    def __rmatmul__(self, other: object) -> DrmLike:
        if isinstance(other, (np.ndarray, list)):
            return LeftMatrixMultiply(other, self)
        return NotImplemented

    def __add__(self, other: object) -> DrmLike:
        return self._combine(other, ElementwiseOp.Plus, ScalarOp.Plus)

    def __radd__(self, other: object) -> DrmLike:
        return self._rcombine(other, ScalarOp.Plus)

    def __sub__(self, other: object) -> DrmLike:
        return self._combine(other, ElementwiseOp.Minus, ScalarOp.Minus)

    def __rsub__(self, other: object) -> DrmLike:
        return self._rcombine(other, ScalarOp.MinusReversed)

    def __mul__(self, other: object) -> DrmLike:
        return self._combine(other, ElementwiseOp.Hadamard, ScalarOp.Times)

    def __rmul__(self, other: object) -> DrmLike:
        return self._rcombine(other, ScalarOp.Times)

    def __truediv__(self, other: object) -> DrmLike:
        return self._combine(other, ElementwiseOp.Divide, ScalarOp.Divide)

    def __rtruediv__(self, other: object) -> DrmLike:
        return self._rcombine(other, ScalarOp.DivideReversed)

    def __neg__(self) -> DrmLike:
        return ElementwiseScalar(self, 0, ScalarOp.MinusReversed)

    def __getitem__(self, rows: slice | range) -> RowRange:
        if isinstance(rows, slice):
            rows = range(*rows.indices(self.nrow))
        if not isinstance(rows, range):
            raise TypeError(f"Distributed matrices can only be sliced by row ranges, not by {rows!r}")
        return RowRange(self, rows)

    @abc.abstractmethod
    def _recalc_hash_val(self) -> int:
        """Calculates the hash value of the operator, based on its parameters and inputs."""
        raise NotImplementedError

    def __hash__(self) -> int:
        return self._hash_val

    @abc.abstractmethod
    def __eq__(self, other: object) -> bool:
        raise NotImplementedError

    def __repr__(self) -> str:
        children = self.children()
        if not children:
            return str(self)
        return f"{self}[{', '.join(repr(child) for child in children)}]"

    @abc.abstractmethod
    def __str__(self) -> str:
        raise NotImplementedError


class UnaryOperator(DrmLike, abc.ABC):
    """A unary operator receives exactly one distributed input. It can have additional (non-distributed) parameters."""

    def __init__(self, input_node: DrmLike) -> None:
        self._input_node = input_node
        super().__init__()

    @property
    def input_node(self) -> DrmLike:
        """Get the distributed input of the operator."""
        return self._input_node

    @property
    def key_type(self) -> type:
        return self._input_node.key_type

    def children(self) -> Sequence[DrmLike]:
        return [self._input_node]

    @abc.abstractmethod
    def mutate(self, *, input_node: Optional[DrmLike] = None) -> UnaryOperator:
        """Creates a new instance of the current operator with a different input.

        If the input does not change, the current operator is returned as-is.
        """
        raise NotImplementedError


class BinaryOperator(DrmLike, abc.ABC):
    """A binary operator receives exactly two distributed inputs."""

    def __init__(self, left_input: DrmLike, right_input: DrmLike) -> None:
        self._left_input = left_input
        self._right_input = right_input
        super().__init__()

    @property
    def left_input(self) -> DrmLike:
        """Get the left (first) input of the operator."""
        return self._left_input

    @property
    def right_input(self) -> DrmLike:
        """Get the right (second) input of the operator."""
        return self._right_input

    @property
    def key_type(self) -> type:
        return self._left_input.key_type

    def children(self) -> Sequence[DrmLike]:
        return [self._left_input, self._right_input]

    def mutate(self, *, left_input: Optional[DrmLike] = None, right_input: Optional[DrmLike] = None) -> BinaryOperator:
        """Creates a new instance of the current operator with different inputs.

        If none of the inputs change, the current operator is returned as-is.
        """
        left_input = self._left_input if left_input is None else left_input
        right_input = self._right_input if right_input is None else right_input
        if left_input is self._left_input and right_input is self._right_input:
            return self
        return self._copy_with(left_input, right_input)

    def _copy_with(self, left_input: DrmLike, right_input: DrmLike) -> BinaryOperator:
        return type(self)(left_input, right_input)

    def _recalc_hash_val(self) -> int:
        return hash((self._left_input, self._right_input))

    def __eq__(self, other: object) -> bool:
        return (isinstance(other, type(self))
                and self._left_input == other._left_input and self._right_input == other._right_input)

    __hash__ = DrmLike.__hash__


class Transpose(UnaryOperator):
    """Transposition of an integer-keyed matrix: *A'*.

    Raises
    ------
    ValueError
        If the input matrix does not have integer row keys. Use `transposed()` to pick the right transposition operator.
    """

    __match_args__ = ("input_node",)

    def __init__(self, input_node: DrmLike) -> None:
        if not is_int_keyed(input_node.key_type):
            raise ValueError(f"Only int-keyed matrices can be transposed physically, not {input_node.key_type.__name__}-"
                             "keyed ones. Use TransposeAnyKey instead.")
        super().__init__(input_node)

    @property
    def nrow(self) -> int:
        return self._input_node.ncol

    @property
    def ncol(self) -> int:
        return self._input_node.nrow

    @property
    def key_type(self) -> type:
        return int

    def non_zero_count(self) -> NonZeroCount:
        return self._input_node.non_zero_count()

    def mutate(self, *, input_node: Optional[DrmLike] = None) -> DrmLike:
        if input_node is None or input_node is self._input_node:
            return self
        return transposed(input_node)

    def _recalc_hash_val(self) -> int:
        return hash(self._input_node)

    __hash__ = DrmLike.__hash__

    def __eq__(self, other: object) -> bool:
        return isinstance(other, type(self)) and self._input_node == other._input_node

    def __str__(self) -> str:
        return "Transpose"


class TransposeAnyKey(UnaryOperator):
    """Transposition of a matrix with arbitrary row keys.

    Such a transposition can only be computed as part of a product, e.g. *A'A* or *A'B*. The optimizer rewrites all of these
    cases. If a `TransposeAnyKey` operator survives the optimization, the transposition was requested on its own, which is
    not a valid physical operation.
    """

    __match_args__ = ("input_node",)

    @property
    def nrow(self) -> int:
        return self._input_node.ncol

    @property
    def ncol(self) -> int:
        return self._input_node.nrow

    @property
    def key_type(self) -> type:
        return int

    def non_zero_count(self) -> NonZeroCount:
        return self._input_node.non_zero_count()

    def mutate(self, *, input_node: Optional[DrmLike] = None) -> TransposeAnyKey:
        if input_node is None or input_node is self._input_node:
            return self
        return TransposeAnyKey(input_node)

    def _recalc_hash_val(self) -> int:
        return hash(self._input_node)

    __hash__ = DrmLike.__hash__

    def __eq__(self, other: object) -> bool:
        return isinstance(other, type(self)) and self._input_node == other._input_node

    def __str__(self) -> str:
        return "TransposeAnyKey"


def transposed(drm: DrmLike) -> DrmLike:
    """Transposes a matrix, using a physical `Transpose` for integer-keyed matrices and `TransposeAnyKey` otherwise."""
    return Transpose(drm) if is_int_keyed(drm.key_type) else TransposeAnyKey(drm)


class MatMul(BinaryOperator):
    """The generic matrix product *AB* of two distributed matrices.

    This operator is never executed directly. The optimizer always rewrites it into one of the specialized products.
    """

    __match_args__ = ("left_input", "right_input")

    def __init__(self, left_input: DrmLike, right_input: DrmLike) -> None:
        if left_input.ncol != right_input.nrow:
            raise ValueError(f"Incompatible operand shapes for product: {left_input.nrow}x{left_input.ncol} and "
                             f"{right_input.nrow}x{right_input.ncol}")
        super().__init__(left_input, right_input)

    @property
    def nrow(self) -> int:
        return self._left_input.nrow

    @property
    def ncol(self) -> int:
        return self._right_input.ncol

    def __str__(self) -> str:
        return "MatMul"


class MatMulTransB(BinaryOperator):
    """The product *AB'* of two distributed matrices. The right input must be integer-keyed, its keys become the columns."""

    __match_args__ = ("left_input", "right_input")

    def __init__(self, left_input: DrmLike, right_input: DrmLike) -> None:
        if left_input.ncol != right_input.ncol:
            raise ValueError(f"Incompatible operand shapes for AB': {left_input.nrow}x{left_input.ncol} and "
                             f"{right_input.nrow}x{right_input.ncol}")
        if not is_int_keyed(right_input.key_type):
            raise ValueError("Right operand of AB' must be int-keyed")
        super().__init__(left_input, right_input)

    @property
    def nrow(self) -> int:
        return self._left_input.nrow

    @property
    def ncol(self) -> int:
        return self._right_input.nrow

    def __str__(self) -> str:
        return "MatMulTransB"


class MatMulTransA(BinaryOperator):
    """The product *A'B* of two distributed matrices with the same row keys.

    The product is computed by pairing the rows of both operands that share the same key. If both operands are known to be
    identically partitioned, this pairing can happen locally without a shuffle.
    """

    __match_args__ = ("left_input", "right_input")

    def __init__(self, left_input: DrmLike, right_input: DrmLike) -> None:
        if left_input.nrow != right_input.nrow:
            raise ValueError(f"Incompatible operand shapes for A'B: {left_input.nrow}x{left_input.ncol} and "
                             f"{right_input.nrow}x{right_input.ncol}")
        super().__init__(left_input, right_input)

    @property
    def nrow(self) -> int:
        return self._left_input.ncol

    @property
    def ncol(self) -> int:
        return self._right_input.ncol

    @property
    def key_type(self) -> type:
        return int

    def __str__(self) -> str:
        return "MatMulTransA"


class SelfGramian(UnaryOperator):
    """The Gram matrix *A'A* of a distributed matrix. Its result is a (typically small) square matrix."""

    __match_args__ = ("input_node",)

    @property
    def nrow(self) -> int:
        return self._input_node.ncol

    @property
    def ncol(self) -> int:
        return self._input_node.ncol

    @property
    def key_type(self) -> type:
        return int

    def mutate(self, *, input_node: Optional[DrmLike] = None) -> SelfGramian:
        if input_node is None or input_node is self._input_node:
            return self
        return SelfGramian(input_node)

    def _recalc_hash_val(self) -> int:
        return hash(self._input_node)

    __hash__ = DrmLike.__hash__

    def __eq__(self, other: object) -> bool:
        return isinstance(other, type(self)) and self._input_node == other._input_node

    def __str__(self) -> str:
        return "SelfGramian"


class ElementwiseBinary(BinaryOperator):
    """Combines two equally-shaped matrices cell by cell, e.g. *A + B* or the Hadamard product *A * B*."""

    __match_args__ = ("left_input", "right_input", "operator")

    def __init__(self, left_input: DrmLike, right_input: DrmLike, operator: ElementwiseOp) -> None:
        if (left_input.nrow, left_input.ncol) != (right_input.nrow, right_input.ncol):
            raise ValueError(f"Element-wise operands must have the same shape: {left_input.nrow}x{left_input.ncol} and "
                             f"{right_input.nrow}x{right_input.ncol}")
        if left_input.key_type is not right_input.key_type:
            raise ValueError("Element-wise operands must have the same key type")
        self._operator = operator
        super().__init__(left_input, right_input)

    @property
    def operator(self) -> ElementwiseOp:
        """Get the arithmetic operation that combines both operands."""
        return self._operator

    @property
    def nrow(self) -> int:
        return self._left_input.nrow

    @property
    def ncol(self) -> int:
        return self._left_input.ncol

    @property
    def partitioning_tag(self) -> PartitioningTag:
        # differently partitioned operands are merged by key, which can add rows to the left layout
        if self._left_input.is_identically_partitioned(self._right_input):
            return self._left_input.partitioning_tag
        return UnknownPartitioning

    def _copy_with(self, left_input: DrmLike, right_input: DrmLike) -> ElementwiseBinary:
        return ElementwiseBinary(left_input, right_input, self._operator)

    def _recalc_hash_val(self) -> int:
        return hash((self._left_input, self._right_input, self._operator))

    __hash__ = DrmLike.__hash__

    def __eq__(self, other: object) -> bool:
        return super().__eq__(other) and self._operator == other._operator

    def __str__(self) -> str:
        return f"ElementwiseBinary({self._operator})"


class ElementwiseScalar(UnaryOperator):
    """Combines each cell of a matrix with a scalar value, e.g. *A * 2* or *1 / A*."""

    __match_args__ = ("input_node", "scalar", "operator")

    def __init__(self, input_node: DrmLike, scalar: float, operator: ScalarOp) -> None:
        self._scalar = scalar
        self._operator = operator
        super().__init__(input_node)

    @property
    def scalar(self) -> float:
        """Get the scalar operand."""
        return self._scalar

    @property
    def operator(self) -> ScalarOp:
        """Get the arithmetic operation that combines the matrix with the scalar."""
        return self._operator

    @property
    def nrow(self) -> int:
        return self._input_node.nrow

    @property
    def ncol(self) -> int:
        return self._input_node.ncol

    @property
    def partitioning_tag(self) -> PartitioningTag:
        return self._input_node.partitioning_tag

    def non_zero_count(self) -> NonZeroCount:
        # scaling by a non-zero value keeps the sparsity pattern intact
        if self._operator in (ScalarOp.Times, ScalarOp.Divide) and self._scalar != 0 and np.isfinite(self._scalar):
            return self._input_node.non_zero_count()
        return super().non_zero_count()

    def mutate(self, *, input_node: Optional[DrmLike] = None) -> ElementwiseScalar:
        if input_node is None or input_node is self._input_node:
            return self
        return ElementwiseScalar(input_node, self._scalar, self._operator)

    def _recalc_hash_val(self) -> int:
        return hash((self._input_node, self._scalar, self._operator))

    __hash__ = DrmLike.__hash__

    def __eq__(self, other: object) -> bool:
        return (isinstance(other, type(self)) and self._input_node == other._input_node
                and self._scalar == other._scalar and self._operator == other._operator)

    def __str__(self) -> str:
        return f"ElementwiseScalar({self._operator} {self._scalar})"


class RowRange(UnaryOperator):
    """Selects a contiguous range of rows of an integer-keyed matrix. The selected rows are re-keyed to start at *0*."""

    __match_args__ = ("input_node", "rows")

    def __init__(self, input_node: DrmLike, rows: range) -> None:
        if not is_int_keyed(input_node.key_type):
            raise ValueError("Row ranges can only be selected from int-keyed matrices")
        if rows.step != 1:
            raise ValueError(f"Row ranges must be contiguous, not {rows}")
        if not 0 <= rows.start <= rows.stop <= input_node.nrow:
            raise ValueError(f"Row range {rows} is out of bounds for a matrix with {input_node.nrow} rows")
        self._rows = rows
        super().__init__(input_node)

    @property
    def rows(self) -> range:
        """Get the selected rows."""
        return self._rows

    @property
    def nrow(self) -> int:
        return len(self._rows)

    @property
    def ncol(self) -> int:
        return self._input_node.ncol

    def mutate(self, *, input_node: Optional[DrmLike] = None) -> RowRange:
        if input_node is None or input_node is self._input_node:
            return self
        return RowRange(input_node, self._rows)

    def _recalc_hash_val(self) -> int:
        return hash((self._input_node, self._rows))

    __hash__ = DrmLike.__hash__

    def __eq__(self, other: object) -> bool:
        return isinstance(other, type(self)) and self._input_node == other._input_node and self._rows == other._rows

    def __str__(self) -> str:
        return f"RowRange({self._rows.start}:{self._rows.stop})"


class _InCoreOperator(UnaryOperator, abc.ABC):
    """Common base for products between a distributed matrix and a small in-core matrix."""

    def __init__(self, input_node: DrmLike, matrix: np.ndarray) -> None:
        self._matrix = matrix
        super().__init__(input_node)

    @property
    def matrix(self) -> np.ndarray:
        """Get the in-core operand."""
        return self._matrix

    def _recalc_hash_val(self) -> int:
        return hash((self._input_node, self._matrix.shape, self._matrix.tobytes()))

    __hash__ = DrmLike.__hash__

    def __eq__(self, other: object) -> bool:
        return (isinstance(other, type(self)) and self._input_node == other._input_node
                and np.array_equal(self._matrix, other._matrix))


class LeftMatrixMultiply(_InCoreOperator):
    """The product *MA* of an in-core matrix *M* and an integer-keyed distributed matrix *A*."""

    __match_args__ = ("matrix", "input_node")

    def __init__(self, matrix: np.ndarray, input_node: DrmLike) -> None:
        matrix = _as_matrix(matrix)
        if matrix.shape[1] != input_node.nrow:
            raise ValueError(f"Incompatible operand shapes for product: {matrix.shape[0]}x{matrix.shape[1]} and "
                             f"{input_node.nrow}x{input_node.ncol}")
        if not is_int_keyed(input_node.key_type):
            raise ValueError("Left-multiplication requires an int-keyed distributed operand")
        super().__init__(input_node, matrix)

    @property
    def nrow(self) -> int:
        return self._matrix.shape[0]

    @property
    def ncol(self) -> int:
        return self._input_node.ncol

    @property
    def key_type(self) -> type:
        return int

    def mutate(self, *, input_node: Optional[DrmLike] = None) -> LeftMatrixMultiply:
        if input_node is None or input_node is self._input_node:
            return self
        return LeftMatrixMultiply(self._matrix, input_node)

    __hash__ = _InCoreOperator.__hash__

    def __str__(self) -> str:
        return f"LeftMatrixMultiply({self._matrix.shape[0]}x{self._matrix.shape[1]})"


class RightMatrixMultiply(_InCoreOperator):
    """The product *AM* of a distributed matrix *A* and an in-core matrix *M*. Rows stay where they are."""

    __match_args__ = ("input_node", "matrix")

    def __init__(self, input_node: DrmLike, matrix: np.ndarray) -> None:
        matrix = _as_matrix(matrix)
        if input_node.ncol != matrix.shape[0]:
            raise ValueError(f"Incompatible operand shapes for product: {input_node.nrow}x{input_node.ncol} and "
                             f"{matrix.shape[0]}x{matrix.shape[1]}")
        super().__init__(input_node, matrix)

    @property
    def nrow(self) -> int:
        return self._input_node.nrow

    @property
    def ncol(self) -> int:
        return self._matrix.shape[1]

    @property
    def partitioning_tag(self) -> PartitioningTag:
        return self._input_node.partitioning_tag

    def mutate(self, *, input_node: Optional[DrmLike] = None) -> RightMatrixMultiply:
        if input_node is None or input_node is self._input_node:
            return self
        return RightMatrixMultiply(input_node, self._matrix)

    __hash__ = _InCoreOperator.__hash__

    def __str__(self) -> str:
        return f"RightMatrixMultiply({self._matrix.shape[0]}x{self._matrix.shape[1]})"


class MapBlock(UnaryOperator):
    """Applies a user-defined transformation to each block of rows.

    The transformation is opaque to the optimizer. Only its input is optimized. Rows stay in their partitions, but the
    transformation may assign new keys to them. Therefore, the partitioning of the input is only retained if the
    transformation is declared to be `identically_partitioned`, i.e. if it keeps the row keys.
    """

    __match_args__ = ("input_node", "fn")

    def __init__(self, input_node: DrmLike, fn: BlockFunction, ncol: Optional[int] = None, *,
                 identically_partitioned: bool = False) -> None:
        self._fn = fn
        self._ncol = input_node.ncol if ncol is None else ncol
        self._identically_partitioned = identically_partitioned
        super().__init__(input_node)

    @property
    def fn(self) -> BlockFunction:
        """Get the user-defined transformation."""
        return self._fn

    @property
    def identically_partitioned(self) -> bool:
        """Get whether the transformation keeps the row keys of each block."""
        return self._identically_partitioned

    @property
    def nrow(self) -> int:
        return self._input_node.nrow

    @property
    def ncol(self) -> int:
        return self._ncol

    @property
    def partitioning_tag(self) -> PartitioningTag:
        return self._input_node.partitioning_tag if self._identically_partitioned else UnknownPartitioning

    def mutate(self, *, input_node: Optional[DrmLike] = None) -> MapBlock:
        if input_node is None or input_node is self._input_node:
            return self
        return MapBlock(input_node, self._fn, self._ncol, identically_partitioned=self._identically_partitioned)

    def _recalc_hash_val(self) -> int:
        return hash((self._input_node, self._fn, self._ncol, self._identically_partitioned))

    __hash__ = DrmLike.__hash__

    def __eq__(self, other: object) -> bool:
        return (isinstance(other, type(self)) and self._input_node == other._input_node
                and self._fn is other._fn and self._ncol == other._ncol
                and self._identically_partitioned == other._identically_partitioned)

    def __str__(self) -> str:
        fn_name = getattr(self._fn, "__name__", type(self._fn).__name__)
        return f"MapBlock({fn_name})"


class Checkpoint(DrmLike):
    """A materialized (and typically cached) distributed matrix. Checkpoints are the leaves of all expressions.

    Checkpoints are created by the `CheckpointManager`, either for the result of an expression or for user data. Each
    checkpoint is only equal to itself.

    Parameters
    ----------
    handle : DrmHandle
        The physical collection that contains the matrix rows.
    nrow : int
        The number of rows of the matrix.
    ncol : int
        The number of columns of the matrix.
    non_zero_count : NonZeroCount, optional
        The number of non-zero elements, if it is known.
    storage_level : StorageLevel, optional
        How the rows are cached.
    partitioning_tag : PartitioningTag, optional
        The tag of the physical partitioning of the rows.
    key_type : type, optional
        The type of the row keys. Defaults to integer keys.
    """

    __match_args__ = ("handle",)

    def __init__(self, handle: DrmHandle, *, nrow: int, ncol: int,
                 non_zero_count: NonZeroCount = NonZeroCount.unknown(),
                 storage_level: StorageLevel = StorageLevel.MemoryOnly,
                 partitioning_tag: PartitioningTag = UnknownPartitioning, key_type: type = int) -> None:
        self._handle = handle
        self._nrow = nrow
        self._ncol = ncol
        self._non_zero_count = NonZeroCount.of(non_zero_count)
        self._storage_level = storage_level
        self._partitioning_tag = partitioning_tag
        self._key_type = key_type
        super().__init__()

    @property
    def handle(self) -> DrmHandle:
        """Get the physical collection of the matrix."""
        return self._handle

    @property
    def nrow(self) -> int:
        return self._nrow

    @property
    def ncol(self) -> int:
        return self._ncol

    @property
    def key_type(self) -> type:
        return self._key_type

    @property
    def storage_level(self) -> StorageLevel:
        """Get the storage level that was requested for the matrix rows."""
        return self._storage_level

    @property
    def partitioning_tag(self) -> PartitioningTag:
        return self._partitioning_tag

    @property
    def is_cached(self) -> bool:
        """Checks, whether the matrix rows are currently cached by the substrate."""
        return self._handle.collection.is_cached

    def non_zero_count(self) -> NonZeroCount:
        return self._non_zero_count

    def children(self) -> Sequence[DrmLike]:
        return []

    def checkpoint(self, storage_level: StorageLevel = StorageLevel.MemoryOnly, *,
                   manager: Optional[CheckpointManager] = None) -> Checkpoint:
        return self

    def collect(self) -> np.ndarray:
        """Gathers the matrix into a dense in-core matrix. Only supported for int-keyed matrices."""
        return self._handle.collect(nrow=self._nrow)

    def uncache(self) -> None:
        """Releases the cached rows. The checkpoint can still be used afterwards, but reads are no longer cached."""
        self._handle.collection.unpersist()

    def _recalc_hash_val(self) -> int:
        return id(self)

    __hash__ = DrmLike.__hash__

    def __eq__(self, other: object) -> bool:
        return self is other

    def __str__(self) -> str:
        tag = self._partitioning_tag & 0xFFFF_FFFF_FFFF_FFFF
        return f"Checkpoint({self._nrow}x{self._ncol}, tag={tag:016x})"
