"""drmplan - A rewrite-based planner for algebra on distributed row matrices.

Distributed row matrices (DRMs) are matrices whose rows are spread across the partitions of a distributed collection. Each
row is identified by a row key, which is typically (but not necessarily) the row index. drmplan allows to express
computations on such matrices using the usual Python operators and takes care of executing them efficiently.

On a high level, drmplan is designed for the following workflow:

1. a session is created via `make_session`. It bundles the physical operator library (which actually computes operators
   on the collection substrate) and the `CheckpointManager`.
2. in-core data is distributed via `DrmSession.parallelize`, which produces a `Checkpoint`: a materialized matrix.
3. starting from such checkpoints, logical expressions are built, e.g. ``(A.t @ A) + 1``. Building expressions is cheap,
   nothing is computed yet.
4. calling `checkpoint()` on an expression optimizes it (see the `planner` module), executes the optimized plan against the
   physical library (see the `lowering` module) and caches the result. The result is itself a checkpoint that can be used
   to build new expressions, or that can be collected into an in-core numpy matrix.

The optimizer is deliberately simple: there is no cost model. Instead, two fixed passes of local rewrite rules fuse
transpositions into matrix products, such that expensive physical transpositions are avoided. For example, *A'A* is
computed as a single self-Gramian operator, and *A'B* on identically partitioned operands is computed without any shuffle.

The project is structured as follows:

- the `logical` module contains the operator tree model
- `planner` contains the rewrite passes and `lowering` maps optimized plans to the physical library
- `physical` contains the interface of the physical library, as well as an in-process reference implementation
- `checkpoint` and `session` contain the materialization and bootstrap logic
- `analysis` provides utilities to inspect expressions and plans
- `forest` contains the cross-validation step of partial decision forests, which is unrelated to the matrix algebra
- the `util` package contains general utilities, such as logging and error types
- the `vis` package visualizes expressions. It requires the optional Graphviz dependency and has to be imported explicitly.
"""

from . import (
    analysis,
    forest,
    lowering,
    planner,
    util
)
from ._core import NonZeroCount, PartitioningTag, UnknownPartitioning, StorageLevel, ElementwiseOp, ScalarOp
from .logical import (
    DrmLike, UnaryOperator, BinaryOperator, Checkpoint,
    Transpose, TransposeAnyKey, MatMul, MatMulTransA, MatMulTransB, SelfGramian,
    ElementwiseBinary, ElementwiseScalar, RowRange, LeftMatrixMultiply, RightMatrixMultiply, MapBlock,
    transposed
)
from .planner import optimize
from .lowering import exec_plan
from .physical import RowCollection, DrmHandle, CallTrace, PhysicalOperatorLibrary, LocalOperatorLibrary
from .checkpoint import CheckpointManager, PartitioningTagGenerator
from .session import SessionConfig, DrmSession, SessionPool, make_session

__version__ = "0.1.0"

__all__ = [
    "analysis", "forest", "lowering", "planner", "util",
    "NonZeroCount", "PartitioningTag", "UnknownPartitioning", "StorageLevel", "ElementwiseOp", "ScalarOp",
    "DrmLike", "UnaryOperator", "BinaryOperator", "Checkpoint",
    "Transpose", "TransposeAnyKey", "MatMul", "MatMulTransA", "MatMulTransB", "SelfGramian",
    "ElementwiseBinary", "ElementwiseScalar", "RowRange", "LeftMatrixMultiply", "RightMatrixMultiply", "MapBlock",
    "transposed",
    "optimize", "exec_plan",
    "RowCollection", "DrmHandle", "CallTrace", "PhysicalOperatorLibrary", "LocalOperatorLibrary",
    "CheckpointManager", "PartitioningTagGenerator",
    "SessionConfig", "DrmSession", "SessionPool", "make_session"
]
