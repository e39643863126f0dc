"""The planner rewrites logical expressions into equivalent expressions that can be executed efficiently.

Optimization happens in two fixed passes, each of which is a pure tree-to-tree transformation:

1. `normalize` applies algebraic identities to matrix products. Most importantly, it fuses transpositions into the
   products, such that matrices do not need to be transposed physically. For example, *A'A* becomes a `SelfGramian` and
   *AB'* becomes a `MatMulTransB`.
2. `cleanup` removes redundant double transpositions that the first pass may have created and validates that no
   transposition of a non-integer-keyed matrix remains.

There is no cost model and no plan search: each pass consists of local pattern rules that are applied top-down in a fixed
priority order. The first matching rule wins.

Both passes never modify their input. Subtrees that are not affected by a rewrite are shared between input and output.
"""
from __future__ import annotations

import numpy as np

from .logical import (
    DrmLike, UnaryOperator, BinaryOperator, Checkpoint,
    Transpose, TransposeAnyKey, MatMul, MatMulTransA, MatMulTransB, SelfGramian,
    LeftMatrixMultiply, RightMatrixMultiply,
    transposed
)
from .util.errors import InvariantViolationError, UnsupportedOperatorError


def optimize(expression: DrmLike) -> DrmLike:
    """Computes the optimized version of an expression, that can be passed to `lowering.exec_plan`."""
    return cleanup(normalize(expression))


def normalize(expression: DrmLike) -> DrmLike:
    """First optimization pass. This is mostly concerned with rewriting matrix products.

    Parameters
    ----------
    expression : DrmLike
        The expression to rewrite

    Returns
    -------
    DrmLike
        An equivalent expression. It does not contain any `MatMul` or `LeftMatrixMultiply` operators anymore.

    Raises
    ------
    UnsupportedOperatorError
        If the expression contains an object that is not a known operator.
    """
    match expression:
        # A'A
        case MatMul(Transpose(a), b) if a == b:
            return SelfGramian(normalize(a))
        case MatMul(TransposeAnyKey(a), b) if a == b:
            return SelfGramian(normalize(a))

        # AB'
        case MatMul(a, Transpose(b)):
            return MatMulTransB(normalize(a), normalize(b))

        # A'B, if the operands are identically partitioned this becomes a zipped product during execution
        case MatMul(Transpose(a), b) if a.is_identically_partitioned(b):
            return MatMulTransA(normalize(a), normalize(b))
        case MatMul(TransposeAnyKey(a), b):
            return MatMulTransA(normalize(a), normalize(b))

        # Choosing between this and the rule above (or the (B'A)' alternative) needs a cost model
        case MatMul(Transpose(a), b):
            return MatMulTransA(normalize(a), normalize(b))
        case MatMul(a, b):
            return MatMulTransB(normalize(a), transposed(normalize(b)))

        # MB = (B'M')'
        case LeftMatrixMultiply(matrix, b):
            return Transpose(RightMatrixMultiply(transposed(normalize(b)), np.transpose(matrix)))

        case Checkpoint():
            return expression

        case UnaryOperator():
            return expression.mutate(input_node=normalize(expression.input_node))
        case BinaryOperator():
            return expression.mutate(left_input=normalize(expression.left_input),
                                     right_input=normalize(expression.right_input))

        case _:
            raise UnsupportedOperatorError(f"Internal: optimizer has no rewrite rule for {expression!r}")


def cleanup(expression: DrmLike) -> DrmLike:
    """Second optimization pass. Removes double transpositions such as *A''* and validates the key types.

    Parameters
    ----------
    expression : DrmLike
        The expression to clean up. This should be the result of `normalize`.

    Returns
    -------
    DrmLike
        The cleaned expression

    Raises
    ------
    InvariantViolationError
        If the expression transposes a matrix with non-integer row keys outside of a product. Such a transposition cannot be
        carried out physically.
    UnsupportedOperatorError
        If the expression contains an object that is not a known operator.
    """
    match expression:
        case Transpose(Transpose(a)):
            return cleanup(a)

        # All meaningful A'A and A'B cases have been rewritten by the first pass. Whatever remains is a real transposition
        # request, which we cannot carry out for non-int keys.
        case TransposeAnyKey(a):
            raise InvariantViolationError(f"'A' must be int-keyed in this A.t expression (A has "
                                          f"{a.key_type.__name__} keys)")

        case Checkpoint():
            return expression

        case UnaryOperator():
            return expression.mutate(input_node=cleanup(expression.input_node))
        case BinaryOperator():
            return expression.mutate(left_input=cleanup(expression.left_input),
                                     right_input=cleanup(expression.right_input))

        case _:
            raise UnsupportedOperatorError(f"Internal: optimizer has no cleanup rule for {expression!r}")
