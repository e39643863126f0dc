"""Lowering translates optimized logical expressions into invocations of the physical operator library."""
from __future__ import annotations

from ._core import ElementwiseOp, ScalarOp, tags_match
from .logical import (
    DrmLike, Checkpoint, Transpose, MatMulTransA, MatMulTransB, SelfGramian, ElementwiseBinary, ElementwiseScalar,
    RowRange, RightMatrixMultiply, MapBlock
)
from .physical import DrmHandle, PhysicalOperatorLibrary
from .util.errors import UnsupportedOperatorError


def exec_plan(plan: DrmLike, library: PhysicalOperatorLibrary) -> DrmHandle:
    """Executes a previously optimized plan, bottom-up.

    Parameters
    ----------
    plan : DrmLike
        The plan to execute. This has to be the output of `planner.optimize`.
    library : PhysicalOperatorLibrary
        The library that computes the individual operators

    Returns
    -------
    DrmHandle
        The physical result of the plan

    Raises
    ------
    UnsupportedOperatorError
        If the plan contains an operator that has no physical counterpart. This indicates that the plan was not optimized
        (e.g. it still contains a `MatMul`) or that the planner and the lowering are out of sync.
    """
    match plan:
        case Transpose(a):
            return library.at(plan, exec_plan(a, library))
        case MatMulTransB(a, b):
            return library.abt(plan, exec_plan(a, library), exec_plan(b, library))
        case MatMulTransA(a, b):
            return library.atb(plan, exec_plan(a, library), exec_plan(b, library),
                               zippable=tags_match(a.partitioning_tag, b.partitioning_tag))
        case SelfGramian(a):
            return library.ata(plan, exec_plan(a, library))

        case ElementwiseBinary(a, b, ElementwiseOp.Plus):
            return library.a_plus_b(plan, exec_plan(a, library), exec_plan(b, library))
        case ElementwiseBinary(a, b, ElementwiseOp.Minus):
            return library.a_minus_b(plan, exec_plan(a, library), exec_plan(b, library))
        case ElementwiseBinary(a, b, ElementwiseOp.Hadamard):
            return library.a_hadamard_b(plan, exec_plan(a, library), exec_plan(b, library))
        case ElementwiseBinary(a, b, ElementwiseOp.Divide):
            return library.a_eldiv_b(plan, exec_plan(a, library), exec_plan(b, library))

        case ElementwiseScalar(a, s, ScalarOp.Plus):
            return library.a_plus_scalar(plan, exec_plan(a, library), s)
        case ElementwiseScalar(a, s, ScalarOp.Minus):
            return library.a_minus_scalar(plan, exec_plan(a, library), s)
        case ElementwiseScalar(a, s, ScalarOp.MinusReversed):
            return library.scalar_minus_a(plan, exec_plan(a, library), s)
        case ElementwiseScalar(a, s, ScalarOp.Times):
            return library.a_times_scalar(plan, exec_plan(a, library), s)
        case ElementwiseScalar(a, s, ScalarOp.Divide):
            return library.a_div_scalar(plan, exec_plan(a, library), s)
        case ElementwiseScalar(a, s, ScalarOp.DivideReversed):
            return library.scalar_div_a(plan, exec_plan(a, library), s)

        case RowRange(a, _):
            return library.row_range(plan, exec_plan(a, library))
        case RightMatrixMultiply(a, _):
            return library.right_multiply(plan, exec_plan(a, library))

        # custom operators, we just execute them
        case MapBlock(a, _):
            return library.map_block(plan, exec_plan(a, library))

        case Checkpoint():
            return library.from_checkpoint(plan)

        case _:
            raise UnsupportedOperatorError(f"Internal: optimizer has no exec policy for operator {plan!r}")
