"""Tests for the rewrite passes of the planner."""
from __future__ import annotations

import unittest
from collections.abc import Sequence

import numpy as np

from drmplan import planner
from drmplan.checkpoint import CheckpointManager, PartitioningTagGenerator
from drmplan.logical import (
    DrmLike, Transpose, TransposeAnyKey, MatMul, MatMulTransA, MatMulTransB, SelfGramian, ElementwiseScalar,
    LeftMatrixMultiply, RightMatrixMultiply
)
from drmplan.physical import LocalOperatorLibrary
from drmplan.util.errors import InvariantViolationError, UnsupportedOperatorError


class ForeignOperator(DrmLike):
    """An operator that the planner does not know about."""

    def __init__(self, nrow: int, ncol: int) -> None:
        self._nrow = nrow
        self._ncol = ncol
        super().__init__()

    @property
    def nrow(self) -> int:
        return self._nrow

    @property
    def ncol(self) -> int:
        return self._ncol

    @property
    def key_type(self) -> type:
        return int

    def children(self) -> Sequence[DrmLike]:
        return []

    def _recalc_hash_val(self) -> int:
        return hash((self._nrow, self._ncol))

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ForeignOperator) and (self._nrow, self._ncol) == (other._nrow, other._ncol)

    __hash__ = DrmLike.__hash__

    def __str__(self) -> str:
        return "ForeignOperator"


class NormalizationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.manager = CheckpointManager(LocalOperatorLibrary(), tag_generator=PartitioningTagGenerator(42))
        self.a = self.manager.parallelize(np.arange(12).reshape(4, 3), 2)
        self.c = self.manager.parallelize(np.ones((4, 2)), 2)
        self.docs = self.manager.parallelize(np.ones((3, 2)), keys=["d1", "d2", "d3"])
        self.other_docs = self.manager.parallelize(np.ones((3, 5)), keys=["d1", "d2", "d3"])

    def test_self_gramian(self):
        self.assertEqual(planner.normalize(self.a.t @ self.a), SelfGramian(self.a))

    def test_self_gramian_structural_equality(self):
        shifted = self.a + 1
        other_shifted = self.a + 1
        self.assertEqual(planner.normalize(shifted.t @ other_shifted), SelfGramian(shifted))

    def test_self_gramian_any_key(self):
        self.assertEqual(planner.normalize(self.docs.t @ self.docs), SelfGramian(self.docs))

    def test_product_with_transposed_right_input(self):
        b = self.manager.parallelize(np.ones((5, 3)))
        self.assertEqual(planner.normalize(self.a @ b.t), MatMulTransB(self.a, b))

    def test_transposed_left_input_identically_partitioned(self):
        scaled = self.a * 2
        normalized = planner.normalize(self.a.t @ scaled)
        self.assertEqual(normalized, MatMulTransA(self.a, scaled))
        self.assertIs(normalized.right_input, scaled)

    def test_transposed_left_input_any_key(self):
        self.assertEqual(planner.normalize(self.docs.t @ self.other_docs), MatMulTransA(self.docs, self.other_docs))

    def test_transposed_left_input_fallback(self):
        self.assertEqual(planner.normalize(self.a.t @ self.c), MatMulTransA(self.a, self.c))

    def test_generic_product(self):
        right = self.manager.parallelize(np.ones((3, 2)))
        self.assertEqual(planner.normalize(self.a @ right), MatMulTransB(self.a, Transpose(right)))

    def test_generic_product_any_key(self):
        normalized = planner.normalize(MatMul(self.a, self.docs))
        self.assertEqual(normalized, MatMulTransB(self.a, TransposeAnyKey(self.docs)))
        with self.assertRaises(InvariantViolationError):
            planner.optimize(MatMul(self.a, self.docs))

    def test_left_matrix_multiply(self):
        matrix = np.arange(8).reshape(2, 4)
        normalized = planner.normalize(LeftMatrixMultiply(matrix, self.a))
        self.assertEqual(normalized, Transpose(RightMatrixMultiply(Transpose(self.a), matrix.T)))
        self.assertEqual((normalized.nrow, normalized.ncol), (2, 3))

    def test_nested_rewrites(self):
        normalized = planner.normalize((self.a.t @ self.a) + 1)
        self.assertIsInstance(normalized, ElementwiseScalar)
        self.assertEqual(normalized.input_node, SelfGramian(self.a))

    def test_checkpoints_are_not_rewritten(self):
        self.assertIs(planner.normalize(self.a), self.a)
        self.assertIs(planner.cleanup(self.a), self.a)

    def test_rewrites_are_pure(self):
        shared = self.a + self.a
        expression = (shared.t @ shared) * 2
        normalized = planner.normalize(expression)

        self.assertIsInstance(expression.input_node, MatMul)
        self.assertIs(normalized.input_node.input_node, shared)

        untouched = (self.a + 1) * 2
        self.assertIs(planner.normalize(untouched), untouched)

    def test_unknown_operator(self):
        with self.assertRaises(UnsupportedOperatorError):
            planner.normalize(ForeignOperator(3, 3) + 1)


class CleanupTests(unittest.TestCase):
    def setUp(self) -> None:
        self.manager = CheckpointManager(LocalOperatorLibrary(), tag_generator=PartitioningTagGenerator(7))
        self.a = self.manager.parallelize(np.arange(12).reshape(4, 3), 2)
        self.docs = self.manager.parallelize(np.ones((3, 2)), keys=["d1", "d2", "d3"])

    def test_double_transposition(self):
        self.assertEqual(planner.cleanup(Transpose(Transpose(self.a))), planner.cleanup(self.a))
        self.assertIs(planner.cleanup(self.a.t.t), self.a)

    def test_nested_double_transposition(self):
        cleaned = planner.cleanup(self.a.t.t + 1)
        self.assertIsInstance(cleaned, ElementwiseScalar)
        self.assertIs(cleaned.input_node, self.a)

    def test_transpose_any_key(self):
        with self.assertRaises(InvariantViolationError):
            planner.cleanup(TransposeAnyKey(self.docs))
        with self.assertRaises(InvariantViolationError):
            planner.cleanup(TransposeAnyKey(self.a) * 2)

    def test_unknown_operator(self):
        with self.assertRaises(UnsupportedOperatorError):
            planner.cleanup(ForeignOperator(2, 2))

    def test_optimize_runs_both_passes(self):
        matrix = np.ones((2, 4))
        optimized = planner.optimize(matrix @ (self.a.t.t))
        self.assertEqual(optimized, Transpose(RightMatrixMultiply(Transpose(self.a), matrix.T)))


if __name__ == "__main__":
    unittest.main()
