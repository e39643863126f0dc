"""Tests for the operator tree model and the algebra that builds it."""
from __future__ import annotations

import unittest

import numpy as np

from drmplan import logical
from drmplan._core import ElementwiseOp, NonZeroCount, ScalarOp, UnknownPartitioning
from drmplan.checkpoint import CheckpointManager, PartitioningTagGenerator
from drmplan.physical import LocalOperatorLibrary
from drmplan.util.errors import UnsupportedOperationError


def _make_manager() -> CheckpointManager:
    return CheckpointManager(LocalOperatorLibrary(), tag_generator=PartitioningTagGenerator(42))


class AlgebraTests(unittest.TestCase):
    def setUp(self) -> None:
        self.manager = _make_manager()
        self.a = self.manager.parallelize(np.arange(12).reshape(4, 3), 2)
        self.b = self.manager.parallelize(np.ones((4, 3)), 2)

    def test_operators_build_nodes(self):
        self.assertIsInstance(self.a.t, logical.Transpose)
        self.assertIsInstance(self.a.t @ self.b, logical.MatMul)
        self.assertIsInstance(self.a + self.b, logical.ElementwiseBinary)
        self.assertEqual((self.a * self.b).operator, ElementwiseOp.Hadamard)
        self.assertEqual((self.a / 2).operator, ScalarOp.Divide)
        self.assertEqual((1 - self.a).operator, ScalarOp.MinusReversed)
        self.assertEqual((1 / self.a).operator, ScalarOp.DivideReversed)
        self.assertEqual((2 * self.a).operator, ScalarOp.Times)

    def test_in_core_products(self):
        matrix = np.ones((5, 4))
        left = matrix @ self.a
        self.assertIsInstance(left, logical.LeftMatrixMultiply)
        self.assertEqual((left.nrow, left.ncol), (5, 3))

        right = self.a @ np.ones((3, 2))
        self.assertIsInstance(right, logical.RightMatrixMultiply)
        self.assertEqual((right.nrow, right.ncol), (4, 2))

    def test_shapes(self):
        self.assertEqual((self.a.t.nrow, self.a.t.ncol), (3, 4))
        product = self.a.t @ self.b
        self.assertEqual((product.nrow, product.ncol), (3, 3))
        self.assertEqual(self.a[1:3].nrow, 2)

    def test_shape_mismatch(self):
        with self.assertRaises(ValueError):
            logical.MatMul(self.a, self.b)
        with self.assertRaises(ValueError):
            self.a + self.manager.parallelize(np.ones((3, 3)))
        with self.assertRaises(ValueError):
            self.a[range(2, 10)]

    def test_structural_equality(self):
        self.assertEqual(self.a.t @ self.b, self.a.t @ self.b)
        self.assertEqual(hash(self.a + 1), hash(self.a + 1))
        self.assertNotEqual(self.a + 1, self.a + 2)
        self.assertNotEqual(self.a.t @ self.b, self.b.t @ self.a)

    def test_checkpoints_are_only_equal_to_themselves(self):
        other = self.manager.parallelize(np.arange(12).reshape(4, 3), 2)
        self.assertNotEqual(self.a, other)
        self.assertEqual(self.a, self.a)

    def test_mutate_keeps_identity_without_changes(self):
        node = self.a + self.b
        self.assertIs(node.mutate(), node)
        self.assertIs(node.mutate(left_input=self.a), node)

        mutated = node.mutate(right_input=self.a)
        self.assertIsNot(mutated, node)
        self.assertIs(mutated.left_input, self.a)
        self.assertIs(mutated.right_input, self.a)
        self.assertEqual(mutated.operator, ElementwiseOp.Plus)
        self.assertIs(node.right_input, self.b)

    def test_transposition_of_non_int_keys(self):
        docs = self.manager.parallelize(np.ones((2, 3)), keys=["doc-1", "doc-2"])
        self.assertIs(docs.key_type, str)
        self.assertIsInstance(docs.t, logical.TransposeAnyKey)
        self.assertIs(docs.t.key_type, int)
        with self.assertRaises(ValueError):
            logical.Transpose(docs)

    def test_partitioning_tags(self):
        self.assertNotEqual(self.a.partitioning_tag, UnknownPartitioning)
        self.assertEqual((self.a * 2).partitioning_tag, self.a.partitioning_tag)
        self.assertEqual((self.a + self.a * 2).partitioning_tag, self.a.partitioning_tag)
        self.assertEqual((self.a + self.b).partitioning_tag, UnknownPartitioning)
        self.assertEqual(self.a.t.partitioning_tag, UnknownPartitioning)
        self.assertFalse(self.a.is_identically_partitioned(self.b))

    def test_map_block_partitioning(self):
        def identity(keys, block):
            return keys, block

        same_keys = self.a.map_block(identity, identically_partitioned=True)
        self.assertTrue(self.a.is_identically_partitioned(same_keys))

        opaque = self.a.map_block(identity)
        self.assertEqual(opaque.partitioning_tag, UnknownPartitioning)
        self.assertFalse(self.a.is_identically_partitioned(opaque))
        self.assertNotEqual(opaque, same_keys)

    def test_non_zero_count(self):
        self.assertEqual(self.a.non_zero_count(), NonZeroCount.of(11))
        self.assertEqual((self.a * 3).non_zero_count(), 11)
        self.assertEqual(self.a.t.non_zero_count(), 11)
        with self.assertRaises(UnsupportedOperationError):
            (self.a + 1).non_zero_count()
        with self.assertRaises(UnsupportedOperationError):
            (self.a * 0).non_zero_count()

    def test_dfs_walk(self):
        expression = (self.a.t @ self.b) + 1
        node_types = [node.node_type for node in expression.dfs_walk()]
        self.assertEqual(node_types, ["ElementwiseScalar", "MatMul", "Transpose", "Checkpoint", "Checkpoint"])


if __name__ == "__main__":
    unittest.main()
