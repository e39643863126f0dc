"""Tests for the materialization of expressions by the checkpoint manager."""
from __future__ import annotations

import gc
import unittest

import numpy as np

from drmplan._core import NonZeroCount, StorageLevel, UnknownPartitioning
from drmplan.checkpoint import CheckpointManager, PartitioningTagGenerator, determine_non_zero_count
from drmplan.logical import Checkpoint
from drmplan.physical import LocalOperatorLibrary
from drmplan.util.errors import InvariantViolationError, StateError


class PartitioningTagTests(unittest.TestCase):
    def test_tags_are_known(self):
        generator = PartitioningTagGenerator(1)
        tags = [generator.next_tag() for _ in range(1000)]
        self.assertNotIn(UnknownPartitioning, tags)
        self.assertTrue(all(-2**63 <= tag < 2**63 for tag in tags))

    def test_seeded_generators_are_reproducible(self):
        first, second = PartitioningTagGenerator(5), PartitioningTagGenerator(5)
        self.assertEqual([first() for _ in range(10)], [second() for _ in range(10)])


class CheckpointManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.library = LocalOperatorLibrary()
        self.manager = CheckpointManager(self.library, tag_generator=PartitioningTagGenerator(42))
        self.data = np.random.default_rng(42).normal(size=(100, 4))
        self.x = self.manager.parallelize(self.data, 4)

    def test_gramian_end_to_end(self):
        result = self.manager.checkpoint(self.x.t @ self.x)

        self.assertIsInstance(result, Checkpoint)
        self.assertEqual((result.nrow, result.ncol), (4, 4))
        self.assertEqual(self.library.trace.counts()["ata"], 1)
        self.assertEqual(self.library.trace.counts()["at"], 0)
        np.testing.assert_allclose(result.collect(), self.data.T @ self.data)

    def test_checkpoint_is_idempotent(self):
        expression = self.x.t @ self.x
        first = self.manager.checkpoint(expression)
        num_calls = len(self.library.trace)

        second = self.manager.checkpoint(expression)
        self.assertIs(first, second)
        self.assertIs(expression.checkpoint(manager=self.manager), first)
        self.assertEqual(len(self.library.trace), num_calls)

    def test_equal_expressions_are_materialized_independently(self):
        first = self.manager.checkpoint(self.x + 1)
        second = self.manager.checkpoint(self.x + 1)
        self.assertIsNot(first, second)
        self.assertEqual(self.library.trace.counts()["a_plus_scalar"], 2)

    def test_checkpoint_of_checkpoint(self):
        self.assertIs(self.manager.checkpoint(self.x), self.x)
        self.assertEqual(len(self.library.trace), 0)

    def test_metadata(self):
        result = self.manager.checkpoint(self.x * 2, StorageLevel.MemoryAndDisk)
        self.assertEqual(result.storage_level, StorageLevel.MemoryAndDisk)
        self.assertTrue(result.is_cached)
        self.assertEqual(result.handle.collection.storage_level, StorageLevel.MemoryAndDisk)
        self.assertEqual(result.non_zero_count(), self.x.non_zero_count())
        self.assertEqual(result.partitioning_tag, self.x.partitioning_tag)

    def test_unknown_non_zero_count(self):
        result = self.manager.checkpoint(self.x.t @ self.x)
        self.assertFalse(result.non_zero_count().is_known())
        self.assertEqual(result.non_zero_count().get(), -1)
        self.assertEqual(determine_non_zero_count(self.x + 1), NonZeroCount.unknown())
        with self.assertRaises(StateError):
            result.non_zero_count().value

    def test_fresh_tag_for_unknown_partitioning(self):
        result = self.manager.checkpoint(self.x.t @ self.x)
        self.assertNotEqual(result.partitioning_tag, UnknownPartitioning)
        self.assertNotEqual(result.partitioning_tag, self.x.partitioning_tag)

    def test_checkpoints_can_be_reused(self):
        gramian = self.manager.checkpoint(self.x.t @ self.x)
        inverse = np.linalg.inv(gramian.collect())
        projected = self.manager.checkpoint(self.x @ inverse)
        np.testing.assert_allclose(projected.collect(), self.data @ np.linalg.inv(self.data.T @ self.data))

    def test_uncache(self):
        expression = self.x + 1
        first = self.manager.checkpoint(expression)
        self.assertIn(expression, self.manager)

        self.manager.uncache(expression)
        self.assertNotIn(expression, self.manager)
        self.assertFalse(first.is_cached)
        np.testing.assert_allclose(first.collect(), self.data + 1)

        second = self.manager.checkpoint(expression)
        self.assertIsNot(first, second)
        self.assertTrue(second.is_cached)

    def test_releasing_a_reduced_plan_keeps_the_input_cached(self):
        expression = self.x.t.t
        result = self.manager.checkpoint(expression, StorageLevel.DiskOnly)
        self.assertIsNot(result, self.x)
        self.assertEqual(self.x.storage_level, StorageLevel.MemoryOnly)
        self.assertEqual(self.x.handle.collection.storage_level, StorageLevel.MemoryOnly)

        self.manager.uncache(expression)
        self.assertFalse(result.is_cached)
        self.assertTrue(self.x.is_cached)

        self.manager.checkpoint(self.x.t.t)
        self.manager.clear()
        self.assertTrue(self.x.is_cached)
        np.testing.assert_allclose(self.x.collect(), self.data)

    def test_clear(self):
        first = self.manager.checkpoint(self.x + 1)
        second = self.manager.checkpoint(self.x * 3)
        self.manager.clear()
        self.assertEqual(len(self.manager), 0)
        self.assertFalse(first.is_cached)
        self.assertFalse(second.is_cached)

    def test_eviction_on_garbage_collection(self):
        expression = self.x - 1
        result = self.manager.checkpoint(expression)
        self.assertEqual(len(self.manager), 1)

        # the trace references the executed operators
        self.library.trace.clear()
        del expression
        gc.collect()
        self.assertEqual(len(self.manager), 0)
        self.assertFalse(result.is_cached)

    def test_transposition_of_non_int_keys(self):
        docs = self.manager.parallelize(np.ones((3, 2)), keys=["d1", "d2", "d3"])
        with self.assertRaises(InvariantViolationError):
            self.manager.checkpoint(docs.t)

        gramian = self.manager.checkpoint(docs.t @ docs)
        np.testing.assert_allclose(gramian.collect(), np.full((2, 2), 3.0))

    def test_parallelize_validation(self):
        with self.assertRaises(ValueError):
            self.manager.parallelize(np.ones(3))
        with self.assertRaises(ValueError):
            self.manager.parallelize(np.ones((2, 2)), keys=["a"])
        with self.assertRaises(ValueError):
            self.manager.parallelize(np.ones((2, 2)), keys=["a", 1])


if __name__ == "__main__":
    unittest.main()
