"""Tests for the row collections and the local physical operator library."""
from __future__ import annotations

import unittest

import numpy as np

from drmplan._core import ElementwiseOp, StorageLevel
from drmplan.checkpoint import CheckpointManager, PartitioningTagGenerator
from drmplan.logical import ElementwiseBinary, MatMulTransA
from drmplan.physical import DrmHandle, LocalOperatorLibrary, RowCollection


def _rows(matrix: np.ndarray, keys=None) -> list:
    keys = range(len(matrix)) if keys is None else keys
    return list(zip(keys, np.asarray(matrix, dtype=float)))


class RowCollectionTests(unittest.TestCase):
    def test_parallelize(self):
        collection = RowCollection.parallelize(_rows(np.ones((10, 2))), 3)
        self.assertEqual(collection.num_partitions, 3)
        self.assertEqual([len(partition) for partition in collection.partitions], [4, 3, 3])
        self.assertEqual(collection.keys(), list(range(10)))
        self.assertEqual(collection.count(), 10)

    def test_parallelize_requires_partitions(self):
        with self.assertRaises(ValueError):
            RowCollection.parallelize(_rows(np.ones((2, 2))), 0)

    def test_map_rows_keeps_partitioning(self):
        collection = RowCollection.parallelize(_rows(np.ones((5, 2))), 2)
        mapped = collection.map_rows(lambda row: row * 3)
        self.assertEqual(mapped.partition_keys(), collection.partition_keys())
        self.assertTrue(all(np.array_equal(row, [3, 3]) for _, row in mapped.rows()))

    def test_caching_state(self):
        collection = RowCollection.parallelize(_rows(np.ones((2, 2))), 1)
        self.assertFalse(collection.is_cached)
        collection.persist(StorageLevel.MemoryAndDisk)
        self.assertTrue(collection.is_cached)
        self.assertEqual(collection.storage_level, StorageLevel.MemoryAndDisk)
        collection.unpersist()
        self.assertFalse(collection.is_cached)

    def test_collect_fills_missing_rows(self):
        collection = RowCollection([[(0, np.array([1.0, 2.0])), (3, np.array([3.0, 4.0]))]])
        dense = DrmHandle(collection, 2).collect(nrow=5)
        np.testing.assert_array_equal(dense, [[1, 2], [0, 0], [0, 0], [3, 4], [0, 0]])
        self.assertEqual(DrmHandle(collection, 2).collect().shape, (4, 2))

    def test_collect_requires_int_keys(self):
        collection = RowCollection([[("a", np.ones(2))]], key_type=str)
        with self.assertRaises(ValueError):
            DrmHandle(collection, 2).collect()


class LocalOperatorLibraryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.library = LocalOperatorLibrary()
        self.manager = CheckpointManager(self.library, tag_generator=PartitioningTagGenerator(3))

    def test_zipped_product_requires_identical_partitioning(self):
        a = self.manager.parallelize(np.ones((6, 2)), 2)
        b = self.manager.parallelize(np.ones((6, 2)), 3)
        op = MatMulTransA(a, b)
        with self.assertRaises(ValueError):
            self.library.atb(op, a.handle, b.handle, zippable=True)

        result = self.library.atb(op, a.handle, b.handle, zippable=False)
        np.testing.assert_allclose(result.collect(nrow=2), np.full((2, 2), 6.0))

    def test_elementwise_with_missing_rows(self):
        a = self.manager.parallelize([[1.0], [2.0], [3.0]])
        sparse_b = RowCollection([[(2, np.array([5.0]))]])
        b_handle = DrmHandle(sparse_b, 1)
        op = ElementwiseBinary(a, a, ElementwiseOp.Plus)
        result = self.library.a_plus_b(op, a.handle, b_handle)
        np.testing.assert_allclose(result.collect(nrow=3), [[1.0], [2.0], [8.0]])

        missing_in_a = DrmHandle(RowCollection([[(0, np.array([1.0]))]]), 1)
        result = self.library.a_minus_b(op, missing_in_a, a.handle)
        np.testing.assert_allclose(result.collect(nrow=3), [[0.0], [-2.0], [-3.0]])

    def test_map_block_validates_shape(self):
        a = self.manager.parallelize(np.ones((4, 2)), 2)
        broken = a.map_block(lambda keys, block: (keys, block[:1]))
        with self.assertRaises(ValueError):
            self.library.map_block(broken, a.handle)

    def test_map_block_validates_declared_keys(self):
        a = self.manager.parallelize(np.ones((4, 2)), 2)
        rekeyed = a.map_block(lambda keys, block: (list(reversed(keys)), block), identically_partitioned=True)
        with self.assertRaises(ValueError):
            self.library.map_block(rekeyed, a.handle)

    def test_call_trace(self):
        a = self.manager.parallelize(np.ones((4, 2)), 2)
        self.manager.checkpoint(a.t @ a)
        self.manager.checkpoint(a + 1)

        trace = self.library.trace
        self.assertEqual(len(trace), 4)
        self.assertEqual(trace.counts()["checkpoint"], 2)

        df = trace.as_df()
        self.assertEqual(list(df.columns), ["family", "operator", "params"])
        self.assertEqual(list(df["family"]), ["checkpoint", "ata", "checkpoint", "a_plus_scalar"])
        self.assertEqual(df["params"].iloc[-1], {"scalar": 1})

        trace.clear()
        self.assertEqual(len(trace), 0)
        self.assertTrue(trace.as_df().empty)


if __name__ == "__main__":
    unittest.main()
