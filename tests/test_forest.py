"""Tests for the cross-validation step of partial decision forests."""
from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

import numpy as np

from drmplan import forest
from drmplan.forest import Leaf, NumericalSplit, TreeID


class PartitionSizingTests(unittest.TestCase):
    def test_nb_trees(self):
        self.assertEqual(forest.nb_trees(5, 11, 0), 3)
        self.assertEqual([forest.nb_trees(5, 11, partition) for partition in range(1, 5)], [2, 2, 2, 2])
        self.assertEqual(sum(forest.nb_trees(5, 11, partition) for partition in range(5)), 11)

    def test_nb_concerned(self):
        self.assertEqual(forest.nb_concerned(5, 11, 0), 8)
        self.assertEqual(forest.nb_concerned(5, 11, 3), 9)
        with self.assertRaises(ValueError):
            forest.nb_concerned(5, 11, -1)

    def test_split_data(self):
        splits = forest.split_data(list(range(23)), 5)
        self.assertEqual([len(split) for split in splits], [4, 4, 4, 4, 7])
        self.assertEqual(sum(splits, []), list(range(23)))


class TreeTests(unittest.TestCase):
    def test_classify(self):
        tree = NumericalSplit(1, 0.5, Leaf(0), NumericalSplit(0, 10.0, Leaf(1), Leaf(2)))
        self.assertEqual(tree.classify([0.0, 0.2]), 0)
        self.assertEqual(tree.classify([3.0, 0.7]), 1)
        self.assertEqual(tree.classify([12.0, 0.7]), 2)

    def test_stored_trees_are_restored(self):
        tree = NumericalSplit(1, 0.5, Leaf(0), Leaf(1))
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "forest.json"
            forest.store_inter_results(path, [TreeID(0, 0), TreeID(1, 1)], [tree, Leaf(1)], [10, 10])
            keys, trees = forest.load_inter_results(path, 2, 2, 1)
        self.assertEqual(keys, [TreeID(1, 0)])
        self.assertEqual(trees, [tree])

    def test_mismatching_forest(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "forest.json"
            forest.store_inter_results(path, [TreeID(0, 0)], [Leaf(0)], [10, 10])
            with self.assertRaises(ValueError):
                forest.load_inter_results(path, 2, 3, 1)
            with self.assertRaises(ValueError):
                forest.load_inter_results(path, 3, 1, 1)


class CrossValidationTests(unittest.TestCase):
    num_attributes = 4
    num_instances = 100
    num_trees = 11
    num_maps = 5

    def test_mapper(self):
        rng = np.random.default_rng(42)
        data = rng.normal(size=(self.num_instances, self.num_attributes))
        splits = forest.split_data(data, self.num_maps)

        # the leaf label is the partition that built the tree, this way we can track the outputs
        keys: list[TreeID] = []
        trees: list[Leaf] = []
        sizes: list[int] = []
        tree_index = 0
        for partition in range(self.num_maps):
            for _ in range(forest.nb_trees(self.num_maps, self.num_trees, partition)):
                keys.append(TreeID(partition, tree_index))
                trees.append(Leaf(partition))
                tree_index += 1
            sizes.append(len(splits[partition]))

        with tempfile.TemporaryDirectory() as tmp_dir:
            forest_path = Path(tmp_dir) / "partial.forest"
            forest.store_inter_results(forest_path, keys, trees, sizes)

            for partition in range(self.num_maps):
                split = splits[partition]
                nb_concerned = forest.nb_concerned(self.num_maps, self.num_trees, partition)

                cur_keys, cur_trees = forest.load_inter_results(forest_path, self.num_maps, self.num_trees, partition)
                mapper = forest.CrossValidationMapper(partition, cur_keys, cur_trees, len(split))
                for index, instance in enumerate(split):
                    mapper.map(index, instance)
                outputs = mapper.cleanup()

                self.assertEqual(len(outputs), nb_concerned)
                current = 0
                for index in range(self.num_trees):
                    if keys[index].partition == partition:
                        continue
                    key, output = outputs[current]
                    self.assertEqual(key.partition, partition)
                    self.assertEqual(key.tree_id, index)
                    self.assertEqual(len(output.predictions), len(split))
                    self.assertNotIn(forest.UnknownPrediction, output.predictions)
                    self.assertNotEqual(output.predictions[0], partition)
                    current += 1

    def test_unclassified_instances(self):
        mapper = forest.CrossValidationMapper(1, [TreeID(1, 0)], [Leaf(0)], 3)
        mapper.map(1, [0.0])
        _, output = mapper.cleanup()[0]
        np.testing.assert_array_equal(output.predictions, [-1, 0, -1])
        with self.assertRaises(IndexError):
            mapper.map(3, [0.0])

    def test_foreign_keys(self):
        with self.assertRaises(ValueError):
            forest.CrossValidationMapper(1, [TreeID(2, 0)], [Leaf(0)], 3)


if __name__ == "__main__":
    unittest.main()
