#!/usr/bin/env python3
"""
Tests for the collection builder and the local executor
"""

import os
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
sys.path.insert(0, os.path.dirname(__file__))

from helpers import add, duplicate  # noqa: E402
from pipefuse import (  # noqa: E402
    GraphStructureError, LocalExecutor, OpKind, Pipeline, PipelineGraph,
    flat_map_fn, map_fn,
)
from pipefuse.analyzer import build_word_count  # noqa: E402

TEXT = "this is a test\nthis is only a test\nIs it\n"


class TestBuilder(unittest.TestCase):

    def test_transforms_are_deferred(self):
        calls = []

        def record(x, emit):
            calls.append(x)
            emit(x)

        pipeline = Pipeline()
        out = pipeline.from_iterable([1, 2]).map(record)
        self.assertEqual(calls, [])
        self.assertFalse(out.is_materialized())
        self.assertEqual(out.producing_op.kind, OpKind.PARALLEL_DO)
        self.assertEqual(out.collect(), [1, 2])
        self.assertEqual(calls, [1, 2])

    def test_consumer_registration(self):
        pipeline = Pipeline()
        a = pipeline.from_iterable([1], name="A")
        b = a.map(add(1))
        g = a.group_by_key()
        self.assertTrue(a.is_materialized())
        self.assertEqual([op.id for op in a.consuming_ops],
                         [b.node.producing_op, g.node.producing_op])

    def test_flatten_needs_inputs(self):
        with self.assertRaises(ValueError):
            Pipeline().flatten()

    def test_collections_from_other_pipeline_rejected(self):
        first, second = Pipeline(), Pipeline()
        a = first.from_iterable([1])
        b = second.from_iterable([2])
        with self.assertRaises(ValueError):
            first.flatten(a, b)

    def test_combine_requires_callable(self):
        pipeline = Pipeline()
        with self.assertRaises(TypeError):
            pipeline.from_iterable([]).group_by_key().combine(5)

    def test_map_requires_callable(self):
        pipeline = Pipeline()
        with self.assertRaises(TypeError):
            pipeline.from_iterable([]).map("not a function")

    def test_read_text_file(self):
        with tempfile.NamedTemporaryFile('w', suffix='.txt', delete=False) as f:
            f.write(TEXT)
        try:
            pipeline = Pipeline()
            lines = pipeline.read_text_file(f.name)
            self.assertTrue(lines.is_materialized())
            self.assertEqual(lines.name, os.path.basename(f.name))
            self.assertEqual(list(lines), ["this is a test", "this is only a test", "Is it"])
        finally:
            os.unlink(f.name)

    def test_read_text_file_decodes_utf8(self):
        with tempfile.NamedTemporaryFile('wb', suffix='.txt', delete=False) as f:
            f.write("na\u00efve caf\u00e9\n\u00fcber\n".encode('utf-8'))
        self.addCleanup(os.unlink, f.name)

        lines = Pipeline().read_text_file(f.name)
        self.assertEqual(list(lines), ["na\u00efve caf\u00e9", "\u00fcber"])

    def test_read_text_file_with_encoding(self):
        with tempfile.NamedTemporaryFile('wb', suffix='.txt', delete=False) as f:
            f.write("caf\u00e9\n".encode('latin-1'))
        self.addCleanup(os.unlink, f.name)

        lines = Pipeline().read_text_file(f.name, encoding='latin-1')
        self.assertEqual(list(lines), ["caf\u00e9"])

    def test_repr(self):
        pipeline = Pipeline()
        a = pipeline.from_iterable([], name="A")
        self.assertEqual(repr(a), "LazyCollection('A', materialized)")


class TestWordCount(unittest.TestCase):

    def count(self, optimize):
        pipeline = Pipeline()
        lines = pipeline.from_iterable(TEXT.splitlines(), name="lines")
        counts = build_word_count(lines)
        if optimize:
            pipeline.optimize(counts)
        return pipeline, counts, dict(counts)

    def test_counts(self):
        _, _, result = self.count(optimize=False)
        self.assertEqual(result["is"], 3)
        self.assertEqual(result["test"], 2)
        self.assertEqual(result["only"], 1)

    def test_optimized_counts_match(self):
        _, _, plain = self.count(optimize=False)
        pipeline, counts, fused = self.count(optimize=True)
        self.assertEqual(plain, fused)
        self.assertEqual(pipeline.graph.op_counts([counts.node_id]),
                         {'parallel_do': 1, 'group_by_key': 1, 'combine_values': 1})


class TestLocalExecutor(unittest.TestCase):

    def test_flatten_concatenates_in_input_order(self):
        pipeline = Pipeline()
        a = pipeline.from_iterable([1, 2])
        b = pipeline.from_iterable([3])
        self.assertEqual(pipeline.flatten(a, b).collect(), [1, 2, 3])

    def test_group_by_key_first_seen_order(self):
        pipeline = Pipeline()
        a = pipeline.from_iterable([("b", 1), ("a", 2), ("b", 3)])
        self.assertEqual(a.group_by_key().collect(), [("b", [1, 3]), ("a", [2])])

    def test_multiple_output_map_runs_once_per_element(self):
        graph = PipelineGraph()
        source = graph.add_source([1, 2], name="A")
        b, c = graph.add_node("B"), graph.add_node("C")
        multi = graph.new_operation(OpKind.MULTIPLE_PARALLEL_DO, [source.id])
        multi.add_destination(map_fn(lambda x: x + 1), b.id)
        multi.add_destination(duplicate, c.id)
        graph.connect(multi)

        executor = LocalExecutor(graph)
        results = executor.execute([b.id, c.id])

        self.assertEqual(results, {b.id: [2, 3], c.id: [1, 1, 2, 2]})
        self.assertEqual(executor.stats.operations_run, 1)
        self.assertEqual(executor.stats.elements_read, 2)
        self.assertEqual(executor.stats.elements_emitted, 6)
        self.assertEqual(executor.stats.by_kind, {'multiple_parallel_do': 1})

    def test_shared_node_computed_once(self):
        pipeline = Pipeline()
        a = pipeline.from_iterable([1, 2, 3])
        b = a.map(add(1))
        left, right = b.map(add(1)), b.map(add(2))

        executor = LocalExecutor(pipeline.graph)
        executor.execute([left.node_id, right.node_id])

        self.assertEqual(executor.stats.operations_run, 3)
        self.assertEqual(executor.stats.to_dict()['by_kind'], {'parallel_do': 3})

    def test_fused_pipeline_reads_fewer_elements(self):
        def build():
            pipeline = Pipeline()
            words = pipeline.from_iterable(["a b", "c"]).map(flat_map_fn(str.split))
            return pipeline, words.map(map_fn(str.upper)).map(map_fn(lambda w: w * 2))

        plain_pipeline, plain = build()
        plain_exec = LocalExecutor(plain_pipeline.graph)
        plain_exec.execute([plain.node_id])

        fused_pipeline, fused = build()
        fused_pipeline.optimize(fused)
        fused_exec = LocalExecutor(fused_pipeline.graph)
        fused_exec.execute([fused.node_id])

        self.assertEqual(plain_exec.stats.elements_read, 8)
        self.assertEqual(fused_exec.stats.elements_read, 2)
        self.assertEqual(fused.collect(), ["AA", "BB", "CC"])

    def test_user_errors_propagate_after_fusion(self):
        def fail_on_two(x, emit):
            if x == 2:
                raise KeyError(x)
            emit(x)

        pipeline = Pipeline()
        out = pipeline.from_iterable([1, 2]).map(add(1)).map(fail_on_two).map(add(1))
        pipeline.optimize(out)
        with self.assertRaises(KeyError):
            out.collect()

    def test_malformed_graph_rejected(self):
        graph = PipelineGraph()
        orphan = graph.add_node("orphan")
        with self.assertRaises(GraphStructureError):
            LocalExecutor(graph).execute([orphan.id])

    def test_missing_consumer_record_rejected(self):
        pipeline = Pipeline()
        a = pipeline.from_iterable([1], name="A")
        b = a.map(add(1), name="B")
        a.node.consuming_ops.clear()
        with self.assertRaises(GraphStructureError):
            b.collect()


if __name__ == '__main__':
    unittest.main(verbosity=2)
