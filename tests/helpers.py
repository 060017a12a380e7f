"""Shared builders for the test suite"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from pipefuse import Pipeline, map_fn  # noqa: E402


def add(n):
    return map_fn(lambda x: x + n)


def times(n):
    return map_fn(lambda x: x * n)


def duplicate(x, emit):
    emit(x)
    emit(x)


def chain_of_maps(length, data=(1, 2, 3)):
    """source -> add(1) -> add(2) -> ... -> add(length)"""
    pipeline = Pipeline()
    source = pipeline.from_iterable(data, name="A")
    current = source
    for i in range(1, length + 1):
        current = current.map(add(i), name=f"step_{i}")
    return pipeline, source, current


def live_kinds(pipeline, *outputs):
    return pipeline.graph.op_counts([col.node_id for col in outputs])
