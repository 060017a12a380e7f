"""
pipefuse

Lazy dataflow pipelines: build a graph of deferred element-wise maps,
flattens and groupings, fuse it with the optimizer, then execute it.
"""

from .functions import DoFn, FunctionDoFn, ComposedFn, as_do_fn, compose, map_fn, filter_fn, flat_map_fn, stage_count
from .graph import CollectionNode, Operation, OpKind, PipelineGraph, GraphStructureError
from .config import OptimizerConfig, ConfigError
from .optimizer import Optimizer, optimize
from .executor import LocalExecutor, ExecutionStats
from .collection import LazyCollection, Pipeline
from .analyzer import GraphAnalyzer, FusionOpportunity, GraphStats
from .benchmark import FusionBenchmark, run_benchmark, compare_optimized_vs_unoptimized

__version__ = "1.0.0"
__all__ = [
    # Element functions
    "DoFn",
    "FunctionDoFn",
    "ComposedFn",
    "as_do_fn",
    "compose",
    "map_fn",
    "filter_fn",
    "flat_map_fn",
    "stage_count",

    # Graph model
    "CollectionNode",
    "Operation",
    "OpKind",
    "PipelineGraph",
    "GraphStructureError",

    # Optimization
    "OptimizerConfig",
    "ConfigError",
    "Optimizer",
    "optimize",

    # Execution
    "LocalExecutor",
    "ExecutionStats",
    "LazyCollection",
    "Pipeline",

    # Analysis and benchmarking
    "GraphAnalyzer",
    "FusionOpportunity",
    "GraphStats",
    "FusionBenchmark",
    "run_benchmark",
    "compare_optimized_vs_unoptimized",
]
