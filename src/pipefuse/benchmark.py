"""
Benchmark Module

Provides benchmarking utilities for comparing optimized vs unoptimized
pipeline execution.
"""

import time
import statistics
import json
from dataclasses import dataclass, field
from typing import List, Dict, Any, Iterable, Optional, Tuple
from datetime import datetime
import logging

from .collection import Pipeline
from .config import OptimizerConfig
from .executor import LocalExecutor
from .functions import filter_fn, flat_map_fn, map_fn
from .graph import PipelineGraph
from .optimizer import Optimizer

logger = logging.getLogger(__name__)


@dataclass
class BenchmarkResult:
    """Results from a benchmark run"""
    name: str
    iterations: int
    warmup_iterations: int

    # Timing statistics (in milliseconds)
    mean_ms: float
    median_ms: float
    std_ms: float
    min_ms: float
    max_ms: float

    total_time_ms: float
    throughput_runs: float  # Pipeline runs per second

    # Work done by one run
    operations_run: int = 0
    elements_read: int = 0

    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'iterations': self.iterations,
            'warmup_iterations': self.warmup_iterations,
            'timing': {
                'mean_ms': self.mean_ms,
                'median_ms': self.median_ms,
                'std_ms': self.std_ms,
                'min_ms': self.min_ms,
                'max_ms': self.max_ms,
            },
            'total_time_ms': self.total_time_ms,
            'throughput_runs': self.throughput_runs,
            'operations_run': self.operations_run,
            'elements_read': self.elements_read,
            'timestamp': self.timestamp,
            'metadata': self.metadata,
        }

    def __str__(self) -> str:
        return (
            f"{self.name}:\n"
            f"  Mean: {self.mean_ms:.3f}ms, Median: {self.median_ms:.3f}ms\n"
            f"  Std: {self.std_ms:.3f}ms, Min: {self.min_ms:.3f}ms, Max: {self.max_ms:.3f}ms\n"
            f"  Operations: {self.operations_run}, Elements read: {self.elements_read}"
        )


@dataclass
class ComparisonResult:
    """Results from comparing optimized vs unoptimized execution"""
    unoptimized: BenchmarkResult
    optimized: BenchmarkResult
    speedup: float  # unoptimized / optimized mean time

    original_op_count: int
    optimized_op_count: int
    fusion_ratio: float  # ops eliminated / original ops

    fusion_stats: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'unoptimized': self.unoptimized.to_dict(),
            'optimized': self.optimized.to_dict(),
            'speedup': self.speedup,
            'graph_stats': {
                'original_op_count': self.original_op_count,
                'optimized_op_count': self.optimized_op_count,
                'fusion_ratio': self.fusion_ratio,
            },
            'fusion_stats': self.fusion_stats,
        }

    def __str__(self) -> str:
        return (
            f"Fusion Benchmark Comparison\n"
            f"===========================\n"
            f"\nUnoptimized ({self.original_op_count} ops):\n"
            f"  Mean latency: {self.unoptimized.mean_ms:.3f}ms\n"
            f"\nOptimized ({self.optimized_op_count} ops):\n"
            f"  Mean latency: {self.optimized.mean_ms:.3f}ms\n"
            f"\nImprovement:\n"
            f"  Speedup: {self.speedup:.2f}x\n"
            f"  Op count reduction: {self.fusion_ratio*100:.1f}%"
        )


class FusionBenchmark:
    """
    Benchmarks pipeline execution with and without fusion.
    """

    def __init__(self, iterations: int = 20, warmup: int = 2):
        if iterations < 1:
            raise ValueError("iterations must be at least 1")
        self.iterations = iterations
        self.warmup = warmup

    def benchmark_graph(self,
                        graph: PipelineGraph,
                        roots: Iterable[int],
                        name: str = "benchmark") -> BenchmarkResult:
        """
        Benchmark execution of the nodes in ``roots``.

        Args:
            graph: Graph to execute
            roots: Output node ids
            name: Benchmark name

        Returns:
            BenchmarkResult with timing statistics
        """
        roots = list(roots)
        executor = LocalExecutor(graph)

        for _ in range(self.warmup):
            executor.execute(roots)

        latencies = []
        start_total = time.perf_counter()

        for _ in range(self.iterations):
            start = time.perf_counter()
            executor.execute(roots)
            latencies.append((time.perf_counter() - start) * 1000)

        total_time = (time.perf_counter() - start_total) * 1000

        return BenchmarkResult(
            name=name,
            iterations=self.iterations,
            warmup_iterations=self.warmup,
            mean_ms=statistics.mean(latencies),
            median_ms=statistics.median(latencies),
            std_ms=statistics.stdev(latencies) if len(latencies) > 1 else 0,
            min_ms=min(latencies),
            max_ms=max(latencies),
            total_time_ms=total_time,
            throughput_runs=self.iterations / (total_time / 1000) if total_time > 0 else 0,
            operations_run=executor.stats.operations_run,
            elements_read=executor.stats.elements_read,
            metadata={
                'op_count': sum(graph.op_counts(roots).values()),
            }
        )

    def compare(self,
                graph: PipelineGraph,
                roots: Iterable[int],
                config: Optional[OptimizerConfig] = None) -> ComparisonResult:
        """
        Compare optimized vs unoptimized execution.

        The graph is cloned before optimizing, so ``graph`` itself is
        left untouched.
        """
        roots = list(roots)
        unoptimized_result = self.benchmark_graph(graph, roots, "unoptimized")

        optimized_graph = graph.clone()
        optimizer = Optimizer(optimized_graph, config)
        optimizer.optimize(roots)

        optimized_result = self.benchmark_graph(optimized_graph, roots, "optimized")

        speedup = (unoptimized_result.mean_ms / optimized_result.mean_ms
                   if optimized_result.mean_ms > 0 else 1.0)
        original_ops = unoptimized_result.metadata['op_count']
        optimized_ops = optimized_result.metadata['op_count']
        fusion_ratio = (original_ops - optimized_ops) / original_ops if original_ops > 0 else 0

        return ComparisonResult(
            unoptimized=unoptimized_result,
            optimized=optimized_result,
            speedup=speedup,
            original_op_count=original_ops,
            optimized_op_count=optimized_ops,
            fusion_ratio=fusion_ratio,
            fusion_stats=optimizer.get_stats()['by_pass'],
        )


# ============ Convenience Functions ============

def run_benchmark(graph: PipelineGraph,
                  roots: Iterable[int],
                  iterations: int = 20,
                  warmup: int = 2,
                  name: str = "benchmark") -> BenchmarkResult:
    benchmark = FusionBenchmark(iterations=iterations, warmup=warmup)
    return benchmark.benchmark_graph(graph, roots, name)


def compare_optimized_vs_unoptimized(graph: PipelineGraph,
                                     roots: Iterable[int],
                                     config: Optional[OptimizerConfig] = None,
                                     iterations: int = 20) -> ComparisonResult:
    benchmark = FusionBenchmark(iterations=iterations)
    return benchmark.compare(graph, roots, config)


def create_word_count_pipeline(num_lines: int = 1000) -> Tuple[Pipeline, List[int]]:
    """Create a sample word count pipeline with a sibling line-length output"""
    words_per_line = ["the", "quick", "brown", "fox", "jumps", "over", "the", "lazy", "dog"]
    pipeline = Pipeline()
    lines = pipeline.from_iterable(
        (" ".join(words_per_line[i % 3:]) for i in range(num_lines)), name="lines")

    words = lines.map(flat_map_fn(str.split), name="words")
    upper = words.map(map_fn(str.upper), name="upper")
    long_words = upper.map(filter_fn(lambda w: len(w) > 3), name="long_words")
    pairs = long_words.map(map_fn(lambda w: (w, 1)), name="pairs")
    counts = pairs.group_by_key(name="grouped").combine(sum, name="counts")
    lengths = lines.map(map_fn(len), name="line_lengths")

    return pipeline, [counts.node_id, lengths.node_id]


def save_benchmark_results(results: List[Dict[str, Any]],
                           filepath: str) -> None:
    """Save benchmark results to JSON file"""
    with open(filepath, 'w') as f:
        json.dump(results, f, indent=2)


def load_benchmark_results(filepath: str) -> List[Dict[str, Any]]:
    """Load benchmark results from JSON file"""
    with open(filepath, 'r') as f:
        return json.load(f)
