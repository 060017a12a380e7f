#!/usr/bin/env python3
"""
Pipeline Analyzer

Inspect pipeline graphs for fusion opportunities and show the plan before
and after optimization.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional
import argparse
import logging

from .collection import LazyCollection, Pipeline
from .config import OptimizerConfig
from .functions import filter_fn, flat_map_fn, map_fn, stage_count
from .graph import PipelineGraph

logger = logging.getLogger(__name__)


@dataclass
class FusionOpportunity:
    """A rewrite the optimizer would perform."""
    kind: str  # 'vertical' or 'horizontal'
    nodes: List[str]
    ops: List[str]


@dataclass
class GraphStats:
    """Statistics about the live part of a pipeline graph."""
    num_nodes: int
    num_operations: int
    num_materialized: int
    op_counts: Dict[str, int]


class GraphAnalyzer:
    """Analyze the graph reachable from a set of declared outputs."""

    def __init__(self, graph: PipelineGraph, roots: Iterable[int],
                 config: Optional[OptimizerConfig] = None):
        self.graph = graph
        self.roots = list(roots)
        self.config = config or OptimizerConfig()

    def get_stats(self) -> GraphStats:
        node_ids, op_ids = self.graph.reachable(self.roots)
        return GraphStats(
            num_nodes=len(node_ids),
            num_operations=len(op_ids),
            num_materialized=sum(1 for i in node_ids if self.graph.node(i).is_materialized()),
            op_counts=self.graph.op_counts(self.roots),
        )

    def find_fusion_opportunities(self) -> List[FusionOpportunity]:
        """List adjacent and sibling parallel-dos without rewriting anything."""
        opportunities = []
        node_ids, op_ids = self.graph.reachable(self.roots)
        live_ops = set(op_ids)

        for op_id in op_ids:
            op = self.graph.operation(op_id)
            if not op.is_parallel_do():
                continue
            parent = self.graph.producer_of(op.inputs()[0])
            if parent is None or not parent.is_parallel_do():
                continue
            if stage_count(parent.fn) + stage_count(op.fn) <= self.config.max_fused_stages:
                opportunities.append(FusionOpportunity(
                    kind='vertical',
                    nodes=[self.graph.node(i).name
                           for i in (parent.inputs()[0], op.inputs()[0], op.output_ids[0])],
                    ops=[parent.label, op.label],
                ))

        for node_id in sorted(node_ids):
            siblings = [c for c in self.graph.consumers_of(node_id)
                        if c.is_parallel_do() and c.id in live_ops]
            if len(siblings) > 1:
                opportunities.append(FusionOpportunity(
                    kind='horizontal',
                    nodes=[self.graph.node(node_id).name]
                          + [self.graph.node(s.output_ids[0]).name for s in siblings],
                    ops=[s.label for s in siblings],
                ))

        return opportunities

    def visualize_graph(self) -> str:
        """Generate ASCII listing of the live operations."""
        lines = ["Pipeline Plan:", "=" * 40]
        _, op_ids = self.graph.reachable(self.roots)

        for op_id in sorted(op_ids):
            op = self.graph.operation(op_id)
            inputs = ', '.join(self.graph.node(i).name for i in op.inputs())
            outputs = ', '.join(self.graph.node(i).name for i in op.outputs())
            lines.append(f"{op.label:40s} {inputs} -> {outputs}")

        return '\n'.join(lines)


def build_word_count(lines: LazyCollection) -> LazyCollection:
    """Word count over a collection of lines"""
    words = lines.map(flat_map_fn(str.split), name="words")
    normalized = words.map(map_fn(str.lower), name="normalized")
    alphanumeric = normalized.map(filter_fn(str.isalnum), name="alphanumeric")
    pairs = alphanumeric.map(map_fn(lambda word: (word, 1)), name="pairs")
    return pairs.group_by_key(name="grouped").combine(sum, name="counts")


def analyze_pipeline(path: str, config: Optional[OptimizerConfig] = None) -> Dict[str, int]:
    """Main analysis function."""
    print(f"Analyzing word count over: {path}")
    print("=" * 60)

    pipeline = Pipeline(config)
    lines = pipeline.read_text_file(path)
    counts = build_word_count(lines)
    lengths = lines.map(map_fn(len), name="line_lengths")
    roots = [counts.node_id, lengths.node_id]

    analyzer = GraphAnalyzer(pipeline.graph, roots, config)
    stats = analyzer.get_stats()
    print(f"\nBefore optimization: {stats.num_operations} operations")
    for kind, count in sorted(stats.op_counts.items()):
        print(f"    {kind}: {count}")
    print(analyzer.visualize_graph())

    opportunities = analyzer.find_fusion_opportunities()
    print(f"\nFusion Opportunities: {len(opportunities)}")
    for opp in opportunities:
        print(f"  {opp.kind:10s} {' -> '.join(opp.nodes)}")

    pipeline.optimize(counts, lengths)
    stats = analyzer.get_stats()
    print(f"\nAfter optimization: {stats.num_operations} operations "
          f"({pipeline.last_stats['total_fusions']} fusions)")
    print(analyzer.visualize_graph())

    result = dict(counts.collect())
    print(f"\nDistinct words: {len(result)}")
    for word, count in sorted(result.items(), key=lambda x: -x[1])[:10]:
        print(f"    {word}: {count}")
    return result


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description='Show the fused plan of a word count pipeline')
    parser.add_argument('path', help='Text file to count words in')
    parser.add_argument('--config', help='Optimizer YAML config')
    parser.add_argument('--no-vertical', action='store_true', help='Disable vertical fusion')
    parser.add_argument('--no-horizontal', action='store_true', help='Disable horizontal fusion')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log each rewrite')

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    config = OptimizerConfig.from_yaml(args.config) if args.config else OptimizerConfig()
    if args.no_vertical:
        config.vertical_fusion = False
    if args.no_horizontal:
        config.horizontal_fusion = False

    analyze_pipeline(args.path, config)


if __name__ == '__main__':
    main()
