"""
Optimizer Module

Rewrites a pipeline graph in place before execution:

- vertical fusion collapses chains of parallel-dos
  (Orig2 -p2-> Orig1 -p1-> Output becomes Orig2 -p1(p2)-> Output)
- horizontal fusion joins parallel-dos reading the same node into one
  multiple-output parallel-do

``OptimizerConfig.max_fused_stages`` bounds how many functions one fused
operation composes.

Flattens are transparent to both passes, every other operation is a
barrier that the traversal walks through without fusing across it.
"""

from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
import logging

from .config import OptimizerConfig
from .functions import compose, stage_count
from .graph import GraphStructureError, Operation, OpKind, PipelineGraph

logger = logging.getLogger(__name__)


class Optimizer:
    """
    Applies the fusion passes to a PipelineGraph.

    Example usage:
        optimizer = Optimizer(graph)
        optimizer.optimize([output.node_id])
        print(optimizer.get_stats())
    """

    def __init__(self, graph: PipelineGraph, config: Optional[OptimizerConfig] = None):
        self.graph = graph
        self.config = config or OptimizerConfig()
        self.fusion_stats: Dict[str, int] = {}
        self._live_ops: Set[int] = set()

    def optimize(self, roots: Iterable[int]) -> List[int]:
        """
        Run vertical fusion to completion, then horizontal fusion.

        Args:
            roots: Declared output node ids

        Returns:
            The same root ids; the graph behind them is rewritten in place
        """
        roots = list(roots)
        self.fusion_stats = {'vertical': 0, 'horizontal': 0}

        if self.config.validate:
            self.graph.validate(roots)

        if self.config.vertical_fusion:
            for root in roots:
                self.fuse_parallel_dos(root)
        if self.config.horizontal_fusion:
            self._live_ops = set(self.graph.reachable(roots)[1])
            for root in roots:
                self.fuse_sibling_parallel_dos(root)

        logger.info(f"Optimization complete: {self.fusion_stats['vertical']} vertical, "
                    f"{self.fusion_stats['horizontal']} horizontal fusions")
        return roots

    def get_stats(self) -> Dict[str, Any]:
        return {
            'total_fusions': sum(self.fusion_stats.values()),
            'by_pass': self.fusion_stats.copy(),
        }

    # ---- shared traversal ----

    def _upstream(self, op: Operation) -> List[int]:
        """Nodes to search next when ``op`` is not fused at this level"""
        if op.kind is OpKind.FLATTEN:
            return op.inputs()
        if op.is_single_input() or op.kind is OpKind.MULTIPLE_PARALLEL_DO:
            return op.inputs()
        raise GraphStructureError(f"Unsupported operation kind {op.kind}")

    def _producer(self, node_id: int) -> Operation:
        op = self.graph.producer_of(node_id)
        if op is None:
            raise GraphStructureError(
                f"Pending node '{self.graph.node(node_id).name}' has no producing operation")
        return op

    # ---- vertical fusion ----

    def fuse_parallel_dos(self, root: int) -> None:
        """Collapse parallel-do chains above ``root``"""
        visited: Set[int] = set()
        worklist = [root]

        while worklist:
            node_id = worklist.pop()
            if node_id in visited:
                continue
            visited.add(node_id)

            if self.graph.node(node_id).is_materialized():
                continue
            worklist.extend(reversed(self._fuse_chain_at(node_id)))

    def _fuse_chain_at(self, output_id: int) -> List[int]:
        """
        Fuse into the producer of ``output_id`` for as long as possible.

        Returns the nodes the search continues from.
        """
        seen_origins: Set[int] = set()

        while True:
            p1 = self._producer(output_id)
            if not p1.is_parallel_do():
                return self._upstream(p1)

            origin1_id = p1.inputs()[0]
            origin1 = self.graph.node(origin1_id)
            if origin1.is_materialized():
                return []

            p2 = self._producer(origin1_id)
            if not p2.is_parallel_do():
                return [origin1_id]

            if stage_count(p1.fn) + stage_count(p2.fn) > self.config.max_fused_stages:
                return [origin1_id]

            origin2_id = p2.inputs()[0]
            if origin2_id in seen_origins:
                raise GraphStructureError(
                    f"Cycle detected while fusing into '{self.graph.node(output_id).name}'")
            seen_origins.add(origin2_id)

            self._fuse_pair(p1, p2, output_id)

    def _fuse_pair(self, p1: Operation, p2: Operation, output_id: int) -> Operation:
        origin1_id = p1.inputs()[0]
        origin2_id = p2.inputs()[0]
        origin1 = self.graph.node(origin1_id)
        origin2 = self.graph.node(origin2_id)

        fused = self.graph.new_operation(
            OpKind.PARALLEL_DO, [origin2_id], [output_id], fn=compose(p1.fn, p2.fn))
        origin2.add_consumer(fused.id)
        origin1.remove_consumer(p1.id)
        self.graph.node(output_id).set_producing_op(fused.id)

        self.fusion_stats['vertical'] = self.fusion_stats.get('vertical', 0) + 1
        logger.debug(f"Fused {p2.label} and {p1.label} into operation {fused.id} "
                     f"({origin2.name} -> {self.graph.node(output_id).name})")
        return fused

    # ---- horizontal fusion ----

    def fuse_sibling_parallel_dos(self, root: int) -> None:
        """Join parallel-dos sharing an input into multiple-output parallel-dos"""
        visited: Set[int] = set()
        worklist = [root]

        while worklist:
            node_id = worklist.pop()
            if node_id in visited:
                continue
            visited.add(node_id)

            if self.graph.node(node_id).is_materialized():
                continue

            op = self._producer(node_id)
            if not op.is_parallel_do():
                worklist.extend(reversed(self._upstream(op)))
                continue

            origin_id = op.inputs()[0]
            # parallel-dos left behind by vertical fusion stay registered as
            # consumers but no declared output reaches them
            siblings = [c for c in self.graph.consumers_of(origin_id)
                        if c.is_parallel_do() and c.id in self._live_ops]
            if len(siblings) > 1:
                self._fuse_siblings(origin_id, siblings)
            worklist.append(origin_id)

    def _fuse_siblings(self, origin_id: int, siblings: List[Operation]) -> Operation:
        origin = self.graph.node(origin_id)
        multi = self.graph.new_operation(OpKind.MULTIPLE_PARALLEL_DO, [origin_id])

        for sibling in siblings:
            dest_id = sibling.output_ids[0]
            multi.add_destination(sibling.fn, dest_id)
            origin.remove_consumer(sibling.id)
            self.graph.node(dest_id).set_producing_op(multi.id)
        origin.add_consumer(multi.id)

        self.fusion_stats['horizontal'] = self.fusion_stats.get('horizontal', 0) + 1
        logger.debug(f"Fused {len(siblings)} sibling parallel-dos reading "
                     f"'{origin.name}' into operation {multi.id}")
        return multi


# ============ Convenience Functions ============

def optimize(graph: PipelineGraph,
             roots: Iterable[int],
             config: Optional[OptimizerConfig] = None) -> Tuple[List[int], Dict[str, Any]]:
    """
    Optimize a graph in place.

    Args:
        graph: Graph to rewrite
        roots: Declared output node ids
        config: Optimizer configuration (defaults if None)

    Returns:
        Tuple of (roots, fusion_stats)
    """
    optimizer = Optimizer(graph, config)
    roots = optimizer.optimize(roots)
    return roots, optimizer.get_stats()
