"""
Local Executor Module

Reference in-memory execution engine. Walks producer links from the
requested nodes and evaluates each operation once.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List
import logging

from .graph import GraphStructureError, Operation, OpKind, PipelineGraph

logger = logging.getLogger(__name__)


@dataclass
class ExecutionStats:
    """Counters collected during one execution"""
    operations_run: int = 0
    elements_read: int = 0
    elements_emitted: int = 0
    by_kind: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operations_run': self.operations_run,
            'elements_read': self.elements_read,
            'elements_emitted': self.elements_emitted,
            'by_kind': dict(self.by_kind),
        }


class LocalExecutor:
    """
    Evaluates a pipeline graph in memory.

    A multi-output map is evaluated once per input element and routes the
    results to all of its destinations; a flatten concatenates its inputs
    in input order.
    """

    def __init__(self, graph: PipelineGraph):
        self.graph = graph
        self.stats = ExecutionStats()
        self._results: Dict[int, List[Any]] = {}

    def execute(self, node_ids: Iterable[int]) -> Dict[int, List[Any]]:
        """
        Compute the contents of every node in ``node_ids``.

        Args:
            node_ids: Nodes to compute

        Returns:
            Dict mapping node id to its elements
        """
        node_ids = list(node_ids)
        self.graph.validate(node_ids)
        self.stats = ExecutionStats()
        self._results = {}

        for node_id in node_ids:
            self._compute(node_id)

        logger.debug(f"Executed {self.stats.operations_run} operations, "
                     f"read {self.stats.elements_read} elements")
        return {node_id: self._results[node_id] for node_id in node_ids}

    def collect(self, node_id: int) -> List[Any]:
        return self.execute([node_id])[node_id]

    def _compute(self, root: int) -> None:
        stack = [root]
        while stack:
            node_id = stack.pop()
            if node_id in self._results:
                continue

            node = self.graph.node(node_id)
            if node.is_materialized():
                self._results[node_id] = list(node.source or [])
                continue

            op = self.graph.producer_of(node_id)
            missing = [i for i in op.inputs() if i not in self._results]
            if missing:
                stack.append(node_id)
                stack.extend(missing)
                continue

            self._run(op)

    def _run(self, op: Operation) -> None:
        inputs = [self._results[i] for i in op.inputs()]
        self.stats.operations_run += 1
        self.stats.elements_read += sum(len(values) for values in inputs)
        kind = op.kind.value
        self.stats.by_kind[kind] = self.stats.by_kind.get(kind, 0) + 1

        if op.kind is OpKind.PARALLEL_DO:
            out: List[Any] = []
            for element in inputs[0]:
                op.fn.process(element, out.append)
            results = {op.output_ids[0]: out}

        elif op.kind is OpKind.MULTIPLE_PARALLEL_DO:
            results = {node_id: [] for _, node_id in op.destinations}
            for element in inputs[0]:
                for fn, node_id in op.destinations:
                    fn.process(element, results[node_id].append)

        elif op.kind is OpKind.FLATTEN:
            merged: List[Any] = []
            for values in inputs:
                merged.extend(values)
            results = {op.output_ids[0]: merged}

        elif op.kind is OpKind.GROUP_BY_KEY:
            groups: Dict[Any, List[Any]] = {}
            for key, value in inputs[0]:
                groups.setdefault(key, []).append(value)
            results = {op.output_ids[0]: list(groups.items())}

        elif op.kind is OpKind.COMBINE_VALUES:
            results = {
                op.output_ids[0]: [(key, op.combiner(values)) for key, values in inputs[0]]
            }

        else:
            raise GraphStructureError(f"Unsupported operation kind {op.kind}")

        for node_id, values in results.items():
            self.stats.elements_emitted += len(values)
            self._results[node_id] = values
