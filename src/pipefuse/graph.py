"""
Pipeline Graph Module

Deferred execution graph: collection nodes and the operations that read and
produce them. Nodes and operations live in an arena owned by PipelineGraph
and refer to each other by integer id.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple
import logging

from .functions import DoFn

logger = logging.getLogger(__name__)


class GraphStructureError(Exception):
    """The graph violates a structural invariant"""


class OpKind(Enum):
    """Closed set of operation variants"""
    PARALLEL_DO = "parallel_do"  # Elementwise map
    MULTIPLE_PARALLEL_DO = "multiple_parallel_do"  # Several maps, one pass
    FLATTEN = "flatten"  # Merge of same-typed inputs
    GROUP_BY_KEY = "group_by_key"
    COMBINE_VALUES = "combine_values"


SINGLE_INPUT_KINDS = frozenset({
    OpKind.PARALLEL_DO,
    OpKind.GROUP_BY_KEY,
    OpKind.COMBINE_VALUES,
})


@dataclass
class CollectionNode:
    """A deferred or materialized collection of elements"""
    id: int
    name: str
    materialized: bool = False
    source: Optional[List[Any]] = None
    producing_op: Optional[int] = None
    consuming_ops: List[int] = field(default_factory=list)

    def is_materialized(self) -> bool:
        return self.materialized

    def set_producing_op(self, op_id: int) -> None:
        if self.materialized:
            raise GraphStructureError(
                f"Materialized node '{self.name}' cannot have a producer")
        self.producing_op = op_id

    def add_consumer(self, op_id: int) -> None:
        if op_id not in self.consuming_ops:
            self.consuming_ops.append(op_id)

    def remove_consumer(self, op_id: int) -> None:
        if op_id not in self.consuming_ops:
            raise GraphStructureError(
                f"Operation {op_id} does not consume node '{self.name}'")
        self.consuming_ops.remove(op_id)


@dataclass
class Operation:
    """
    A pending transform, tagged by ``kind``.

    PARALLEL_DO uses ``fn``, MULTIPLE_PARALLEL_DO uses ``destinations``
    (its outputs are the destination nodes) and COMBINE_VALUES uses
    ``combiner``.
    """
    id: int
    kind: OpKind
    input_ids: List[int] = field(default_factory=list)
    output_ids: List[int] = field(default_factory=list)
    fn: Optional[DoFn] = None
    destinations: List[Tuple[DoFn, int]] = field(default_factory=list)
    combiner: Optional[Callable[[Iterable[Any]], Any]] = None

    def inputs(self) -> List[int]:
        return list(self.input_ids)

    def outputs(self) -> List[int]:
        if self.kind is OpKind.MULTIPLE_PARALLEL_DO:
            return [node_id for _, node_id in self.destinations]
        return list(self.output_ids)

    def is_single_input(self) -> bool:
        return self.kind in SINGLE_INPUT_KINDS

    def is_parallel_do(self) -> bool:
        return self.kind is OpKind.PARALLEL_DO

    def add_destination(self, fn: DoFn, node_id: int) -> None:
        if self.kind is not OpKind.MULTIPLE_PARALLEL_DO:
            raise GraphStructureError(
                f"Cannot add a destination to a {self.kind.value} operation")
        self.destinations.append((fn, node_id))

    @property
    def label(self) -> str:
        if self.kind is OpKind.PARALLEL_DO and self.fn is not None:
            return f"{self.kind.value}[{self.fn.name}]"
        if self.kind is OpKind.MULTIPLE_PARALLEL_DO:
            return f"{self.kind.value}[{len(self.destinations)}]"
        return self.kind.value


class PipelineGraph:
    """Arena holding every node and operation of a pipeline"""

    def __init__(self):
        self.nodes: List[CollectionNode] = []
        self.operations: List[Operation] = []

    # ---- construction ----

    def add_source(self, data: Iterable[Any], name: str = "") -> CollectionNode:
        """Add a materialized leaf node holding ``data``"""
        node = CollectionNode(
            id=len(self.nodes),
            name=name or f"source_{len(self.nodes)}",
            materialized=True,
            source=list(data),
        )
        self.nodes.append(node)
        return node

    def add_node(self, name: str = "") -> CollectionNode:
        """Add a pending node; its producer is set by ``connect``"""
        node = CollectionNode(id=len(self.nodes), name=name or f"node_{len(self.nodes)}")
        self.nodes.append(node)
        return node

    def new_operation(self, kind: OpKind, input_ids: Iterable[int],
                      output_ids: Iterable[int] = (), **kwargs) -> Operation:
        """Allocate an operation without touching any node records"""
        op = Operation(
            id=len(self.operations),
            kind=kind,
            input_ids=list(input_ids),
            output_ids=list(output_ids),
            **kwargs,
        )
        for node_id in op.input_ids + op.outputs():
            self.node(node_id)
        self.operations.append(op)
        return op

    def connect(self, op: Operation) -> Operation:
        """Register ``op`` as consumer of its inputs and producer of its outputs"""
        for node_id in op.inputs():
            self.node(node_id).add_consumer(op.id)
        for node_id in op.outputs():
            self.node(node_id).set_producing_op(op.id)
        return op

    # ---- accessors ----

    def node(self, node_id: int) -> CollectionNode:
        if not 0 <= node_id < len(self.nodes):
            raise GraphStructureError(f"Unknown node id {node_id}")
        return self.nodes[node_id]

    def operation(self, op_id: int) -> Operation:
        if not 0 <= op_id < len(self.operations):
            raise GraphStructureError(f"Unknown operation id {op_id}")
        return self.operations[op_id]

    def producer_of(self, node_id: int) -> Optional[Operation]:
        node = self.node(node_id)
        if node.producing_op is None:
            return None
        return self.operation(node.producing_op)

    def consumers_of(self, node_id: int) -> List[Operation]:
        return [self.operation(op_id) for op_id in self.node(node_id).consuming_ops]

    # ---- traversal ----

    def reachable(self, roots: Iterable[int]) -> Tuple[List[int], List[int]]:
        """
        Walk producer links from ``roots`` toward the sources.

        Returns:
            Tuple of (node_ids, op_ids) in discovery order
        """
        seen_nodes: Set[int] = set()
        seen_ops: Set[int] = set()
        node_order: List[int] = []
        op_order: List[int] = []
        stack = list(roots)

        while stack:
            node_id = stack.pop()
            if node_id in seen_nodes:
                continue
            seen_nodes.add(node_id)
            node_order.append(node_id)

            op = self.producer_of(node_id)
            if op is None or op.id in seen_ops:
                continue
            seen_ops.add(op.id)
            op_order.append(op.id)
            stack.extend(reversed(op.inputs()))

        return node_order, op_order

    def op_counts(self, roots: Iterable[int]) -> Dict[str, int]:
        """Count live operations by kind"""
        counts: Dict[str, int] = {}
        for op_id in self.reachable(roots)[1]:
            kind = self.operations[op_id].kind.value
            counts[kind] = counts.get(kind, 0) + 1
        return counts

    def validate(self, roots: Iterable[int], check_consumers: bool = True) -> None:
        """
        Check the subgraph reachable from ``roots``.

        Raises GraphStructureError when a pending node has no producer, a
        materialized node has one, producer and output records disagree,
        a cycle exists, or (with ``check_consumers``) an operation is
        missing from the consumer list of one of its inputs.
        """
        # 0 = in progress, 1 = done
        state: Dict[int, int] = {}

        for root in roots:
            if root in state:
                continue
            stack: List[Tuple[int, bool]] = [(root, False)]
            while stack:
                node_id, leaving = stack.pop()
                if leaving:
                    state[node_id] = 1
                    continue
                if state.get(node_id) == 1:
                    continue
                if state.get(node_id) == 0:
                    raise GraphStructureError(
                        f"Cycle detected at node '{self.node(node_id).name}'")
                state[node_id] = 0
                stack.append((node_id, True))

                node = self.node(node_id)
                if node.is_materialized():
                    if node.producing_op is not None:
                        raise GraphStructureError(
                            f"Materialized node '{node.name}' has a producer")
                    continue

                op = self.producer_of(node_id)
                if op is None:
                    raise GraphStructureError(
                        f"Pending node '{node.name}' has no producing operation")
                if node_id not in op.outputs():
                    raise GraphStructureError(
                        f"Operation {op.id} does not list '{node.name}' as an output")
                if not op.inputs():
                    raise GraphStructureError(f"Operation {op.id} has no inputs")
                if op.is_single_input() and len(op.inputs()) != 1:
                    raise GraphStructureError(
                        f"Operation {op.id} ({op.kind.value}) needs exactly one input")

                for input_id in op.inputs():
                    if check_consumers and op.id not in self.node(input_id).consuming_ops:
                        raise GraphStructureError(
                            f"Node '{self.node(input_id).name}' does not record "
                            f"operation {op.id} as a consumer")
                    if state.get(input_id) == 0:
                        raise GraphStructureError(
                            f"Cycle detected at node '{self.node(input_id).name}'")
                    if input_id not in state:
                        stack.append((input_id, False))

    # ---- copying / export ----

    def clone(self) -> 'PipelineGraph':
        """Copy the structure; functions and source elements are shared"""
        new_graph = PipelineGraph()
        for node in self.nodes:
            new_graph.nodes.append(CollectionNode(
                id=node.id,
                name=node.name,
                materialized=node.materialized,
                source=node.source,
                producing_op=node.producing_op,
                consuming_ops=node.consuming_ops.copy(),
            ))
        for op in self.operations:
            new_graph.operations.append(Operation(
                id=op.id,
                kind=op.kind,
                input_ids=op.input_ids.copy(),
                output_ids=op.output_ids.copy(),
                fn=op.fn,
                destinations=op.destinations.copy(),
                combiner=op.combiner,
            ))
        return new_graph

    def to_dict(self, roots: Optional[Iterable[int]] = None) -> Dict[str, Any]:
        """Describe the graph, or only the part reachable from ``roots``"""
        if roots is None:
            node_ids = [n.id for n in self.nodes]
            op_ids = [op.id for op in self.operations]
        else:
            node_ids, op_ids = self.reachable(roots)
            node_ids, op_ids = sorted(node_ids), sorted(op_ids)

        return {
            'nodes': [
                {
                    'id': n.id,
                    'name': n.name,
                    'materialized': n.materialized,
                    'producing_op': n.producing_op,
                    'consuming_ops': list(n.consuming_ops),
                }
                for n in (self.nodes[i] for i in node_ids)
            ],
            'operations': [
                {
                    'id': op.id,
                    'kind': op.kind.value,
                    'label': op.label,
                    'inputs': op.inputs(),
                    'outputs': op.outputs(),
                }
                for op in (self.operations[i] for i in op_ids)
            ],
        }
