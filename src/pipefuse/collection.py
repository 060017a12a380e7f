"""
Collection Builder Module

User-facing API for building deferred pipelines. Every transform adds a
pending node and the operation producing it; nothing runs until the
pipeline is executed.

Example usage:
    pipeline = Pipeline()
    lines = pipeline.read_text_file("input.txt")
    counts = (lines
              .map(flat_map_fn(str.split))
              .map(map_fn(lambda word: (word, 1)))
              .group_by_key()
              .combine(sum))
    pipeline.optimize(counts)
    print(dict(counts.collect()))
"""

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union
import logging

from .config import OptimizerConfig
from .executor import LocalExecutor
from .functions import DoFn, as_do_fn
from .graph import CollectionNode, Operation, OpKind, PipelineGraph
from .optimizer import Optimizer

logger = logging.getLogger(__name__)


class LazyCollection:
    """Handle on one node of a pipeline graph"""

    def __init__(self, pipeline: 'Pipeline', node_id: int):
        self.pipeline = pipeline
        self.node_id = node_id

    @property
    def node(self) -> CollectionNode:
        return self.pipeline.graph.node(self.node_id)

    @property
    def name(self) -> str:
        return self.node.name

    @property
    def producing_op(self) -> Optional[Operation]:
        return self.pipeline.graph.producer_of(self.node_id)

    @property
    def consuming_ops(self) -> List[Operation]:
        return self.pipeline.graph.consumers_of(self.node_id)

    def is_materialized(self) -> bool:
        return self.node.is_materialized()

    def map(self, fn: Union[DoFn, Callable[[Any, Callable[[Any], None]], None]],
            name: str = "") -> 'LazyCollection':
        """Apply ``fn(element, emit)`` to every element"""
        return self.pipeline._apply(OpKind.PARALLEL_DO, [self], name, fn=as_do_fn(fn))

    def group_by_key(self, name: str = "") -> 'LazyCollection':
        """Group (key, value) pairs into (key, [values])"""
        return self.pipeline._apply(OpKind.GROUP_BY_KEY, [self], name)

    def combine(self, combiner: Callable[[Iterable[Any]], Any],
                name: str = "") -> 'LazyCollection':
        """Reduce each grouped (key, values) pair to (key, combiner(values))"""
        if not callable(combiner):
            raise TypeError(f"Combiner must be callable, got {type(combiner).__name__}")
        return self.pipeline._apply(OpKind.COMBINE_VALUES, [self], name, combiner=combiner)

    def collect(self) -> List[Any]:
        return self.pipeline.run(self)[0]

    def __iter__(self) -> Iterator[Any]:
        return iter(self.collect())

    def __repr__(self) -> str:
        state = "materialized" if self.is_materialized() else "deferred"
        return f"LazyCollection({self.name!r}, {state})"


class Pipeline:
    """Owns the graph behind a set of lazy collections"""

    def __init__(self, config: Optional[OptimizerConfig] = None):
        self.graph = PipelineGraph()
        self.config = config or OptimizerConfig()
        self.last_stats: Dict[str, Any] = {}

    # ---- sources ----

    def from_iterable(self, source: Iterable[Any], name: str = "") -> LazyCollection:
        node = self.graph.add_source(source, name)
        return LazyCollection(self, node.id)

    def read_text_file(self, path: Union[str, Path], name: str = "",
                       encoding: str = "utf-8") -> LazyCollection:
        """Materialize the lines of a text file, without line endings"""
        with open(path, encoding=encoding) as f:
            lines = [line.rstrip('\n') for line in f]
        logger.debug(f"Read {len(lines)} lines from {path}")
        return self.from_iterable(lines, name or Path(path).name)

    # ---- transforms ----

    def flatten(self, *collections: LazyCollection, name: str = "") -> LazyCollection:
        """Union of several collections of the same element type"""
        if not collections:
            raise ValueError("flatten needs at least one collection")
        return self._apply(OpKind.FLATTEN, list(collections), name)

    def _apply(self, kind: OpKind, inputs: List[LazyCollection], name: str,
               **kwargs) -> LazyCollection:
        for col in inputs:
            if col.pipeline is not self:
                raise ValueError(f"{col!r} belongs to another pipeline")

        dest = self.graph.add_node(name)
        op = self.graph.new_operation(kind, [c.node_id for c in inputs], [dest.id], **kwargs)
        self.graph.connect(op)
        return LazyCollection(self, dest.id)

    # ---- planning / execution ----

    def optimize(self, *outputs: LazyCollection):
        """
        Fuse the operations behind ``outputs`` in place.

        Returns the same handle, or a tuple of them when given several.
        """
        optimizer = Optimizer(self.graph, self.config)
        optimizer.optimize([col.node_id for col in outputs])
        self.last_stats = optimizer.get_stats()
        return outputs[0] if len(outputs) == 1 else outputs

    def run(self, *outputs: LazyCollection) -> List[List[Any]]:
        executor = LocalExecutor(self.graph)
        results = executor.execute([col.node_id for col in outputs])
        return [results[col.node_id] for col in outputs]
