"""
Element Functions Module

User element functions and the composition used by operator fusion.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, Tuple, Union

Emitter = Callable[[Any], None]


class DoFn(ABC):
    """Processes one input element, emitting zero or more outputs"""

    @abstractmethod
    def process(self, element: Any, emit: Emitter) -> None:
        raise NotImplementedError

    def __call__(self, element: Any, emit: Emitter) -> None:
        self.process(element, emit)

    @property
    def name(self) -> str:
        return type(self).__name__


class FunctionDoFn(DoFn):
    """Adapts a plain ``fn(element, emit)`` callable"""

    def __init__(self, func: Callable[[Any, Emitter], None], name: str = ""):
        self.func = func
        self._name = name or getattr(func, '__name__', repr(func))

    def process(self, element: Any, emit: Emitter) -> None:
        self.func(element, emit)

    @property
    def name(self) -> str:
        return self._name


class ComposedFn(DoFn):
    """
    Several functions applied in sequence within a single pass.

    ``stages`` is ordered innermost first: each element is handed to
    ``stages[0]``, every value it emits goes straight into ``stages[1]``
    and so on, with the last stage feeding the caller's emitter. Nothing
    is buffered, so the outputs for one intermediate value stay contiguous.
    """

    def __init__(self, stages: Iterable[DoFn]):
        self.stages: Tuple[DoFn, ...] = tuple(stages)
        if len(self.stages) < 2:
            raise ValueError("A composition needs at least two stages")

    def process(self, element: Any, emit: Emitter) -> None:
        self._run(0, element, emit)

    def _run(self, index: int, element: Any, emit: Emitter) -> None:
        if index == len(self.stages):
            emit(element)
            return
        self.stages[index].process(
            element, lambda value: self._run(index + 1, value, emit))

    @property
    def name(self) -> str:
        return " -> ".join(stage.name for stage in self.stages)

    def __len__(self) -> int:
        return len(self.stages)

    def __repr__(self) -> str:
        return f"ComposedFn({self.name})"


def as_do_fn(fn: Union[DoFn, Callable[[Any, Emitter], None]]) -> DoFn:
    """Normalize a DoFn or a ``fn(element, emit)`` callable"""
    if isinstance(fn, DoFn):
        return fn
    if callable(fn):
        return FunctionDoFn(fn)
    raise TypeError(f"Element function must be callable, got {type(fn).__name__}")


def _stages(fn: DoFn) -> Tuple[DoFn, ...]:
    if isinstance(fn, ComposedFn):
        return fn.stages
    return (fn,)


def stage_count(fn: DoFn) -> int:
    """Number of plain functions ``fn`` runs per element"""
    return len(_stages(fn))


def compose(outer: DoFn, inner: DoFn) -> ComposedFn:
    """
    Build ``outer`` applied after ``inner``.

    Args:
        outer: Function consuming what ``inner`` emits
        inner: Function applied to the original element

    Returns:
        ComposedFn whose stages list every original function in the
        order they run
    """
    return ComposedFn(_stages(as_do_fn(inner)) + _stages(as_do_fn(outer)))


# ============ Convenience Constructors ============

def map_fn(func: Callable[[Any], Any]) -> DoFn:
    """One output per input"""
    def process(element, emit):
        emit(func(element))
    return FunctionDoFn(process, getattr(func, '__name__', 'map'))


def filter_fn(predicate: Callable[[Any], bool]) -> DoFn:
    """Pass through the elements matching ``predicate``"""
    def process(element, emit):
        if predicate(element):
            emit(element)
    return FunctionDoFn(process, getattr(predicate, '__name__', 'filter'))


def flat_map_fn(func: Callable[[Any], Iterable[Any]]) -> DoFn:
    """Emit every item of ``func(element)``"""
    def process(element, emit):
        for item in func(element):
            emit(item)
    return FunctionDoFn(process, getattr(func, '__name__', 'flat_map'))
