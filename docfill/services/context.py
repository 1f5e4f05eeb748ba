"""
context.py: builds the read-only data context from flat records.

Pass 1 accumulates every record into a tree of plain dicts (insertion ordered) so that
nothing is decided before the whole input has been seen. Pass 2 is a post-order
transform: a node whose keys are exactly ``0..n-1`` becomes a tuple, any other node
becomes a ``MappingProxyType`` with string keys.
"""
from __future__ import annotations
import logging
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Union

from docfill.errors import InvalidDataStructureError
from docfill.services.paths import Path
from docfill.services.records import FlatRecord

log = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 32

DataContext = Mapping[str, Any]
Node = Union[Mapping[str, Any], tuple, str]


class ContextBuilder:
    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH, strict: bool = False):
        self.max_depth = max_depth
        self.strict = strict
        self._root: Dict[Any, Any] = {}
        self.records = 0
        self.overwrites = 0

    def add(self, record: FlatRecord) -> None:
        path = record.path
        if path.is_root():
            raise InvalidDataStructureError("Record without a path", {"line": record.line})
        if len(path) > self.max_depth:
            raise InvalidDataStructureError(
                f"Path {path} exceeds maximum depth {self.max_depth}",
                {"path": str(path), "line": record.line},
            )
        node = self._root
        for depth, seg in enumerate(path.segments[:-1]):
            child = node.get(seg)
            if not isinstance(child, dict):
                if child is not None:
                    self._conflict(path.segments[: depth + 1], record, "scalar replaced by container")
                child = {}
                node[seg] = child
            node = child
        leaf = path.segments[-1]
        current = node.get(leaf)
        if isinstance(current, dict):
            # a deeper path already made this a container; object wins over scalar
            self._conflict(path.segments, record, "scalar ignored, container already present")
            return
        if current is not None:
            self.overwrites += 1
            log.debug("Line %d overrides %s", record.line, path)
        node[leaf] = record.value
        self.records += 1

    def _conflict(self, segments, record: FlatRecord, what: str) -> None:
        where = str(Path(tuple(segments)))
        if self.strict:
            raise InvalidDataStructureError(
                f"Leaf/container conflict at {where}: {what}",
                {"path": where, "line": record.line},
            )
        log.warning("Line %d: %s at %s", record.line, what, where)

    def build(self) -> DataContext:
        ctx = _freeze(self._root)
        if isinstance(ctx, tuple):
            # the root is always addressed by name
            ctx = MappingProxyType({str(i): v for i, v in enumerate(ctx)})
        log.debug("Data context built: %d records, %d overrides, %d top-level keys",
                  self.records, self.overwrites, len(ctx))
        return ctx


def _is_array(keys) -> bool:
    if not keys or not all(isinstance(k, int) for k in keys):
        return False
    return sorted(keys) == list(range(len(keys)))


def _freeze(node: Any) -> Node:
    if not isinstance(node, dict):
        return node
    frozen = {k: _freeze(v) for k, v in node.items()}
    if _is_array(list(frozen)):
        return tuple(frozen[i] for i in range(len(frozen)))
    return MappingProxyType({str(k): v for k, v in frozen.items()})


def build_context(records: Iterable[FlatRecord], max_depth: int = DEFAULT_MAX_DEPTH,
                  strict: bool = False) -> DataContext:
    builder = ContextBuilder(max_depth=max_depth, strict=strict)
    for record in records:
        builder.add(record)
    return builder.build()


def empty_context() -> DataContext:
    return MappingProxyType({})


def to_plain(node: Any) -> Any:
    """Thaw a context (or any node) into dicts/lists, e.g. for JSON output."""
    if isinstance(node, Mapping):
        return {k: to_plain(v) for k, v in node.items()}
    if isinstance(node, tuple):
        return [to_plain(v) for v in node]
    return node
