"""
iteration.py: path-aware iteration for templates.

    {% each item in order.items %}
      {{ frame.index }}: {{ item.name }} (order {{ frame.lookup("key", 1) }})
    {% else %}
      No items.
    {% endeach %}

Inside the body ``item`` is bound to ``order.items.<n>`` and ``frame`` is the
``IterationFrame`` of this entry; the frame of an enclosing ``each`` is its ``parent``.
A failing entry is logged and dropped together with any statistics it recorded;
its siblings render normally.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from jinja2 import nodes
from jinja2.ext import Extension
from jinja2.runtime import Context

from docfill.services.binding import bound_entries
from docfill.services.paths import Path, Segment
from docfill.services.resolver import Absent, resolve_value

log = logging.getLogger(__name__)

FRAME_NAME = "frame"
EMITTER_KEY = "__docfill_emitter__"


@dataclass(frozen=True)
class IterationFrame:
    base_path: Path
    index: int
    key: Segment
    first: bool
    last: bool
    length: int
    parent: Optional["IterationFrame"] = None

    @property
    def depth(self) -> int:
        return 0 if self.parent is None else self.parent.depth + 1

    def ancestor(self, levels: int = 1) -> Optional["IterationFrame"]:
        frame = self
        for _ in range(levels):
            if frame is None:
                return None
            frame = frame.parent
        return frame

    def lookup(self, attr: str = "index", levels: int = 1) -> Any:
        """``index``/``key``/... of the frame ``levels`` loops up, or None."""
        frame = self.ancestor(levels)
        return getattr(frame, attr, None) if frame is not None else None

    def __str__(self) -> str:
        return str(self.base_path)


def _entries(collection: Any) -> list:
    resolution = resolve_value(collection)
    if isinstance(resolution, Absent):
        return []
    return bound_entries(resolution.value, resolution.path)


def has_entries(collection: Any) -> bool:
    return bool(_entries(collection))


def iterate(collection: Any, block_fn: Callable[[Any, IterationFrame], str],
            parent: Optional[IterationFrame] = None,
            empty_fn: Optional[Callable[[], str]] = None, stats=None) -> str:
    """Render ``block_fn(entry, frame)`` for every entry of ``collection``.

    Absent or empty collections render ``empty_fn()`` instead. Object-like
    collections iterate in insertion order with the property name as ``frame.key``.
    """
    items = _entries(collection)
    if not items:
        return empty_fn() if empty_fn is not None else ""

    out = []
    for index, (segment, item) in enumerate(items):
        frame = IterationFrame(
            base_path=item.path,
            index=index,
            key=segment,
            first=index == 0,
            last=index == len(items) - 1,
            length=len(items),
            parent=parent,
        )
        mark = stats.checkpoint() if stats is not None else None
        try:
            out.append(block_fn(item, frame))
        except Exception as e:
            if stats is not None:
                stats.rollback(mark)
            log.warning("Skipping entry %s: %s", item.path, e)
            log.debug("Entry %s failed", item.path, exc_info=True)
    return "".join(out)


class EachExtension(Extension):
    """``{% each <name> in <expr> %}...{% else %}...{% endeach %}``"""

    tags = {"each"}

    def parse(self, parser):
        lineno = next(parser.stream).lineno
        target = parser.parse_assign_target(name_only=True)
        parser.stream.expect("name:in")
        iterable = parser.parse_expression()

        body = parser.parse_statements(("name:else", "name:endeach"))
        if next(parser.stream).value == "else":
            else_ = parser.parse_statements(("name:endeach",), drop_needle=True)
        else:
            else_ = []

        call = self.call_method(
            "_render_each",
            [iterable, nodes.Name(FRAME_NAME, "load"), nodes.ContextReference()],
        )
        block = nodes.CallBlock(
            call,
            [nodes.Name(target.name, "param"), nodes.Name(FRAME_NAME, "param")],
            [],
            body,
        ).set_lineno(lineno)
        test = self.call_method("_has_entries", [iterable])
        return nodes.If(test, [block], [], else_, lineno=lineno)

    def _has_entries(self, collection):
        return has_entries(collection)

    def _render_each(self, collection, enclosing, context: Context, caller):
        parent = enclosing if isinstance(enclosing, IterationFrame) else None
        emitter = context.get(EMITTER_KEY)
        stats = emitter.stats if emitter is not None else None
        return iterate(collection, caller, parent=parent, stats=stats)
