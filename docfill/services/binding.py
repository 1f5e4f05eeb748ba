"""
binding.py: template values that remember where they came from.

Every value a template touches is either a ``Bound`` (a node of the data context plus
its full path from the root) or a ``MissingValue`` (a Jinja ``Undefined`` that still
knows the path it was looked up at). Attribute and item access on either returns
another ``Bound``/``MissingValue`` one segment deeper, so a missing field inside
``{% with %}`` or ``{% each %}`` is always reported with its fully qualified path.
"""
from __future__ import annotations
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Iterator, List, Mapping, Optional, Tuple

from jinja2 import Undefined
from jinja2.exceptions import UndefinedError
from jinja2.utils import missing

from docfill.errors import InvalidPathError
from docfill.services.annotations import active_emitter
from docfill.services.context import to_plain
from docfill.services.paths import ROOT, Path, Segment, is_index_segment
from docfill.services.markers import missing_display
from docfill.services.resolver import Absent, Resolved, stringify

log = logging.getLogger(__name__)

FALSY_STRINGS = {"", "false", "0", "null", "none", "no"}
MAPPING_METHODS = ("items", "keys", "values")
VALUE_SLOT = "value"


def _join(path: Path, segment: Segment) -> Path:
    try:
        return path.join(segment)
    except InvalidPathError:
        log.debug("Cannot extend %s with %r; keeping parent path", path, segment)
        return path


def _as_number(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


def plain(value: Any) -> Any:
    """The underlying data of a template value; ``None`` for missing."""
    if isinstance(value, Bound):
        return value.value
    if isinstance(value, Undefined):
        return None
    return value


def unwrap_value_slot(value: Any) -> Tuple[Any, bool]:
    """``{"value": x}`` entries behave like ``x``."""
    if isinstance(value, Mapping) and len(value) == 1 and VALUE_SLOT in value:
        return value[VALUE_SLOT], True
    return value, False


def entries(collection: Any) -> List[Tuple[Segment, Any]]:
    """Ordered ``(segment, value)`` entries of a collection; scalars have none.

    Sequences enumerate; mappings keep insertion order, except mappings whose keys are
    all integers (a sparse array) which are ordered by index.
    """
    if isinstance(collection, (tuple, list)):
        return list(enumerate(collection))
    if isinstance(collection, Mapping):
        keys = list(collection)
        if keys and all(is_index_segment(k) for k in keys):
            return sorted(((int(k), collection[k]) for k in keys), key=lambda e: e[0])
        return [(k, collection[k]) for k in keys]
    return []


def bound_entries(collection: Any, base: Path) -> List[Tuple[Segment, "Bound"]]:
    out = []
    for segment, value in entries(collection):
        path = _join(base, segment)
        value, unwrapped = unwrap_value_slot(value)
        if unwrapped:
            path = path.join(VALUE_SLOT)
        out.append((segment, Bound(value, path)))
    return out


class Bound:
    __slots__ = ("value", "path")

    def __init__(self, value: Any, path: Path = ROOT):
        self.value = value
        self.path = path

    def __docfill_resolution__(self):
        return Resolved(self.value, self.path)

    # navigation

    def child(self, key: Any) -> Any:
        value = self.value
        if isinstance(value, Mapping):
            name = str(key)
            if name in value:
                return Bound(value[name], _join(self.path, name))
            return MissingValue(path=_join(self.path, key))
        if isinstance(value, (tuple, list)):
            if isinstance(key, slice):
                indexes = range(len(value))[key]
                return tuple(Bound(value[i], self.path.join(i)) for i in indexes)
            if is_index_segment(key) or (isinstance(key, int) and not isinstance(key, bool)):
                index = int(key)
                if index < 0:
                    index += len(value)
                if 0 <= index < len(value):
                    return Bound(value[index], self.path.join(index))
        return MissingValue(path=_join(self.path, key))

    def entries(self) -> List[Tuple[Segment, "Bound"]]:
        return bound_entries(self.value, self.path)

    def items(self):
        return [(str(k), v) for k, v in self.entries()]

    def keys(self):
        return [str(k) for k, _ in self.entries()]

    def values(self):
        return [v for _, v in self.entries()]

    # python protocols used by jinja filters and tests

    def __iter__(self) -> Iterator["Bound"]:
        # mappings iterate their values, like {% each %}; use .items() for keys
        return iter([v for _, v in self.entries()])

    def __len__(self) -> int:
        if isinstance(self.value, (Mapping, tuple, list, str)):
            return len(self.value)
        return 0

    def __contains__(self, item: Any) -> bool:
        item = plain(item)
        if isinstance(self.value, Mapping):
            return str(item) in self.value
        if isinstance(self.value, (tuple, list)):
            return item in self.value
        return str(item) in stringify(self.value)

    def __bool__(self) -> bool:
        value = self.value
        if isinstance(value, (Mapping, tuple, list)):
            return len(value) > 0
        if isinstance(value, str):
            return value.strip().lower() not in FALSY_STRINGS
        return bool(value)

    def __str__(self) -> str:
        if isinstance(self.value, (Mapping, tuple, list)):
            return json.dumps(to_plain(self.value), ensure_ascii=False)
        return stringify(self.value)

    def __repr__(self) -> str:
        return f"Bound({str(self.path)!r}, {self.value!r})"

    def __eq__(self, other: Any) -> bool:
        return self.value == plain(other)

    def __ne__(self, other: Any) -> bool:
        return not self.__eq__(other)

    def __hash__(self) -> int:
        try:
            return hash(self.value)
        except TypeError:
            return hash(self.path)

    def _compare(self, other: Any):
        left, right = _as_number(self.value), _as_number(plain(other))
        if left is not None and right is not None:
            return left, right
        return stringify(self.value), stringify(plain(other))

    def __lt__(self, other):
        a, b = self._compare(other)
        return a < b

    def __le__(self, other):
        a, b = self._compare(other)
        return a <= b

    def __gt__(self, other):
        a, b = self._compare(other)
        return a > b

    def __ge__(self, other):
        a, b = self._compare(other)
        return a >= b

    def __float__(self) -> float:
        return float(stringify(self.value).strip())

    def __int__(self) -> int:
        return int(float(self))


class MissingValue(Undefined):
    """Undefined that keeps the full path it was looked up at."""

    __slots__ = ("_docfill_path",)

    def __init__(self, hint: Optional[str] = None, obj: Any = missing,
                 name: Optional[str] = None, exc=UndefinedError, path: Optional[Path] = None):
        super().__init__(hint=hint, obj=obj, name=name, exc=exc)
        if path is None:
            path = _join(ROOT, name) if name else ROOT
        self._docfill_path = path

    @property
    def path(self) -> Path:
        return self._docfill_path

    def __docfill_resolution__(self):
        return Absent(self._docfill_path)

    def child(self, key: Any) -> "MissingValue":
        return MissingValue(path=_join(self._docfill_path, key))

    def __str__(self) -> str:
        # reached through filters and str methods that bypass finalize; the miss still counts
        emitter = active_emitter()
        if emitter is None:
            return missing_display(self._docfill_path)
        return emitter.missing(self._docfill_path).display

    def __repr__(self) -> str:
        return f"MissingValue({str(self._docfill_path)!r})"


def bind_context(context: Mapping[str, Any]) -> dict:
    """Top-level template variables: one ``Bound`` per data key plus ``data`` for the root."""
    variables = {"data": Bound(context, ROOT)}
    for key, value in context.items():
        variables[key] = Bound(value, Path((key,)))
    return variables


def lookup(obj: Any, path: Any) -> Any:
    """``lookup(order, "items.0.price")``: dotted access from a template value."""
    if isinstance(path, Bound):
        path = stringify(path.value)
    if isinstance(obj, Undefined) or obj is None:
        return obj if isinstance(obj, MissingValue) else MissingValue(path=ROOT)
    node = obj if isinstance(obj, Bound) else Bound(obj, ROOT)
    try:
        segments = Path.of(path).segments if not isinstance(path, int) else (path,)
    except InvalidPathError:
        return MissingValue(path=node.path)
    for segment in segments:
        node = node.child(segment)
    return node

