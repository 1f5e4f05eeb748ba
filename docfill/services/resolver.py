"""
resolver.py: value resolution against the data context.

``resolve`` never raises for a path that is not there; it returns ``Absent``. Values
that already went through the annotation layer (``Annotation`` objects, or their
serialized span form) are unwrapped to their display text, so resolving twice gives
the same value as resolving once.

Empty-value policy: plain interpolation keeps ``""``/``None`` as present-but-empty.
Helpers that pass ``treat_empty_as_absent=True`` (number, currency, date, email)
see an empty-after-trim value as ``Absent``.
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

from docfill.errors import ProcessingError
from docfill.services.markers import IMPORTED, Annotation, parse_marker
from docfill.services.paths import ROOT, Path


@dataclass(frozen=True)
class Resolved:
    value: Any
    path: Path = ROOT


@dataclass(frozen=True)
class Absent:
    path: Path = ROOT


Resolution = Union[Resolved, Absent]


def _lookup(node: Any, segment) -> tuple:
    if isinstance(node, Mapping):
        key = str(segment)
        if key in node:
            return True, node[key]
        return False, None
    if isinstance(node, (tuple, list)) and isinstance(segment, int):
        if segment < len(node):
            return True, node[segment]
    return False, None


def _apply_policy(resolution: Resolution, treat_empty_as_absent: bool) -> Resolution:
    if treat_empty_as_absent and isinstance(resolution, Resolved) and is_blank(resolution.value):
        return Absent(resolution.path)
    return resolution


def resolve(context: Mapping[str, Any], path: Union[Path, str],
            treat_empty_as_absent: bool = False) -> Resolution:
    path = Path.of(path)
    node: Any = context
    for segment in path:
        found, node = _lookup(node, segment)
        if not found:
            return Absent(path)
    return _apply_policy(resolve_value(node, path), treat_empty_as_absent)


def resolve_value(value: Any, path: Optional[Path] = None,
                  treat_empty_as_absent: bool = False) -> Resolution:
    """Resolve a value that is already in hand (a template value or helper argument).

    Path-bound template values expose ``__docfill_resolution__``; annotated values are
    unwrapped; anything else is a present value at ``path``.
    """
    hook = getattr(type(value), "__docfill_resolution__", None)
    if hook is not None:
        resolution = hook(value)
    else:
        annotation = parse_marker(value)
        if annotation is not None:
            if annotation.kind == IMPORTED:
                resolution = Resolved(annotation.display, annotation.path)
            else:
                resolution = Absent(annotation.path)
        else:
            resolution = Resolved(value, path if path is not None else ROOT)
    return _apply_policy(resolution, treat_empty_as_absent)


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and value.strip() == ""


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Annotation):
        return value.display
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, Decimal)):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, (Mapping, tuple, list, set)):
        raise ProcessingError(
            f"Cannot interpolate a {type(value).__name__} as text",
            {"type": type(value).__name__},
        )
    try:
        return str(value)
    except Exception as e:
        raise ProcessingError(f"Value cannot be converted to text: {e}") from e
