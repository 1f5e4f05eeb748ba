"""
paths.py: dotted/indexed data paths (``items.0.price``).

Segments are ``str`` property names or non-negative ``int`` indexes. Only canonical
integers (``0``, ``12``; not ``007`` or ``-1``) decode to ``int`` so that the
array-vs-object decision made by the context builder is deterministic and
``decode(encode(p)) == p`` always holds.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Tuple, Union

from docfill.errors import InvalidPathError

log = logging.getLogger(__name__)

Segment = Union[str, int]

SEPARATOR = "."
_BRACKET = re.compile(r"\[(\d+)\]")
_CANONICAL_INT = re.compile(r"0|[1-9][0-9]*")


def is_index_segment(segment: object) -> bool:
    if isinstance(segment, bool):
        return False
    if isinstance(segment, int):
        return segment >= 0
    return isinstance(segment, str) and _CANONICAL_INT.fullmatch(segment) is not None


def _normalize(segment: Segment) -> Segment:
    if isinstance(segment, str) and is_index_segment(segment):
        return int(segment)
    return segment


def _check(segment: Segment) -> Segment:
    if isinstance(segment, bool):
        raise InvalidPathError(f"Boolean is not a path segment: {segment!r}")
    if isinstance(segment, int):
        if segment < 0:
            raise InvalidPathError(f"Negative index in path: {segment}")
        return segment
    if not isinstance(segment, str):
        raise InvalidPathError(f"Unsupported path segment type: {type(segment).__name__}")
    if segment == "" or SEPARATOR in segment:
        raise InvalidPathError(f"Invalid path segment: {segment!r}")
    return segment


def encode(segments: Iterable[Segment]) -> str:
    return SEPARATOR.join(str(_check(s)) for s in segments)


def decode(text: str) -> Tuple[Segment, ...]:
    if not isinstance(text, str):
        raise InvalidPathError(f"Path must be a string, got {type(text).__name__}")
    raw = text.strip()
    converted = _BRACKET.sub(r".\1", raw)
    if converted != raw:
        log.debug("Bracket notation converted to dot notation: %s -> %s", raw, converted)
    if not converted:
        raise InvalidPathError("Empty path", {"path": text})
    parts = converted.split(SEPARATOR)
    if any(p.strip() == "" for p in parts):
        raise InvalidPathError(f"Path contains an empty segment: {text!r}", {"path": text})
    return tuple(_normalize(p.strip()) for p in parts)


@dataclass(frozen=True)
class Path:
    """Immutable data path. Equality and hashing are structural."""

    segments: Tuple[Segment, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "segments", tuple(_check(_normalize(s)) for s in self.segments))

    @classmethod
    def parse(cls, text: str) -> "Path":
        return cls(decode(text))

    @classmethod
    def of(cls, value: Union["Path", str, Iterable[Segment], None]) -> "Path":
        if value is None:
            return ROOT
        if isinstance(value, Path):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        return cls(tuple(value))

    def join(self, child: Union["Path", Segment, str]) -> "Path":
        if isinstance(child, Path):
            return Path(self.segments + child.segments)
        if isinstance(child, str) and SEPARATOR in child:
            return Path(self.segments + decode(child))
        return Path(self.segments + (child,))

    @property
    def parent(self) -> "Path":
        return Path(self.segments[:-1])

    @property
    def name(self) -> Segment | None:
        return self.segments[-1] if self.segments else None

    def is_root(self) -> bool:
        return not self.segments

    def startswith(self, other: "Path") -> bool:
        return self.segments[: len(other.segments)] == other.segments

    def __iter__(self) -> Iterator[Segment]:
        return iter(self.segments)

    def __len__(self) -> int:
        return len(self.segments)

    def __str__(self) -> str:
        return encode(self.segments)

    def __repr__(self) -> str:
        return f"Path({str(self)!r})"


ROOT = Path()


def join(parent: Union[Path, str, None], child: Union[Path, Segment, str]) -> Path:
    return Path.of(parent).join(child)
