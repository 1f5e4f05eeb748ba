"""
markers.py: resolution markers and their inert HTML form.

    <span class="imported-value" data-field="items.0.price">12,50 €</span>
    <span class="missing-value" data-field="user.email">[[user.email]]</span>
    <span class="missing-value format-error" data-field="price" data-error="currency">[[Invalid amount]]</span>

The span is the only channel that carries "was this field present" into the output.
``parse_marker`` is the inverse of ``serialize`` and is what lets already-annotated
values be resolved again without being wrapped twice.
"""
from __future__ import annotations
import html
import re
from dataclasses import dataclass
from typing import Iterator, Optional

from markupsafe import escape

from docfill.errors import InvalidPathError
from docfill.services.paths import ROOT, Path

IMPORTED = "imported"
MISSING = "missing"

IMPORTED_CLASS = "imported-value"
MISSING_CLASS = "missing-value"
ERROR_CLASS = "format-error"
FIELD_ATTR = "data-field"

_CLASSES = {IMPORTED: IMPORTED_CLASS, MISSING: MISSING_CLASS}

_MARKER = re.compile(
    r'<span class="(?P<cls>imported-value|missing-value(?: format-error)?)"'
    r' data-field="(?P<path>[^"]*)"'
    r'(?: data-error="(?P<error>[^"]*)")?>'
    r"(?P<body>.*?)</span>",
    re.DOTALL,
)
_TAG = re.compile(r"<[^>]+>")


def missing_display(path: Path) -> str:
    return f"[[{path}]]"


@dataclass(frozen=True)
class Annotation:
    """A resolution marker. ``str()`` gives the serialized span."""

    kind: str
    path: Path
    display: str
    error: Optional[str] = None

    @property
    def imported(self) -> bool:
        return self.kind == IMPORTED

    def serialize(self) -> str:
        return serialize(self.kind, self.path, self.display, self.error)

    def __html__(self) -> str:
        return self.serialize()

    def __str__(self) -> str:
        return self.serialize()


def serialize(kind: str, path: Path, display: str, error: Optional[str] = None) -> str:
    cls = _CLASSES[kind]
    if error:
        cls = f"{cls} {ERROR_CLASS}"
    attrs = f'class="{cls}" {FIELD_ATTR}="{escape(str(path))}"'
    if error:
        attrs += f' data-error="{escape(error)}"'
    # escape() leaves Markup alone, so helpers may pass pre-built inline markup (mailto links)
    return f"<span {attrs}>{escape(display)}</span>"


def _annotation(match: re.Match) -> Annotation:
    cls = match.group("cls")
    kind = IMPORTED if cls == IMPORTED_CLASS else MISSING
    raw_path = html.unescape(match.group("path"))
    try:
        path = Path.parse(raw_path) if raw_path else ROOT
    except InvalidPathError:
        path = ROOT
    body = match.group("body")
    display = html.unescape(_TAG.sub("", body))
    return Annotation(kind, path, display, match.group("error") or None)


def parse_marker(text: object) -> Optional[Annotation]:
    """Return the marker if ``text`` is exactly one serialized marker, else None."""
    if isinstance(text, Annotation):
        return text
    if not isinstance(text, str) or "<span" not in text:
        return None
    match = _MARKER.fullmatch(text.strip())
    return _annotation(match) if match else None


def iter_markers(markup: str) -> Iterator[Annotation]:
    for match in _MARKER.finditer(markup or ""):
        yield _annotation(match)
