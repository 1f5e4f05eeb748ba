"""
annotations.py: per-pass annotation emitter and render statistics.

One ``AnnotationEmitter`` (and its ``RenderStats``) exists per render pass. The renderer
keeps it in the Jinja render context, and in a context variable for the duration of the
pass (see ``activate``), so passes running in different threads never share counters.
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from docfill.services.markers import IMPORTED, MISSING, Annotation, missing_display
from docfill.services.paths import ROOT, Path
from docfill.services.resolver import Absent, Resolution, Resolved, stringify

log = logging.getLogger(__name__)

# set while a pass renders; reached by values that are stringified outside a filter
_ACTIVE: ContextVar[Optional["AnnotationEmitter"]] = ContextVar("docfill_emitter", default=None)


@dataclass
class RenderStats:
    total_fields: int = 0
    resolved_fields: int = 0
    markers: List[Annotation] = field(default_factory=list)

    @property
    def missing_fields(self) -> int:
        return self.total_fields - self.resolved_fields

    def record(self, annotation: Annotation) -> None:
        self.total_fields += 1
        if annotation.imported:
            self.resolved_fields += 1
        self.markers.append(annotation)

    def discard(self, annotation: Annotation) -> bool:
        """Un-count a marker that a later helper is about to re-emit (``price|currency|text``)."""
        for i in range(len(self.markers) - 1, -1, -1):
            if self.markers[i] is annotation:
                del self.markers[i]
                self.total_fields -= 1
                if annotation.imported:
                    self.resolved_fields -= 1
                return True
        return False

    def checkpoint(self) -> tuple:
        return (self.total_fields, self.resolved_fields, len(self.markers))

    def rollback(self, checkpoint: tuple) -> None:
        """Forget everything recorded since ``checkpoint`` (a failed iteration entry)."""
        total, resolved, count = checkpoint
        self.total_fields = total
        self.resolved_fields = resolved
        del self.markers[count:]

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_fields": self.total_fields,
            "resolved_fields": self.resolved_fields,
            "missing_fields": self.missing_fields,
        }


class AnnotationEmitter:
    def __init__(self, stats: Optional[RenderStats] = None):
        self.stats = stats if stats is not None else RenderStats()

    def emit(self, resolution: Resolution, path: Union[Path, str, None] = None,
             display_override: Any = None) -> Annotation:
        path = Path.of(path) if path is not None else resolution.path
        if isinstance(resolution, Resolved):
            display = display_override if display_override is not None else stringify(resolution.value)
            annotation = Annotation(IMPORTED, path, display)
        else:
            annotation = Annotation(MISSING, path, missing_display(path))
        self.stats.record(annotation)
        return annotation

    def missing(self, path: Union[Path, str, None]) -> Annotation:
        path = Path.of(path) if path is not None else ROOT
        return self.emit(Absent(path), path)

    def error(self, path: Union[Path, str, None], style: str, message: str) -> Annotation:
        """A formatting failure: counted as a field that was not resolved."""
        path = Path.of(path) if path is not None else ROOT
        annotation = Annotation(MISSING, path, message, error=style)
        self.stats.record(annotation)
        log.warning("Formatting failed for %s (%s): %s", path or "<value>", style, message)
        return annotation


def active_emitter() -> Optional[AnnotationEmitter]:
    return _ACTIVE.get()


@contextmanager
def activate(emitter: AnnotationEmitter):
    token = _ACTIVE.set(emitter)
    try:
        yield emitter
    finally:
        _ACTIVE.reset(token)
