"""
workflow.py: one document pass, from input files to rendered markup and outputs.

    Validating -> BuildingContext -> Rendering -> Done
         \\______________\\______________\\____-> Failed

Validating may repeat itself (transient I/O), nothing else is re-entered. File access
and the output-directory check are injected so a host can swap them out; so is
``sleep``, which keeps retries instant in tests.
"""
from __future__ import annotations
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path as FsPath
from typing import Any, Callable, Dict, List, Mapping, Optional

import yaml

from docfill.config import Settings
from docfill.errors import (DocfillError, InvalidDataStructureError, OutputError, ProcessingError,
                            ValidationError)
from docfill.services.annotations import RenderStats
from docfill.services.context import DataContext, build_context, empty_context
from docfill.services.records import read_records, records_from_mapping
from docfill.services.renderer import RenderResult, TemplateRenderer

log = logging.getLogger(__name__)

STRUCTURED_SUFFIXES = (".yaml", ".yml", ".json")


class State(str, Enum):
    VALIDATING = "validating"
    BUILDING_CONTEXT = "building_context"
    RENDERING = "rendering"
    DONE = "done"
    FAILED = "failed"


_NEXT = {
    State.VALIDATING: {State.VALIDATING, State.BUILDING_CONTEXT},
    State.BUILDING_CONTEXT: {State.RENDERING},
    State.RENDERING: {State.DONE},
    State.DONE: set(),
    State.FAILED: set(),
}


@dataclass
class Sources:
    template: str
    data: str = ""
    style: str = ""


@dataclass
class Document:
    """What output generators receive once a pass is Done."""

    name: str
    markup: str
    stats: RenderStats
    metadata: Dict[str, Any] = field(default_factory=dict)
    style: str = ""
    output_dir: Optional[str] = None


@dataclass
class WorkflowResult:
    document: Document
    context: DataContext
    render: RenderResult
    outputs: Dict[str, str] = field(default_factory=dict)
    attempts: int = 1

    @property
    def stats(self) -> RenderStats:
        return self.render.stats


OutputGenerator = Callable[[Document], Any]


def read_text(path: str) -> str:
    return FsPath(path).read_text(encoding="utf-8")


def is_writable(path: str) -> bool:
    os.makedirs(path, exist_ok=True)
    return os.access(path, os.W_OK)


class Workflow:
    def __init__(self, settings: Optional[Settings] = None,
                 read_text: Callable[[str], str] = read_text,
                 is_writable: Callable[[str], bool] = is_writable,
                 sleep: Callable[[float], None] = time.sleep,
                 renderer: Optional[TemplateRenderer] = None,
                 generators: Optional[Mapping[str, OutputGenerator]] = None):
        self.settings = settings or Settings()
        self.read_text = read_text
        self.is_writable = is_writable
        self.sleep = sleep
        self.renderer = renderer or TemplateRenderer(locale=self.settings.locale,
                                                     timezone=self.settings.timezone)
        self.generators = dict(generators or {})
        self.state = State.VALIDATING
        self.history: List[State] = []
        self.attempts = 0

    def _enter(self, state: State) -> None:
        if self.history and state not in _NEXT[self.state] and state is not State.FAILED:
            raise ProcessingError(f"Illegal transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)
        log.debug("Workflow state: %s", state.value)

    # stages

    def validate(self, template: str, data: Optional[str] = None, style: Optional[str] = None,
                 output_dir: Optional[str] = None) -> Sources:
        retries = max(1, self.settings.validation_retries)
        attempted = [p for p in (template, data, style, output_dir) if p]
        errors: List[str] = []
        for attempt in range(1, retries + 1):
            self._enter(State.VALIDATING)
            self.attempts = attempt
            try:
                return self._check(template, data, style, output_dir)
            except (OSError, UnicodeDecodeError) as e:
                errors.append(f"attempt {attempt}: {e}")
                if attempt < retries:
                    log.warning("Validation attempt %d/%d failed: %s; retrying in %.1fs",
                                attempt, retries, e, self.settings.retry_delay)
                    self.sleep(self.settings.retry_delay)
        raise ValidationError(
            f"Inputs not available after {retries} attempts: {', '.join(attempted)}",
            {"stage": State.VALIDATING.value, "attempted": attempted, "errors": errors},
        )

    def _check(self, template, data, style, output_dir) -> Sources:
        sources = Sources(template=self.read_text(template))
        if data:
            sources.data = self.read_text(data)
        if style:
            sources.style = self.read_text(style)
        if output_dir and not self.is_writable(output_dir):
            raise PermissionError(f"Output directory is not writable: {output_dir}")
        return sources

    def build(self, data_text: str, data_path: Optional[str] = None) -> DataContext:
        self._enter(State.BUILDING_CONTEXT)
        if not data_text.strip():
            return empty_context()
        if data_path and FsPath(data_path).suffix.lower() in STRUCTURED_SUFFIXES:
            try:
                loaded = yaml.safe_load(data_text)
            except yaml.YAMLError as e:
                raise InvalidDataStructureError(f"Cannot parse {data_path}: {e}") from e
            if not isinstance(loaded, (dict, list)):
                raise InvalidDataStructureError(f"{data_path} must hold a mapping or a list")
            records = records_from_mapping(loaded)
        else:
            records = read_records(data_text)
        return build_context(records, max_depth=self.settings.max_depth, strict=self.settings.strict)

    def render(self, template_text: str, context: DataContext, locale: Optional[str] = None) -> RenderResult:
        self._enter(State.RENDERING)
        return self.renderer.render(template_text, context, locale=locale)

    # driver

    def run(self, template: str, data: Optional[str] = None, style: Optional[str] = None,
            output_dir: Optional[str] = None, locale: Optional[str] = None,
            name: Optional[str] = None) -> WorkflowResult:
        self.history = []
        self.attempts = 0
        try:
            sources = self.validate(template, data, style, output_dir)
            context = self.build(sources.data, data)
            rendered = self.render(sources.template, context, locale)
            self._enter(State.DONE)
        except DocfillError as e:
            e.details.setdefault("stage", self.state.value)
            self._enter(State.FAILED)
            log.error("Workflow failed in %s: %s", e.details["stage"], e)
            raise
        except Exception as e:
            stage = self.state.value
            self._enter(State.FAILED)
            log.error("Workflow failed in %s: %s", stage, e)
            raise ProcessingError(f"{type(e).__name__}: {e}", {"stage": stage}) from e

        document = Document(
            name=name or _stem(template),
            markup=rendered.markup,
            stats=rendered.stats,
            metadata=rendered.metadata,
            style=sources.style,
            output_dir=output_dir,
        )
        result = WorkflowResult(document, context, rendered, attempts=self.attempts)
        result.outputs = self.generate(document)
        return result

    def generate(self, document: Document) -> Dict[str, str]:
        outputs = {}
        for fmt, generator in self.generators.items():
            try:
                outputs[fmt] = str(generator(document))
            except OutputError:
                raise
            except Exception as e:
                raise OutputError(f"{fmt} output failed: {e}", {"format": fmt}) from e
            log.info("Generated %s: %s", fmt, outputs[fmt])
        return outputs


def _stem(path: str) -> str:
    name = FsPath(path).name
    for suffix in (".j2", ".md", ".markdown", ".html"):
        if name.endswith(suffix):
            name = name[: -len(suffix)]
    return name or "document"
