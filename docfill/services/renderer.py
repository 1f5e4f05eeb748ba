"""
renderer.py: renders Markdown+Jinja templates against a data context.

Every ``{{ ... }}`` site that evaluates to a data value is replaced by a resolution
marker (see ``markers.py``); literals and loop metadata are written as-is. The markers
and the per-pass counters come back in ``RenderResult``.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from jinja2 import Environment, FileSystemLoader, Template, nodes
from jinja2.compiler import CodeGenerator, Frame, optimizeconst
from jinja2.exceptions import TemplateSyntaxError

from docfill.errors import DocfillError, InvalidPathError, ProcessingError
from docfill.services.annotations import AnnotationEmitter, RenderStats, activate
from docfill.services.binding import MAPPING_METHODS, Bound, MissingValue, bind_context, plain
from docfill.services.formatting import FILTERS, GLOBALS, LOCALE_KEY, TIMEZONE_KEY, annotate
from docfill.services.iteration import EMITTER_KEY, FRAME_NAME, EachExtension
from docfill.services.locales import DEFAULT_LOCALE, DEFAULT_TIMEZONE, get_locale
from docfill.services.paths import ROOT, Path

log = logging.getLogger(__name__)

META_NAME = "meta"

_FRONT_MATTER = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n(?:---|\.\.\.)[ \t]*(?:\r?\n|\Z)", re.DOTALL)


@dataclass
class RenderResult:
    markup: str
    stats: RenderStats
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"markup": self.markup, "stats": self.stats.to_dict(), "metadata": self.metadata}


def _bound_method(obj: Bound, method):
    """``name.upper()`` on a data string keeps the path of ``name``."""

    def call(*args, **kwargs):
        result = method(*[plain(a) for a in args], **{k: plain(v) for k, v in kwargs.items()})
        return Bound(result, obj.path) if isinstance(result, str) else result

    return call


class AnnotatingCodeGenerator(CodeGenerator):
    """Compiles ``~`` so each operand is annotated before it is joined."""

    @optimizeconst
    def visit_Concat(self, node: nodes.Concat, frame: Frame) -> None:
        self.write("environment.concat_annotated(context, (")
        for arg in node.nodes:
            self.visit(arg, frame)
            self.write(", ")
        self.write("))")


class AnnotatingEnvironment(Environment):
    """Jinja environment whose lookups keep track of data paths."""

    code_generator_class = AnnotatingCodeGenerator

    def __init__(self, **options):
        options.setdefault("undefined", MissingValue)
        options.setdefault("autoescape", False)
        options.setdefault("trim_blocks", True)
        options.setdefault("lstrip_blocks", True)
        options.setdefault("keep_trailing_newline", True)
        options.setdefault("finalize", annotate)
        extensions = list(options.pop("extensions", ()))
        if EachExtension not in extensions:
            extensions.append(EachExtension)
        super().__init__(extensions=extensions, **options)
        self.filters.update(FILTERS)
        self.globals.update(GLOBALS)

    def getattr(self, obj, attribute):
        if isinstance(obj, Bound):
            value = obj.value
            if isinstance(value, Mapping):
                if attribute in value or attribute not in MAPPING_METHODS:
                    return obj.child(attribute)
                return getattr(obj, attribute)
            if isinstance(value, str) and not attribute.startswith("_") and hasattr(value, attribute):
                return _bound_method(obj, getattr(value, attribute))
            return obj.child(attribute)
        if isinstance(obj, MissingValue):
            return obj.child(attribute)
        return super().getattr(obj, attribute)

    def getitem(self, obj, argument):
        if isinstance(obj, (Bound, MissingValue)):
            return obj.child(argument)
        return super().getitem(obj, argument)

    def concat_annotated(self, context, values) -> str:
        return "".join(str(annotate(context, v)) for v in values)


def split_front_matter(source: str) -> Tuple[Dict[str, Any], str]:
    """``(metadata, body)``; the YAML block never reaches the template engine."""
    source = source.lstrip("﻿")
    match = _FRONT_MATTER.match(source)
    if not match:
        return {}, source
    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        raise ProcessingError(f"Invalid front matter: {e}", {"stage": "rendering"}) from e
    if not isinstance(meta, dict):
        raise ProcessingError("Front matter must be a mapping", {"stage": "rendering"})
    return meta, source[match.end():]


class TemplateRenderer:
    def __init__(self, locale: str = DEFAULT_LOCALE, timezone: str = DEFAULT_TIMEZONE,
                 template_dir: Optional[str] = None, filters: Optional[Dict[str, Any]] = None):
        self.locale = get_locale(locale).code
        try:
            self.timezone = ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ProcessingError(f"Unknown timezone {timezone!r}", {"timezone": timezone}) from e
        loader = FileSystemLoader(template_dir) if template_dir else None
        self.env = AnnotatingEnvironment(loader=loader)
        if filters:
            self.env.filters.update(filters)
        self._compiled: Dict[str, Template] = {}

    def compile(self, source: str) -> Tuple[Dict[str, Any], Template]:
        meta, body = split_front_matter(source)
        template = self._compiled.get(body)
        if template is None:
            try:
                template = self.env.from_string(body)
            except TemplateSyntaxError as e:
                raise ProcessingError(
                    f"Template syntax error at line {e.lineno}: {e.message}",
                    {"stage": "rendering", "line": e.lineno},
                ) from e
            self._compiled[body] = template
        return meta, template

    def render(self, source: str, context: Mapping[str, Any], locale: Optional[str] = None) -> RenderResult:
        meta, template = self.compile(source)
        loc = get_locale(locale or meta.get("locale") or meta.get("lang") or self.locale)
        metadata = dict(meta)
        metadata["locale"] = loc.code
        metadata.setdefault("lang", loc.lang)

        emitter = AnnotationEmitter()
        variables = bind_context(context)
        variables.setdefault(META_NAME, metadata)
        variables[EMITTER_KEY] = emitter
        variables[LOCALE_KEY] = loc.code
        variables[TIMEZONE_KEY] = self.timezone
        try:
            with activate(emitter):
                markup = template.render(variables)
        except DocfillError:
            raise
        except Exception as e:
            raise ProcessingError(f"Rendering failed: {e}", {"stage": "rendering"}) from e

        stats = emitter.stats
        log.info("Rendered %d fields (%d resolved, %d missing)",
                 stats.total_fields, stats.resolved_fields, stats.missing_fields)
        return RenderResult(markup, stats, metadata)


def render(source: str, context: Mapping[str, Any], locale: Optional[str] = None,
           timezone: str = DEFAULT_TIMEZONE) -> RenderResult:
    return TemplateRenderer(locale=locale or DEFAULT_LOCALE, timezone=timezone).render(source, context)


# field extraction (CSV skeletons)

def _is_each(call) -> bool:
    return (isinstance(call, nodes.Call) and isinstance(call.node, nodes.ExtensionAttribute)
            and call.node.name == "_render_each")


class _FieldCollector:
    def __init__(self, reserved):
        self.reserved = set(reserved)
        self.found: List[Path] = []

    def path_of(self, expr, aliases) -> Optional[Path]:
        try:
            if isinstance(expr, nodes.Name):
                if expr.name in aliases:
                    return aliases[expr.name]
                if expr.name == "data":
                    return ROOT
                if expr.name in self.reserved:
                    return None
                return Path((expr.name,))
            if isinstance(expr, nodes.Getattr):
                base = self.path_of(expr.node, aliases)
                return base.join(expr.attr) if base is not None else None
            if isinstance(expr, nodes.Getitem) and isinstance(expr.arg, nodes.Const):
                base = self.path_of(expr.node, aliases)
                if base is not None and isinstance(expr.arg.value, (str, int)):
                    return base.join(expr.arg.value)
        except InvalidPathError:
            return None
        return None

    def add(self, path: Optional[Path]) -> None:
        if path is not None and not path.is_root():
            self.found.append(path)

    def scoped(self, body, aliases) -> None:
        for child in body:
            self.walk(child, aliases)

    def walk(self, node, aliases) -> None:
        if isinstance(node, nodes.For):
            self.walk(node.iter, aliases)
            inner = dict(aliases)
            base = self.path_of(node.iter, aliases)
            if isinstance(node.target, nodes.Name):
                inner[node.target.name] = base.join(0) if base is not None else None
            if node.test is not None:
                self.walk(node.test, inner)
            self.scoped(node.body, inner)
            self.scoped(node.else_, aliases)
            return
        if isinstance(node, nodes.CallBlock) and _is_each(node.call):
            collection = node.call.args[0]
            self.walk(collection, aliases)
            base = self.path_of(collection, aliases)
            inner = dict(aliases)
            inner[node.args[0].name] = base.join(0) if base is not None else None
            self.scoped(node.body, inner)
            return
        if isinstance(node, nodes.With):
            inner = dict(aliases)
            for target, value in zip(node.targets, node.values):
                self.walk(value, aliases)
                if isinstance(target, nodes.Name):
                    inner[target.name] = self.path_of(value, aliases)
            self.scoped(node.body, inner)
            return
        if isinstance(node, nodes.Assign) and isinstance(node.target, nodes.Name):
            self.walk(node.node, aliases)
            aliases[node.target.name] = self.path_of(node.node, aliases)
            return
        if isinstance(node, (nodes.Name, nodes.Getattr, nodes.Getitem)):
            if isinstance(node, nodes.Name) and node.ctx != "load":
                return
            path = self.path_of(node, aliases)
            if path is not None:
                self.add(path)
                return
        for child in node.iter_child_nodes():
            self.walk(child, aliases)

    def fields(self) -> List[str]:
        unique = list(dict.fromkeys(self.found))
        kept = [p for p in unique if not any(o != p and o.startswith(p) for o in unique)]
        return [str(p) for p in kept]


def extract_fields(source: str) -> List[str]:
    """Dotted data paths a template references, in first-use order.

    Paths under an iteration use index ``0`` (``items.0.name``); containers that
    are only traversed are left out in favour of their leaves.
    """
    _, body = split_front_matter(source)
    env = AnnotatingEnvironment()
    try:
        ast = env.parse(body)
    except TemplateSyntaxError as e:
        raise ProcessingError(f"Template syntax error at line {e.lineno}: {e.message}",
                              {"line": e.lineno}) from e
    reserved = set(env.globals) | {FRAME_NAME, "loop", META_NAME, "caller", "varargs", "kwargs"}
    collector = _FieldCollector(reserved)
    collector.walk(ast, {})
    return collector.fields()
