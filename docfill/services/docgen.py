# docgen.py: rendered markup -> Markdown / HTML / DOCX / PDF files (pandoc), zip bundles
from __future__ import annotations
import base64
import html
import logging
import mimetypes
import re
import shutil
import subprocess
import zipfile
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from markupsafe import escape

from docfill.config import Settings
from docfill.errors import OutputError
from docfill.services import report

log = logging.getLogger(__name__)

FORMATS = ("md", "html", "pdf", "docx", "xlsx", "csv")

HTML_SHELL = """<!DOCTYPE html>
<html lang="{lang}">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta name="generator" content="docfill">
<title>{title}</title>
<style>
{css}
</style>
</head>
<body>
{body}
</body>
</html>
"""

_IMG_SRC = re.compile(r'(<img\b[^>]*?\bsrc=")([^"]+)(")', re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")


class Pandoc:
    def __init__(self, binary: str = "pandoc", pdf_engine: Optional[str] = None,
                 reference_docx: Optional[str] = None):
        self.binary = binary
        self.pdf_engine = pdf_engine
        self.reference_docx = reference_docx

    @classmethod
    def from_settings(cls, settings: Settings) -> "Pandoc":
        return cls(settings.pandoc_bin, settings.pdf_engine, settings.reference_docx)

    def available(self) -> bool:
        return shutil.which(self.binary) is not None

    def run(self, args: List[str], input_text: Optional[str] = None) -> str:
        cmd = [self.binary, *args]
        try:
            proc = subprocess.run(cmd, input=input_text, capture_output=True, text=True)
        except OSError as e:
            raise OutputError(f"Cannot run {self.binary}: {e}", {"command": cmd}) from e
        if proc.returncode != 0:
            raise OutputError(
                f"Command failed ({proc.returncode}): {' '.join(cmd)}\nSTDERR:\n{proc.stderr}",
                {"command": cmd, "returncode": proc.returncode},
            )
        return proc.stdout

    def markdown_to_html(self, markdown: str) -> str:
        return self.run(["-f", "markdown", "-t", "html"], markdown)


def _target(doc, suffix: str, output_dir=None) -> Path:
    outdir = Path(output_dir or doc.output_dir or "output")
    outdir.mkdir(parents=True, exist_ok=True)
    return outdir / f"{doc.name}{suffix}"


def plain_text(markup: str) -> str:
    """Markup with every tag removed (markers keep their display text)."""
    return html.unescape(_TAG.sub("", markup))


def inline_images(body: str, base_dir: Optional[Path] = None) -> str:
    """Replace local ``<img src>`` references with base64 data URIs."""
    base = Path(base_dir) if base_dir else Path(".")

    def _inline(match):
        src = match.group(2)
        if re.match(r"^(?:[a-z]+:)?//|^data:", src, re.IGNORECASE):
            return match.group(0)
        path = (base / src).resolve()
        if not path.is_file():
            log.warning("Image not found, leaving reference as-is: %s", path)
            return match.group(0)
        mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        data = base64.b64encode(path.read_bytes()).decode("ascii")
        return f"{match.group(1)}data:{mime};base64,{data}{match.group(3)}"

    return _IMG_SRC.sub(_inline, body)


def html_document(doc, pandoc: Pandoc, base_dir: Optional[Path] = None) -> str:
    if not pandoc.available():
        raise OutputError(f"{pandoc.binary} not found; HTML output needs pandoc")
    body = inline_images(pandoc.markdown_to_html(doc.markup), base_dir)
    return HTML_SHELL.format(
        lang=escape(doc.metadata.get("lang", "es")),
        title=escape(doc.metadata.get("title") or doc.name),
        css=doc.style or "",
        body=body,
    )


def write_markdown(doc, output_dir=None) -> Path:
    path = _target(doc, ".md", output_dir)
    path.write_text(doc.markup, encoding="utf-8")
    return path


def write_html(doc, pandoc: Pandoc, output_dir=None, base_dir: Optional[Path] = None) -> Path:
    path = _target(doc, ".html", output_dir)
    path.write_text(html_document(doc, pandoc, base_dir), encoding="utf-8")
    return path


def write_pdf(doc, pandoc: Pandoc, output_dir=None, base_dir: Optional[Path] = None) -> Path:
    html_path = write_html(doc, pandoc, output_dir, base_dir)
    pdf_path = _target(doc, ".pdf", output_dir)
    args = [str(html_path), "-o", str(pdf_path)]
    if pandoc.pdf_engine:
        args.append(f"--pdf-engine={pandoc.pdf_engine}")
    pandoc.run(args)
    return pdf_path


def write_docx(doc, pandoc: Pandoc, output_dir=None) -> Path:
    md_path = write_markdown(doc, output_dir)
    docx_path = _target(doc, ".docx", output_dir)

    if pandoc.available():
        args = [str(md_path), "-o", str(docx_path)]
        if pandoc.reference_docx and Path(pandoc.reference_docx).exists():
            args += ["--reference-doc", pandoc.reference_docx]
        pandoc.run(args)
        return docx_path

    # no pandoc: plain paragraphs, markdown headings kept as headings
    log.warning("%s not found, writing plain DOCX with python-docx", pandoc.binary)
    from docx import Document
    document = Document()
    for line in plain_text(doc.markup).splitlines():
        heading = re.match(r"^(#{1,6})\s+(.*)$", line)
        if heading:
            document.add_heading(heading.group(2), level=len(heading.group(1)))
        else:
            document.add_paragraph(line)
    document.save(docx_path)
    return docx_path


def zip_files(paths: Iterable, zip_path: Path) -> Path:
    zip_path = Path(zip_path)
    zip_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for p in paths:
            p = Path(p)
            if p.exists():
                zf.write(p, arcname=p.name)
    return zip_path


def build_generators(settings: Settings, formats: Iterable[str],
                     base_dir: Optional[Path] = None) -> Dict[str, Callable]:
    """Output generators for ``Workflow``, keyed by format."""
    pandoc = Pandoc.from_settings(settings)
    available = {
        "md": lambda doc: write_markdown(doc),
        "html": lambda doc: write_html(doc, pandoc, base_dir=base_dir),
        "pdf": lambda doc: write_pdf(doc, pandoc, base_dir=base_dir),
        "docx": lambda doc: write_docx(doc, pandoc),
        "xlsx": lambda doc: report.write_field_report(doc.stats.markers, _target(doc, "-fields.xlsx")),
        "csv": lambda doc: report.write_field_report(doc.stats.markers, _target(doc, "-fields.csv")),
    }
    generators = {}
    for fmt in formats:
        fmt = fmt.strip().lower()
        if fmt not in available:
            raise OutputError(f"Unknown output format: {fmt}", {"format": fmt})
        generators[fmt] = available[fmt]
    return generators
