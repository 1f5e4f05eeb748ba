import subprocess
import zipfile

import pandas as pd
import pytest

from docfill.errors import OutputError
from docfill.services import docgen, report
from docfill.services.annotations import RenderStats
from docfill.services.markers import IMPORTED, MISSING, Annotation
from docfill.services.paths import Path
from docfill.services.workflow import Document


@pytest.fixture
def document(tmp_path):
    stats = RenderStats()
    stats.record(Annotation(IMPORTED, Path.parse("client.name"), "Acme"))
    stats.record(Annotation(MISSING, Path.parse("client.email"), "[[client.email]]"))
    stats.record(Annotation(MISSING, Path.parse("total"), "[[Invalid amount]]", "currency"))
    markup = '# Offer\n\n<span class="imported-value" data-field="client.name">Acme</span>\n'
    return Document("offer", markup, stats, {"title": "Offer", "lang": "es"}, "body { color: red; }",
                    str(tmp_path / "out"))


def test_markdown_output(document):
    path = docgen.write_markdown(document)
    assert path.name == "offer.md"
    assert path.read_text(encoding="utf-8") == document.markup


def test_field_report_frames(document):
    fields = report.field_frame(document.stats.markers)
    assert list(fields["Status"]) == ["imported", "missing", "error"]
    summary = report.summary_frame(fields).set_index("Metric")["Count"]
    assert summary["missing_fields"] == 2
    assert summary["format_errors"] == 1


def test_field_report_xlsx(document, tmp_path):
    path = report.write_field_report(document.stats.markers, tmp_path / "fields.xlsx")
    workbook = zipfile.ZipFile(path).read("xl/workbook.xml").decode("utf-8")
    assert 'name="Fields"' in workbook
    assert 'name="Summary"' in workbook


def test_field_report_csv(document, tmp_path):
    path = report.write_field_report(document.stats.markers, tmp_path / "fields.csv")
    frame = pd.read_csv(path, keep_default_na=False)
    assert list(frame.columns) == report.REPORT_COLUMNS
    assert frame.loc[2, "Error"] == "[[Invalid amount]]"


def test_skeleton_csv():
    text = report.skeleton_csv(["client.name", "items.0.price"])
    assert text.splitlines() == ["key,value,comment", "client.name,,Field: client.name",
                                 "items.0.price,,Field: items.0.price"]


def test_html_needs_pandoc(document, monkeypatch):
    monkeypatch.setattr(docgen.shutil, "which", lambda name: None)
    with pytest.raises(OutputError):
        docgen.write_html(document, docgen.Pandoc())


def test_html_wraps_pandoc_output(document, monkeypatch, tmp_path):
    (tmp_path / "logo.png").write_bytes(b"\x89PNG")
    monkeypatch.setattr(docgen.shutil, "which", lambda name: "/usr/bin/pandoc")

    def fake_run(cmd, input=None, capture_output=False, text=False):
        return subprocess.CompletedProcess(cmd, 0, stdout='<h1>Offer</h1><img src="logo.png">', stderr="")

    monkeypatch.setattr(docgen.subprocess, "run", fake_run)
    path = docgen.write_html(document, docgen.Pandoc(), base_dir=tmp_path)
    html = path.read_text(encoding="utf-8")
    assert '<html lang="es">' in html
    assert "<title>Offer</title>" in html
    assert "body { color: red; }" in html
    assert 'src="data:image/png;base64,' in html


def test_pandoc_failures_raise_output_errors(monkeypatch):
    def fake_run(cmd, input=None, capture_output=False, text=False):
        return subprocess.CompletedProcess(cmd, 2, stdout="", stderr="bad input")

    monkeypatch.setattr(docgen.subprocess, "run", fake_run)
    with pytest.raises(OutputError) as exc:
        docgen.Pandoc().run(["-v"])
    assert exc.value.details["returncode"] == 2


def test_docx_falls_back_to_python_docx(document, monkeypatch):
    from docx import Document as DocxDocument

    monkeypatch.setattr(docgen.shutil, "which", lambda name: None)
    path = docgen.write_docx(document, docgen.Pandoc())
    paragraphs = [p.text for p in DocxDocument(str(path)).paragraphs]
    assert "Offer" in paragraphs
    assert "Acme" in paragraphs


def test_zip_files(tmp_path):
    a = tmp_path / "a.md"
    a.write_text("a", encoding="utf-8")
    bundle = docgen.zip_files([a, tmp_path / "missing.md"], tmp_path / "out" / "bundle.zip")
    assert zipfile.ZipFile(bundle).namelist() == ["a.md"]


def test_unknown_formats_are_rejected(settings):
    with pytest.raises(OutputError):
        docgen.build_generators(settings, ["md", "odt"])
