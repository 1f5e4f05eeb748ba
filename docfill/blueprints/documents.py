from pathlib import Path

from flask import Blueprint, Response, abort, current_app, jsonify, request, send_file
from werkzeug.utils import secure_filename

from docfill.errors import ValidationError
from docfill.services import docgen, report
from docfill.services.context import build_context
from docfill.services.records import read_records, records_from_mapping
from docfill.services.renderer import TemplateRenderer, extract_fields
from docfill.services.workflow import Workflow

documents_bp = Blueprint("documents", __name__)

DOCUMENT_FORMATS = ("md", "html", "docx", "pdf")
TEMPLATE_SUFFIXES = (".md.j2", ".md", ".j2")
DEFAULT_STYLE = "default.css"


def _settings():
    return current_app.config["DOCFILL"]


def _template_path(name: str) -> Path:
    name = secure_filename(name)
    base = Path(_settings().template_dir)
    for suffix in TEMPLATE_SUFFIXES:
        candidate = base / f"{name}{suffix}"
        if candidate.exists():
            return candidate
    raise ValidationError(f"Template not found: {name}", {"attempted": [str(base / name)]})


def _data_path(name: str):
    data = secure_filename(request.args.get("data") or f"{name}.csv")
    path = Path(_settings().data_dir) / data
    if request.args.get("data") or path.exists():
        return path
    return None


def _style_path():
    style = secure_filename(request.args.get("style") or DEFAULT_STYLE)
    path = Path(_settings().style_dir) / style
    if request.args.get("style") or path.exists():
        return path
    return None


def _run(name: str, formats):
    settings = _settings()
    template = _template_path(name)
    data, style = _data_path(name), _style_path()
    generators = docgen.build_generators(settings, formats, base_dir=template.parent)
    workflow = Workflow(settings, generators=generators)
    result = workflow.run(
        str(template),
        data=str(data) if data else None,
        style=str(style) if style else None,
        output_dir=settings.output_dir,
        locale=request.args.get("locale"),
        name=secure_filename(name),
    )
    current_app.logger.info("%s: %s", name, result.stats.to_dict())
    return result


@documents_bp.route("/render", methods=["POST"])
def render_json():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Expected a JSON object with 'template' and 'data'")
    template = payload.get("template")
    if not isinstance(template, str):
        raise ValidationError("'template' must be the template source text")
    data = payload.get("data") or {}
    records = read_records(data) if isinstance(data, str) else records_from_mapping(data)
    settings = _settings()
    context = build_context(records, max_depth=settings.max_depth, strict=settings.strict)
    renderer = TemplateRenderer(locale=settings.locale, timezone=settings.timezone)
    result = renderer.render(template, context, locale=payload.get("locale"))
    return jsonify(result.to_dict())


@documents_bp.route("/documents/<name>.<fmt>")
def document(name: str, fmt: str):
    if fmt not in DOCUMENT_FORMATS:
        abort(404)
    result = _run(name, [fmt])
    path = result.outputs[fmt]
    return send_file(Path(path).resolve(), as_attachment=True, download_name=f"{secure_filename(name)}.{fmt}")


@documents_bp.route("/documents/<name>/fields.xlsx")
def fields_xlsx(name: str):
    result = _run(name, ["xlsx"])
    return send_file(Path(result.outputs["xlsx"]).resolve(), as_attachment=True,
                     download_name=f"{secure_filename(name)}-fields.xlsx")


@documents_bp.route("/documents/<name>/skeleton.csv")
def skeleton_csv(name: str):
    template = _template_path(name)
    fields = extract_fields(template.read_text(encoding="utf-8"))
    return Response(
        report.skeleton_csv(fields),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={secure_filename(name)}-skeleton.csv"},
    )


@documents_bp.route("/documents/<name>/bundle.zip")
def bundle(name: str):
    formats = [f for f in (request.args.get("formats") or "md,xlsx").split(",") if f.strip()]
    result = _run(name, formats)
    zip_path = Path(_settings().output_dir) / f"{secure_filename(name)}.zip"
    docgen.zip_files(result.outputs.values(), zip_path)
    return send_file(zip_path.resolve(), as_attachment=True, download_name=zip_path.name)
