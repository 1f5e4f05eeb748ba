import argparse
import os
import sys

from docfill.config import Settings
from docfill.errors import DocfillError, format_error
from docfill.log import configure_logging
from docfill.services import docgen, report
from docfill.services.renderer import extract_fields
from docfill.services.workflow import Workflow, read_text


def build_parser():
    ap = argparse.ArgumentParser(prog="docfill", description="Fill a Markdown template from key/value data")
    ap.add_argument("--template", required=True, help="Path to the Markdown/Jinja template")
    ap.add_argument("--data", help="Path to the data file (CSV key,value rows, or YAML/JSON)")
    ap.add_argument("--style", help="Path to a CSS file for HTML/PDF output")
    ap.add_argument("--out", help="Output directory (default: $OUTPUT_DIR or ./output)")
    ap.add_argument("--format", default="md", help="Comma separated: " + ",".join(docgen.FORMATS))
    ap.add_argument("--locale", help="Document locale, e.g. es-ES, en-US, en-GB")
    ap.add_argument("--name", help="Base name of the generated files")
    ap.add_argument("--skeleton", action="store_true",
                    help="Write a key,value,comment CSV listing the template's fields and exit")
    return ap


def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    out = args.out or settings.output_dir

    try:
        if args.skeleton:
            fields = extract_fields(read_text(args.template))
            name = args.name or os.path.basename(args.template).split(".")[0]
            path = report.write_skeleton(fields, os.path.join(out, f"{name}-skeleton.csv"))
            print(f"Wrote {path} ({len(fields)} fields)")
            return 0

        formats = [f for f in args.format.split(",") if f.strip()]
        generators = docgen.build_generators(settings, formats,
                                             base_dir=os.path.dirname(os.path.abspath(args.template)))
        workflow = Workflow(settings, generators=generators)
        result = workflow.run(args.template, data=args.data, style=args.style,
                              output_dir=out, locale=args.locale, name=args.name)
    except DocfillError as e:
        print(format_error(e), file=sys.stderr)
        return 1

    for path in result.outputs.values():
        print(f"Wrote {path}")
    stats = result.stats
    print(f"Fields: {stats.total_fields} total, {stats.resolved_fields} resolved, "
          f"{stats.missing_fields} missing")
    return 0


if __name__ == "__main__":
    sys.exit(main())
