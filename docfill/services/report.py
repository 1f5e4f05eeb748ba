# report.py: field reports and CSV skeletons (pandas, xlsxwriter)
from __future__ import annotations
import pathlib
from typing import Iterable, List

import pandas as pd

from docfill.services.markers import Annotation

REPORT_COLUMNS = ["Field", "Status", "Value", "Error"]
SKELETON_COLUMNS = ["key", "value", "comment"]


def _status(marker: Annotation) -> str:
    if marker.imported:
        return "imported"
    return "error" if marker.error else "missing"


def field_frame(markers: Iterable[Annotation]) -> pd.DataFrame:
    rows = []
    for m in markers:
        rows.append({
            "Field": str(m.path),
            "Status": _status(m),
            "Value": str(m.display) if m.imported else "",
            "Error": m.display if m.error else "",
        })
    return pd.DataFrame(rows, columns=REPORT_COLUMNS)


def summary_frame(fields: pd.DataFrame) -> pd.DataFrame:
    counts = fields["Status"].value_counts()
    total = len(fields)
    resolved = int(counts.get("imported", 0))
    return pd.DataFrame([
        {"Metric": "total_fields", "Count": total},
        {"Metric": "resolved_fields", "Count": resolved},
        {"Metric": "missing_fields", "Count": total - resolved},
        {"Metric": "format_errors", "Count": int(counts.get("error", 0))},
    ])


def write_field_report(markers: Iterable[Annotation], path: pathlib.Path) -> pathlib.Path:
    """One row per emitted marker; ``.csv`` paths get CSV, anything else XLSX."""
    df = field_frame(markers)
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix.lower() == ".csv":
        df.to_csv(path, index=False)
        return path

    with pd.ExcelWriter(path, engine="xlsxwriter") as xw:
        df.to_excel(xw, index=False, sheet_name="Fields")
        ws = xw.sheets["Fields"]
        ws.autofilter(0, 0, df.shape[0], df.shape[1] - 1)
        ws.set_column(0, 0, 36)
        ws.set_column(1, 1, 12)
        ws.set_column(2, 2, 40)
        ws.set_column(3, 3, 28)

        summary = summary_frame(df)
        summary.to_excel(xw, index=False, sheet_name="Summary")
        xw.sheets["Summary"].set_column(0, 0, 20)

    return path


def skeleton_frame(fields: Iterable[str]) -> pd.DataFrame:
    rows = [{"key": f, "value": "", "comment": f"Field: {f}"} for f in fields]
    return pd.DataFrame(rows, columns=SKELETON_COLUMNS)


def skeleton_csv(fields: Iterable[str]) -> str:
    """``key,value,comment`` rows ready to be filled in and fed back as data."""
    return skeleton_frame(fields).to_csv(index=False)


def write_skeleton(fields: List[str], path: pathlib.Path) -> pathlib.Path:
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(skeleton_csv(fields), encoding="utf-8")
    return path
