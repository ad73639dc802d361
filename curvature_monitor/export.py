from __future__ import annotations

import csv
import io
from datetime import datetime
from pathlib import Path
from typing import Optional

from .timeseries import SeriesSnapshot

CSV_HEADER = ("Waktu (detik)", "Kelengkungan (mm)", "Berat (kg)")


def default_export_name(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"curvature_data_{now.strftime('%Y-%m-%dT%H-%M-%S')}.csv"


def format_csv(snapshot: SeriesSnapshot, time_decimals: int = 1) -> str:
    """
    Render the series as CSV: one header line, then ``time,curvature,weight``
    per sample with curvature and weight to two decimals.
    """
    if len(snapshot) == 0:
        raise ValueError("No data to export")
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for t, curvature, weight in snapshot.rows():
        writer.writerow((f"{t:.{time_decimals}f}", f"{curvature:.2f}", f"{weight:.2f}"))
    return out.getvalue()


def export_csv(
    snapshot: SeriesSnapshot,
    path: Optional[Path | str] = None,
    *,
    directory: Path | str = ".",
    time_decimals: int = 1,
) -> Path:
    """
    Write the series to ``path`` (or a timestamped file in ``directory``) and
    return the file written.
    """
    content = format_csv(snapshot, time_decimals=time_decimals)
    path_obj = Path(path) if path is not None else Path(directory) / default_export_name()
    path_obj.parent.mkdir(parents=True, exist_ok=True)
    with path_obj.open("w", encoding="utf-8", newline="") as fh:
        fh.write(content)
    return path_obj
