from __future__ import annotations
import csv
import io
import json
import os
from datetime import datetime, timezone

from engine.errors import ConfigError
from schemas.models import REPORT_FIELDS, RunResult

FORMATS = ("csv", "json", "md")


def ensure_day_dir(base_dir: str) -> str:
    day = datetime.now().strftime("%Y-%m-%d")
    d = os.path.join(base_dir, day)
    os.makedirs(d, exist_ok=True)
    return d


def unique_file_path(base_dir: str, name: str, ext: str) -> str:
    path = os.path.join(base_dir, f"{name}.{ext}")
    if not os.path.exists(path):
        return path
    i = 2
    while True:
        path2 = os.path.join(base_dir, f"{name}-{i}.{ext}")
        if not os.path.exists(path2):
            return path2
        i += 1


def report_metadata(result: RunResult) -> dict:
    meta = result.stats.to_dict()
    meta.update({
        "total_targets": result.total_targets,
        "partial": result.partial,
        "cancelled": result.cancelled,
        "duration_ms": int(result.duration * 1000),
        "generated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
    })
    return meta


def write_csv(f, result: RunResult):
    w = csv.DictWriter(f, fieldnames=REPORT_FIELDS)
    w.writeheader()
    for o in result.outcomes:
        row = o.to_row()
        if row["status_code"] is None:
            row["status_code"] = ""
        w.writerow(row)


def write_json(f, result: RunResult):
    data = {
        "metadata": report_metadata(result),
        "results": [o.to_row() for o in result.outcomes],
    }
    json.dump(data, f, indent=2, ensure_ascii=False)


def render_run_summary(result: RunResult) -> str:
    meta = report_metadata(result)
    lines = []
    lines.append(f"# Run summary ({meta['generated_at']})")
    if result.partial:
        lines.append("")
        lines.append(f"**Partial run:** {len(result.outcomes)} of {result.total_targets} targets checked.")
    lines.append("")
    lines.append(f"Total: {meta['total_urls']} | OK: {meta['successful']} | Failed: {meta['failed']} | "
                 f"Avg: {meta['avg_time_ms']} ms | Min: {meta['min_time_ms']} ms | Max: {meta['max_time_ms']} ms | "
                 f"Bytes: {meta['total_size_bytes']}")
    lines.append("")
    lines.append("| # | URL | HTTP | Reason | Time (ms) | Size (bytes) | Timestamp |")
    lines.append("|---|-----|------|--------|-----------|--------------|-----------|")
    for o in result.outcomes:
        r = o.to_row()
        code = r["status_code"] if r["status_code"] is not None else "-"
        reason = str(r["status_reason"]).replace("|", "\\|")
        lines.append(f"| {o.index + 1} | {r['url']} | {code} | {reason} | {r['elapsed_ms']} | "
                     f"{r['response_size']} | {r['timestamp']} |")
    return "\n".join(lines) + "\n"


def write_markdown(f, result: RunResult):
    f.write(render_run_summary(result))


_WRITERS = {
    "csv": write_csv,
    "json": write_json,
    "md": write_markdown,
}


def check_format(fmt: str | None) -> str:
    fmt = (fmt or "csv").lower()
    if fmt not in _WRITERS:
        raise ConfigError(f"Unknown report format {fmt!r}, expected one of {', '.join(FORMATS)}")
    return fmt


def render_report(result: RunResult, fmt: str = "csv") -> str:
    """Renders the report in memory, for callers that serve it without touching disk."""
    buf = io.StringIO(newline="")
    _WRITERS[check_format(fmt)](buf, result)
    return buf.getvalue()


def write_report(path: str, result: RunResult, fmt: str = "csv") -> str:
    writer = _WRITERS[check_format(fmt)]

    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer(f, result)
    return path
