"""Write sweep results: CSV (the stable contract), console summary, markdown, Excel."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import List, Sequence

from openpyxl import Workbook

from netsweep.records import CSV_HEADER, RunRecord


SUMMARY_COLUMNS = [
    ("value", lambda r: r.axis_value),
    ("rep", lambda r: r.repetition),
    ("runtime(ms)", lambda r: r.runtime_ms),
    ("send(B)", lambda r: r.send_bytes),
    ("recv(B)", lambda r: r.recv_bytes),
    ("rss(MB)", lambda r: r.memory_rss_mb),
    ("handshake", lambda r: r.tls_handshake_ms),
    ("online", lambda r: r.online_ms),
    ("zk_gen", lambda r: r.zk_generate_ms),
    ("zk_total", lambda r: r.zk_proof_total),
    ("zk_verify", lambda r: r.zk_verify_attestor_ms),
    ("3p_verify", lambda r: r.third_party_verify_ms),
    ("error", lambda r: r.error),
]


def _fmt(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def write_csv(records: Sequence[RunRecord], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for record in records:
            writer.writerow(record.to_row())
    return path


def format_summary(records: Sequence[RunRecord]) -> str:
    headers = [name for name, _ in SUMMARY_COLUMNS]
    rows: List[List[str]] = [[_fmt(getter(record)) for _, getter in SUMMARY_COLUMNS] for record in records]
    widths = [len(h) for h in headers]
    for row in rows:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], len(cell))
    lines = ["  ".join(h.ljust(widths[i]) for i, h in enumerate(headers)).rstrip()]
    lines.append("  ".join("-" * w for w in widths))
    for row in rows:
        lines.append("  ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip())
    return "\n".join(lines)


def print_summary(records: Sequence[RunRecord]) -> None:
    print(format_summary(records))


def write_markdown_table(records: Sequence[RunRecord], path: Path) -> Path:
    lines = ["| " + " | ".join(CSV_HEADER) + " |", "|" + "---|" * len(CSV_HEADER)]
    for record in records:
        cells = [cell.replace("|", "\\|") or "-" for cell in record.to_row()]
        lines.append("| " + " | ".join(cells) + " |")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def export_excel(records: Sequence[RunRecord], path: Path) -> Path:
    wb = Workbook()
    ws = wb.active
    ws.title = "Runs"
    ws.append(CSV_HEADER)
    for record in records:
        ws.append(record.values())
    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(path)
    return path
