from __future__ import annotations

from pathlib import Path
from typing import Any

from cratetally.schemas import AnalysisReport
from cratetally.utils import dumps_json, format_reasons, write_json


def _share(count: int, total: int) -> str:
    return f"{100.0 * count / total:.1f}%" if total else "-"


def _skip_line(label: str, count: int, reasons: dict[str, int]) -> str:
    if not count:
        return f"{label}: 0"
    return f"{label}: {count} (reasons: {format_reasons(reasons)})"


def render_table(report: AnalysisReport) -> str:
    total = report.total_records
    width = max([len("category"), len("total"), *(len(category) for category, _ in report.rows)])
    count_width = max(len("count"), len(str(total)))

    lines: list[str] = []
    lines.append(f"{report.matcher}: {total} records from {report.processed} of {report.requested} packages")
    lines.append("")
    lines.append(f"{'category'.ljust(width)}  {'count'.rjust(count_width)}  share")
    lines.append(f"{'-' * width}  {'-' * count_width}  ------")
    for category, count in report.rows:
        lines.append(f"{category.ljust(width)}  {str(count).rjust(count_width)}  {_share(count, total).rjust(6)}")
    lines.append(f"{'-' * width}  {'-' * count_width}")
    lines.append(f"{'total'.ljust(width)}  {str(total).rjust(count_width)}")
    lines.append("")

    for key, value in report.summary.items():
        lines.append(f"{key}: {value}")
    files_skipped = sum(report.file_skips.values())
    lines.append(f"files parsed: {report.files_parsed}")
    lines.append(_skip_line("files skipped", files_skipped, report.file_skips))
    lines.append(f"packages processed: {report.processed} of {report.requested}")
    lines.append(_skip_line("skipped", report.skipped, report.skipped_packages))
    return "\n".join(lines)


def report_to_dict(report: AnalysisReport) -> dict[str, Any]:
    return {
        "matcher": report.matcher,
        "categories": [{"category": category, "count": count} for category, count in report.rows],
        "total": report.total_records,
        "summary": report.summary,
        "files": {
            "parsed": report.files_parsed,
            "skipped": sum(report.file_skips.values()),
            "skip_reasons": report.file_skips,
        },
        "packages": {
            "requested": report.requested,
            "processed": report.processed,
            "skipped": report.skipped,
            "skip_reasons": report.skipped_packages,
            "skipped_names": report.skipped_names,
        },
    }


def render_json(report: AnalysisReport) -> str:
    return dumps_json(report_to_dict(report))


def write_report_json(report: AnalysisReport, output_path: Path) -> None:
    write_json(output_path, report_to_dict(report))
