"""Versioned contracts and run summaries for survey-doctor JSON outputs."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from survey_doctor.errors import ImportDefect
from survey_doctor.pipeline import ValidationReport

CONTRACT_VERSIONS = {
    "survey_doctor.validate": "1.0.0",
    "survey_doctor.suggestions": "1.0.0",
    "survey_doctor.apply_summary": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def defect_counts(defects: Iterable[ImportDefect]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for defect in defects:
        counts[defect.rule_id] = counts.get(defect.rule_id, 0) + 1
    return dict(sorted(counts.items()))


def build_run_summary(
    *,
    command: str,
    report: ValidationReport,
    input_path: Path,
    status: str | None = None,
    output_path: Path | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    """
    Describe one CLI run against one upload.

    ``status`` defaults to ``ok`` for a clean upload and ``defects`` otherwise;
    the defect tallies always describe the upload as it was read, before any
    fixes were applied.
    """
    defects = report.defects()
    if status is None:
        status = "defects" if defects else "ok"
    return {
        "tool": "survey-doctor",
        "command": command,
        "profile": report.profile.name,
        "current_year": report.current_year,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_file": str(input_path),
        "output_file": str(output_path) if output_path else None,
        "rows_in": len(report.rows),
        "defects_count": len(defects),
        "defects_by_rule": defect_counts(defects),
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }
