"""JSON report output."""

from __future__ import annotations

import json
from pathlib import Path

from diff_triage.models.report import RunReport


def generate_json_report(run_report: RunReport, output_path: Path) -> None:
    """Write a machine-readable JSON report."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(run_report.model_dump(mode="json"), f, indent=2, default=str)


def load_json_report(path: Path) -> RunReport:
    with open(path) as f:
        return RunReport.model_validate(json.load(f))
