"""
Reporting and export utilities.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd

from .models import AnalysisResult, IssueType
from .time_utils import utcnow

REPORT_VERSION = "v1"

SBOM_CANDIDATES = (
    "sbom/goneat-latest.cdx.json",
    "sbom.json",
    ".sbom/cyclonedx.json",
)


logger = logging.getLogger(__name__)


def find_existing_sbom(target: str) -> Optional[Path]:
    root = Path(target)
    for candidate in SBOM_CANDIDATES:
        path = root / candidate
        if path.is_file():
            return path
    return None


def build_report(
    result: AnalysisResult,
    target: str,
    language: str,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Assemble the versioned analysis report.

    ``cooling_violations`` counts every cooling-family issue (age and download
    violations included); ``license_violations`` counts ``license`` issues only.
    """
    generated_at = generated_at or utcnow()
    report: Dict[str, Any] = {
        "version": REPORT_VERSION,
        "metadata": {
            "generated_at": generated_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "target": target,
            "language": language,
            "duration_ms": int(result.duration.total_seconds() * 1000),
        },
        "summary": {
            "dependency_count": len(result.dependencies),
            "license_violations": sum(1 for i in result.issues if i.type == IssueType.LICENSE),
            "cooling_violations": sum(1 for i in result.issues if i.is_cooling),
            "passed": result.passed,
        },
        "dependencies": [dep.to_dict() for dep in result.dependencies],
        "issues": [issue.to_dict() for issue in result.issues],
    }

    sbom_path = find_existing_sbom(target)
    if sbom_path is not None:
        report["sbom_metadata"] = {
            "path": str(sbom_path),
            "format": "cyclonedx-json",
            "status": "available",
        }
    else:
        report["sbom_metadata"] = {"status": "not_generated"}
    return report


def save_report_json(report: Dict[str, Any], output_file: Path) -> Path:
    output_file.parent.mkdir(parents=True, exist_ok=True)
    with open(output_file, 'w') as f:
        json.dump(report, f, indent=2, default=str)
    return output_file


def dependencies_frame(report: Dict[str, Any]) -> pd.DataFrame:
    """Flatten report dependencies into one row per dependency."""
    if not report.get("dependencies"):
        return pd.DataFrame(columns=["module.name", "module.version", "module.language"])
    return pd.json_normalize(report["dependencies"])


def issues_frame(report: Dict[str, Any]) -> pd.DataFrame:
    rows = []
    for issue in report.get("issues", []):
        dependency = issue.get("dependency") or {}
        module = dependency.get("module") or {}
        rows.append({
            "type": issue["type"],
            "severity": issue["severity"],
            "message": issue["message"],
            "dependency": module.get("name", ""),
            "version": module.get("version", ""),
        })
    return pd.DataFrame(rows, columns=["type", "severity", "message", "dependency", "version"])


def export_worksheets(report: Dict[str, Any], output_file: Path) -> Path:
    """Write summary, dependencies and issues sheets to one workbook."""
    output_file.parent.mkdir(parents=True, exist_ok=True)
    summary = pd.DataFrame(
        [{**report["metadata"], **report["summary"]}]
    )
    with pd.ExcelWriter(output_file, engine='openpyxl') as writer:
        summary.to_excel(writer, sheet_name="summary", index=False)
        dependencies_frame(report).to_excel(writer, sheet_name="dependencies", index=False)
        issues_frame(report).to_excel(writer, sheet_name="issues", index=False)
    return output_file


def print_summary(report: Dict[str, Any]) -> None:
    metadata = report["metadata"]
    summary = report["summary"]
    logger.info("\n" + "=" * 60)
    logger.info("DEPENDENCY ANALYSIS")
    logger.info("=" * 60)
    logger.info("Target: %s", metadata["target"])
    logger.info("Language: %s", metadata["language"])
    logger.info("Duration: %d ms", metadata["duration_ms"])
    logger.info("-" * 60)
    logger.info("Dependencies: %d", summary["dependency_count"])
    logger.info("License violations: %d", summary["license_violations"])
    logger.info("Cooling violations: %d", summary["cooling_violations"])
    for issue in report["issues"]:
        logger.info("  [%s/%s] %s", issue["severity"], issue["type"], issue["message"])
    logger.info("-" * 60)
    logger.info("Result: %s", "PASSED" if summary["passed"] else "FAILED")
    logger.info("=" * 60)
