"""
Readiness reporting.

Reads the combined validation results of a run and writes the readiness
report (Markdown), a JSON summary and one CSV file per readiness class.
Results are never modified.
"""

import csv
import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from jinja2 import Environment, FileSystemLoader

from mailbox_migration.batch.decision import classify_results, recommend_tolerance
from mailbox_migration.models.results import OverallStatus, ValidationResult
from mailbox_migration.utils.helpers import atomic_write_text, atomic_writer

logger = logging.getLogger(__name__)

REPORT_FILENAME = "readiness_report.md"
SUMMARY_FILENAME = "readiness_summary.json"
CSV_COLUMNS = [
    "identity", "display_name", "status", "errors", "warnings",
    "item_count", "total_item_size_mb", "bad_item_limit", "risk_level",
]
TOP_ISSUE_COUNT = 10
MAX_LISTED_FAILURES = 200


@dataclass
class ReadinessReport:
    """Files written for one run."""
    report_path: Path
    summary_path: Path
    csv_paths: Dict[str, Path] = field(default_factory=dict)
    counts: Dict[str, int] = field(default_factory=dict)


class ReadinessReportGenerator:
    """
    Generates readiness reports from validation results.
    """

    def __init__(self, output_directory: str = "./reports", template_directory: Optional[str] = None):
        """
        Initialize report generator.

        Args:
            output_directory: Directory to save generated reports
            template_directory: Directory containing report templates
        """
        self.output_directory = Path(output_directory)
        self.template_env = Environment(
            loader=FileSystemLoader(template_directory or Path(__file__).parent / "templates"),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def generate(
        self,
        results: Iterable[ValidationResult],
        run_id: Optional[str] = None,
        batch_name: Optional[str] = None
    ) -> ReadinessReport:
        """
        Write the readiness report, summary and CSV files.

        Args:
            results: Combined validation results
            run_id: Run the results belong to
            batch_name: Planned batch name

        Returns:
            Paths of the written files and the per-status counts
        """
        results = list(results)
        self.output_directory.mkdir(parents=True, exist_ok=True)

        rows = {status: [] for status in (OverallStatus.READY, OverallStatus.WARNING, OverallStatus.FAILED)}
        for result in results:
            status = result.overall_status if result.overall_status in rows else OverallStatus.FAILED
            rows[status].append(self._row(result, status))

        summary = self.build_summary(results, run_id=run_id, batch_name=batch_name)

        csv_paths = {}
        for status, status_rows in rows.items():
            csv_paths[status.value] = self._write_csv(
                self.output_directory / f"{status.value.lower()}.csv", status_rows
            )

        summary_path = atomic_write_text(
            self.output_directory / SUMMARY_FILENAME,
            json.dumps(summary, indent=2, default=str)
        )

        failed_rows = rows[OverallStatus.FAILED]
        template = self.template_env.get_template(REPORT_FILENAME)
        report_path = atomic_write_text(
            self.output_directory / REPORT_FILENAME,
            template.render(
                summary=summary,
                failed=failed_rows[:MAX_LISTED_FAILURES],
                more_failed=max(0, len(failed_rows) - MAX_LISTED_FAILURES),
            )
        )

        logger.info(f"Readiness report written to {report_path}")
        return ReadinessReport(
            report_path=report_path,
            summary_path=summary_path,
            csv_paths=csv_paths,
            counts=summary["counts"],
        )

    def build_summary(
        self,
        results: List[ValidationResult],
        run_id: Optional[str] = None,
        batch_name: Optional[str] = None
    ) -> Dict[str, Any]:
        classified = classify_results(results)

        error_codes = Counter()
        warnings = Counter()
        checks_failed = Counter()
        risk_levels = Counter()
        for result in results:
            error_codes.update({issue.code for issue in result.errors})
            warnings.update(set(result.warnings))
            checks_failed.update(result.checks_failed)
            risk_levels[recommend_tolerance(result).risk_level.value] += 1

        return {
            "run_id": run_id,
            "batch_name": batch_name,
            "generated_at": datetime.now(UTC).isoformat(),
            "total": classified.total,
            "counts": classified.counts(),
            "top_errors": error_codes.most_common(TOP_ISSUE_COUNT),
            "top_warnings": warnings.most_common(TOP_ISSUE_COUNT),
            "checks_failed": dict(checks_failed),
            "risk_levels": dict(sorted(risk_levels.items())),
        }

    @staticmethod
    def _row(result: ValidationResult, status: OverallStatus) -> Dict[str, Any]:
        tolerance = recommend_tolerance(result)
        return {
            "identity": result.identity,
            "display_name": result.display_name or "",
            "status": status.value,
            "errors": "; ".join(f"{issue.code}: {issue.message}" for issue in result.errors),
            "warnings": "; ".join(result.warnings),
            "item_count": result.item_count,
            "total_item_size_mb": round(result.total_item_size_mb, 2),
            "bad_item_limit": tolerance.bad_item_limit,
            "risk_level": tolerance.risk_level.value,
        }

    @staticmethod
    def _write_csv(path: Path, rows: List[Dict[str, Any]]) -> Path:
        with atomic_writer(path) as f:
            writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
            writer.writeheader()
            writer.writerows(rows)
        return path
