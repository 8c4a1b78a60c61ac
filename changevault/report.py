# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
ChangeVault Reporter - Aggregates backup results into JSON report files.

A report collects every BackupResult between start_new_report() and
finish_report(). The in-progress report is saved every 100 results so a
crash loses at most the tail. Only the newest `retention` report files
are kept.
"""

import json
import os
import threading
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, List

import aiofiles
import structlog
from ulid import ULID

from changevault.config import ReportFormat
from changevault.exceptions import ConfigurationError, LocalIOError
from changevault.models import BackupResult

logger = structlog.get_logger()

AUTOSAVE_INTERVAL = 100


def format_size(num_bytes: int) -> str:
    """Human-readable byte count (1024 based)."""
    unit = 1024
    if num_bytes < unit:
        return f"{num_bytes} B"
    div, exp = unit, 0
    n = num_bytes // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{num_bytes / div:.1f} {'KMGTPE'[exp]}B"


class Reporter:
    """
    Thread-safe collector of backup results.

    Usage:
        reporter = Reporter(Path("./reports"), retention=30)
        reporter.start_new_report()
        await reporter.add_result(result)
        await reporter.finish_report({"queued": 0})
    """

    def __init__(
        self,
        report_dir: Path,
        report_format: ReportFormat = ReportFormat.JSON,
        retention: int = 30,
    ):
        try:
            self.report_format = ReportFormat(report_format)
        except ValueError as e:
            raise ConfigurationError(f"Unsupported report format: {report_format}") from e

        self.report_dir = Path(report_dir)
        self.retention = retention
        self._lock = threading.Lock()
        self._report: Dict[str, Any] | None = None
        self._results: List[BackupResult] = []

        try:
            self.report_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalIOError(
                f"Failed to create report directory: {e}",
                path=str(self.report_dir),
                operation="mkdir",
            ) from e

    @property
    def current_report_id(self) -> str | None:
        with self._lock:
            return self._report["id"] if self._report else None

    def _new_report(self) -> Dict[str, Any]:
        return {
            "id": f"backup-{ULID()}",
            "start_time": datetime.now(UTC),
            "end_time": None,
            "total_files": 0,
            "successful": 0,
            "failed": 0,
            "total_size": 0,
            "statistics": {},
        }

    def _snapshot(self) -> Dict[str, Any]:
        """Serializable copy of the current report. Caller holds the lock."""
        report = dict(self._report)
        start = report["start_time"]
        end = report["end_time"] or datetime.now(UTC)
        report["start_time"] = start.isoformat()
        report["end_time"] = report["end_time"].isoformat() if report["end_time"] else None
        report["duration"] = (end - start).total_seconds()
        report["statistics"] = dict(report["statistics"])
        report["results"] = [r.to_dict() for r in self._results]
        return report

    def start_new_report(self) -> str:
        """
        Begin a new report. Results added afterwards belong to it.

        Returns:
            The new report id
        """
        with self._lock:
            self._report = self._new_report()
            self._results = []
            report_id = self._report["id"]

        logger.info("backup_report_started", report_id=report_id)
        return report_id

    async def add_result(self, result: BackupResult) -> None:
        """
        Add a result to the current report, starting one if needed.

        Args:
            result: Completed backup result
        """
        snapshot = None
        with self._lock:
            if self._report is None:
                self._report = self._new_report()
                self._results = []

            self._results.append(result)
            self._report["total_files"] += 1
            if result.success:
                self._report["successful"] += 1
                self._report["total_size"] += result.original_size
            else:
                self._report["failed"] += 1

            if len(self._results) % AUTOSAVE_INTERVAL == 0:
                snapshot = self._snapshot()

        if snapshot is not None:
            await self._save(snapshot)

    def results(self) -> List[BackupResult]:
        """Results of the current report."""
        with self._lock:
            return list(self._results)

    async def finish_report(self, stats: Dict[str, Any] | None = None) -> Path | None:
        """
        Close the current report and write it to disk.

        Args:
            stats: Extra statistics to store with the report

        Returns:
            Path of the written report, or None when no report is active
        """
        with self._lock:
            if self._report is None:
                logger.warning("no_active_report")
                return None

            report = self._report
            report["end_time"] = datetime.now(UTC)
            statistics = dict(stats or {})

            total = report["total_files"]
            if total > 0:
                duration = (report["end_time"] - report["start_time"]).total_seconds()
                statistics["success_rate"] = report["successful"] / total * 100
                statistics["average_size"] = (
                    report["total_size"] // report["successful"] if report["successful"] else 0
                )
                statistics["files_per_second"] = total / duration if duration > 0 else 0.0

            report["statistics"] = statistics
            snapshot = self._snapshot()
            self._report = None
            self._results = []

        return await self._save(snapshot)

    async def _save(self, report: Dict[str, Any]) -> Path:
        """Write a report snapshot atomically, then apply retention."""
        path = self.report_dir / f"{report['id']}.{self.report_format.value}"
        temp_path = path.with_suffix(path.suffix + ".tmp")

        try:
            async with aiofiles.open(temp_path, "w") as f:
                await f.write(json.dumps(report, indent=2, default=str))
            os.replace(temp_path, path)
        except OSError as e:
            raise LocalIOError(
                f"Failed to write report: {e}",
                path=str(path),
                operation="write",
            ) from e

        logger.info(
            "backup_report_saved",
            file=str(path),
            total_files=report["total_files"],
            successful=report["successful"],
            failed=report["failed"],
        )

        self._cleanup_old_reports()
        return path

    def _report_files(self) -> List[Path]:
        """Report files, oldest first."""
        files = [
            p for p in self.report_dir.glob(f"*.{self.report_format.value}") if p.is_file()
        ]
        return sorted(files, key=lambda p: (p.stat().st_mtime_ns, p.name))

    def _cleanup_old_reports(self) -> None:
        reports = self._report_files()
        if len(reports) <= self.retention:
            return

        for path in reports[: len(reports) - self.retention]:
            try:
                path.unlink()
                logger.info("old_report_removed", file=str(path))
            except OSError as e:
                logger.error("old_report_remove_failed", file=str(path), error=str(e))

    async def get_latest_report(self) -> Dict[str, Any] | None:
        """
        Load the most recently written report.

        Returns:
            Parsed report, or None if there are no reports
        """
        reports = self._report_files()
        if not reports:
            return None

        latest = reports[-1]
        try:
            async with aiofiles.open(latest, "r") as f:
                return json.loads(await f.read())
        except (OSError, ValueError) as e:
            raise LocalIOError(
                f"Failed to read report: {e}",
                path=str(latest),
                operation="read",
            ) from e

    def generate_summary(self) -> str:
        """Plain-text summary of the current report."""
        with self._lock:
            if self._report is None:
                return "No active backup report"

            report = self._report
            total = report["total_files"]
            success_rate = report["successful"] / total * 100 if total else 0.0

            lines = [
                "Backup Report Summary",
                "====================",
                f"Report ID: {report['id']}",
                f"Start Time: {report['start_time']:%Y-%m-%d %H:%M:%S}",
                f"Total Files: {total}",
                f"Successful: {report['successful']}",
                f"Failed: {report['failed']}",
                f"Total Size: {format_size(report['total_size'])}",
                f"Success Rate: {success_rate:.2f}%",
            ]

            failed = [r for r in self._results if not r.success]
            if failed:
                lines.append("")
                lines.append("Failed Files:")
                lines.extend(f"- {r.path}: {r.error}" for r in failed)

        return "\n".join(lines) + "\n"
