# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Reporter tests: report lifecycle, auto-save and retention.
"""

import json
import os
from datetime import datetime, timedelta, UTC

import pytest

from changevault.exceptions import ConfigurationError
from changevault.models import BackupResult, Operation
from changevault.report import AUTOSAVE_INTERVAL, Reporter, format_size


def _result(path="/data/a.txt", success=True, size=100):
    now = datetime.now(UTC)
    return BackupResult(
        path=path,
        operation=Operation.MODIFY,
        success=success,
        start_time=now - timedelta(milliseconds=10),
        end_time=now,
        remote_id="obj" if success else "",
        error=None if success else "upload failed",
        error_kind=None if success else "transient_network",
        original_size=size,
        checksum="c",
    )


@pytest.mark.asyncio
async def test_report_lifecycle(reporter):
    """Results accumulate and are written with statistics on finish."""
    report_id = reporter.start_new_report()
    await reporter.add_result(_result("/a", size=100))
    await reporter.add_result(_result("/b", size=300))
    await reporter.add_result(_result("/c", success=False))

    assert len(reporter.results()) == 3
    path = await reporter.finish_report({"queued": 0})

    assert path.name == f"{report_id}.json"
    report = json.loads(path.read_text())
    assert report["total_files"] == 3
    assert report["successful"] == 2
    assert report["failed"] == 1
    assert report["total_size"] == 400
    assert report["statistics"]["queued"] == 0
    assert report["statistics"]["average_size"] == 200
    assert report["statistics"]["success_rate"] == pytest.approx(200 / 3)
    assert [r["file_path"] for r in report["results"]] == ["/a", "/b", "/c"]
    assert reporter.current_report_id is None


@pytest.mark.asyncio
async def test_add_result_starts_report(reporter):
    await reporter.add_result(_result())
    assert reporter.current_report_id.startswith("backup-")


@pytest.mark.asyncio
async def test_finish_without_report(reporter):
    assert await reporter.finish_report() is None


@pytest.mark.asyncio
async def test_autosave_every_interval(reporter):
    """The in-progress report is saved every AUTOSAVE_INTERVAL results."""
    report_id = reporter.start_new_report()
    for i in range(AUTOSAVE_INTERVAL):
        await reporter.add_result(_result(f"/f{i}"))

    saved = json.loads((reporter.report_dir / f"{report_id}.json").read_text())
    assert saved["total_files"] == AUTOSAVE_INTERVAL
    assert saved["end_time"] is None


@pytest.mark.asyncio
async def test_retention_keeps_newest(reporter):
    """Only the newest `retention` report files are kept."""
    written = []
    for i in range(reporter.retention + 2):
        reporter.start_new_report()
        await reporter.add_result(_result())
        path = await reporter.finish_report()
        os.utime(path, ns=(i * 1_000_000_000, i * 1_000_000_000))
        written.append(path)

    remaining = sorted(p.name for p in reporter.report_dir.glob("*.json"))
    assert len(remaining) == reporter.retention
    assert written[-1].name in remaining

    latest = await reporter.get_latest_report()
    assert latest["id"] == written[-1].stem


@pytest.mark.asyncio
async def test_latest_report_empty(reporter):
    assert await reporter.get_latest_report() is None


@pytest.mark.asyncio
async def test_summary(reporter):
    assert reporter.generate_summary() == "No active backup report"

    reporter.start_new_report()
    await reporter.add_result(_result("/ok", size=2048))
    await reporter.add_result(_result("/bad", success=False))
    summary = reporter.generate_summary()

    assert "Total Files: 2" in summary
    assert "Total Size: 2.0 KB" in summary
    assert "- /bad: upload failed" in summary


def test_unsupported_format(temp_dir):
    with pytest.raises(ConfigurationError):
        Reporter(temp_dir, report_format="xml")


def test_format_size():
    assert format_size(512) == "512 B"
    assert format_size(1536) == "1.5 KB"
    assert format_size(5 * 1024 * 1024) == "5.0 MB"
