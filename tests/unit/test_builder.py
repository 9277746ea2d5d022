"""Tests for the build collaborator."""

from __future__ import annotations

import logging
from pathlib import Path

from edgesite.core.builder import run_build
from edgesite.models.outcomes import BuildOutcome


class TestRunBuild:
    def test_empty_command_skips(self, tmp_path: Path):
        report = run_build("", tmp_path)
        assert report.outcome == BuildOutcome.SKIPPED
        assert not report.degraded

    def test_whitespace_command_skips(self, tmp_path: Path):
        assert run_build("   ", tmp_path).outcome == BuildOutcome.SKIPPED

    def test_success_requires_output_dir(self, tmp_path: Path):
        report = run_build("mkdir -p .open-next", tmp_path)
        assert report.outcome == BuildOutcome.SUCCEEDED
        assert report.return_code == 0

    def test_nonzero_exit_is_non_fatal(self, tmp_path: Path, caplog):
        with caplog.at_level(logging.WARNING, logger="edgesite.core.builder"):
            report = run_build("echo boom >&2; exit 3", tmp_path)
        assert report.outcome == BuildOutcome.FAILED_NON_FATAL
        assert report.degraded
        assert report.return_code == 3
        assert "boom" in report.detail
        assert "status 3" in caplog.text

    def test_missing_output_dir_is_non_fatal(self, tmp_path: Path):
        report = run_build("true", tmp_path)
        assert report.outcome == BuildOutcome.FAILED_NON_FATAL
        assert "missing output directory" in report.detail

    def test_custom_output_dir(self, tmp_path: Path):
        report = run_build("mkdir out", tmp_path, output_dir="out")
        assert report.outcome == BuildOutcome.SUCCEEDED

    def test_timeout_is_non_fatal(self, tmp_path: Path):
        report = run_build("exec sleep 2", tmp_path, timeout=0.1)
        assert report.outcome == BuildOutcome.FAILED_NON_FATAL
        assert report.return_code is None
