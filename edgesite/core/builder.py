"""Build collaborator — runs the site's build command before publishing.

The build is a blocking external process.  Its failure never aborts a
deployment: a stale but present artifact tree may still be publishable, so
every failure mode is reported as ``FAILED_NON_FATAL`` and logged.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from edgesite.models.outcomes import BuildOutcome, BuildReport

logger = logging.getLogger(__name__)

_TAIL_CHARS = 2000


def _tail(text: str | None) -> str:
    return (text or "")[-_TAIL_CHARS:].strip()


def run_build(
    command: str,
    cwd: Path | str,
    *,
    output_dir: str = ".open-next",
    timeout: float | None = None,
) -> BuildReport:
    """Run *command* in *cwd* and check that *output_dir* was produced.

    An empty command skips the build.
    """
    if not command.strip():
        logger.info("Build skipped (no build command)")
        return BuildReport(outcome=BuildOutcome.SKIPPED)

    logger.info("Building site: %s", command)
    try:
        result = subprocess.run(
            command,
            shell=True,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.warning("Build could not run (%s); continuing with existing artifacts", exc)
        return BuildReport(
            outcome=BuildOutcome.FAILED_NON_FATAL, command=command, detail=str(exc)
        )

    if result.returncode != 0:
        logger.warning(
            "Build exited with status %d; continuing with existing artifacts",
            result.returncode,
        )
        return BuildReport(
            outcome=BuildOutcome.FAILED_NON_FATAL,
            command=command,
            return_code=result.returncode,
            detail=_tail(result.stderr) or _tail(result.stdout),
        )

    output = Path(cwd) / output_dir
    if not output.is_dir():
        logger.warning("Build succeeded but %s was not produced", output)
        return BuildReport(
            outcome=BuildOutcome.FAILED_NON_FATAL,
            command=command,
            return_code=0,
            detail=f"missing output directory {output_dir}",
        )

    logger.info("Build finished")
    return BuildReport(outcome=BuildOutcome.SUCCEEDED, command=command, return_code=0)
