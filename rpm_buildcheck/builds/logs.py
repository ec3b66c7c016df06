"""Per-context build logs.

Each build context holds exactly one log: the plain log after a successful
build, or the failure-suffixed log after a failed one. The failure log
doubles as the marker picked up by rebuild mode.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from rpm_buildcheck.config import Settings

logger = logging.getLogger(__name__)


def log_path_for(context: Path, settings: Settings, failed: bool) -> Path:
    """Return the build log path of a context for the given outcome."""
    name = settings.failure_log_name if failed else settings.log_name
    return context / name


def has_failure_marker(context: Path, settings: Settings) -> bool:
    """Return True if the last build of the context failed."""
    return log_path_for(context, settings, failed=True).is_file()


def format_build_log(
    output: str,
    *,
    command: str | None = None,
    image: str | None = None,
    started_at: datetime | None = None,
    finished_at: datetime | None = None,
    exit_code: int | None = None,
    error_message: str | None = None,
) -> str:
    """Render the content of a build log.

    Args:
        output: Combined stdout/stderr of the build.
        command: Executed command, if any was run.
        image: Image tag of the job.
        started_at: Build start time.
        finished_at: Build finish time.
        exit_code: Process exit code.
        error_message: Error description for failed builds.

    Returns:
        Log file content.
    """
    lines: list[str] = []
    if command:
        lines.append(f"# Command: {command}")
    if image:
        lines.append(f"# Image: {image}")
    if started_at:
        lines.append(f"# Started: {started_at.isoformat()}")
    lines.append("# " + "=" * 70)
    lines.append("")

    body = output if output.endswith("\n") or not output else output + "\n"
    footer: list[str] = [""]
    if finished_at:
        footer.append(f"# Finished: {finished_at.isoformat()}")
    if exit_code is not None:
        footer.append(f"# Exit code: {exit_code}")
    if started_at and finished_at:
        duration = (finished_at - started_at).total_seconds()
        footer.append(f"# Duration: {duration:.1f}s")
    if error_message:
        footer.append(f"# Error: {error_message}")

    return "\n".join(lines) + "\n" + body + "\n".join(footer) + "\n"


def write_build_log(
    context: Path,
    content: str,
    failed: bool,
    settings: Settings,
) -> Path:
    """Write the build log of a context, replacing any previous one.

    The new log is written before the stale variant is removed, so the
    context never ends up without a log.

    Returns:
        Path of the written log.

    Raises:
        OSError: If the log cannot be written.
    """
    path = log_path_for(context, settings, failed)
    path.write_text(content, encoding="utf-8")
    path.chmod(0o660)

    stale = log_path_for(context, settings, not failed)
    try:
        stale.unlink(missing_ok=True)
    except OSError as e:
        logger.error("Removing stale build log %s: %s", stale, e)
    return path


def error_log_content(message: str) -> str:
    """Render the log of a job that never reached the build step."""
    return format_build_log(
        "",
        finished_at=datetime.now(timezone.utc),
        error_message=message,
    )


__all__ = [
    "error_log_content",
    "format_build_log",
    "has_failure_marker",
    "log_path_for",
    "write_build_log",
]
