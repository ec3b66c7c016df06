"""Container tool runner.

This module handles:
- Composing podman `run`, `build` and `rmi` commands
- Executing them with subprocess, capturing combined stdout/stderr
- Enforcing build timeouts
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from rpm_buildcheck.builds.errors import BuildExecutionError, CleanupWarning
from rpm_buildcheck.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of a container tool invocation.

    Attributes:
        command: The command that was executed, shell-quoted.
        exit_code: Process exit code.
        output: Combined stdout and stderr.
        started_at: Start time.
        finished_at: Finish time.
    """

    command: str
    exit_code: int
    output: str
    started_at: datetime
    finished_at: datetime

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


def image_name_for(sequence: int, settings: Settings) -> str:
    """Return the throwaway image tag for a job sequence number."""
    return f"{settings.image_prefix}-{sequence}"


def compose_check_update_command(cache_dir: Path, settings: Settings) -> list[str]:
    """Compose the command that warms the shared DNF cache.

    Args:
        cache_dir: Host directory mounted at the package cache path.
        settings: Application settings.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    return [
        settings.container_tool,
        "run",
        "--rm",
        "-v",
        f"{cache_dir}:{settings.package_cache_path}",
        "--security-opt",
        "label=disable",
        settings.base_image,
        "dnf",
        "check-update",
    ]


def compose_build_command(
    context: Path,
    image: str,
    cache_dir: Path,
    settings: Settings,
) -> list[str]:
    """Compose the `build` command for one context.

    The cache is mounted as an overlay (``:O``) so downloads are reused but
    writes stay private to the build.

    Args:
        context: Build context directory.
        image: Image tag to produce.
        cache_dir: Shared DNF cache directory.
        settings: Application settings.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    return [
        settings.container_tool,
        "build",
        "--no-cache",
        "-t",
        image,
        "-v",
        f"{cache_dir}:{settings.package_cache_path}:O",
        str(context),
    ]


def compose_remove_command(image: str, settings: Settings) -> list[str]:
    """Compose the `rmi` command for a built image."""
    return [settings.container_tool, "rmi", image]


def run_command(cmd: list[str], timeout: int | None = None) -> CommandResult:
    """Run a container tool command and capture its combined output.

    Args:
        cmd: Command to execute.
        timeout: Timeout in seconds (None = no timeout).

    Returns:
        CommandResult with exit code and output.

    Raises:
        BuildExecutionError: If the command times out or cannot be started.
    """
    cmd_str = shlex.join(cmd)
    logger.debug("Executing: %s", cmd_str)
    started_at = datetime.now(timezone.utc)

    try:
        result = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        output = e.output or ""
        if isinstance(output, bytes):
            output = output.decode(errors="replace")
        raise BuildExecutionError(
            f"Command timed out after {timeout} seconds: {cmd_str}",
            exit_code=-1,
            code="timeout",
            output=output,
        ) from e
    except OSError as e:
        raise BuildExecutionError(
            f"Failed to execute {cmd_str}: {e}",
            exit_code=None,
            code="execution_error",
        ) from e

    return CommandResult(
        command=cmd_str,
        exit_code=result.returncode,
        output=result.stdout or "",
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
    )


def build_image(
    context: Path,
    image: str,
    cache_dir: Path,
    settings: Settings,
) -> CommandResult:
    """Build an image from a context directory.

    A non-zero exit is reported through the result, not raised.

    Raises:
        BuildExecutionError: If the build times out or cannot be started.
    """
    cmd = compose_build_command(context, image, cache_dir, settings)
    return run_command(cmd, timeout=settings.build_timeout)


def remove_image(image: str, settings: Settings) -> None:
    """Remove a built image.

    Raises:
        CleanupWarning: If the image could not be removed.
    """
    cmd = compose_remove_command(image, settings)
    try:
        result = run_command(cmd)
    except BuildExecutionError as e:
        raise CleanupWarning(str(e), image=image) from e

    if not result.success:
        raise CleanupWarning(
            f"Removing image {image} failed with exit code {result.exit_code}: "
            f"{result.output.strip()}",
            image=image,
        )


__all__ = [
    "CommandResult",
    "build_image",
    "compose_build_command",
    "compose_check_update_command",
    "compose_remove_command",
    "image_name_for",
    "remove_image",
    "run_command",
]
