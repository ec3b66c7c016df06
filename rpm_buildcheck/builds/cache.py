"""Shared DNF cache provisioning.

The cache directory is warmed once by running `dnf check-update` in a
throwaway container and then mounted into every build as an overlay.
The directory is intentionally left on disk so later runs can reuse it.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from rpm_buildcheck.builds.errors import BuildExecutionError, CacheProvisioningError
from rpm_buildcheck.builds.runner import compose_check_update_command, run_command
from rpm_buildcheck.config import Settings, get_settings

logger = logging.getLogger(__name__)


def _prepare_cache_dir(settings: Settings) -> Path:
    if settings.cache_dir is not None:
        cache_dir = settings.cache_dir.resolve()
        cache_dir.mkdir(parents=True, exist_ok=True)
        return cache_dir
    tmp_parent = str(settings.tmp_dir) if settings.tmp_dir else None
    # Relative mount sources are taken as named volumes by podman.
    return Path(tempfile.mkdtemp(prefix="DNF-CACHE", dir=tmp_parent)).resolve()


def provision_cache(settings: Settings | None = None) -> Path:
    """Create and populate the shared DNF cache directory.

    Args:
        settings: Application settings.

    Returns:
        Path of the populated cache directory.

    Raises:
        CacheProvisioningError: If the directory cannot be created or the
            warm-up container exits with anything other than success or
            "updates available".
    """
    if settings is None:
        settings = get_settings()

    try:
        cache_dir = _prepare_cache_dir(settings)
    except OSError as e:
        raise CacheProvisioningError(
            f"Creating cache directory failed: {e}", code="cache_dir_error"
        ) from e

    cmd = compose_check_update_command(cache_dir, settings)
    logger.info("Warming DNF cache in %s from %s", cache_dir, settings.base_image)

    try:
        result = run_command(cmd)
    except BuildExecutionError as e:
        raise CacheProvisioningError(
            f"Creating local DNF cache: {e}", exit_code=e.exit_code
        ) from e

    if result.exit_code not in (0, settings.updates_available_exit_code):
        raise CacheProvisioningError(
            f"Creating local DNF cache: exit code {result.exit_code} "
            f"({result.output.strip()})",
            exit_code=result.exit_code,
        )

    logger.info("Created DNF cache directory: %s", cache_dir)
    return cache_dir


__all__ = ["provision_cache"]
