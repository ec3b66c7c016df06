"""Build context discovery.

Walks a directory tree and collects every directory that directly contains
a recipe file. In rebuild mode only contexts carrying a failure marker are
returned.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from rpm_buildcheck.builds.errors import DiscoveryError
from rpm_buildcheck.builds.logs import has_failure_marker, log_path_for
from rpm_buildcheck.config import Settings, get_settings

logger = logging.getLogger(__name__)


def _raise_walk_error(error: OSError) -> None:
    raise DiscoveryError(
        f"Traversing {error.filename}: {error.strerror or error}",
        path=error.filename,
    ) from error


def find_contexts(root: Path, recipe_name: str) -> list[Path]:
    """Return every directory under root that contains a recipe file.

    Directories are visited in lexical order so results are deterministic.

    Raises:
        DiscoveryError: If the root or any subdirectory cannot be read.
    """
    if not root.is_dir():
        raise DiscoveryError(f"Not a directory: {root}", path=str(root))

    contexts: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
        dirnames.sort()
        if recipe_name in filenames:
            contexts.append(Path(dirpath))
    return contexts


def discover_contexts(
    root: Path,
    settings: Settings | None = None,
    rebuild: bool | None = None,
) -> list[Path]:
    """Discover the build contexts of a run.

    Args:
        root: Directory tree holding the build contexts.
        settings: Application settings.
        rebuild: Only return contexts whose last build failed. Defaults to
            ``settings.rebuild``.

    Returns:
        Ordered list of build context directories.

    Raises:
        DiscoveryError: If the tree cannot be traversed.
    """
    if settings is None:
        settings = get_settings()
    if rebuild is None:
        rebuild = settings.rebuild

    contexts = find_contexts(root, settings.recipe_name)
    if not rebuild:
        logger.info("Discovered %d build contexts under %s", len(contexts), root)
        return contexts

    selected: list[Path] = []
    for context in contexts:
        if not has_failure_marker(context, settings):
            continue
        if settings.claim_markers_early:
            marker = log_path_for(context, settings, failed=True)
            try:
                marker.unlink()
            except OSError as e:
                logger.error("Removing previous build log %s: %s", marker, e)
        logger.info("Rebuilding %s", context)
        selected.append(context)

    logger.info(
        "Selected %d of %d build contexts for rebuild", len(selected), len(contexts)
    )
    return selected


__all__ = ["discover_contexts", "find_contexts"]
