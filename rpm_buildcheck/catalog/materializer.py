"""Recipe materializer.

Writes one build context directory with a Dockerfile per package record.
"""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from rpm_buildcheck.config import Settings, get_settings
from rpm_buildcheck.types import PackageRecord

logger = logging.getLogger(__name__)


@dataclass
class MaterializeResult:
    """Result of writing recipes.

    Attributes:
        base_dir: Directory holding the build contexts.
        written: Number of recipes written.
        skipped: Records whose directory already existed.
    """

    base_dir: Path
    written: int = 0
    skipped: int = 0


def context_dir_name(record: PackageRecord) -> str:
    """Return the build context directory name of a package."""
    return f"{record.name}.{record.arch}-{record.version}-{record.repository}"


def render_recipe(record: PackageRecord, base_image: str) -> str:
    """Render the Dockerfile installing one package on the base image."""
    return (
        f"FROM {base_image}\n"
        "RUN mkdir -p /var/lib\n"
        f"RUN dnf -y install --allowerasing {record.name}-{record.version}\n"
    )


def write_recipes(
    records: Iterable[PackageRecord],
    settings: Settings | None = None,
    base_dir: Path | None = None,
) -> MaterializeResult:
    """Write one build context per package record.

    Records mapping to an existing directory are skipped.

    Args:
        records: Package records.
        settings: Application settings.
        base_dir: Target directory; a temporary one is created if None.

    Returns:
        MaterializeResult with the base directory and counts.

    Raises:
        OSError: If a directory or recipe cannot be written.
    """
    if settings is None:
        settings = get_settings()

    if base_dir is None:
        tmp_parent = str(settings.tmp_dir) if settings.tmp_dir else None
        base_dir = Path(tempfile.mkdtemp(prefix="RPM-Dockerfiles", dir=tmp_parent))
    else:
        base_dir.mkdir(parents=True, exist_ok=True)

    result = MaterializeResult(base_dir=base_dir)
    for record in records:
        context = base_dir / context_dir_name(record)
        try:
            context.mkdir(mode=0o750)
        except FileExistsError:
            logger.debug("Skipping duplicate context %s", context.name)
            result.skipped += 1
            continue

        recipe = context / settings.recipe_name
        recipe.write_text(render_recipe(record, settings.base_image))
        recipe.chmod(0o660)
        result.written += 1

    logger.info("Wrote %d recipes to %s", result.written, base_dir)
    return result


__all__ = ["MaterializeResult", "context_dir_name", "render_recipe", "write_recipes"]
