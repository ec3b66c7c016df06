"""Parser for `dnf list` output.

Turns the whitespace-separated listing printed by the package manager into
PackageRecord values.
"""

from __future__ import annotations

import logging

from rpm_buildcheck.builds.runner import run_command
from rpm_buildcheck.config import Settings, get_settings
from rpm_buildcheck.types import PackageRecord

logger = logging.getLogger(__name__)

# Section headers printed by dnf between the package rows.
_IGNORED_LINES = frozenset({"Installed Packages", "Available Packages", ""})


class CatalogParseError(Exception):
    """Raised when a package listing cannot be parsed."""

    def __init__(
        self, message: str, line: str | None = None, code: str = "catalog_parse_error"
    ) -> None:
        super().__init__(message)
        self.line = line
        self.code = code


def parse_package_line(line: str) -> PackageRecord:
    """Parse one `name.arch version @repo` row.

    Raises:
        CatalogParseError: If the line does not have exactly three fields
            or the first field has no architecture.
    """
    fields = line.split()
    if len(fields) != 3:
        raise CatalogParseError(
            f"Unexpected input with {len(fields)} fields instead of 3: {line!r}",
            line=line,
        )

    name, sep, arch = fields[0].rpartition(".")
    if not sep or not name or not arch:
        raise CatalogParseError(
            f"Missing architecture in package name: {fields[0]!r}", line=line
        )

    return PackageRecord(
        name=name,
        arch=arch,
        version=fields[1],
        repository=fields[2].lstrip("@"),
    )


def parse_package_listing(text: str) -> list[PackageRecord]:
    """Parse a full `dnf list` listing.

    Args:
        text: Output of `dnf list --all --quiet`.

    Returns:
        Package records in listing order.

    Raises:
        CatalogParseError: On the first malformed row.
    """
    records: list[PackageRecord] = []
    for raw in text.splitlines():
        line = raw.strip()
        if line in _IGNORED_LINES:
            continue
        records.append(parse_package_line(line))
    return records


def compose_list_command(settings: Settings) -> list[str]:
    """Compose the command that lists every package of the base image."""
    return [
        settings.container_tool,
        "run",
        "--rm",
        settings.base_image,
        "dnf",
        "list",
        "--all",
        "--quiet",
        "--forcearch",
        settings.forcearch,
    ]


def list_packages(settings: Settings | None = None) -> list[PackageRecord]:
    """List the packages available in the base image.

    Raises:
        BuildExecutionError: If the container cannot be run.
        CatalogParseError: If the listing fails or cannot be parsed.
    """
    if settings is None:
        settings = get_settings()

    result = run_command(compose_list_command(settings))
    if not result.success:
        raise CatalogParseError(
            f"Listing packages in {settings.base_image} failed with exit code "
            f"{result.exit_code}\n{result.output}",
            code="catalog_list_error",
        )

    records = parse_package_listing(result.output)
    logger.info("Found %d RPM packages", len(records))
    return records


__all__ = [
    "CatalogParseError",
    "compose_list_command",
    "list_packages",
    "parse_package_line",
    "parse_package_listing",
]
