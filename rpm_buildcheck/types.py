"""Shared type definitions for rpm_buildcheck.

This module contains dataclasses and enums shared across subpackages to
avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class BuildOutcome(str, Enum):
    """Terminal outcome of a build job."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class PackageRecord:
    """One row of a package manager listing."""

    name: str
    arch: str
    version: str
    repository: str


@dataclass
class BuildJob:
    """An in-flight build of one context.

    Attributes:
        context: Build context directory.
        sequence: 1-based launch number.
        image: Unique image tag derived from the sequence number.
        total: Number of contexts in the run.
    """

    context: Path
    sequence: int
    image: str
    total: int

    @property
    def label(self) -> str:
        """Human-readable job label, e.g. ``3/10 Building /x/y``."""
        return f"{self.sequence}/{self.total} Building {self.context}"


__all__ = ["BuildJob", "BuildOutcome", "PackageRecord"]
