"""Configuration settings for rpm_buildcheck.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_IMAGE = (
    "registry.redhat.io/rhel9/rhel-bootc"
    "@sha256:76edd9792e9746e7e05857bb5e6dd26b81d3b6961604ec02b9588c6f72a7c77f"
)


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the RPM_BUILDCHECK_
    prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="RPM_BUILDCHECK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Container tooling
    base_image: str = Field(
        default=DEFAULT_BASE_IMAGE,
        description="Base container image to analyze",
    )
    container_tool: str = Field(
        default="podman",
        description="Container engine executable",
    )
    image_prefix: str = Field(
        default="buildcheck",
        description="Prefix for the throwaway image tags",
    )
    package_cache_path: str = Field(
        default="/var/cache/dnf",
        description="Package manager cache path inside the container",
    )
    updates_available_exit_code: int = Field(
        default=100,
        description="Exit status of `dnf check-update` when updates exist",
    )
    forcearch: str = Field(
        default="x86_64",
        description="Architecture passed to `dnf list --forcearch`",
    )

    # Paths
    cache_dir: Path | None = Field(
        default=None,
        description="Shared DNF cache directory (a temp dir is created if not set)",
    )
    tmp_dir: Path | None = Field(
        default=None,
        description="Parent for temporary directories (uses system default if not set)",
    )
    recipe_name: str = Field(
        default="Dockerfile",
        description="File name identifying a build context",
    )
    log_name: str = Field(
        default="buildlog",
        description="Build log file name written next to each recipe",
    )
    failure_suffix: str = Field(
        default=".fail",
        description="Suffix appended to the build log of a failed build",
    )

    # Operational modes
    rebuild: bool = Field(
        default=False,
        description="Only rebuild contexts whose previous build failed",
    )
    claim_markers_early: bool = Field(
        default=False,
        description="Delete failure markers during discovery instead of on rewrite",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING",
        description="Logging level",
    )

    # Concurrency
    parallel_builds: int = Field(
        default=4,
        ge=1,
        description="Maximum number of parallel container builds",
    )

    # Timeouts (in seconds)
    build_timeout: int | None = Field(
        default=None,
        ge=1,
        description="Timeout for a single container build (None = no timeout)",
    )
    slot_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Timeout waiting for a free build slot (None = block)",
    )

    @property
    def failure_log_name(self) -> str:
        """Name of the failure-suffixed build log."""
        return f"{self.log_name}{self.failure_suffix}"


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["DEFAULT_BASE_IMAGE", "Settings", "get_settings", "print_settings_json"]
