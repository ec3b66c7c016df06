"""Pydantic models for build results.

These are the stable shapes returned by the orchestrator and rendered by
the CLI with ``--json``.
"""

from pydantic import BaseModel, ConfigDict, Field

from rpm_buildcheck.types import BuildOutcome


class JobResult(BaseModel):
    """Outcome of one build context."""

    model_config = ConfigDict(extra="forbid")

    context: str = Field(description="Build context directory")
    outcome: BuildOutcome
    sequence: int | None = Field(
        default=None, description="Launch number (None if never launched)"
    )
    image: str | None = Field(default=None, description="Image tag built")
    exit_code: int | None = Field(default=None)
    log_path: str | None = Field(default=None)
    error_type: str | None = Field(default=None)
    error_message: str | None = Field(default=None)
    cleanup_error: str | None = Field(
        default=None, description="Image removal error after a successful build"
    )
    duration_seconds: float | None = Field(default=None)

    @property
    def success(self) -> bool:
        return self.outcome == BuildOutcome.SUCCEEDED


class RunReport(BaseModel):
    """Aggregate result of a build run."""

    model_config = ConfigDict(extra="forbid")

    cache_dir: str
    parallelism: int
    rebuild: bool = False
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_contexts: list[str] = Field(default_factory=list)
    results: list[JobResult] = Field(default_factory=list)


__all__ = ["JobResult", "RunReport"]
