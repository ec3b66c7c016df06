"""Error types for the build pipeline.

Fatal setup errors abort the run before any build starts. Per-job errors
are caught by the orchestrator and recorded against the build context.
"""


class FatalSetupError(Exception):
    """Raised when the run cannot start (no cache, no job list)."""

    def __init__(self, message: str, code: str = "setup_error") -> None:
        super().__init__(message)
        self.code = code


class CacheProvisioningError(FatalSetupError):
    """Raised when the shared package cache cannot be created."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "cache_provisioning_error",
    ) -> None:
        super().__init__(message, code=code)
        self.exit_code = exit_code


class DiscoveryError(FatalSetupError):
    """Raised when the context tree cannot be traversed."""

    def __init__(
        self, message: str, path: str | None = None, code: str = "discovery_error"
    ) -> None:
        super().__init__(message, code=code)
        self.path = path


class SlotAcquisitionError(Exception):
    """Raised when the concurrency limiter cannot grant a build slot."""

    def __init__(self, message: str, code: str = "slot_unavailable") -> None:
        super().__init__(message)
        self.code = code


class BuildExecutionError(Exception):
    """Raised when the container tool cannot be run to completion."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "build_error",
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code
        self.output = output


class CleanupWarning(UserWarning):
    """Raised when a built image could not be removed."""

    def __init__(self, message: str, image: str) -> None:
        super().__init__(message)
        self.image = image


__all__ = [
    "BuildExecutionError",
    "CacheProvisioningError",
    "CleanupWarning",
    "DiscoveryError",
    "FatalSetupError",
    "SlotAcquisitionError",
]
