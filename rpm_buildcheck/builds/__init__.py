"""Build orchestration module.

This module handles:
- Shared DNF cache provisioning
- Build context discovery and rebuild selection
- Running container builds under a bounded worker pool
- Per-context build logs and the failure report
"""

from rpm_buildcheck.builds.models import JobResult, RunReport

__all__ = ["JobResult", "RunReport"]

# Lazy imports for submodules to avoid circular imports
# Access via rpm_buildcheck.builds.orchestrator, etc.
