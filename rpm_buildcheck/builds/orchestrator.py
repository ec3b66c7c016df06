"""Build orchestrator.

Runs one container build per context under a fixed number of slots:

- The coordinating thread acquires a slot per context in discovery order
  and submits the job to a thread pool.
- Each job builds its image with the shared cache mounted, writes its log,
  removes the image on success and only then releases its slot.
- Failures are appended to a lock-protected ledger.
- The report is assembled only after every submitted job has finished.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path

from rpm_buildcheck.builds.cache import provision_cache
from rpm_buildcheck.builds.discovery import discover_contexts
from rpm_buildcheck.builds.errors import (
    BuildExecutionError,
    CleanupWarning,
    SlotAcquisitionError,
)
from rpm_buildcheck.builds.logs import (
    error_log_content,
    format_build_log,
    write_build_log,
)
from rpm_buildcheck.builds.models import JobResult, RunReport
from rpm_buildcheck.builds.runner import build_image, image_name_for, remove_image
from rpm_buildcheck.config import Settings, get_settings
from rpm_buildcheck.types import BuildJob, BuildOutcome

logger = logging.getLogger(__name__)

# Interval at which a blocked slot acquisition rechecks for teardown.
_SLOT_POLL_INTERVAL = 0.1

JobCallback = Callable[[BuildJob], None]
ResultCallback = Callable[[JobResult], None]


class FailureLedger:
    """Thread-safe, append-only list of failed build contexts."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._failed: list[Path] = []

    def record(self, context: Path) -> None:
        with self._lock:
            self._failed.append(context)

    def snapshot(self) -> list[Path]:
        with self._lock:
            return list(self._failed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._failed)


class BuildOrchestrator:
    """Execute build contexts with at most ``parallel_builds`` in flight.

    Args:
        cache_dir: Shared DNF cache directory mounted into every build.
        settings: Application settings.
        on_job_started: Called from the worker thread when a job starts.
        on_job_finished: Called once per context with its final result,
            after its log has been written and its slot released.
    """

    def __init__(
        self,
        cache_dir: Path,
        settings: Settings | None = None,
        on_job_started: JobCallback | None = None,
        on_job_finished: ResultCallback | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.cache_dir = cache_dir
        self.parallelism = self.settings.parallel_builds
        self.ledger = FailureLedger()
        self._slots = threading.BoundedSemaphore(self.parallelism)
        self._closing = threading.Event()
        self._sequence = 0
        self._on_job_started = on_job_started
        self._on_job_finished = on_job_finished

    def close(self) -> None:
        """Tear down the limiter so pending and future acquisitions fail.

        Jobs that are already running are not interrupted.
        """
        self._closing.set()

    def _acquire_slot(self) -> None:
        """Block until a build slot is free.

        Raises:
            SlotAcquisitionError: If the orchestrator is closing or the
                configured slot timeout expires.
        """
        timeout = self.settings.slot_timeout
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            if self._closing.is_set():
                raise SlotAcquisitionError(
                    "Build orchestrator is shutting down", code="orchestrator_closed"
                )
            wait_for = _SLOT_POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise SlotAcquisitionError(
                        f"No build slot became free within {timeout} seconds",
                        code="slot_timeout",
                    )
                wait_for = min(wait_for, remaining)
            if self._slots.acquire(timeout=wait_for):
                return

    def _next_job(self, context: Path, total: int) -> BuildJob:
        self._sequence += 1
        return BuildJob(
            context=context,
            sequence=self._sequence,
            image=image_name_for(self._sequence, self.settings),
            total=total,
        )

    def _record_unlaunched(
        self, context: Path, error: SlotAcquisitionError
    ) -> JobResult:
        logger.error("Acquiring build slot for %s: %s", context, error)
        log_path: Path | None = None
        try:
            log_path = write_build_log(
                context, error_log_content(str(error)), True, self.settings
            )
        except OSError as e:
            logger.error("Writing build log for %s: %s", context, e)
        self.ledger.record(context)
        return JobResult(
            context=str(context),
            outcome=BuildOutcome.FAILED,
            log_path=str(log_path) if log_path else None,
            error_type=error.code,
            error_message=str(error),
        )

    def _run_job(self, job: BuildJob) -> JobResult:
        """Build one context. Runs on a worker thread and owns one slot."""
        try:
            result = self._execute(job)
        finally:
            self._slots.release()
        self._notify_finished(result)
        return result

    def _execute(self, job: BuildJob) -> JobResult:
        if self._on_job_started is not None:
            self._on_job_started(job)

        settings = self.settings
        result = JobResult(
            context=str(job.context),
            outcome=BuildOutcome.FAILED,
            sequence=job.sequence,
            image=job.image,
        )

        try:
            build = build_image(job.context, job.image, self.cache_dir, settings)
        except BuildExecutionError as e:
            result.exit_code = e.exit_code
            result.error_type = e.code
            result.error_message = str(e)
            content = format_build_log(e.output, image=job.image, error_message=str(e))
        else:
            result.exit_code = build.exit_code
            result.duration_seconds = build.duration
            if build.success:
                result.outcome = BuildOutcome.SUCCEEDED
            else:
                result.error_type = "build_failed"
                result.error_message = f"Build failed with exit code {build.exit_code}"
            content = format_build_log(
                build.output,
                command=build.command,
                image=job.image,
                started_at=build.started_at,
                finished_at=build.finished_at,
                exit_code=build.exit_code,
                error_message=result.error_message,
            )

        failed = not result.success
        try:
            result.log_path = str(
                write_build_log(job.context, content, failed, settings)
            )
        except OSError as e:
            logger.error("Writing build log for %s: %s", job.context, e)

        if failed:
            # Recorded even when the log write failed; the context then has
            # no failure log but still appears in the summary.
            self.ledger.record(job.context)
            logger.info("%s: failed: see build log", job.label)
            return result

        logger.info("%s: success", job.label)

        try:
            remove_image(job.image, settings)
        except CleanupWarning as e:
            logger.error("Removing image %s of %s: %s", job.image, job.context, e)
            result.cleanup_error = str(e)

        return result

    def run(self, contexts: Iterable[Path]) -> RunReport:
        """Build every context exactly once and report the outcome.

        Returns only after every launched job has reached a terminal state.

        Args:
            contexts: Build context directories in submission order.

        Returns:
            RunReport with per-context results and the failed contexts.
        """
        contexts = list(contexts)
        total = len(contexts)
        unlaunched: list[JobResult] = []
        futures: list[Future[JobResult]] = []

        with ThreadPoolExecutor(
            max_workers=self.parallelism, thread_name_prefix="build"
        ) as executor:
            for context in contexts:
                try:
                    self._acquire_slot()
                except SlotAcquisitionError as e:
                    result = self._record_unlaunched(context, e)
                    unlaunched.append(result)
                    self._notify_finished(result)
                    continue

                job = self._next_job(context, total)
                futures.append(executor.submit(self._run_job, job))

            # Completion barrier: nothing below runs while a job is in flight.
            wait(futures)

        results = [f.result() for f in futures] + unlaunched
        failed_contexts = [str(c) for c in self.ledger.snapshot()]
        order = {str(c): i for i, c in enumerate(contexts)}
        results.sort(key=lambda r: order.get(r.context, total))
        failed_contexts.sort(key=lambda c: order.get(c, total))

        return RunReport(
            cache_dir=str(self.cache_dir),
            parallelism=self.parallelism,
            rebuild=self.settings.rebuild,
            total=total,
            succeeded=sum(1 for r in results if r.success),
            failed=len(failed_contexts),
            failed_contexts=failed_contexts,
            results=results,
        )

    def _notify_finished(self, result: JobResult) -> None:
        if self._on_job_finished is not None:
            self._on_job_finished(result)


def format_failure_summary(report: RunReport) -> str:
    """Render the end-of-run list of failed contexts.

    Returns:
        Summary text, or an empty string when nothing failed.
    """
    if not report.failed_contexts:
        return ""
    lines = ["The following builds failed:"]
    lines.extend(f"* {context}" for context in report.failed_contexts)
    return "\n".join(lines)


def run_builds(
    root: Path,
    settings: Settings | None = None,
    on_job_started: JobCallback | None = None,
    on_job_finished: ResultCallback | None = None,
    on_ready: Callable[[Path, list[Path]], None] | None = None,
) -> RunReport:
    """Provision the cache, discover contexts under root and build them.

    Args:
        root: Directory searched for build contexts.
        settings: Application settings.
        on_job_started: Passed to the orchestrator.
        on_job_finished: Passed to the orchestrator.
        on_ready: Called with the cache directory and the discovered
            contexts once setup has succeeded and before any build starts.

    Raises:
        FatalSetupError: If cache provisioning or discovery fails. No build
            is started in that case.
    """
    if settings is None:
        settings = get_settings()

    cache_dir = provision_cache(settings)
    contexts = discover_contexts(root, settings)
    if on_ready is not None:
        on_ready(cache_dir, contexts)
    orchestrator = BuildOrchestrator(
        cache_dir,
        settings,
        on_job_started=on_job_started,
        on_job_finished=on_job_finished,
    )
    return orchestrator.run(contexts)


__all__ = [
    "BuildOrchestrator",
    "FailureLedger",
    "format_failure_summary",
    "run_builds",
]
