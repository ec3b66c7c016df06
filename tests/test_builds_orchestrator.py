"""Tests for builds/orchestrator.py module.

The container tool is replaced by FakeContainerTool, which records the
peak number of builds running at the same time.
"""

import threading
from unittest.mock import MagicMock, patch

import pytest

from rpm_buildcheck.builds.models import RunReport
from rpm_buildcheck.builds.orchestrator import (
    BuildOrchestrator,
    FailureLedger,
    format_failure_summary,
    run_builds,
)
from rpm_buildcheck.config import Settings
from rpm_buildcheck.types import BuildOutcome
from tests.fakes import FakeContainerTool, make_contexts


def _logs(context):
    return sorted(p.name for p in context.iterdir() if p.name.startswith("buildlog"))


def _run(contexts, fake, cache_dir, **settings_kwargs):
    settings = Settings(**settings_kwargs)
    orchestrator = BuildOrchestrator(cache_dir, settings)
    with patch("subprocess.run", side_effect=fake):
        report = orchestrator.run(contexts)
    return orchestrator, report


@pytest.fixture
def cache_dir(tmp_path):
    path = tmp_path / "cache"
    path.mkdir()
    return path


class TestFailureLedger:
    """Tests for FailureLedger."""

    def test_concurrent_records(self, tmp_path):
        """Concurrent appends should all be kept."""
        ledger = FailureLedger()

        def worker(i: int) -> None:
            for j in range(200):
                ledger.record(tmp_path / f"{i}-{j}")

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ledger) == 1600
        assert len(set(ledger.snapshot())) == 1600


class TestBuildOrchestrator:
    """Tests for BuildOrchestrator.run."""

    def test_no_contexts(self, cache_dir):
        """Scenario A: nothing discovered, nothing built, empty summary."""
        fake = FakeContainerTool()
        _, report = _run([], fake, cache_dir)

        assert report.total == 0
        assert report.failed_contexts == []
        assert fake.calls == []
        assert format_failure_summary(report) == ""

    def test_serial_builds(self, tmp_path, cache_dir):
        """Scenario B: N=1 builds one at a time and logs every context."""
        contexts = make_contexts(tmp_path, ["a", "b", "c"])
        fake = FakeContainerTool(delay=0.02)

        _, report = _run(contexts, fake, cache_dir, parallel_builds=1)

        assert fake.peak == 1
        assert fake.built_contexts() == [str(c) for c in contexts]
        assert report.succeeded == 3
        for context in contexts:
            assert _logs(context) == ["buildlog"]

    @pytest.mark.parametrize("parallelism", [1, 2, 3])
    def test_parallelism_bound(self, tmp_path, cache_dir, parallelism):
        """At most N builds should ever run at once."""
        contexts = make_contexts(tmp_path, [f"pkg{i}" for i in range(8)])
        fake = FakeContainerTool(delay=0.03)

        _, report = _run(contexts, fake, cache_dir, parallel_builds=parallelism)

        assert 1 <= fake.peak <= parallelism
        assert report.total == 8
        assert len(fake.commands("build")) == 8

    def test_slot_held_until_cleanup(self, tmp_path, cache_dir):
        """The slot should stay taken while the log is written and the image removed."""
        contexts = make_contexts(tmp_path, ["a", "b", "c"])
        settings = Settings(parallel_builds=1)
        slot_free_during_rmi = []
        log_written_before_rmi = []

        def on_rmi(image):
            acquired = orchestrator._slots.acquire(blocking=False)
            if acquired:
                orchestrator._slots.release()
            slot_free_during_rmi.append(acquired)
            sequence = int(image.rsplit("-", 1)[1])
            log_written_before_rmi.append(_logs(contexts[sequence - 1]) == ["buildlog"])

        fake = FakeContainerTool(on_rmi=on_rmi)
        orchestrator = BuildOrchestrator(cache_dir, settings)
        with patch("subprocess.run", side_effect=fake):
            report = orchestrator.run(contexts)

        assert report.succeeded == 3
        assert slot_free_during_rmi == [False, False, False]
        assert log_written_before_rmi == [True, True, True]

    def test_failed_build(self, tmp_path, cache_dir):
        """Scenario C: a failing build is logged and reported, others unaffected."""
        a, b, c = make_contexts(tmp_path, ["a", "b", "c"])
        fake = FakeContainerTool(fail={"b"})

        orchestrator, report = _run([a, b, c], fake, cache_dir)

        assert report.failed_contexts == [str(b)]
        assert report.failed == 1
        assert report.succeeded == 2
        assert _logs(a) == ["buildlog"]
        assert _logs(b) == ["buildlog.fail"]
        assert _logs(c) == ["buildlog"]
        assert "exit status 1" in (b / "buildlog.fail").read_text()
        assert orchestrator.ledger.snapshot() == [b]

    def test_failed_image_is_not_removed(self, tmp_path, cache_dir):
        """Only successfully built images should be removed."""
        a, b = make_contexts(tmp_path, ["a", "b"])
        fake = FakeContainerTool(fail={"b"})

        _, report = _run([a, b], fake, cache_dir)

        removed = [cmd[-1] for cmd in fake.commands("rmi")]
        results = {r.context: r for r in report.results}
        assert removed == [results[str(a)].image]

    def test_cleanup_failure_keeps_success(self, tmp_path, cache_dir):
        """A failed rmi is logged but the build stays successful."""
        (a,) = make_contexts(tmp_path, ["a"])
        fake = FakeContainerTool(rmi_exit_code=1)

        _, report = _run([a], fake, cache_dir)

        result = report.results[0]
        assert result.outcome == BuildOutcome.SUCCEEDED
        assert result.cleanup_error is not None
        assert report.failed_contexts == []
        assert _logs(a) == ["buildlog"]

    def test_unique_image_names(self, tmp_path, cache_dir):
        """Contexts with the same directory name should get distinct images."""
        contexts = make_contexts(tmp_path, ["x/pkg", "y/pkg", "z/pkg"])
        fake = FakeContainerTool()

        _, report = _run(contexts, fake, cache_dir, parallel_builds=2)

        images = [r.image for r in report.results]
        assert len(set(images)) == 3
        assert sorted(r.sequence for r in report.results) == [1, 2, 3]

    def test_shared_cache_mounted_as_overlay(self, tmp_path, cache_dir):
        """Every build should mount the shared cache with the overlay flag."""
        contexts = make_contexts(tmp_path, ["a", "b"])
        fake = FakeContainerTool()

        _run(contexts, fake, cache_dir)

        for cmd in fake.commands("build"):
            assert f"{cache_dir}:/var/cache/dnf:O" in cmd

    def test_build_execution_error_is_recorded(self, tmp_path, cache_dir):
        """A build that cannot start should be recorded as failed."""
        (a,) = make_contexts(tmp_path, ["a"])
        settings = Settings()
        orchestrator = BuildOrchestrator(cache_dir, settings)

        with patch("subprocess.run", side_effect=FileNotFoundError("podman")):
            report = orchestrator.run([a])

        assert report.failed_contexts == [str(a)]
        assert report.results[0].error_type == "execution_error"
        assert _logs(a) == ["buildlog.fail"]

    def test_closed_orchestrator_records_unlaunched(self, tmp_path, cache_dir):
        """Slot acquisition failures should be logged and reported, not built."""
        contexts = make_contexts(tmp_path, ["a", "b"])
        fake = FakeContainerTool()
        orchestrator = BuildOrchestrator(cache_dir, Settings())
        orchestrator.close()

        with patch("subprocess.run", side_effect=fake):
            report = orchestrator.run(contexts)

        assert fake.commands("build") == []
        assert report.failed_contexts == [str(c) for c in contexts]
        for result in report.results:
            assert result.sequence is None
            assert result.error_type == "orchestrator_closed"
        for context in contexts:
            assert _logs(context) == ["buildlog.fail"]

    def test_slot_timeout(self, tmp_path, cache_dir):
        """Contexts waiting longer than the slot timeout should fail."""
        a, b = make_contexts(tmp_path, ["a", "b"])
        fake = FakeContainerTool(delay=0.5)

        _, report = _run(
            [a, b], fake, cache_dir, parallel_builds=1, slot_timeout=0.05
        )

        results = {r.context: r for r in report.results}
        assert results[str(a)].outcome == BuildOutcome.SUCCEEDED
        assert results[str(b)].error_type == "slot_timeout"
        assert fake.built_contexts() == [str(a)]

    def test_report_after_all_jobs(self, tmp_path, cache_dir):
        """The report should only be built once every job has finished."""
        contexts = make_contexts(tmp_path, [f"pkg{i}" for i in range(5)])
        fake = FakeContainerTool(delay=0.02, fail={"pkg1", "pkg3"})
        finished: list[str] = []
        lock = threading.Lock()

        def on_finished(result):
            with lock:
                finished.append(result.context)

        orchestrator = BuildOrchestrator(
            cache_dir, Settings(parallel_builds=3), on_job_finished=on_finished
        )
        with patch("subprocess.run", side_effect=fake):
            report = orchestrator.run(contexts)

        assert sorted(finished) == sorted(str(c) for c in contexts)
        assert fake.active == 0
        fail_logs = {str(c) for c in contexts if (c / "buildlog.fail").exists()}
        assert set(report.failed_contexts) == fail_logs
        assert report.failed_contexts == [str(contexts[1]), str(contexts[3])]
        for context in contexts:
            assert len(_logs(context)) == 1


class TestRebuild:
    """Tests for rebuild mode end to end."""

    def test_rebuild_only_failed(self, tmp_path):
        """Scenario D: only failure-logged contexts are rebuilt."""
        root = tmp_path / "root"
        a, b, c = make_contexts(root, ["a", "b", "c"])
        (a / "buildlog.fail").write_text("boom")
        (b / "buildlog").write_text("ok")
        (c / "buildlog.fail").write_text("boom")
        settings = Settings(rebuild=True, tmp_dir=tmp_path)
        fake = FakeContainerTool(fail={"c"})

        with patch("subprocess.run", side_effect=fake):
            report = run_builds(root, settings)

        assert fake.built_contexts() == [str(a), str(c)]
        assert report.rebuild is True
        assert report.failed_contexts == [str(c)]
        assert _logs(a) == ["buildlog"]
        assert (b / "buildlog").read_text() == "ok"
        assert _logs(c) == ["buildlog.fail"]

    def test_rebuild_is_idempotent(self, tmp_path):
        """A second rebuild pass processes exactly the remaining failures."""
        root = tmp_path / "root"
        contexts = make_contexts(root, ["a", "b", "c"])
        settings = Settings(tmp_dir=tmp_path)

        with patch("subprocess.run", side_effect=FakeContainerTool(fail={"b"})):
            run_builds(root, settings)

        fake = FakeContainerTool()
        with patch("subprocess.run", side_effect=fake):
            report = run_builds(root, settings.model_copy(update={"rebuild": True}))

        assert fake.built_contexts() == [str(contexts[1])]
        assert report.failed_contexts == []
        for context in contexts:
            assert _logs(context) == ["buildlog"]


class TestRunBuilds:
    """Tests for run_builds setup failures."""

    def test_provisioning_failure_aborts(self, tmp_path):
        """No build should start when the cache cannot be created."""
        from rpm_buildcheck.builds.errors import CacheProvisioningError

        make_contexts(tmp_path / "root", ["a"])
        fake = FakeContainerTool(check_update_exit_code=1)

        with patch("subprocess.run", side_effect=fake):
            with pytest.raises(CacheProvisioningError):
                run_builds(tmp_path / "root", Settings(tmp_dir=tmp_path))

        assert fake.commands("build") == []

    def test_discovery_failure_aborts(self, tmp_path):
        """No build should start when discovery fails."""
        from rpm_buildcheck.builds.errors import DiscoveryError

        fake = FakeContainerTool()
        with patch("subprocess.run", side_effect=fake):
            with pytest.raises(DiscoveryError):
                run_builds(tmp_path / "missing", Settings(tmp_dir=tmp_path))

        assert fake.commands("build") == []

    def test_on_ready_called_before_builds(self, tmp_path):
        """on_ready should get the cache and contexts before any build runs."""
        contexts = make_contexts(tmp_path / "root", ["a", "b"])
        fake = FakeContainerTool()
        seen = []

        def on_ready(cache_dir, found):
            seen.append((cache_dir, found, len(fake.commands("build"))))

        with patch("subprocess.run", side_effect=fake):
            report = run_builds(
                tmp_path / "root",
                Settings(cache_dir=tmp_path / "cache"),
                on_ready=on_ready,
            )

        assert seen == [(tmp_path / "cache", contexts, 0)]
        assert report.total == 2

    def test_on_ready_not_called_on_setup_failure(self, tmp_path):
        """on_ready should not run when setup fails."""
        from rpm_buildcheck.builds.errors import DiscoveryError

        on_ready = MagicMock()
        with patch("subprocess.run", side_effect=FakeContainerTool()):
            with pytest.raises(DiscoveryError):
                run_builds(
                    tmp_path / "missing", Settings(tmp_dir=tmp_path), on_ready=on_ready
                )

        on_ready.assert_not_called()


class TestFormatFailureSummary:
    """Tests for format_failure_summary."""

    def test_lists_failed_contexts(self):
        """Should list every failed context."""
        report = RunReport(
            cache_dir="/tmp/cache",
            parallelism=4,
            failed=2,
            failed_contexts=["/r/a", "/r/b"],
        )
        assert format_failure_summary(report) == (
            "The following builds failed:\n* /r/a\n* /r/b"
        )


class TestJobErrors:
    """Tests for unexpected errors inside jobs."""

    def test_callback_failure_is_not_swallowed(self, tmp_path, cache_dir):
        """Unexpected errors raised inside a job surface after the barrier."""
        (a,) = make_contexts(tmp_path, ["a"])
        started = MagicMock(side_effect=RuntimeError("boom"))
        orchestrator = BuildOrchestrator(cache_dir, Settings(), on_job_started=started)

        with patch("subprocess.run", side_effect=FakeContainerTool()):
            with pytest.raises(RuntimeError):
                orchestrator.run([a])

    def test_undecodable_build_output(self, tmp_path, cache_dir):
        """Invalid UTF-8 in build output should not abort the run."""
        tool = tmp_path / "tool"
        tool.write_text(
            r"""#!/bin/sh
if [ "$1" = build ]; then
    printf 'STEP 1/2\n\377\376 broken \351\n'
    case "$*" in
        */bad) exit 1 ;;
    esac
fi
exit 0
"""
        )
        tool.chmod(0o755)
        good, bad = make_contexts(tmp_path / "root", ["good", "bad"])
        orchestrator = BuildOrchestrator(
            cache_dir, Settings(container_tool=str(tool), parallel_builds=2)
        )

        report = orchestrator.run([good, bad])

        assert report.succeeded == 1
        assert report.failed_contexts == [str(bad)]
        assert _logs(good) == ["buildlog"]
        assert _logs(bad) == ["buildlog.fail"]
        assert "\ufffd" in (bad / "buildlog.fail").read_text(encoding="utf-8")

    def test_failed_context_recorded_when_log_write_fails(self, tmp_path, cache_dir):
        """A failure is still reported if its log cannot be written."""
        (a,) = make_contexts(tmp_path, ["a"])
        orchestrator = BuildOrchestrator(cache_dir, Settings())

        with patch("subprocess.run", side_effect=FakeContainerTool(fail={"a"})):
            with patch(
                "rpm_buildcheck.builds.orchestrator.write_build_log",
                side_effect=PermissionError("read-only"),
            ):
                report = orchestrator.run([a])

        assert report.failed_contexts == [str(a)]
        assert report.results[0].log_path is None
        assert _logs(a) == []
