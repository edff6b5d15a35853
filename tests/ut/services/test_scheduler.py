"""构建调度器单元测试（假工具链，不启动真实进程）"""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from phmbuild.core.config import Config
from phmbuild.core.markers import MarkerStore
from phmbuild.core.models import BuildStatus, BuildUnit, FailurePolicy, UnitKind
from phmbuild.core.registry import UnitRegistry
from phmbuild.core.resolver import resolve
from phmbuild.services.build.executor import BuildExecutor
from phmbuild.services.build.scheduler import BuildScheduler
from phmbuild.utils.shell import CommandResult


@pytest.fixture()
def executor(tmp_path: Path, toolchain) -> BuildExecutor:
    cfg = Config(
        work_dir=str(tmp_path / "work"),
        log_dir=str(tmp_path / "logs"),
        staging_dir=str(tmp_path / "staging"),
        state_dir=str(tmp_path / "state"),
        deps_prefix=str(tmp_path / "deps"),
        platform="darwin-arm64",
    )
    return BuildExecutor(cfg, MarkerStore(cfg.state_dir), toolchain=toolchain)


def _statuses(summary) -> dict[str, str]:  # type: ignore[no-untyped-def]
    return {
        r.unit: r.status.value + (f":{r.skip_reason}" if r.skip_reason else "")
        for r in summary.records
    }


class TestSchedulerOrdering:
    def test_sequential_follows_plan(self, executor: BuildExecutor, registry: UnitRegistry, toolchain) -> None:
        plan = resolve(registry, ["ext:redis"])
        summary = BuildScheduler(executor, max_workers=1).run(plan)
        assert summary.success
        assert [r.unit for r in summary.records] == plan.order
        # 只有带 build_cmd 的单元会调用工具链
        assert toolchain.calls == ["zlib", "openssl", "curl", "php-core:common", "ext:igbinary", "ext:redis"]

    def test_parallel_respects_dependencies(self, executor: BuildExecutor, registry: UnitRegistry,
                                            toolchain) -> None:
        finished: list[str] = []
        lock = threading.Lock()

        def on_run(unit: str, env: dict[str, str]) -> None:
            for dep in registry.get(unit).depends_on:
                assert dep in finished or not registry.get(dep).build_cmd
            with lock:
                finished.append(unit)

        toolchain.on_run = on_run
        plan = resolve(registry, ["ext:redis", "ext:xdebug", "ext:opcache"])
        summary = BuildScheduler(executor, max_workers=4).run(plan)
        assert summary.success
        assert set(finished) == {n for n in plan.order if registry.get(n).build_cmd}

    def test_already_built_steps_skipped(self, executor: BuildExecutor, registry: UnitRegistry,
                                         toolchain) -> None:
        plan = resolve(registry, ["curl"], already_built=["zlib", "openssl"])
        summary = BuildScheduler(executor).run(plan)
        assert _statuses(summary) == {
            "zlib": "skipped:built", "openssl": "skipped:built", "curl": "success",
        }
        assert toolchain.calls == ["curl"]


class TestFailurePolicy:
    def test_stop_on_first_failure(self, executor: BuildExecutor, registry: UnitRegistry, toolchain) -> None:
        toolchain.fail = {"ext:igbinary"}
        plan = resolve(registry, ["ext:redis", "ext:xdebug"])
        summary = BuildScheduler(executor, max_workers=1, policy=FailurePolicy.STOP).run(plan)
        statuses = _statuses(summary)
        assert statuses["ext:igbinary"] == "failed"
        assert statuses["ext:redis"] == "skipped:blocked"
        assert statuses["ext:xdebug"] == "skipped:stopped"
        assert "ext:xdebug" not in toolchain.calls
        assert summary.exit_code() == 1

    def test_continue_and_collect(self, executor: BuildExecutor, registry: UnitRegistry, toolchain) -> None:
        toolchain.fail = {"ext:igbinary"}
        plan = resolve(registry, ["ext:redis", "ext:xdebug"])
        summary = BuildScheduler(executor, max_workers=2, policy=FailurePolicy.CONTINUE).run(plan)
        statuses = _statuses(summary)
        assert statuses["ext:redis"] == "skipped:blocked"
        assert statuses["ext:xdebug"] == "success"
        assert summary.exit_code() == 0
        assert summary.exit_code(strict=True) == 1

    def test_transitive_block(self, executor: BuildExecutor, registry: UnitRegistry, toolchain) -> None:
        toolchain.fail = {"openssl"}
        plan = resolve(registry, ["meta:php"])
        summary = BuildScheduler(executor, policy=FailurePolicy.CONTINUE).run(plan)
        statuses = _statuses(summary)
        assert statuses["zlib"] == "success"
        assert statuses["openssl"] == "failed"
        for name in ("curl", "php-core:common", "php-core:cli", "meta:php"):
            assert statuses[name] == "skipped:blocked"

    def test_worker_crash_recorded(self, executor: BuildExecutor, registry: UnitRegistry) -> None:
        def finalize(unit):  # type: ignore[no-untyped-def]
            raise OSError("disk full")

        plan = resolve(registry, ["zlib"])
        summary = BuildScheduler(executor, finalize=finalize).run(plan)
        rec = summary.record("zlib")
        assert rec is not None and rec.status == BuildStatus.FAILED
        assert "disk full" in rec.error_summary

    def test_non_build_error_in_finalize(self, executor: BuildExecutor, registry: UnitRegistry) -> None:
        def finalize(unit):  # type: ignore[no-untyped-def]
            if unit.name == "openssl":
                raise RuntimeError("plugin bug")
            return ""

        plan = resolve(registry, ["curl"])
        summary = BuildScheduler(executor, finalize=finalize, policy=FailurePolicy.STOP).run(plan)
        statuses = _statuses(summary)
        assert statuses["zlib"] == "success"
        assert statuses["openssl"] == "failed"
        assert statuses["curl"] == "skipped:blocked"
        assert summary.record("openssl").error_kind == "packaging"  # type: ignore[union-attr]
        assert summary.exit_code() == 1

    def test_toolchain_hook_crash_recorded(self, executor: BuildExecutor, registry: UnitRegistry) -> None:
        class _Broken:
            def run(self, command, **kwargs):  # type: ignore[no-untyped-def]
                raise RuntimeError("hook exploded")

            def terminate_all(self) -> None:
                pass

        executor.toolchain = _Broken()
        summary = BuildScheduler(executor).run(resolve(registry, ["openssl"]))
        statuses = _statuses(summary)
        assert statuses["zlib"] == "failed"
        assert statuses["openssl"] == "skipped:blocked"
        assert "hook exploded" in summary.record("zlib").error_summary  # type: ignore[union-attr]


class _SlowToolchain:
    def __init__(self) -> None:
        self.active = 0
        self.max_active = 0
        self.terminated = False
        self._lock = threading.Lock()

    def run(self, command, *, cwd, env, log_path, timeout=None):  # type: ignore[no-untyped-def]
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.05)
        with self._lock:
            self.active -= 1
        return CommandResult(returncode=0)

    def terminate_all(self) -> None:
        self.terminated = True


class TestConcurrency:
    def test_max_workers_bound(self, executor: BuildExecutor) -> None:
        reg = UnitRegistry()
        for i in range(6):
            reg.register(BuildUnit(name=f"lib{i}", kind=UnitKind.LIBRARY, version="1", build_cmd="make"))
        slow = _SlowToolchain()
        executor.toolchain = slow
        summary = BuildScheduler(executor, max_workers=2).run(resolve(reg, reg.names()))
        assert summary.success
        assert slow.max_active == 2


class TestCancel:
    def test_cancel_skips_remaining(self, executor: BuildExecutor, registry: UnitRegistry, toolchain) -> None:
        scheduler = BuildScheduler(executor, max_workers=1, cancel_grace=None)

        def on_run(unit: str, env: dict[str, str]) -> None:
            if unit == "zlib":
                scheduler.cancel()

        toolchain.on_run = on_run
        summary = scheduler.run(resolve(registry, ["curl"]))
        statuses = _statuses(summary)
        assert statuses["zlib"] == "success"
        assert statuses["openssl"] == "skipped:cancelled"
        assert statuses["curl"] == "skipped:cancelled"
        assert summary.cancelled
        assert summary.exit_code() == 130

    def test_grace_timer_terminates(self, executor: BuildExecutor, toolchain) -> None:
        scheduler = BuildScheduler(executor)
        scheduler.cancel(grace=0)
        assert scheduler._timer is not None
        scheduler._timer.join(timeout=5)
        assert toolchain.terminated
        assert scheduler.cancelled
