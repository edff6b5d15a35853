"""构建调度器 — 按计划并行执行构建单元

- 线程池并行度 max_workers
- 单元的计划内依赖全部 success 或 skipped(built) 后才会被释放
- 依赖失败的下游单元记为 skipped(blocked)
- stop-on-first-failure: 工具链失败后不再启动新单元，未启动的记为 skipped(stopped)
- continue-and-collect: 不相关的子树继续构建
- 就绪单元按计划顺序释放，日志顺序可复现
- cancel(): 立即停止调度，进行中的进程在宽限期后经工具链终止
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from phmbuild.core.models import (
    BuildRecord,
    BuildStatus,
    FailurePolicy,
    RunSummary,
    SkipReason,
)
from phmbuild.core.resolver import BuildPlan, PlanStep
from phmbuild.services.build.executor import BuildExecutor, Finalizer

logger = logging.getLogger(__name__)


class BuildScheduler:
    """依赖感知的构建调度器，每次运行使用一个实例"""

    def __init__(
        self,
        executor: BuildExecutor,
        *,
        max_workers: int = 1,
        policy: FailurePolicy = FailurePolicy.STOP,
        cancel_grace: float | None = None,
        finalize: Finalizer | None = None,
        force: bool = False,
    ) -> None:
        self.executor = executor
        self.max_workers = max(1, max_workers)
        self.policy = policy
        self.cancel_grace = cancel_grace
        self.finalize = finalize
        self.force = force
        self._cancel = threading.Event()
        self._timer: threading.Timer | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self, grace: float | None = None) -> None:
        """停止调度；grace 秒后仍在运行的进程经工具链终止 (None 表示等待其自然结束)"""
        if self._cancel.is_set():
            return
        self._cancel.set()
        grace = self.cancel_grace if grace is None else grace
        logger.warning("构建已取消，不再启动新单元")
        if grace is not None:
            self._timer = threading.Timer(grace, self.executor.toolchain.terminate_all)
            self._timer.daemon = True
            self._timer.start()

    # ---- 单元执行 ----

    def _execute(self, step: PlanStep) -> BuildRecord:
        return self.executor.execute(
            step.unit, finalize=self.finalize, cancel_event=self._cancel, force=self.force,
        )

    @staticmethod
    def _crashed(step: PlanStep, error: BaseException) -> BuildRecord:
        record = BuildRecord(unit=step.name, version=step.unit.version)
        record.start()
        record.fail(f"执行异常: {error}", kind="toolchain")
        return record

    # ---- 调度 ----

    def run(self, plan: BuildPlan) -> RunSummary:
        """执行计划，返回按计划顺序排列的 RunSummary（工具链失败不抛出）"""
        records: dict[str, BuildRecord] = {}
        pending: list[PlanStep] = []
        for step in plan:
            if step.skip:
                rec = BuildRecord(unit=step.name, version=step.unit.version)
                rec.skip(SkipReason.BUILT)
                records[step.name] = rec
            else:
                pending.append(step)

        stopped = False
        running: dict[Future[BuildRecord], PlanStep] = {}
        logger.info(
            "开始调度: %d 个单元 (并行度=%d, 策略=%s)",
            len(pending), self.max_workers, self.policy.value,
        )

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while True:
                pending = self._settle(plan, pending, records, stopped)
                for step in list(pending):
                    if len(running) >= self.max_workers:
                        break
                    if self._ready(plan, step, records):
                        pending.remove(step)
                        records[step.name] = BuildRecord(unit=step.name, version=step.unit.version)
                        running[pool.submit(self._execute, step)] = step
                if not running:
                    break
                try:
                    done, _ = wait(running, return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    self.cancel()
                    continue
                for future in done:
                    step = running.pop(future)
                    try:
                        rec = future.result()
                    except Exception as e:
                        logger.exception("执行单元 '%s' 时出错", step.name)
                        rec = self._crashed(step, e)
                    records[step.name] = rec
                    if rec.status == BuildStatus.FAILED and self.policy == FailurePolicy.STOP:
                        if not stopped:
                            logger.error("单元 %s 失败，停止调度新单元", step.name)
                        stopped = True

        if self._timer is not None:
            self._timer.cancel()

        summary = RunSummary(
            records=[records[name] for name in plan.order],
            policy=self.policy,
            cancelled=self.cancelled,
        )
        logger.info(
            "调度完成: %d 成功, %d 失败, %d 跳过",
            len(summary.succeeded), len(summary.failed), len(summary.skipped),
        )
        return summary

    def _settle(
        self,
        plan: BuildPlan,
        pending: list[PlanStep],
        records: dict[str, BuildRecord],
        stopped: bool,
    ) -> list[PlanStep]:
        """把无法再执行的单元标记为 skipped，返回仍待执行的单元"""
        remaining = []
        for step in pending:
            rec = BuildRecord(unit=step.name, version=step.unit.version)
            if self.cancelled:
                rec.skip(SkipReason.CANCELLED)
            elif self._blocked(plan, step, records):
                rec.skip(SkipReason.BLOCKED)
                logger.warning("跳过 (依赖失败): %s", step.unit.key)
            elif stopped:
                rec.skip(SkipReason.STOPPED)
            else:
                remaining.append(step)
                continue
            records[step.name] = rec
        return remaining

    @staticmethod
    def _blocked(plan: BuildPlan, step: PlanStep, records: dict[str, BuildRecord]) -> bool:
        for dep in plan.depends_within(step.name):
            rec = records.get(dep)
            if rec is not None and rec.terminal and not rec.satisfied:
                return True
        return False

    @staticmethod
    def _ready(plan: BuildPlan, step: PlanStep, records: dict[str, BuildRecord]) -> bool:
        for dep in plan.depends_within(step.name):
            rec = records.get(dep)
            if rec is None or not rec.satisfied:
                return False
        return True
