"""构建流水线 — 注册表 → 计划 → 调度执行 → 打包 → 构建报告

目标写法:
  单元名        openssl / php-core:cli / ext:redis
  分组别名      @libraries / @core / @extensions / @all
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from phmbuild.core.config import Config
from phmbuild.core.markers import MarkerStore
from phmbuild.core.models import BuildUnit, FailurePolicy, RunSummary, UnitKind
from phmbuild.core.naming import php_minor
from phmbuild.core.registry import UnitRegistry
from phmbuild.core.resolver import BuildPlan, closure, resolve
from phmbuild.services.build.artifacts import ArtifactSource
from phmbuild.services.build.executor import BuildExecutor
from phmbuild.services.build.scheduler import BuildScheduler
from phmbuild.services.package.builder import PackageBuilder, PackageOptions
from phmbuild.services.report import BuildReportStore

logger = logging.getLogger(__name__)

GROUPS = ("@libraries", "@core", "@extensions", "@all")


class BuildPipeline:
    """一次完整构建的编排"""

    def __init__(
        self,
        config: Config,
        registry: UnitRegistry,
        markers: MarkerStore,
        executor: BuildExecutor,
        artifacts: ArtifactSource,
        builder: PackageBuilder,
        reports: BuildReportStore | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.markers = markers
        self.executor = executor
        self.artifacts = artifacts
        self.builder = builder
        self.reports = reports
        self._scheduler: BuildScheduler | None = None

    # ---- 目标 ----

    def extension_targets(self) -> list[str]:
        """扩展批量构建的目标：排除特殊构建与当前 PHP 版本不适用的扩展"""
        minor = php_minor(self.config.php_version)
        result = []
        for unit in self.registry.by_kind(UnitKind.EXTENSION):
            if unit.special_build:
                logger.info("跳过特殊构建扩展: %s", unit.name)
                continue
            if minor in unit.skip_for:
                logger.info("跳过 (PHP %s 不适用): %s", minor, unit.name)
                continue
            result.append(unit.name)
        return result

    def core_targets(self) -> list[str]:
        return [u.name for u in self.registry.by_kind(UnitKind.PHP_CORE)]

    def expand_targets(self, targets: Iterable[str]) -> list[str]:
        """展开分组别名，保持顺序去重"""
        result: list[str] = []
        for t in targets:
            if t == "@libraries":
                result += [u.name for u in self.registry.by_kind(UnitKind.LIBRARY)]
            elif t == "@core":
                result += self.core_targets()
            elif t == "@extensions":
                result += self.extension_targets()
            elif t == "@all":
                result += [u.name for u in self.registry.by_kind(UnitKind.LIBRARY)]
                result += self.core_targets() + self.extension_targets()
            else:
                result.append(t)
        return list(dict.fromkeys(result))

    # ---- 计划 ----

    def plan(self, targets: Iterable[str], *, force: bool = False) -> BuildPlan:
        """解析构建计划；force 时忽略已有构建标记

        Raises:
            UnknownUnitError / MissingDependencyError / CycleDetectedError
        """
        names = self.expand_targets(targets)
        built: set[str] = set()
        if not force:
            units = [self.registry.get(n) for n in closure(self.registry, names)]
            built = self.markers.built_names(units)
        return resolve(self.registry, names, already_built=built)

    # ---- 打包回调 ----

    def package_unit(self, unit: BuildUnit) -> str:
        """收集暂存文件并打包，返回归档路径；不发布的单元返回空串"""
        if not unit.publish:
            return ""
        staged = self.artifacts.collect(unit)
        options = PackageOptions(revision=self.config.revision, php_version=self.config.php_version)
        pkg = self.builder.package(unit, staged, options)
        return str(Path(self.builder.dist_dir) / pkg.filename)

    # ---- 执行 ----

    def run(
        self,
        targets: Iterable[str],
        *,
        policy: FailurePolicy | None = None,
        max_workers: int | None = None,
        force: bool = False,
        package: bool = True,
    ) -> RunSummary:
        """计划并执行；计划期错误在启动任何进程前抛出，构建失败记录在 RunSummary 中"""
        plan = self.plan(targets, force=force)
        if force:
            for name in plan.order:
                self.markers.clear(name)

        self._scheduler = BuildScheduler(
            self.executor,
            max_workers=max_workers or self.config.max_workers,
            policy=policy or FailurePolicy(self.config.failure_policy),
            cancel_grace=self.config.cancel_grace,
            finalize=self.package_unit if package else None,
            force=force,
        )
        try:
            summary = self._scheduler.run(plan)
        finally:
            self._scheduler = None

        if self.reports is not None:
            self.reports.record_run(
                list(plan.targets), summary,
                platform=self.config.target_platform,
                php_version=self.config.php_version,
            )
        return summary

    def cancel(self, grace: float | None = None) -> bool:
        """取消当前运行，无运行中的调度返回 False"""
        scheduler = self._scheduler
        if scheduler is None:
            return False
        scheduler.cancel(grace)
        return True
