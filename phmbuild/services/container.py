"""服务容器 — CLI 与 Web 共用的懒加载依赖注入

依赖关系:
  pipeline → registry, markers, executor, artifacts, builder, reports
  executor → markers, toolchain
  updates  → registry
  inventory → registry (已知扩展名，用于兼容文件名解析)

用法:
    container = ServiceContainer(Config.from_file("configs/default.yml"))
    summary = container.pipeline.run(["@core"])

    from phmbuild.services.container import get_container
    get_container().aggregator
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from phmbuild.core.config import Config
    from phmbuild.core.markers import MarkerStore
    from phmbuild.core.registry import UnitRegistry
    from phmbuild.services.build.artifacts import StagingDirSource
    from phmbuild.services.build.executor import BuildExecutor
    from phmbuild.services.index.aggregator import IndexAggregator
    from phmbuild.services.package.builder import PackageBuilder
    from phmbuild.services.package.inventory import PackageInventory
    from phmbuild.services.pipeline import BuildPipeline
    from phmbuild.services.report import BuildReportStore
    from phmbuild.services.updates import UpdateChecker
    from phmbuild.utils.shell import ToolchainHook

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器，同一容器内的实例共享"""

    def __init__(self, config: Config | None = None) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from phmbuild.core.config import get_config
            config = get_config()
        self._config = config

    @property
    def config(self) -> Config:
        return self._config

    # ---- 核心 ----

    @property
    def registry(self) -> UnitRegistry:
        if "registry" not in self._instances:
            from phmbuild.core.registry import UnitRegistry
            registry = UnitRegistry.from_file(
                self._config.catalog_file,
                php_version=self._config.php_version,
                platform=self._config.target_platform,
                scripts_dir=self._config.scripts_dir,
            )
            registry.validate()
            self._instances["registry"] = registry
        return self._instances["registry"]  # type: ignore[return-value]

    @property
    def markers(self) -> MarkerStore:
        if "markers" not in self._instances:
            from phmbuild.core.markers import MarkerStore
            self._instances["markers"] = MarkerStore(
                self._config.state_dir,
                legacy_dir=self._config.extra.get("legacy_marker_dir")
                or self._config.target_deps_prefix,
            )
        return self._instances["markers"]  # type: ignore[return-value]

    @property
    def toolchain(self) -> ToolchainHook:
        if "toolchain" not in self._instances:
            from phmbuild.utils.shell import get_toolchain
            self._instances["toolchain"] = get_toolchain()
        return self._instances["toolchain"]  # type: ignore[return-value]

    # ---- 构建 ----

    @property
    def executor(self) -> BuildExecutor:
        if "executor" not in self._instances:
            from phmbuild.services.build.executor import BuildExecutor
            self._instances["executor"] = BuildExecutor(
                self._config, self.markers, toolchain=self.toolchain,
            )
        return self._instances["executor"]  # type: ignore[return-value]

    @property
    def artifacts(self) -> StagingDirSource:
        if "artifacts" not in self._instances:
            from phmbuild.services.build.artifacts import StagingDirSource
            self._instances["artifacts"] = StagingDirSource(
                self._config.staging_dir, self._config.php_version,
            )
        return self._instances["artifacts"]  # type: ignore[return-value]

    @property
    def builder(self) -> PackageBuilder:
        if "builder" not in self._instances:
            from phmbuild.services.package.builder import PackageBuilder
            self._instances["builder"] = PackageBuilder(
                self._config.dist_dir,
                self._config.target_platform,
                compression_level=self._config.compression_level,
                base_url=self._config.base_url,
                release_tag=self._config.release_tag,
            )
        return self._instances["builder"]  # type: ignore[return-value]

    @property
    def reports(self) -> BuildReportStore:
        if "reports" not in self._instances:
            from phmbuild.services.report import BuildReportStore
            self._instances["reports"] = BuildReportStore(self._config.report_file)
        return self._instances["reports"]  # type: ignore[return-value]

    @property
    def pipeline(self) -> BuildPipeline:
        if "pipeline" not in self._instances:
            from phmbuild.services.pipeline import BuildPipeline
            self._instances["pipeline"] = BuildPipeline(
                self._config,
                self.registry,
                self.markers,
                self.executor,
                self.artifacts,
                self.builder,
                reports=self.reports,
            )
        return self._instances["pipeline"]  # type: ignore[return-value]

    # ---- 发布 ----

    @property
    def aggregator(self) -> IndexAggregator:
        from phmbuild.services.index.aggregator import IndexAggregator
        # skipped 列表按次累积，每次取新实例
        return IndexAggregator()

    @property
    def inventory(self) -> PackageInventory:
        if "inventory" not in self._instances:
            from phmbuild.services.package.inventory import PackageInventory
            self._instances["inventory"] = PackageInventory(
                self._config.dist_dir, self.registry.extension_names(),
            )
        return self._instances["inventory"]  # type: ignore[return-value]

    @property
    def updates(self) -> UpdateChecker:
        if "updates" not in self._instances:
            from phmbuild.core.models import UnitKind
            from phmbuild.services.updates import UpdateChecker
            self._instances["updates"] = UpdateChecker(
                self._config.versions_file, self.registry.by_kind(UnitKind.EXTENSION),
            )
        return self._instances["updates"]  # type: ignore[return-value]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
