"""构建执行器

职责:
- 已构建标记检查（命中则跳过，不启动进程）
- 组装工具链环境并在单元工作目录中执行构建命令
- 失败时截取日志尾部，保留工作目录
- 成功时依次: 打包回调 → 收集许可证 → 写标记 → 清理工作目录
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import threading
from collections import deque
from pathlib import Path
from typing import Callable

from phmbuild.core.config import Config
from phmbuild.core.exceptions import PHMBuildError
from phmbuild.core.markers import MarkerStore
from phmbuild.core.models import BuildRecord, BuildUnit, SkipReason, UnitKind
from phmbuild.utils.shell import ToolchainHook, get_toolchain

logger = logging.getLogger(__name__)

# 打包回调：构建成功后调用，返回包文件路径（无包返回空串）
Finalizer = Callable[[BuildUnit], str]

_SAFE_RE = re.compile(r"[^A-Za-z0-9_.\-]")


def _slug(name: str) -> str:
    return _SAFE_RE.sub("_", name.replace(":", "-"))


def tail(path: str | Path, lines: int) -> str:
    """日志最后 lines 行"""
    p = Path(path)
    if not p.is_file():
        return ""
    with open(p, encoding="utf-8", errors="replace") as f:
        return "".join(deque(f, maxlen=lines)).rstrip("\n")


class BuildExecutor:
    """单个构建单元的执行器"""

    def __init__(
        self,
        config: Config,
        markers: MarkerStore,
        toolchain: ToolchainHook | None = None,
    ) -> None:
        self.config = config
        self.markers = markers
        self.toolchain = toolchain or get_toolchain()

    # ---- 路径 ----

    def work_path(self, unit: BuildUnit) -> Path:
        return Path(self.config.work_dir) / f"{_slug(unit.name)}-{unit.version}"

    def log_path(self, unit: BuildUnit) -> Path:
        return Path(self.config.log_dir) / f"{_slug(unit.name)}.log"

    def staging_path(self, unit: BuildUnit) -> Path:
        return Path(self.config.staging_dir) / (unit.staging or _slug(unit.name))

    # ---- 环境 ----

    def build_env(self, unit: BuildUnit, extra: dict[str, str] | None = None) -> dict[str, str]:
        """os.environ + 配置 toolchain_env + 单元 env + 标准变量 + 调用方 extra"""
        env = dict(os.environ)
        env.update({k: str(v) for k, v in self.config.toolchain_env.items()})
        env.update(unit.env)
        env.update({
            "PHM_UNIT": unit.name,
            "PHM_VERSION": unit.version,
            "PHM_SOURCE_URL": unit.source_url,
            "PHM_PLATFORM": self.config.target_platform,
            "PHM_STAGING_DIR": str(self.staging_path(unit).resolve()),
            "PHM_DEPS_PREFIX": self.config.target_deps_prefix,
            "PHP_VERSION": self.config.php_version,
        })
        if extra:
            env.update(extra)
        return env

    # ---- 执行 ----

    def execute(
        self,
        unit: BuildUnit,
        env: dict[str, str] | None = None,
        *,
        finalize: Finalizer | None = None,
        cancel_event: threading.Event | None = None,
        force: bool = False,
    ) -> BuildRecord:
        """执行单个单元，返回终态 BuildRecord（不抛出工具链失败）

        force 时忽略已有构建标记（含旧 shell 标记）。
        """
        record = BuildRecord(unit=unit.name, version=unit.version)

        if not force and self.markers.is_built(unit.name, unit.version):
            logger.info("跳过 (已构建): %s", unit.key)
            record.skip(SkipReason.BUILT)
            return record

        work = self.work_path(unit)
        log = self.log_path(unit)
        record.work_dir = str(work)
        record.log_path = str(log)
        record.start()

        if unit.build_cmd:
            work.mkdir(parents=True, exist_ok=True)
            log.parent.mkdir(parents=True, exist_ok=True)
            log.unlink(missing_ok=True)
            logger.info("开始构建: %s", unit.key)
            result = self.toolchain.run(
                unit.build_cmd,
                cwd=str(work),
                env=self.build_env(unit, env),
                log_path=str(log),
                timeout=self.config.default_timeout or None,
            )
            if not result.success:
                cancelled = cancel_event is not None and cancel_event.is_set()
                kind = "cancelled" if cancelled else "toolchain"
                summary = tail(log, self.config.tail_lines) or result.stderr
                if result.timed_out:
                    summary = f"{summary}\n(超时 {self.config.default_timeout} 秒)".strip()
                record.fail(summary, kind=kind, returncode=result.returncode)
                logger.error(
                    "构建失败: %s (退出码 %d)，日志: %s，工作目录保留: %s",
                    unit.key, result.returncode, log, work,
                )
                return record

        package_file = ""
        if finalize is not None:
            try:
                package_file = finalize(unit)
            except PHMBuildError as e:
                record.fail(str(e), kind="packaging")
                logger.error("打包失败: %s: %s", unit.key, e)
                return record
            except Exception as e:
                record.fail(f"打包异常: {type(e).__name__}: {e}", kind="packaging")
                logger.exception("打包异常: %s", unit.key)
                return record

        if unit.kind == UnitKind.LIBRARY and unit.build_cmd:
            self.collect_license(unit)

        record.succeed(package_file)
        self.markers.mark_built(
            unit.name, unit.version,
            package_file=package_file, duration=record.duration,
        )
        logger.info("构建成功: %s (%.1fs)", unit.key, record.duration)

        if self.config.clean_on_success and work.exists():
            shutil.rmtree(work, ignore_errors=True)
        return record

    def collect_license(self, unit: BuildUnit) -> Path | None:
        """复制第一个存在的许可证文件到 <deps_prefix>/licenses/<name>.txt"""
        work = self.work_path(unit)
        candidates = [work]
        if work.is_dir():
            candidates += sorted(p for p in work.iterdir() if p.is_dir())
        for base in candidates:
            for fname in unit.license_files:
                src = base / fname
                if src.is_file():
                    dest = Path(self.config.target_deps_prefix) / "licenses" / f"{unit.name}.txt"
                    try:
                        dest.parent.mkdir(parents=True, exist_ok=True)
                        shutil.copyfile(src, dest)
                    except OSError as e:
                        logger.warning("许可证复制失败: %s: %s", unit.name, e)
                        return None
                    logger.debug("许可证已收集: %s -> %s", src, dest)
                    return dest
        logger.warning("未找到许可证文件: %s", unit.name)
        return None
