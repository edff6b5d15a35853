"""核心数据模型

BuildUnit    静态目录中的构建单元（启动时加载，之后不可变）
BuildRecord  一次构建尝试的结果，状态迁移受约束
Package      一个构建单元对应的可发布产物
IndexEntry   去重后写入索引的包视图
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from phmbuild.core.exceptions import ValidationError

# =========================================================================
# 枚举
# =========================================================================


class UnitKind(str, Enum):
    """构建单元类型"""
    LIBRARY = "library"
    PHP_CORE = "php-core"
    EXTENSION = "extension"


class CoreSubtype(str, Enum):
    """PHP 核心包子类型"""
    CLI = "cli"
    FPM = "fpm"
    CGI = "cgi"
    COMMON = "common"
    DEV = "dev"
    PEAR = "pear"


class BuildStatus(str, Enum):
    """构建状态"""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    """跳过原因"""
    BUILT = "built"            # 已有匹配的构建标记
    BLOCKED = "blocked"        # 上游依赖失败
    STOPPED = "stopped"        # stop-on-first-failure 策略下停止调度
    CANCELLED = "cancelled"    # 运行被取消


class FailurePolicy(str, Enum):
    """失败策略"""
    STOP = "stop-on-first-failure"
    CONTINUE = "continue-and-collect"


_TRANSITIONS: dict[BuildStatus, frozenset[BuildStatus]] = {
    BuildStatus.PENDING: frozenset({BuildStatus.RUNNING, BuildStatus.SKIPPED}),
    BuildStatus.RUNNING: frozenset({BuildStatus.SUCCESS, BuildStatus.FAILED}),
}


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat(timespec="seconds")


# =========================================================================
# 构建单元
# =========================================================================


@dataclass(frozen=True)
class ExtensionInfo:
    """扩展加载信息，写入扩展包清单的 extension 字段"""

    name: str
    zend: bool = False
    priority: int = 20

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "zend": self.zend, "priority": self.priority}


@dataclass(frozen=True)
class BuildUnit:
    """单个构建单元定义"""

    name: str
    kind: UnitKind
    version: str
    depends_on: tuple[str, ...] = ()
    source_url: str = ""
    build_cmd: str = ""
    subtype: CoreSubtype | None = None
    description: str = ""
    license_files: tuple[str, ...] = ()
    # 打包元数据
    publish: bool = True
    package_name: str = ""
    package_depends: tuple[str, ...] = ()
    provides: tuple[str, ...] = ()
    conflicts: tuple[str, ...] = ()
    artifacts: tuple[str, ...] = ()
    staging: str = ""
    meta: bool = False
    extension: ExtensionInfo | None = None
    # 扩展来源 / 筛选
    packagist: str = ""
    pecl: str = ""
    options: tuple[str, ...] = ()
    skip_for: tuple[str, ...] = ()
    special_build: bool = False
    env: dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> str:
        return f"{self.name}@{self.version}"

    @property
    def pkg_name(self) -> str:
        return self.package_name or self.name

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "kind": self.kind.value,
            "version": self.version,
            "depends_on": list(self.depends_on),
            "source_url": self.source_url,
            "build_cmd": self.build_cmd,
            "description": self.description,
            "publish": self.publish,
            "package_name": self.pkg_name,
            "meta": self.meta,
        }
        if self.subtype is not None:
            data["subtype"] = self.subtype.value
        if self.extension is not None:
            data["extension"] = self.extension.to_dict()
        if self.package_depends:
            data["package_depends"] = list(self.package_depends)
        if self.provides:
            data["provides"] = list(self.provides)
        if self.skip_for:
            data["skip_for"] = list(self.skip_for)
        if self.special_build:
            data["special_build"] = True
        return data


# =========================================================================
# 构建记录
# =========================================================================


@dataclass
class BuildRecord:
    """单元构建结果

    状态迁移: pending → running → success|failed；pending → skipped。
    """

    unit: str
    version: str
    status: BuildStatus = BuildStatus.PENDING
    started_at: str = ""
    finished_at: str = ""
    duration: float = 0.0
    error_summary: str = ""
    log_path: str = ""
    work_dir: str = ""
    skip_reason: str = ""
    error_kind: str = ""       # toolchain | packaging | cancelled
    returncode: int | None = None
    package_file: str = ""
    _clock: float = field(default=0.0, repr=False, compare=False)

    def _move(self, status: BuildStatus) -> None:
        allowed = _TRANSITIONS.get(self.status, frozenset())
        if status not in allowed:
            raise ValidationError(
                f"非法状态迁移: {self.unit} {self.status.value} -> {status.value}"
            )
        self.status = status

    def start(self) -> None:
        self._move(BuildStatus.RUNNING)
        self.started_at = _now()
        self._clock = time.monotonic()

    def _finish(self) -> None:
        self.finished_at = _now()
        self.duration = round(time.monotonic() - self._clock, 3)

    def succeed(self, package_file: str = "") -> None:
        self._move(BuildStatus.SUCCESS)
        self.package_file = package_file
        self._finish()

    def fail(self, summary: str, *, kind: str = "toolchain", returncode: int | None = None) -> None:
        self._move(BuildStatus.FAILED)
        self.error_summary = summary
        self.error_kind = kind
        self.returncode = returncode
        self._finish()

    def skip(self, reason: SkipReason) -> None:
        self._move(BuildStatus.SKIPPED)
        self.skip_reason = reason.value
        self.finished_at = _now()

    @property
    def terminal(self) -> bool:
        return self.status in (BuildStatus.SUCCESS, BuildStatus.FAILED, BuildStatus.SKIPPED)

    @property
    def satisfied(self) -> bool:
        """下游可以继续：构建成功或因已构建而跳过"""
        return self.status == BuildStatus.SUCCESS or (
            self.status == BuildStatus.SKIPPED and self.skip_reason == SkipReason.BUILT.value
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit": self.unit,
            "version": self.version,
            "status": self.status.value,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration": self.duration,
            "error_summary": self.error_summary,
            "log_path": self.log_path,
            "work_dir": self.work_dir,
            "skip_reason": self.skip_reason,
            "error_kind": self.error_kind,
            "returncode": self.returncode,
            "package_file": self.package_file,
        }


@dataclass
class RunSummary:
    """一次运行的汇总（按计划顺序）"""

    records: list[BuildRecord] = field(default_factory=list)
    policy: FailurePolicy = FailurePolicy.STOP
    cancelled: bool = False

    def _names(self, status: BuildStatus) -> list[str]:
        return [r.unit for r in self.records if r.status == status]

    @property
    def succeeded(self) -> list[str]:
        return self._names(BuildStatus.SUCCESS)

    @property
    def failed(self) -> list[str]:
        return self._names(BuildStatus.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self._names(BuildStatus.SKIPPED)

    @property
    def success(self) -> bool:
        return not self.failed and not self.cancelled

    def record(self, name: str) -> BuildRecord | None:
        for r in self.records:
            if r.unit == name:
                return r
        return None

    def exit_code(self, strict: bool = False) -> int:
        """失败时返回非零：stop 策略总是，continue 策略仅 strict 时；取消总是非零"""
        if self.cancelled:
            return 130
        if self.failed and (self.policy == FailurePolicy.STOP or strict):
            return 1
        return 0

    def raise_for_status(self, strict: bool = False) -> None:
        """exit_code 非零时抛出 ToolchainFailure"""
        from phmbuild.core.exceptions import ToolchainFailure
        if self.exit_code(strict) == 0:
            return
        if self.cancelled and not self.failed:
            raise ToolchainFailure("构建已取消")
        raise ToolchainFailure(
            f"{len(self.failed)} 个单元构建失败: {', '.join(self.failed)}",
            units=self.failed,
        )

    def counts(self) -> dict[str, int]:
        return {
            "total": len(self.records),
            "success": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy": self.policy.value,
            "cancelled": self.cancelled,
            "summary": self.counts(),
            "records": [r.to_dict() for r in self.records],
        }


# =========================================================================
# 包
# =========================================================================

_DEP_RE = re.compile(
    r"^\s*(?P<name>[A-Za-z0-9][A-Za-z0-9_.+\-]*)\s*"
    r"(?:\(\s*(?P<op>>=|<=|>>|<<|=|>|<)\s*(?P<version>[^)\s]+)\s*\))?\s*$"
)


@dataclass(frozen=True)
class Dependency:
    """包依赖: name 或 name (>= version)"""

    name: str
    op: str = ""
    version: str = ""

    @classmethod
    def parse(cls, text: str) -> Dependency:
        m = _DEP_RE.match(text or "")
        if not m:
            raise ValidationError(f"依赖格式无效: {text!r}")
        return cls(name=m.group("name"), op=m.group("op") or "", version=m.group("version") or "")

    def satisfied_by(self, version: str) -> bool:
        if not self.op:
            return True
        from phmbuild.core.version import compare_versions
        c = compare_versions(version, self.version)
        return {
            ">=": c >= 0, "<=": c <= 0, "=": c == 0,
            ">": c > 0, ">>": c > 0, "<": c < 0, "<<": c < 0,
        }[self.op]

    def __str__(self) -> str:
        if self.op:
            return f"{self.name} ({self.op} {self.version})"
        return self.name


@dataclass(frozen=True)
class Package:
    """一个构建单元的可发布产物

    (name, version, platform) 唯一；meta 包 files 为空、installed_size 为 0；
    sha256 针对最终压缩归档计算，写出归档后才有值。
    """

    name: str
    version: str
    platform: str
    revision: int = 1
    description: str = ""
    php_version: str = ""
    depends: tuple[Dependency, ...] = ()
    conflicts: tuple[str, ...] = ()
    provides: tuple[str, ...] = ()
    installed_size: int = 0
    files: tuple[str, ...] = ()
    meta: bool = False
    extension: ExtensionInfo | None = None
    maintainer: str = "PHM Team"
    # 归档信息
    sha256: str = ""
    archive_size: int = 0
    filename: str = ""
    url: str = ""

    @property
    def key(self) -> tuple[str, str, str]:
        return self.name, self.version, self.platform

    def with_archive(self, *, sha256: str, archive_size: int, filename: str, url: str = "") -> Package:
        return replace(self, sha256=sha256, archive_size=archive_size, filename=filename, url=url)


@dataclass(frozen=True)
class IndexEntry:
    """索引中的一条包记录"""

    platform: str
    name: str
    version: str
    revision: int = 1
    description: str = ""
    depends: tuple[str, ...] = ()
    provides: tuple[str, ...] = ()
    url: str = ""
    sha256: str = ""
    size: int = 0
    installed_size: int = 0

    @classmethod
    def from_package(cls, pkg: Package) -> IndexEntry:
        return cls(
            platform=pkg.platform,
            name=pkg.name,
            version=pkg.version,
            revision=pkg.revision,
            description=pkg.description,
            depends=tuple(str(d) for d in pkg.depends),
            provides=tuple(pkg.provides),
            url=pkg.url,
            sha256=pkg.sha256,
            size=pkg.archive_size,
            installed_size=pkg.installed_size,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "revision": self.revision,
            "description": self.description,
            "depends": sorted(self.depends),
            "provides": sorted(self.provides),
            "url": self.url,
            "sha256": self.sha256,
            "size": self.size,
            "installed_size": self.installed_size,
        }
