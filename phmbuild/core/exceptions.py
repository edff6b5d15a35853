"""统一异常体系

所有业务异常继承 PHMBuildError。
计划期错误 (PlanError 子类) 在启动任何外部进程之前抛出；
构建期错误记录在 BuildRecord 中，不会从调度器向外传播；
打包 / 索引错误可恢复，跳过出错的单元或包后继续。
"""

from __future__ import annotations


class PHMBuildError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(PHMBuildError):
    """配置文件或构建单元目录缺失 / 内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(PHMBuildError, ValueError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class FetchError(PHMBuildError):
    """远程接口请求失败"""

    code = "FETCH_ERROR"


# =========================================================================
# 计划期错误
# =========================================================================


class PlanError(PHMBuildError):
    """构建计划无效"""

    code = "PLAN_ERROR"


class DuplicateUnitError(PlanError):
    code = "DUPLICATE_UNIT"

    def __init__(self, name: str) -> None:
        super().__init__(f"构建单元重复注册: {name}")
        self.name = name


class UnknownUnitError(PlanError):
    code = "UNKNOWN_UNIT"

    def __init__(self, name: str) -> None:
        super().__init__(f"构建单元不存在: {name}")
        self.name = name


class MissingDependencyError(PlanError):
    code = "MISSING_DEPENDENCY"

    def __init__(self, unit: str, missing: str) -> None:
        super().__init__(f"构建单元 '{unit}' 依赖的 '{missing}' 未注册")
        self.unit = unit
        self.missing = missing


class CycleDetectedError(PlanError):
    code = "CYCLE_DETECTED"

    def __init__(self, path: list[str]) -> None:
        super().__init__(f"检测到循环依赖: {' -> '.join(path)}")
        self.path = list(path)


# =========================================================================
# 构建期 / 打包 / 索引错误
# =========================================================================


class ToolchainFailure(PHMBuildError):
    """外部工具链返回非零退出码"""

    code = "TOOLCHAIN_FAILURE"

    def __init__(self, message: str, units: list[str] | None = None) -> None:
        super().__init__(message)
        self.units = units or []


class PackagingError(PHMBuildError):
    """打包失败"""

    code = "PACKAGING_ERROR"


class InvalidStagingPathError(PackagingError):
    code = "INVALID_STAGING_PATH"

    def __init__(self, path: str, root: str) -> None:
        super().__init__(f"文件不在暂存根目录内: {path} (root={root})")
        self.path = path
        self.root = root


class MalformedManifestError(PHMBuildError):
    code = "MALFORMED_MANIFEST"

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"包清单无效: {path}: {reason}")
        self.path = path
        self.reason = reason
