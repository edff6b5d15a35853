"""集中配置管理

替代原先通过导出环境变量 (DEPS_PREFIX、DIST_DIR、CFLAGS ...) 隐式传递的全局状态。
Config 显式传给执行器，再由执行器原样转交外部工具链。
支持从 YAML 文件加载 + 编程式覆盖。
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field

from phmbuild.core.exceptions import ConfigError
from phmbuild.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "configs/default.yml"
CONFIG_ENV = "PHMBUILD_CONFIG"

FAILURE_POLICIES = ("stop-on-first-failure", "continue-and-collect")


@dataclass
class Config:
    """流水线全局配置"""

    # 目录
    catalog_file: str = "configs/units.yml"
    scripts_dir: str = "scripts/build"   # 构建命令中的 {scripts_dir}
    dist_dir: str = "dist"
    staging_dir: str = "build/staging"
    work_dir: str = "build/work"
    log_dir: str = "build/logs"
    state_dir: str = "build/state"
    report_file: str = "build/report.json"
    versions_file: str = "versions.json"
    index_file: str = "dist/index.json"
    deps_prefix: str = ""          # 空则为 /opt/phm-deps/<platform>

    # 目标
    platform: str = ""             # 空则自动检测
    php_version: str = "8.4.0"
    revision: int = 1

    # 执行
    max_workers: int = 4
    failure_policy: str = "stop-on-first-failure"
    tail_lines: int = 50
    default_timeout: int = 7200
    cancel_grace: float = 30.0
    clean_on_success: bool = True
    toolchain_env: dict = field(default_factory=dict)

    # 打包 / 发布
    compression_level: int = 3
    base_url: str = "https://github.com/USER/php-packages/releases/download"
    release_tag: str = "latest"
    release_repo: str = ""
    github_api_url: str = "https://api.github.com"
    github_token_env: str = "GITHUB_TOKEN"

    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.failure_policy not in FAILURE_POLICIES:
            raise ConfigError(
                f"未知失败策略: {self.failure_policy}，可选: {', '.join(FAILURE_POLICIES)}"
            )
        if self.max_workers < 1:
            raise ConfigError(f"max_workers 必须 >= 1: {self.max_workers}")

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_FILE) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(path)
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件 {path} 内容无效: {e}") from e
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)

    @property
    def target_platform(self) -> str:
        """显式配置的平台，或当前机器的 <os>-<arch>"""
        if self.platform:
            return self.platform
        from phmbuild.core.naming import detect_platform
        return detect_platform()

    @property
    def target_deps_prefix(self) -> str:
        return self.deps_prefix or f"/opt/phm-deps/{self.target_platform}"

    @property
    def github_token(self) -> str:
        return os.environ.get(self.github_token_env, "")


# 全局单例，首次 import 时不加载文件；由 CLI / Web 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = "") -> Config:
    """从文件初始化全局配置，未指定路径时读取 PHMBUILD_CONFIG"""
    global _current  # noqa: PLW0603
    path = path or os.environ.get(CONFIG_ENV, DEFAULT_CONFIG_FILE)
    _current = Config.from_file(path)
    logger.debug("配置已加载: %s", path)
    return _current
