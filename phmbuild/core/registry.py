"""构建单元注册表

职责:
- 保存静态构建单元目录及依赖边
- 回答 "X 依赖什么"、"X 是否存在"
- 从声明式 YAML 目录加载 (libraries / core / meta / extensions 四个配置段)

单元命名:
  静态依赖库   原名，如 openssl
  PHP 核心包   php-core:<subtype>，如 php-core:cli
  元包         meta:<key>，如 meta:php、meta:curl
  扩展         ext:<name>，如 ext:redis
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterator

from phmbuild.core.exceptions import (
    ConfigError,
    DuplicateUnitError,
    MissingDependencyError,
    UnknownUnitError,
)
from phmbuild.core.models import BuildUnit, CoreSubtype, ExtensionInfo, UnitKind
from phmbuild.core.naming import php_minor
from phmbuild.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

CORE_PREFIX = "php-core:"
META_PREFIX = "meta:"
EXT_PREFIX = "ext:"

DEFAULT_LICENSE_FILES = ("LICENSE", "LICENSE.txt", "LICENSE.md", "COPYING", "COPYING.txt")
DEFAULT_EXTENSION_PRIORITY = 20
DEFAULT_SCRIPTS_DIR = "scripts/build"


class UnitRegistry:
    """构建单元注册表 — 纯内存表，启动时构建一次"""

    def __init__(self) -> None:
        self._units: dict[str, BuildUnit] = {}
        self._order: dict[str, int] = {}

    # ---- 基本操作 ----

    def register(self, unit: BuildUnit) -> BuildUnit:
        if unit.name in self._units:
            raise DuplicateUnitError(unit.name)
        self._order[unit.name] = len(self._units)
        self._units[unit.name] = unit
        return unit

    def get(self, name: str) -> BuildUnit:
        unit = self._units.get(name)
        if unit is None:
            raise UnknownUnitError(name)
        return unit

    def all(self) -> list[BuildUnit]:
        """按注册顺序返回全部单元"""
        return list(self._units.values())

    def names(self) -> list[str]:
        return list(self._units)

    def index_of(self, name: str) -> int:
        """注册序号，拓扑排序的稳定平局规则"""
        if name not in self._order:
            raise UnknownUnitError(name)
        return self._order[name]

    def dependents(self, name: str) -> list[BuildUnit]:
        """直接依赖 name 的单元"""
        return [u for u in self._units.values() if name in u.depends_on]

    def by_kind(self, kind: UnitKind) -> list[BuildUnit]:
        return [u for u in self._units.values() if u.kind == kind]

    def extension_names(self) -> list[str]:
        """扩展短名（用于兼容文件名解析）"""
        return [u.extension.name for u in self._units.values() if u.extension is not None]

    def __contains__(self, name: object) -> bool:
        return name in self._units

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[BuildUnit]:
        return iter(self._units.values())

    def validate(self) -> None:
        """检查所有依赖边存在、整张图无环

        Raises:
            MissingDependencyError / CycleDetectedError
        """
        from phmbuild.core.resolver import find_cycle

        for unit in self._units.values():
            for dep in unit.depends_on:
                if dep not in self._units:
                    raise MissingDependencyError(unit.name, dep)
        edges = {u.name: u.depends_on for u in self._units.values()}
        cycle = find_cycle(edges, self._units)
        if cycle:
            from phmbuild.core.exceptions import CycleDetectedError
            raise CycleDetectedError(cycle)

    # ---- 目录加载 ----

    @classmethod
    def from_file(
        cls, path: str | Path, *, php_version: str, platform: str = "",
        scripts_dir: str | Path = DEFAULT_SCRIPTS_DIR,
    ) -> UnitRegistry:
        """从 YAML 目录文件加载

        {scripts_dir} 展开为 scripts_dir 的绝对路径，构建命令与工作目录无关。

        Raises:
            ConfigError: 文件不存在或条目无效
        """
        p = Path(path)
        if not p.exists():
            raise ConfigError(f"构建单元目录不存在: {p}")
        data = load_yaml(p)
        if not data:
            raise ConfigError(f"构建单元目录为空: {p}")
        registry = cls.from_dict(
            data, php_version=php_version, platform=platform, scripts_dir=scripts_dir,
        )
        logger.info("已加载 %d 个构建单元: %s (PHP %s)", len(registry), p, php_version)
        return registry

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], *, php_version: str, platform: str = "",
        scripts_dir: str | Path = DEFAULT_SCRIPTS_DIR,
    ) -> UnitRegistry:
        loader = _CatalogLoader(
            data, php_version=php_version, platform=platform, scripts_dir=scripts_dir,
        )
        registry = cls()
        for unit in loader.units():
            registry.register(unit)
        return registry


class _CatalogLoader:
    """把目录字典展开为 BuildUnit 列表

    字符串中的 {version} {php_version} {php_minor} {platform} {name} {scripts_dir}
    在加载时替换。
    """

    def __init__(
        self, data: dict[str, Any], *, php_version: str, platform: str,
        scripts_dir: str | Path = DEFAULT_SCRIPTS_DIR,
    ) -> None:
        self.data = data
        self.scripts_dir = str(Path(scripts_dir).resolve())
        self.php_version = php_version
        self.php_minor = php_minor(php_version)
        self.platform = platform
        self.defaults: dict[str, Any] = data.get("defaults") or {}

    def _expand(self, value: str, version: str, name: str) -> str:
        return (
            str(value)
            .replace("{version}", version)
            .replace("{php_version}", self.php_version)
            .replace("{php_minor}", self.php_minor)
            .replace("{platform}", self.platform)
            .replace("{name}", name)
            .replace("{scripts_dir}", self.scripts_dir)
        )

    def _expand_all(self, values: Any, version: str, name: str) -> tuple[str, ...]:
        if values is None:
            return ()
        if isinstance(values, str):
            values = [values]
        return tuple(self._expand(v, version, name) for v in values)

    @staticmethod
    def _section(data: dict[str, Any], key: str) -> dict[str, dict[str, Any]]:
        section = data.get(key) or {}
        if not isinstance(section, dict):
            raise ConfigError(f"配置段 '{key}' 必须是映射")
        for name, info in section.items():
            if info is not None and not isinstance(info, dict):
                raise ConfigError(f"配置段 '{key}' 中的 '{name}' 必须是映射")
        return section

    def units(self) -> Iterator[BuildUnit]:
        for name, info in self._section(self.data, "libraries").items():
            yield self._library(name, info or {})
        for key, info in self._section(self.data, "core").items():
            yield self._core(key, info or {})
        for key, info in self._section(self.data, "meta").items():
            yield self._meta(key, info or {})
        for entry in self.data.get("builtin_extensions") or []:
            if isinstance(entry, dict):
                for ext, desc in entry.items():
                    yield self._builtin_meta(str(ext), str(desc or ""))
            else:
                yield self._builtin_meta(str(entry))
        for key, info in self._section(self.data, "extensions").items():
            yield self._extension(key, info or {})

    def _common(self, name: str, version: str, info: dict[str, Any]) -> dict[str, Any]:
        env = {k: self._expand(v, version, name) for k, v in (info.get("env") or {}).items()}
        return {
            "depends_on": tuple(info.get("depends_on") or ()),
            "source_url": self._expand(info.get("source_url", ""), version, name),
            "build_cmd": self._expand(info.get("build_cmd", ""), version, name),
            "description": self._expand(info.get("description", ""), version, name),
            "package_depends": self._expand_all(info.get("package_depends"), version, name),
            "provides": self._expand_all(info.get("provides"), version, name),
            "conflicts": self._expand_all(info.get("conflicts"), version, name),
            "artifacts": self._expand_all(info.get("artifacts"), version, name),
            "env": env,
        }

    def _library(self, name: str, info: dict[str, Any]) -> BuildUnit:
        version = str(info.get("version", ""))
        if not version:
            raise ConfigError(f"依赖库 '{name}' 缺少 version")
        info = {"build_cmd": self.defaults.get("library_build_cmd", ""), **info}
        fields = self._common(name, version, info)
        return BuildUnit(
            name=name,
            kind=UnitKind.LIBRARY,
            version=version,
            license_files=tuple(info.get("license_files") or DEFAULT_LICENSE_FILES),
            publish=bool(info.get("publish", False)),
            package_name=self._expand(info.get("package_name", ""), version, name),
            staging=info.get("staging", name),
            **fields,
        )

    def _core(self, key: str, info: dict[str, Any]) -> BuildUnit:
        try:
            subtype = CoreSubtype(key)
        except ValueError as e:
            raise ConfigError(
                f"未知 PHP 核心子类型: {key}，可选: {', '.join(s.value for s in CoreSubtype)}"
            ) from e
        name = f"{CORE_PREFIX}{key}"
        version = self.php_version
        fields = self._common(name, version, info)
        return BuildUnit(
            name=name,
            kind=UnitKind.PHP_CORE,
            version=version,
            subtype=subtype,
            package_name=f"php{self.php_minor}-{key}",
            staging=info.get("staging", "php-core"),
            **fields,
        )

    def _meta(self, key: str, info: dict[str, Any]) -> BuildUnit:
        name = f"{META_PREFIX}{key}"
        version = self.php_version
        fields = self._common(name, version, info)
        package_name = self._expand(info.get("package_name", "") or f"php{{php_minor}}-{key}", version, name)
        return BuildUnit(
            name=name,
            kind=UnitKind.PHP_CORE,
            version=version,
            package_name=package_name,
            meta=True,
            **fields,
        )

    def _builtin_meta(self, ext: str, description: str = "") -> BuildUnit:
        """编译进核心的扩展，只发布一个依赖 common 的元包"""
        return BuildUnit(
            name=f"{META_PREFIX}{ext}",
            kind=UnitKind.PHP_CORE,
            version=self.php_version,
            depends_on=(f"{CORE_PREFIX}common",),
            description=f"PHP {self.php_minor} {description or ext + ' support'}",
            package_name=f"php{self.php_minor}-{ext}",
            package_depends=(f"php{self.php_minor}-common (>= {self.php_version})",),
            provides=(f"php-{ext}",),
            meta=True,
        )

    def _extension(self, key: str, info: dict[str, Any]) -> BuildUnit:
        version = self._expand(str(info.get("version", "")), "", key)
        if not version:
            raise ConfigError(f"扩展 '{key}' 缺少 version")
        name = f"{EXT_PREFIX}{key}"
        info = {"build_cmd": self.defaults.get("extension_build_cmd", ""), **info}
        fields = self._common(name, version, info)
        options = tuple(info.get("options") or ())
        fields["build_cmd"] = (
            fields["build_cmd"].replace("{ext}", key).replace("{options}", " ".join(options)).strip()
        )
        if not fields["description"]:
            fields["description"] = f"PHP {key} extension"
        return BuildUnit(
            name=name,
            kind=UnitKind.EXTENSION,
            version=version,
            package_name=f"php{self.php_minor}-{key}",
            staging=info.get("staging", f"ext-{key}"),
            extension=ExtensionInfo(
                name=key,
                zend=bool(info.get("zend_extension", False)),
                priority=int(info.get("priority", DEFAULT_EXTENSION_PRIORITY)),
            ),
            packagist=info.get("packagist", "") or "",
            pecl=info.get("pecl", "") or "",
            options=options,
            skip_for=tuple(str(v) for v in (info.get("skip_for") or ())),
            special_build=bool(info.get("special_build", False)),
            **fields,
        )
