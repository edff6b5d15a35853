"""包构建器 — 暂存文件 → Package → tar.zst 归档 + .sha256 旁路文件

职责:
- 规范化暂存路径 (POSIX 相对路径，越界报 InvalidStagingPathError)
- 计算 installed_size (文件大小之和，非磁盘块占用)
- 补全扩展包默认依赖 php<minor>-common (>= <php_version>) 与 provides php-<ext>
- 写出归档与校验文件 (原子替换)
- 布置扩展暂存目录 (.so + conf.d ini)
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

from phmbuild.core.exceptions import InvalidStagingPathError, PackagingError
from phmbuild.core.manifest import render_manifest
from phmbuild.core.models import BuildUnit, Dependency, ExtensionInfo, Package, UnitKind
from phmbuild.core.naming import (
    download_url,
    format_filename,
    php_minor,
    php_minor_from_name,
    sidecar_name,
)
from phmbuild.services.package.archive import DEFAULT_LEVEL, build_archive, sha256_bytes
from phmbuild.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

# PHP 扩展 API 版本 → 扩展目录名 no-debug-non-zts-<api>
PHP_API_VERSIONS = {
    "8.1": "20210902",
    "8.2": "20220829",
    "8.3": "20230831",
    "8.4": "20240924",
    "8.5": "20250925",
}


@dataclass
class StagedArtifacts:
    """构建完成后暂存的文件"""

    root: Path
    paths: list[Path] = field(default_factory=list)


@dataclass
class PackageOptions:
    """打包选项，未设置的字段取自构建单元"""

    description: str | None = None
    depends: Sequence[str | Dependency] | None = None
    provides: Sequence[str] | None = None
    conflicts: Sequence[str] | None = None
    revision: int = 1
    php_version: str = ""      # 完整 PHP 版本，扩展包 common 依赖的下限


def _relative(path: Path, root: Path) -> str:
    """path 相对 root 的 POSIX 路径，越界抛 InvalidStagingPathError"""
    candidate = Path(os.path.abspath(path if path.is_absolute() else root / path))
    root_abs = Path(os.path.abspath(root))
    try:
        return candidate.relative_to(root_abs).as_posix()
    except ValueError:
        pass
    try:
        return candidate.resolve().relative_to(root_abs.resolve()).as_posix()
    except ValueError:
        raise InvalidStagingPathError(str(path), str(root)) from None


def collect_files(root: Path, paths: Iterable[Path]) -> list[str]:
    """展开目录，返回排序去重后的相对路径列表"""
    result: set[str] = set()
    for p in paths:
        p = Path(p)
        rel = _relative(p, root)
        full = root / rel if rel != "." else root
        if rel in ("", "."):
            rel = ""
        if not os.path.lexists(full):
            raise PackagingError(f"暂存文件不存在: {full}")
        if full.is_dir() and not full.is_symlink():
            for dirpath, dirnames, filenames in os.walk(full):
                dirnames.sort()
                base = Path(dirpath)
                for name in sorted(filenames):
                    result.add(_relative(base / name, root))
                for name in dirnames:
                    if (base / name).is_symlink():
                        result.add(_relative(base / name, root))
        else:
            result.add(rel)
    return sorted(result)


def installed_size(root: Path, files: Iterable[str]) -> int:
    """普通文件大小之和，符号链接计 0"""
    total = 0
    for rel in files:
        st = (root / rel).lstat()
        if not os.path.islink(root / rel):
            total += st.st_size
    return total


class PackageBuilder:
    """包构建器"""

    def __init__(
        self,
        dist_dir: str | Path,
        platform: str,
        *,
        compression_level: int = DEFAULT_LEVEL,
        base_url: str = "",
        release_tag: str = "",
    ) -> None:
        self.dist_dir = Path(dist_dir)
        self.platform = platform
        self.compression_level = compression_level
        self.base_url = base_url.rstrip("/")
        self.release_tag = release_tag

    # ---- Package 模型 ----

    def build_package(
        self,
        unit: BuildUnit,
        staged: StagedArtifacts,
        options: PackageOptions | None = None,
    ) -> Package:
        """从构建单元与暂存文件构造 Package（不写盘）

        Raises:
            InvalidStagingPathError: 暂存文件不在 staged.root 内
            PackagingError: 非元包没有任何文件
        """
        opts = options or PackageOptions()
        name = unit.pkg_name

        if unit.meta:
            files: list[str] = []
            size = 0
        else:
            files = collect_files(staged.root, staged.paths)
            if not files:
                raise PackagingError(f"非元包没有任何文件: {name}")
            size = installed_size(staged.root, files)

        php_version = php_minor_from_name(name)
        if not php_version and opts.php_version:
            php_version = php_minor(opts.php_version)
        depends = [
            d if isinstance(d, Dependency) else Dependency.parse(d)
            for d in (opts.depends if opts.depends is not None else unit.package_depends)
        ]
        provides = list(opts.provides if opts.provides is not None else unit.provides)
        if unit.kind == UnitKind.EXTENSION and unit.extension is not None:
            depends, provides = self._extension_defaults(
                unit, name, opts.php_version, depends, provides,
            )

        return Package(
            name=name,
            version=unit.version,
            platform=self.platform,
            revision=opts.revision,
            description=opts.description if opts.description is not None else unit.description,
            php_version=php_version,
            depends=tuple(depends),
            conflicts=tuple(opts.conflicts if opts.conflicts is not None else unit.conflicts),
            provides=tuple(provides),
            installed_size=size,
            files=tuple(files),
            meta=unit.meta,
            extension=unit.extension,
        )

    @staticmethod
    def _extension_defaults(
        unit: BuildUnit, name: str, base_version: str,
        depends: list[Dependency], provides: list[str],
    ) -> tuple[list[Dependency], list[str]]:
        mm = php_minor_from_name(name)
        if mm:
            common = f"php{mm}-common"
            if not any(d.name == common for d in depends):
                depends = [Dependency(common, ">=", base_version or mm), *depends]
        capability = f"php-{unit.extension.name}"  # type: ignore[union-attr]
        if capability not in provides:
            provides = [capability, *provides]
        return depends, provides

    # ---- 写盘 ----

    def filename_for(self, pkg: Package) -> str:
        return format_filename(pkg.name, pkg.version, pkg.platform, pkg.revision)

    def url_for(self, filename: str) -> str:
        return download_url(self.base_url, self.release_tag, filename)

    def write(self, pkg: Package, staging_root: Path) -> Package:
        """写出归档与 .sha256 旁路文件，返回带摘要的 Package"""
        filename = self.filename_for(pkg)
        data = build_archive(
            render_manifest(pkg), staging_root, pkg.files,
            level=self.compression_level,
        )
        digest = sha256_bytes(data)
        archive = self.dist_dir / filename
        atomic_write(archive, data)
        atomic_write(self.dist_dir / sidecar_name(filename), f"{digest}\n")
        logger.info("已打包: %s (%d 字节, sha256=%s)", filename, len(data), digest[:12])
        return pkg.with_archive(
            sha256=digest, archive_size=len(data),
            filename=filename, url=self.url_for(filename),
        )

    def package(
        self,
        unit: BuildUnit,
        staged: StagedArtifacts,
        options: PackageOptions | None = None,
    ) -> Package:
        """build_package + write"""
        return self.write(self.build_package(unit, staged, options), staged.root)


# =========================================================================
# 扩展暂存布局
# =========================================================================


def extension_dir_name(php_version: str) -> str:
    mm = php_minor(php_version)
    api = PHP_API_VERSIONS.get(mm)
    if api is None:
        raise PackagingError(f"未知 PHP 扩展 API 版本: {mm}")
    return f"no-debug-non-zts-{api}"


def stage_extension(
    so_file: Path,
    dest_root: Path,
    extension: ExtensionInfo,
    php_version: str,
    *,
    ext_dir_name: str = "",
) -> list[Path]:
    """布置扩展包暂存目录，返回暂存文件列表

    opt/php/<mm>/lib/php/extensions/<ext_dir>/<ext>.so
    opt/php/<mm>/etc/conf.d/<priority>-<ext>.ini
    """
    if not so_file.is_file():
        raise PackagingError(f"扩展文件不存在: {so_file}")
    mm = php_minor(php_version)
    ext_dir_name = ext_dir_name or extension_dir_name(php_version)
    prefix = dest_root / "opt" / "php" / mm

    so_dest = prefix / "lib" / "php" / "extensions" / ext_dir_name / f"{extension.name}.so"
    so_dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(so_file, so_dest)
    os.chmod(so_dest, 0o755)

    ini = prefix / "etc" / "conf.d" / f"{extension.priority}-{extension.name}.ini"
    ini.parent.mkdir(parents=True, exist_ok=True)
    directive = "zend_extension" if extension.zend else "extension"
    ini.write_text(f"{directive}={extension.name}.so\n", encoding="utf-8")
    return [so_dest, ini]
