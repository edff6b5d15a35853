"""归档文件命名与平台识别

规范文件名 (唯一写出格式，可无损解析):
    {name}_{version}-{revision}_{platform}.tar.zst
    例: php8.5-redis_6.3.0-1_darwin-arm64.tar.zst

兼容解析 (只读，旧发布资产仍可被索引):
    核心包  php{phpVersion}-{type}_{platform}.tar.zst
    扩展包  php{phpVersion}-{ext}{extVersion}_{platform}.tar.zst

扩展包兼容格式中扩展名与版本号之间没有分隔符，
以 known_extensions 中的已知扩展名优先匹配，其次取最左侧 字母→数字 边界。
"""

from __future__ import annotations

import platform as _platform
import re
from dataclasses import dataclass
from typing import Iterable

from phmbuild.core.exceptions import ValidationError

ARCHIVE_EXT = ".tar.zst"
SIDECAR_EXT = ".sha256"

CORE_TYPES = ("common", "cli", "fpm", "cgi", "dev", "pear")

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}

_PLATFORM_RE = re.compile(r"^[a-z0-9]+-[a-z0-9]+$")
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.+\-]*$")
_VERSION_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.+~\-]*$")
_PHP_MINOR_RE = re.compile(r"^(\d+\.\d+)")
_PHP_NAME_RE = re.compile(r"^php(\d+\.\d+)")
_COMPAT_RE = re.compile(
    r"^php(?P<php>\d+\.\d+\.\d+(?:(?:alpha|beta|RC)\d+)?)-(?P<rest>[A-Za-z].*)$"
)
_EXT_VERSION_RE = re.compile(r"^\d+(?:\.\d+)+(?:[A-Za-z0-9.\-]*)$")


# =========================================================================
# 平台
# =========================================================================


def normalize_arch(machine: str) -> str:
    """x86_64 → amd64, aarch64/arm64 → arm64，其余原样小写"""
    m = machine.strip().lower()
    return _ARCH_ALIASES.get(m, m)


def detect_platform(system: str | None = None, machine: str | None = None) -> str:
    """返回 <os>-<arch>，如 darwin-arm64、linux-amd64"""
    os_name = (system if system is not None else _platform.system()).strip().lower()
    arch = normalize_arch(machine if machine is not None else _platform.machine())
    return f"{os_name}-{arch}"


def validate_platform(value: str) -> str:
    if not _PLATFORM_RE.match(value or ""):
        raise ValidationError(f"平台格式无效 (应为 <os>-<arch>): {value!r}")
    return value


# =========================================================================
# PHP 版本
# =========================================================================


def php_minor(version: str) -> str:
    """8.5.1 → 8.5"""
    m = _PHP_MINOR_RE.match(version or "")
    if not m:
        raise ValidationError(f"PHP 版本格式无效: {version!r}")
    return m.group(1)


def php_minor_from_name(package_name: str) -> str:
    """php8.5-redis → 8.5，非 PHP 包返回空串"""
    m = _PHP_NAME_RE.match(package_name)
    return m.group(1) if m else ""


# =========================================================================
# 文件名
# =========================================================================


@dataclass(frozen=True)
class PackageRef:
    """从文件名解析出的包标识"""

    name: str
    version: str
    platform: str
    revision: int = 1
    style: str = "canonical"   # canonical | core | extension

    def as_tuple(self) -> tuple[str, str, str]:
        return self.name, self.version, self.platform

    @property
    def filename(self) -> str:
        return format_filename(self.name, self.version, self.platform, self.revision)


def format_filename(name: str, version: str, platform: str, revision: int = 1) -> str:
    """生成规范归档文件名

    Raises:
        ValidationError: 名称 / 版本 / 平台包含无法无损解析的字符
    """
    if not _NAME_RE.match(name or ""):
        raise ValidationError(f"包名无效: {name!r}")
    if not _VERSION_RE.match(version or "") or "_" in version:
        raise ValidationError(f"版本号无效: {version!r}")
    validate_platform(platform)
    if int(revision) < 1:
        raise ValidationError(f"修订号必须 >= 1: {revision}")
    return f"{name}_{version}-{int(revision)}_{platform}{ARCHIVE_EXT}"


def sidecar_name(filename: str) -> str:
    return f"{filename}{SIDECAR_EXT}"


def download_url(base_url: str, release_tag: str, filename: str) -> str:
    """<base_url>/<tag>/<file>；未配置 base_url 时返回空串"""
    if not base_url:
        return ""
    base = base_url.rstrip("/")
    return f"{base}/{release_tag}/{filename}" if release_tag else f"{base}/{filename}"


def _strip_ext(filename: str) -> str:
    base = filename.replace("\\", "/").rsplit("/", 1)[-1]
    if not base.endswith(ARCHIVE_EXT):
        raise ValidationError(f"不是 {ARCHIVE_EXT} 归档: {filename}")
    return base[: -len(ARCHIVE_EXT)]


def _parse_canonical(head: str, platform: str) -> PackageRef | None:
    if "_" not in head:
        return None
    name, verrev = head.rsplit("_", 1)
    if "-" not in verrev:
        return None
    version, rev = verrev.rsplit("-", 1)
    if not (name and version and rev.isdigit()):
        return None
    return PackageRef(name=name, version=version, platform=platform, revision=int(rev))


def _split_extension(rest: str, known_extensions: Iterable[str]) -> tuple[str, str] | None:
    for ext in sorted(set(known_extensions), key=len, reverse=True):
        if rest.startswith(ext) and _EXT_VERSION_RE.match(rest[len(ext):]):
            return ext, rest[len(ext):]
    for i in range(1, len(rest)):
        if rest[i].isdigit() and rest[i - 1].isalpha():
            suffix = rest[i:]
            if _EXT_VERSION_RE.match(suffix):
                return rest[:i], suffix
    return None


def _parse_compat(head: str, platform: str, known_extensions: Iterable[str]) -> PackageRef | None:
    m = _COMPAT_RE.match(head)
    if not m:
        return None
    php_version, rest = m.group("php"), m.group("rest")
    mm = php_minor(php_version)
    if rest in CORE_TYPES:
        return PackageRef(name=f"php{mm}-{rest}", version=php_version,
                          platform=platform, style="core")
    split = _split_extension(rest, known_extensions)
    if split is None:
        return None
    ext, ext_version = split
    return PackageRef(name=f"php{mm}-{ext}", version=ext_version,
                      platform=platform, style="extension")


def parse_filename(filename: str, known_extensions: Iterable[str] = ()) -> PackageRef:
    """把归档文件名解析回 (name, version, platform)

    先按规范格式解析，失败再尝试兼容格式。

    Raises:
        ValidationError: 两种格式都无法解析
    """
    stem = _strip_ext(filename)
    if "_" not in stem:
        raise ValidationError(f"无法解析归档文件名: {filename}")
    head, platform = stem.rsplit("_", 1)
    if not _PLATFORM_RE.match(platform):
        raise ValidationError(f"无法解析归档文件名 (平台 {platform!r} 无效): {filename}")

    ref = _parse_canonical(head, platform) or _parse_compat(head, platform, known_extensions)
    if ref is None:
        raise ValidationError(f"无法解析归档文件名: {filename}")
    return ref


def canonical_filename(filename: str, known_extensions: Iterable[str] = ()) -> str:
    """兼容格式文件名迁移为规范文件名"""
    return parse_filename(filename, known_extensions).filename
