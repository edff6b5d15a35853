"""上游版本检查

- PHP: php.watch 安全版本接口，每个 major.minor 取最大的安全版本
- 扩展: Packagist p2 元数据优先，失败回退 PECL REST；只取稳定版本
- 与 versions.json 比较后决定需要构建的 PHP 版本:
    --force 或任一扩展变化 → 全部 PHP 版本
    仅 PHP 变化          → 只构建变化的版本

输出兼容 GitHub Actions 的 key=value 行 (php_versions / ext_versions / has_builds)。
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from phmbuild.core.exceptions import FetchError
from phmbuild.core.models import BuildUnit
from phmbuild.core.version import version_key
from phmbuild.utils.net import fetch_json, fetch_text
from phmbuild.utils.yaml_io import load_json, save_json

logger = logging.getLogger(__name__)

PHP_WATCH_URL = "https://php.watch/api/v1/versions/secure"
PACKAGIST_URL = "https://repo.packagist.org/p2/{package}.json"
PECL_URL = "https://pecl.php.net/rest/r/{ext}/allreleases.xml"

_RELEASE_RE = re.compile(r"^v?[0-9]")
_UNSTABLE_RE = re.compile(r"dev|alpha|beta|RC|rc")
_PECL_UNSTABLE_RE = re.compile(r"alpha|beta|rc|dev", re.IGNORECASE)
_PECL_VERSION_RE = re.compile(r"<v>([^<]*)</v>")


# =========================================================================
# 上游查询
# =========================================================================


def latest_php_versions(url: str = PHP_WATCH_URL) -> dict[str, str]:
    """{major.minor: 最新安全版本}"""
    data = fetch_json(url)
    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        data = data["data"]
    if not isinstance(data, dict):
        raise FetchError(f"PHP 版本接口返回格式无效: {url}")
    result: dict[str, str] = {}
    for version, info in data.items():
        if not isinstance(info, dict) or info.get("isSecure") is not True:
            continue
        minor = ".".join(str(version).split(".")[:2])
        current = result.get(minor)
        if current is None or version_key(version) > version_key(current):
            result[minor] = str(version)
    return result


def packagist_version(package: str) -> str:
    """Packagist 上的最新稳定版本（按返回顺序取第一个），无则返回空串"""
    data = fetch_json(PACKAGIST_URL.format(package=package))
    if not isinstance(data, dict):
        return ""
    releases = (data.get("packages") or {}).get(package) or []
    for release in releases:
        version = str(release.get("version", ""))
        if _RELEASE_RE.match(version) and not _UNSTABLE_RE.search(version):
            return version[1:] if version.startswith("v") else version
    return ""


def pecl_version(ext: str) -> str:
    """PECL allreleases.xml 中第一个稳定版本，无则返回空串"""
    xml = fetch_text(PECL_URL.format(ext=ext))
    for version in _PECL_VERSION_RE.findall(xml):
        if not _PECL_UNSTABLE_RE.search(version):
            return version.strip()
    return ""


def extension_version(ext: str, packagist: str = "", pecl: str = "") -> str:
    """Packagist 优先，PECL 兜底"""
    if packagist:
        try:
            version = packagist_version(packagist)
        except FetchError as e:
            logger.warning("Packagist 查询失败: %s (%s)", packagist, e)
            version = ""
        if version:
            return version
    try:
        return pecl_version(pecl or ext)
    except FetchError as e:
        logger.warning("PECL 查询失败: %s (%s)", pecl or ext, e)
        return ""


# =========================================================================
# 更新计划
# =========================================================================


@dataclass
class UpdatePlan:
    """需要构建的 PHP 版本与扩展版本"""

    php_versions: list[str] = field(default_factory=list)
    ext_versions: dict[str, str] = field(default_factory=dict)
    latest_php: dict[str, str] = field(default_factory=dict)
    php_changed: list[str] = field(default_factory=list)
    ext_changed: list[str] = field(default_factory=list)
    forced: bool = False

    @property
    def has_builds(self) -> bool:
        return bool(self.php_versions)

    def to_outputs(self) -> list[str]:
        return [
            f"php_versions={json.dumps(self.php_versions)}",
            f"ext_versions={json.dumps(self.ext_versions, sort_keys=True)}",
            f"has_builds={'true' if self.has_builds else 'false'}",
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "php_versions": self.php_versions,
            "ext_versions": self.ext_versions,
            "latest_php": self.latest_php,
            "php_changed": self.php_changed,
            "ext_changed": self.ext_changed,
            "forced": self.forced,
            "has_builds": self.has_builds,
        }


def tracked_extensions(units: Iterable[BuildUnit]) -> list[BuildUnit]:
    """需要跟踪上游版本的扩展：排除特殊构建与没有上游来源的内置扩展"""
    result = []
    for u in units:
        if u.extension is None or u.special_build:
            continue
        if not u.packagist and not u.pecl:
            continue
        result.append(u)
    return result


def decide(
    current: dict[str, Any],
    latest_php: dict[str, str],
    ext_versions: dict[str, str],
    *,
    force: bool = False,
) -> UpdatePlan:
    """比较 versions.json 与上游版本，决定构建范围"""
    current_php = current.get("php") or {}
    current_ext = current.get("extensions") or {}
    minors = sorted(latest_php, key=version_key)

    php_changed = []
    for minor in minors:
        if latest_php[minor] != current_php.get(minor):
            logger.info("PHP %s: %s -> %s", minor, current_php.get(minor, "none"), latest_php[minor])
            php_changed.append(latest_php[minor])

    ext_changed = []
    for ext in sorted(ext_versions):
        if ext_versions[ext] != current_ext.get(ext):
            logger.info("%s: %s -> %s", ext, current_ext.get(ext, "none"), ext_versions[ext])
            ext_changed.append(ext)

    if force or ext_changed:
        to_build = [latest_php[m] for m in minors]
    else:
        to_build = php_changed

    return UpdatePlan(
        php_versions=to_build,
        ext_versions=dict(ext_versions),
        latest_php=dict(latest_php),
        php_changed=php_changed,
        ext_changed=ext_changed,
        forced=force,
    )


class UpdateChecker:
    """上游版本检查"""

    def __init__(self, versions_file: str | Path, extensions: Iterable[BuildUnit]) -> None:
        self.versions_file = Path(versions_file)
        self.extensions = tracked_extensions(extensions)

    def current(self) -> dict[str, Any]:
        data = load_json(self.versions_file, {})
        if not data:
            logger.warning("%s 不存在，将构建全部版本", self.versions_file)
        return data if isinstance(data, dict) else {}

    def fetch_extension_versions(self) -> dict[str, str]:
        result: dict[str, str] = {}
        for unit in self.extensions:
            ext = unit.extension.name  # type: ignore[union-attr]
            version = extension_version(ext, unit.packagist, unit.pecl)
            if version:
                result[ext] = version
                logger.info("  %s: %s", ext, version)
            else:
                logger.warning("  %s: 未获取到版本", ext)
        return result

    def check(self, *, force: bool = False) -> UpdatePlan:
        current = self.current()
        try:
            latest_php = latest_php_versions()
        except FetchError as e:
            logger.warning("PHP 版本获取失败，沿用当前版本: %s", e)
            latest_php = {}
        if not latest_php:
            latest_php = dict(current.get("php") or {})
        return decide(current, latest_php, self.fetch_extension_versions(), force=force)

    def record(self, plan: UpdatePlan) -> None:
        """把上游版本写回 versions.json"""
        save_json(self.versions_file, {
            "php": plan.latest_php,
            "extensions": plan.ext_versions,
        }, sort_keys=True)
        logger.info("版本记录已更新: %s", self.versions_file)
