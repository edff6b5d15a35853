"""dist 目录包清点: 列表 / 详情 / 统计 / 校验"""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import Any, Iterable

from phmbuild.core.exceptions import MalformedManifestError, ValidationError
from phmbuild.core.manifest import manifest_to_dict, parse_manifest
from phmbuild.core.naming import (
    ARCHIVE_EXT,
    CORE_TYPES,
    parse_filename,
    php_minor_from_name,
    sidecar_name,
)
from phmbuild.core.version import release_key
from phmbuild.services.package.archive import read_manifest_bytes, read_sidecar, sha256_file

logger = logging.getLogger(__name__)


def package_type(name: str, *, meta: bool = False, extension: bool = False) -> str:
    """core / extension / meta / library"""
    if meta:
        return "meta"
    if extension:
        return "extension"
    mm = php_minor_from_name(name)
    if mm:
        suffix = name[len(f"php{mm}-"):]
        return "core" if suffix in CORE_TYPES else "extension"
    return "library"


class PackageInventory:
    """本地 dist 目录"""

    def __init__(self, dist_dir: str | Path, known_extensions: Iterable[str] = ()) -> None:
        self.dist_dir = Path(dist_dir)
        self.known_extensions = tuple(known_extensions)

    def archives(self) -> list[Path]:
        if not self.dist_dir.is_dir():
            return []
        return sorted(p for p in self.dist_dir.glob(f"*{ARCHIVE_EXT}") if p.is_file())

    def list(self) -> list[dict[str, Any]]:
        """归档文件及大小，能解析文件名时附带包标识"""
        result = []
        for p in self.archives():
            item: dict[str, Any] = {"file": p.name, "size": p.stat().st_size}
            try:
                ref = parse_filename(p.name, self.known_extensions)
                item.update(name=ref.name, version=ref.version,
                            revision=ref.revision, platform=ref.platform)
            except ValidationError:
                item.update(name="", version="", revision=0, platform="")
            result.append(item)
        return result

    def _find(self, target: str) -> Path:
        direct = self.dist_dir / target
        if direct.is_file():
            return direct
        matches = []
        for item in self.list():
            if item["name"] == target:
                matches.append(item)
        if not matches:
            raise FileNotFoundError(f"未找到包: {target}")
        best = max(matches, key=lambda i: release_key(i["version"], i["revision"]))
        return self.dist_dir / best["file"]

    def info(self, target: str) -> dict[str, Any]:
        """包清单详情；target 为文件名或包名（包名取最新版本）

        Raises:
            FileNotFoundError: 包不存在
            MalformedManifestError: 清单无效
        """
        path = self._find(target)
        pkg = parse_manifest(read_manifest_bytes(path), str(path))
        return {
            "file": path.name,
            "size": path.stat().st_size,
            "sha256": read_sidecar(path.parent / sidecar_name(path.name)),
            **manifest_to_dict(pkg),
        }

    def stats(self) -> dict[str, Any]:
        """按 PHP 版本与包类型计数，总大小"""
        by_php: Counter[str] = Counter()
        by_type: Counter[str] = Counter()
        total_size = 0
        invalid = 0
        for p in self.archives():
            total_size += p.stat().st_size
            try:
                pkg = parse_manifest(read_manifest_bytes(p), str(p))
            except MalformedManifestError as e:
                logger.warning("跳过无效包: %s (%s)", p.name, e)
                invalid += 1
                continue
            if pkg.php_version:
                by_php[pkg.php_version] += 1
            by_type[package_type(pkg.name, meta=pkg.meta, extension=pkg.extension is not None)] += 1
        return {
            "total": sum(by_type.values()),
            "invalid": invalid,
            "total_size": total_size,
            "by_php_version": dict(sorted(by_php.items())),
            "by_type": dict(sorted(by_type.items())),
        }

    def verify(self) -> list[dict[str, Any]]:
        """核对每个归档的 .sha256 旁路文件"""
        result = []
        for p in self.archives():
            expected = read_sidecar(p.parent / sidecar_name(p.name))
            actual = sha256_file(p)
            if not expected:
                status = "missing"
            elif expected == actual:
                status = "ok"
            else:
                status = "mismatch"
            if status != "ok":
                logger.warning("校验失败: %s (%s)", p.name, status)
            result.append({"file": p.name, "status": status, "expected": expected, "actual": actual})
        return result
