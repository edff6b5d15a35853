"""包清单 (pkginfo.json) 序列化

清单不包含时间戳：相同输入生成字节一致的清单与归档，sha256 可复现。
"""

from __future__ import annotations

import json
from typing import Any

from phmbuild.core.exceptions import MalformedManifestError, ValidationError
from phmbuild.core.models import Dependency, ExtensionInfo, Package

MANIFEST_NAME = "pkginfo.json"
MAINTAINER = "PHM Team"

_REQUIRED = ("name", "version", "platform")


def manifest_to_dict(pkg: Package) -> dict[str, Any]:
    """按固定字段顺序生成清单字典"""
    data: dict[str, Any] = {
        "name": pkg.name,
        "version": pkg.version,
        "revision": pkg.revision,
        "php_version": pkg.php_version,
        "description": pkg.description,
        "platform": pkg.platform,
        "depends": [str(d) for d in pkg.depends],
        "conflicts": list(pkg.conflicts),
        "provides": list(pkg.provides),
        "installed_size": pkg.installed_size,
        "maintainer": pkg.maintainer or MAINTAINER,
    }
    if pkg.meta:
        data["meta"] = True
    if pkg.extension is not None:
        data["extension"] = pkg.extension.to_dict()
    data["files"] = list(pkg.files)
    return data


def render_manifest(pkg: Package) -> bytes:
    return (json.dumps(manifest_to_dict(pkg), indent=2, ensure_ascii=False) + "\n").encode("utf-8")


def _str_list(data: dict[str, Any], key: str, path: str) -> tuple[str, ...]:
    value = data.get(key) or []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise MalformedManifestError(path, f"字段 {key} 必须是字符串列表")
    return tuple(value)


def manifest_from_dict(data: Any, path: str = "") -> Package:
    """从清单字典还原 Package

    Raises:
        MalformedManifestError: 缺少 name / version / platform 或字段类型错误
    """
    if not isinstance(data, dict):
        raise MalformedManifestError(path, "清单顶层必须是对象")
    for key in _REQUIRED:
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            raise MalformedManifestError(path, f"缺少字段 {key}")

    try:
        depends = tuple(Dependency.parse(d) for d in _str_list(data, "depends", path))
    except ValidationError as e:
        raise MalformedManifestError(path, str(e)) from e

    ext = data.get("extension")
    extension = None
    try:
        if isinstance(ext, dict) and ext.get("name"):
            extension = ExtensionInfo(
                name=str(ext["name"]),
                zend=bool(ext.get("zend", False)),
                priority=int(ext.get("priority", 20)),
            )
        revision = int(data.get("revision", 1) or 1)
        installed_size = int(data.get("installed_size", 0) or 0)
    except (TypeError, ValueError) as e:
        raise MalformedManifestError(path, f"数值字段无效: {e}") from e

    return Package(
        name=data["name"],
        version=data["version"],
        platform=data["platform"],
        revision=revision,
        description=str(data.get("description", "")),
        php_version=str(data.get("php_version", "") or ""),
        depends=depends,
        conflicts=_str_list(data, "conflicts", path),
        provides=_str_list(data, "provides", path),
        installed_size=installed_size,
        files=_str_list(data, "files", path),
        meta=bool(data.get("meta", False)),
        extension=extension,
        maintainer=str(data.get("maintainer", MAINTAINER)),
    )


def parse_manifest(raw: bytes | str, path: str = "") -> Package:
    """解析 pkginfo.json 内容"""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedManifestError(path, f"JSON 解析失败: {e}") from e
    return manifest_from_dict(data, path)
