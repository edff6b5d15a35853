"""包索引查询 API Blueprint

数据源为配置 index_file 指向的 index.json，每次请求重新读取。
"""

from __future__ import annotations

import json
import logging
from typing import Any

from flask import Blueprint, Response, request

from phmbuild.web.responses import not_found, ok, server_error

logger = logging.getLogger(__name__)

index_bp = Blueprint("index", __name__, url_prefix="/api/index")


@index_bp.errorhandler(json.JSONDecodeError)
@index_bp.errorhandler(UnicodeDecodeError)
def index_unreadable(e: ValueError) -> tuple[Response, int]:
    logger.error("索引文件无法解析: %s", e)
    return server_error(f"索引文件损坏: {e}")


def _load_index() -> dict[str, Any] | None:
    from phmbuild.services.container import get_container
    from phmbuild.utils.yaml_io import load_json
    data = load_json(get_container().config.index_file)
    return data if isinstance(data, dict) else None


def _packages(doc: dict[str, Any], platform: str) -> list[dict[str, Any]] | None:
    section = (doc.get("platforms") or {}).get(platform)
    if section is None:
        return None
    return list(section.get("packages") or [])


@index_bp.route("", methods=["GET"])
def get_index() -> tuple[Response, int] | Response:
    doc = _load_index()
    if doc is None:
        return not_found("索引")
    return ok(doc)


@index_bp.route("/platforms", methods=["GET"])
def platforms() -> tuple[Response, int] | Response:
    doc = _load_index()
    if doc is None:
        return not_found("索引")
    items = [
        {"platform": p, "packages": len(section.get("packages") or [])}
        for p, section in sorted((doc.get("platforms") or {}).items())
    ]
    return ok({"generated": doc.get("generated", ""), "platforms": items})


@index_bp.route("/<platform>/packages", methods=["GET"])
def list_packages(platform: str) -> tuple[Response, int] | Response:
    doc = _load_index()
    if doc is None:
        return not_found("索引")
    packages = _packages(doc, platform)
    if packages is None:
        return not_found(f"平台 {platform} ")
    q = request.args.get("q", "").strip().lower()
    if q:
        packages = [
            p for p in packages
            if q in p.get("name", "").lower() or q in p.get("description", "").lower()
        ]
    return ok({"platform": platform, "packages": packages, "total": len(packages)})


@index_bp.route("/<platform>/packages/<name>", methods=["GET"])
def get_package(platform: str, name: str) -> tuple[Response, int] | Response:
    doc = _load_index()
    if doc is None:
        return not_found("索引")
    packages = _packages(doc, platform)
    if packages is None:
        return not_found(f"平台 {platform} ")
    for p in packages:
        if p.get("name") == name:
            return ok({"platform": platform, "package": p})
    return not_found(f"包 {name} ")
