"""索引聚合

Package 集合 → 按平台分组、(平台, 包名) 去重的 index.json

    {
      "version": 1,
      "generated": "2025-01-01T00:00:00Z",
      "platforms": {"darwin-arm64": {"packages": [...]}}
    }

输出确定性: 键排序、2 空格缩进、末尾换行；平台与包名排序。
同名包保留 (version_key(version), revision) 最大者。
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from phmbuild.core.exceptions import MalformedManifestError
from phmbuild.core.models import IndexEntry, Package
from phmbuild.core.version import release_key
from phmbuild.utils.yaml_io import atomic_write, load_json

logger = logging.getLogger(__name__)

INDEX_VERSION = 1
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def default_timestamp() -> str:
    """SOURCE_DATE_EPOCH（可复现构建），否则当前 UTC 时间"""
    epoch = os.environ.get("SOURCE_DATE_EPOCH", "").strip()
    if epoch.isdigit():
        moment = datetime.fromtimestamp(int(epoch), tz=timezone.utc)
    else:
        moment = datetime.now(tz=timezone.utc)
    return moment.strftime(TIMESTAMP_FORMAT)


def deduplicate(packages: Iterable[Package | IndexEntry]) -> list[IndexEntry]:
    """每个 (platform, name) 只保留最新的一条"""
    best: dict[tuple[str, str], IndexEntry] = {}
    for item in packages:
        entry = IndexEntry.from_package(item) if isinstance(item, Package) else item
        key = (entry.platform, entry.name)
        current = best.get(key)
        if current is None or _rank(entry) > _rank(current):
            if current is not None:
                logger.debug(
                    "去重: %s/%s 保留 %s-%d，丢弃 %s-%d",
                    entry.platform, entry.name, entry.version, entry.revision,
                    current.version, current.revision,
                )
            best[key] = entry
    return sorted(best.values(), key=lambda e: (e.platform, e.name))


def _rank(entry: IndexEntry) -> tuple:
    # url 只用于打破完全相同版本的平局，使结果与输入顺序无关
    return (*release_key(entry.version, entry.revision), entry.url)


def build_index(entries: Iterable[IndexEntry], generated_at: str | None = None) -> dict[str, Any]:
    platforms: dict[str, dict[str, list[dict[str, Any]]]] = {}
    for entry in sorted(entries, key=lambda e: (e.platform, e.name)):
        platforms.setdefault(entry.platform, {"packages": []})["packages"].append(entry.to_dict())
    return {
        "version": INDEX_VERSION,
        "generated": generated_at or default_timestamp(),
        "platforms": platforms,
    }


def render_index(doc: dict[str, Any]) -> str:
    return json.dumps(doc, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def write_index(doc: dict[str, Any], path: str | Path, *, keep_generated: bool = True) -> bool:
    """写出索引；keep_generated 时包内容未变化则沿用旧 generated 时间戳

    Returns:
        文件内容是否发生变化
    """
    p = Path(path)
    try:
        previous = load_json(p)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("旧索引无法读取，将覆盖: %s (%s)", p, e)
        previous = None

    if (
        keep_generated
        and isinstance(previous, dict)
        and previous.get("platforms") == doc.get("platforms")
    ):
        doc = {**doc, "generated": previous.get("generated", doc.get("generated"))}

    content = render_index(doc)
    if p.is_file() and p.read_text(encoding="utf-8") == content:
        logger.info("索引未变化: %s", p)
        return False
    atomic_write(p, content)
    logger.info("索引已写入: %s", p)
    return True


class IndexAggregator:
    """从一个或多个来源收集包并生成索引"""

    def __init__(self) -> None:
        self.skipped: list[dict[str, str]] = []

    def collect(self, source: Any) -> list[Package]:
        """读取来源中的全部包；单个包无效时记录并跳过"""
        packages: list[Package] = []
        for item in source.items():
            label = source.describe(item)
            try:
                pkg = source.load(item)
            except MalformedManifestError as e:
                logger.warning("跳过无效包: %s (%s)", label, e)
                self.skipped.append({"package": label, "reason": str(e)})
                continue
            logger.info("已收集: %s -> %s %s-%d", label, pkg.name, pkg.version, pkg.revision)
            packages.append(pkg)
        return packages

    def generate(
        self,
        sources: Iterable[Any],
        output: str | Path | None = None,
        *,
        generated_at: str | None = None,
    ) -> dict[str, Any]:
        """收集 → 去重 → 构造索引，指定 output 时写盘"""
        packages: list[Package] = []
        for source in sources:
            packages.extend(self.collect(source))
        entries = deduplicate(packages)
        doc = build_index(entries, generated_at)
        counts = {p: len(v["packages"]) for p, v in doc["platforms"].items()}
        logger.info("索引: %d 个包 %s，跳过 %d 个", len(entries), counts, len(self.skipped))
        if output is not None:
            write_index(doc, output, keep_generated=generated_at is None)
        return doc
