"""构建标记存储

一个单元一个 YAML 文件 (state_dir/<unit>.yml)，记录最近一次成功构建的版本。
并发 worker 只写各自单元的文件，经 atomic_write 原子替换，无需加锁。

兼容旧的 shell 标记: <legacy_dir>/.built-<name>，文件内容为版本号。
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from phmbuild.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

_ESCAPE_RE = re.compile(r"[^A-Za-z0-9.\-]")


def _escape(match: re.Match[str]) -> str:
    return "".join(f"_{b:02x}" for b in match.group().encode("utf-8"))


def _filename(name: str) -> str:
    """单元名 → 文件名：字母数字 . - 原样保留，其余字节 (含 _) 转成 _xx，一一对应"""
    return _ESCAPE_RE.sub(_escape, name) + ".yml"


class MarkerStore:
    """已构建标记 (unit name + version → status)"""

    def __init__(self, state_dir: str | Path, legacy_dir: str | Path | None = None) -> None:
        self.state_dir = Path(state_dir)
        self.legacy_dir = Path(legacy_dir) if legacy_dir else None

    def path(self, name: str) -> Path:
        return self.state_dir / _filename(name)

    def get(self, name: str) -> dict[str, Any] | None:
        data = load_yaml(self.path(name))
        return data or None

    def is_built(self, name: str, version: str) -> bool:
        data = self.get(name)
        if data and data.get("status") == "success" and str(data.get("version")) == version:
            return True
        return self._legacy_version(name) == version

    def _legacy_version(self, name: str) -> str:
        if self.legacy_dir is None:
            return ""
        legacy = self.legacy_dir / f".built-{name}"
        if not legacy.is_file():
            return ""
        return legacy.read_text(encoding="utf-8").strip()

    def mark_built(
        self, name: str, version: str, *,
        package_file: str = "", duration: float = 0.0,
    ) -> Path:
        """写入成功标记（原子替换）"""
        path = self.path(name)
        save_yaml(path, {
            "unit": name,
            "version": version,
            "status": "success",
            "built_at": datetime.now(tz=timezone.utc).isoformat(timespec="seconds"),
            "duration": round(duration, 3),
            "package_file": package_file,
        })
        logger.debug("构建标记已写入: %s@%s", name, version)
        return path

    def built_names(self, units: Iterable[Any]) -> set[str]:
        """units 中标记版本与当前版本一致的单元名"""
        return {u.name for u in units if self.is_built(u.name, u.version)}

    def statuses(self) -> list[dict[str, Any]]:
        if not self.state_dir.exists():
            return []
        result = []
        for f in sorted(self.state_dir.glob("*.yml")):
            data = load_yaml(f)
            if data:
                result.append(data)
        return result

    def clear(self, name: str | None = None) -> int:
        """删除指定单元（或全部）的标记，返回删除数量"""
        if name is not None:
            path = self.path(name)
            if path.exists():
                path.unlink()
                logger.info("已清除构建标记: %s", name)
                return 1
            return 0
        removed = 0
        if self.state_dir.exists():
            for f in self.state_dir.glob("*.yml"):
                f.unlink()
                removed += 1
        logger.info("已清除全部构建标记: %d 个", removed)
        return removed
