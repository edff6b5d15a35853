"""构建报告 - 每次运行的构建记录与聚合查询

每次运行完成后追加一条记录，支持：
  - 按单元名查询
  - 单元历史构建汇总
  - 为 Web 接口提供数据源
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from phmbuild.utils.yaml_io import atomic_write

if TYPE_CHECKING:
    from phmbuild.core.models import RunSummary

logger = logging.getLogger(__name__)

MAX_RUNS = 200


class BuildReportStore:
    """构建报告存储 (JSON 列表，保留最近 MAX_RUNS 次)"""

    def __init__(self, report_file: str = "") -> None:
        if not report_file:
            from phmbuild.core.config import get_config
            report_file = get_config().report_file
        self.report_file = Path(report_file)

    def _load(self) -> list[dict]:
        if not self.report_file.exists():
            return []
        with open(self.report_file, encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, list) else []

    def _save(self, runs: list[dict]) -> None:
        content = json.dumps(runs[-MAX_RUNS:], indent=2, ensure_ascii=False)
        atomic_write(self.report_file, content)

    def record_run(
        self,
        targets: list[str],
        summary: RunSummary,
        *,
        platform: str = "",
        php_version: str = "",
    ) -> dict:
        """追加一次运行记录"""
        entry: dict = {
            "run_id": str(uuid.uuid4())[:8],
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "targets": list(targets),
            "platform": platform,
            "php_version": php_version,
            **summary.to_dict(),
        }
        runs = self._load()
        runs.append(entry)
        self._save(runs)
        logger.info("构建报告已记录: run_id=%s", entry["run_id"])
        return entry

    def query(self, *, unit: str | None = None, limit: int = 20) -> list[dict]:
        """最近的运行记录（倒序），可按单元过滤"""
        runs = self._load()
        if unit:
            filtered = []
            for r in runs:
                records = [x for x in r.get("records", []) if x.get("unit") == unit]
                if records:
                    filtered.append({**r, "records": records})
            runs = filtered
        runs.sort(key=lambda x: x.get("timestamp", ""), reverse=True)
        return runs[:limit]

    def get(self, run_id: str) -> dict | None:
        for r in self._load():
            if r.get("run_id") == run_id:
                return r
        return None

    def unit_summary(self, unit: str) -> dict:
        """单个单元的历史构建汇总"""
        attempts = []
        for r in self._load():
            for rec in r.get("records", []):
                if rec.get("unit") == unit:
                    attempts.append({
                        "run_id": r.get("run_id", ""),
                        "timestamp": r.get("timestamp", ""),
                        "version": rec.get("version", ""),
                        "status": rec.get("status", ""),
                        "duration": rec.get("duration", 0),
                        "skip_reason": rec.get("skip_reason", ""),
                    })
        total = len(attempts)
        success = sum(1 for a in attempts if a["status"] == "success")
        failed = sum(1 for a in attempts if a["status"] == "failed")
        skipped = sum(1 for a in attempts if a["status"] == "skipped")
        built = success + failed
        return {
            "unit": unit,
            "total": total,
            "success": success,
            "failed": failed,
            "skipped": skipped,
            "success_rate": round(success / built * 100, 1) if built else 0,
            "recent": attempts[-10:],
        }
