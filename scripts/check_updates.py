#!/usr/bin/env python3
"""上游版本检查入口脚本 (CI 定时任务)

用法:
    python scripts/check_updates.py [--force] [--record]

结果以 key=value 行输出到 stdout，设置 GITHUB_OUTPUT 时同时追加到该文件。
"""

from __future__ import annotations

import argparse
import os

from phmbuild.core.config import init_config
from phmbuild.services.container import ServiceContainer
from phmbuild.utils.logger import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="检查 PHP / 扩展上游版本")
    parser.add_argument("--config", default="", help="配置文件路径")
    parser.add_argument("--force", action="store_true", help="构建全部 PHP 版本")
    parser.add_argument("--record", action="store_true", help="把最新版本写回 versions.json")
    args = parser.parse_args()

    setup_logging(level="INFO")
    checker = ServiceContainer(init_config(args.config)).updates
    plan = checker.check(force=args.force)

    lines = plan.to_outputs()
    print("\n".join(lines))
    github_output = os.environ.get("GITHUB_OUTPUT")
    if github_output:
        with open(github_output, "a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
    if args.record:
        checker.record(plan)


if __name__ == "__main__":
    main()
