#!/usr/bin/env python3
"""索引生成入口脚本

用法:
    python scripts/generate_index.py [--dist dist] [--output dist/index.json] [--base-url URL]
"""

from __future__ import annotations

import argparse

from phmbuild.core.config import init_config
from phmbuild.services.index.aggregator import IndexAggregator
from phmbuild.services.index.sources import LocalDirectorySource
from phmbuild.utils.logger import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="扫描本地包目录生成 index.json")
    parser.add_argument("--config", default="", help="配置文件路径")
    parser.add_argument("--dist", default=None, help="包目录 (默认取配置 dist_dir)")
    parser.add_argument("--output", "-o", default=None, help="输出文件 (默认取配置 index_file)")
    parser.add_argument("--base-url", default=None, help="下载地址前缀")
    parser.add_argument("--release-tag", default=None, help="下载地址中的 Release 标签")
    args = parser.parse_args()

    setup_logging(level="INFO")
    cfg = init_config(args.config)

    source = LocalDirectorySource(
        args.dist or cfg.dist_dir,
        base_url=cfg.base_url if args.base_url is None else args.base_url,
        release_tag=cfg.release_tag if args.release_tag is None else args.release_tag,
    )
    output = args.output or cfg.index_file
    aggregator = IndexAggregator()
    doc = aggregator.generate([source], output)
    total = sum(len(s["packages"]) for s in doc["platforms"].values())
    print(f"索引: {output} ({total} 个包, 跳过 {len(aggregator.skipped)} 个)")


if __name__ == "__main__":
    main()
