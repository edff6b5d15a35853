"""CLI — 索引生成"""

from __future__ import annotations

import click

from phmbuild.cli import _svc


def register(group: click.Group) -> None:
    group.add_command(index_group)


@click.group(name="index")
def index_group() -> None:
    """包索引 (index.json)"""


@index_group.command(name="generate")
@click.option("--dist", "dist_dir", default=None, help="本地包目录 (默认取配置 dist_dir)")
@click.option("--base-url", default=None, help="下载地址前缀")
@click.option("--release-tag", default=None, help="下载地址中的 Release 标签")
@click.option("--repo", default=None, help="从 GitHub Release 收集: <owner>/<repo>")
@click.option("--tag", default=None, help="只收集指定 Release (配合 --repo)")
@click.option("--download", is_flag=True, help="下载 Release 归档读取完整清单")
@click.option("--output", "-o", default=None, help="输出文件 (默认取配置 index_file)")
@click.option("--generated", default=None, help="固定 generated 时间戳")
def index_generate(
    dist_dir: str | None,
    base_url: str | None,
    release_tag: str | None,
    repo: str | None,
    tag: str | None,
    download: bool,
    output: str | None,
    generated: str | None,
) -> None:
    """收集包并生成去重后的 index.json"""
    from phmbuild.services.index.sources import LocalDirectorySource, ReleaseAssetSource

    svc = _svc()
    cfg = svc.config
    repo = repo or cfg.release_repo
    if repo:
        source = ReleaseAssetSource(
            repo,
            tag=tag,
            api_url=cfg.github_api_url,
            token=cfg.github_token,
            known_extensions=svc.registry.extension_names(),
            download_dir=cfg.work_dir if download else None,
        )
    else:
        source = LocalDirectorySource(
            dist_dir or cfg.dist_dir,
            base_url=cfg.base_url if base_url is None else base_url,
            release_tag=cfg.release_tag if release_tag is None else release_tag,
        )

    aggregator = svc.aggregator
    output = output or cfg.index_file
    doc = aggregator.generate([source], output, generated_at=generated)
    for platform, section in doc["platforms"].items():
        click.echo(f"  {platform}: {len(section['packages'])} 个包")
    for item in aggregator.skipped:
        click.echo(f"  跳过: {item['package']} ({item['reason']})")
    click.echo(f"索引已生成: {output}")
