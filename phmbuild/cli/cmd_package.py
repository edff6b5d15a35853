"""CLI — dist 目录包查询"""

from __future__ import annotations

import click

from phmbuild.cli import _svc


def register(group: click.Group) -> None:
    group.add_command(package_group)


def _human(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    value = size / 1024
    for unit in ("K", "M"):
        if value < 1024:
            return f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}G"


@click.group(name="package")
def package_group() -> None:
    """已构建包查询"""


@package_group.command(name="list")
def package_list() -> None:
    """列出已构建的包"""
    items = _svc().inventory.list()
    if not items:
        click.echo("还没有构建任何包。")
        return
    for item in items:
        click.echo(f"  {item['file']} ({_human(item['size'])})")
    click.echo(f"\n共 {len(items)} 个包")


@package_group.command(name="info")
@click.argument("target")
def package_info(target: str) -> None:
    """显示包详情 (文件名或包名)"""
    try:
        info = _svc().inventory.info(target)
    except FileNotFoundError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"=== {info['file']} ===")
    click.echo(f"  名称:   {info['name']}")
    click.echo(f"  版本:   {info['version']}-{info['revision']}")
    click.echo(f"  平台:   {info['platform']}")
    click.echo(f"  大小:   {info['installed_size']} 字节 (归档 {info['size']} 字节)")
    click.echo(f"  依赖:   {', '.join(info['depends']) or '-'}")
    click.echo(f"  提供:   {', '.join(info['provides']) or '-'}")
    click.echo(f"  文件数: {len(info['files'])}")
    if info["sha256"]:
        click.echo(f"  sha256: {info['sha256']}")


@package_group.command(name="stats")
def package_stats() -> None:
    """按 PHP 版本与类型统计"""
    stats = _svc().inventory.stats()
    click.echo("按 PHP 版本:")
    for ver, count in stats["by_php_version"].items():
        click.echo(f"  PHP {ver}: {count} 个包")
    click.echo("\n按类型:")
    for kind, count in stats["by_type"].items():
        click.echo(f"  {kind:10s} {count}")
    click.echo(f"\n总计: {stats['total']} 个包, {_human(stats['total_size'])}")
    if stats["invalid"]:
        click.echo(f"无效归档: {stats['invalid']} 个")


@package_group.command(name="verify")
@click.pass_context
def package_verify(ctx: click.Context) -> None:
    """核对 .sha256 校验文件"""
    results = _svc().inventory.verify()
    bad = 0
    for r in results:
        if r["status"] != "ok":
            bad += 1
        click.echo(f"  {r['status']:8s} {r['file']}")
    click.echo(f"\n{len(results) - bad}/{len(results)} 通过")
    if bad:
        ctx.exit(1)
