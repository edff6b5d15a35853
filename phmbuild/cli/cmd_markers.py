"""CLI — 构建标记"""

from __future__ import annotations

import click

from phmbuild.cli import _svc


def register(group: click.Group) -> None:
    group.add_command(markers_group)


@click.group(name="markers")
def markers_group() -> None:
    """已构建标记管理"""


@markers_group.command(name="list")
def markers_list() -> None:
    """列出构建标记"""
    items = _svc().markers.statuses()
    if not items:
        click.echo("没有构建标记。")
        return
    for m in items:
        click.echo(f"  {m.get('unit', ''):28s} {m.get('version', ''):12s} {m.get('built_at', '')}")


@markers_group.command(name="clear")
@click.argument("name", required=False)
@click.option("--all", "clear_all", is_flag=True, help="清除全部标记")
def markers_clear(name: str | None, clear_all: bool) -> None:
    """清除单元标记（下次构建时重新执行）"""
    if not name and not clear_all:
        raise click.UsageError("需要指定单元名或 --all")
    removed = _svc().markers.clear(None if clear_all else name)
    click.echo(f"已清除 {removed} 个标记")
