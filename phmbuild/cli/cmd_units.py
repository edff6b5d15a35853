"""CLI — 构建单元目录"""

from __future__ import annotations

import json

import click

from phmbuild.cli import _svc
from phmbuild.core.models import UnitKind


def register(group: click.Group) -> None:
    group.add_command(units_group)


@click.group(name="units")
def units_group() -> None:
    """构建单元目录查询"""


@units_group.command(name="list")
@click.option("--kind", type=click.Choice([k.value for k in UnitKind]), default=None,
              help="按类型过滤")
def units_list(kind: str | None) -> None:
    """按注册顺序列出构建单元"""
    registry = _svc().registry
    units = registry.by_kind(UnitKind(kind)) if kind else registry.all()
    if not units:
        click.echo("没有构建单元。")
        return
    markers = _svc().markers
    for u in units:
        built = "✓" if markers.is_built(u.name, u.version) else " "
        deps = ",".join(u.depends_on) or "-"
        click.echo(f"  {built} {u.name:28s} {u.version:12s} {u.kind.value:10s} deps={deps}")
    click.echo(f"\n共 {len(units)} 个单元")


@units_group.command(name="show")
@click.argument("name")
def units_show(name: str) -> None:
    """显示单元定义 (JSON)"""
    unit = _svc().registry.get(name)
    click.echo(json.dumps(unit.to_dict(), indent=2, ensure_ascii=False))


@units_group.command(name="check")
def units_check() -> None:
    """校验目录：依赖边存在且无环"""
    registry = _svc().registry
    registry.validate()
    click.echo(f"目录有效: {len(registry)} 个单元")
