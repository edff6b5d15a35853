"""CLI — 杂项命令（上游版本检查、Web 服务）"""

from __future__ import annotations

import click

from phmbuild.cli import _svc


def register(group: click.Group) -> None:
    group.add_command(updates_group)
    group.add_command(serve)


# ---- 上游版本 ----

@click.group(name="updates")
def updates_group() -> None:
    """上游 PHP / 扩展版本检查"""


@updates_group.command(name="check")
@click.option("--force", is_flag=True, help="无论是否有变化都构建全部 PHP 版本")
@click.option("--github-output", type=click.Path(dir_okay=False), default=None,
              envvar="GITHUB_OUTPUT", help="追加 key=value 结果的文件 (GitHub Actions)")
@click.option("--record", is_flag=True, help="把最新版本写回 versions.json")
def updates_check(force: bool, github_output: str | None, record: bool) -> None:
    """检查上游更新，输出需要构建的 PHP 版本"""
    checker = _svc().updates
    plan = checker.check(force=force)
    lines = plan.to_outputs()
    for line in lines:
        click.echo(line)
    if github_output:
        with open(github_output, "a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
    if record:
        checker.record(plan)


# ---- Web 服务 ----

@click.command()
@click.option("--host", default="127.0.0.1", help="监听地址")
@click.option("--port", default=8888, help="监听端口")
def serve(host: str, port: int) -> None:
    """启动索引 / 构建查询 Web 服务"""
    from phmbuild.web.app import run_server
    run_server(host=host, port=port)
