"""CLI — 构建计划与执行"""

from __future__ import annotations

import json

import click

from phmbuild.cli import _svc
from phmbuild.core.models import BuildStatus, FailurePolicy, RunSummary


def register(group: click.Group) -> None:
    group.add_command(build_group)


@click.group(name="build")
def build_group() -> None:
    """构建计划与执行"""


@build_group.command(name="plan")
@click.argument("targets", nargs=-1, required=True)
@click.option("--force", is_flag=True, help="忽略已有构建标记")
@click.option("--json", "as_json", is_flag=True, help="JSON 输出")
def build_plan(targets: tuple[str, ...], force: bool, as_json: bool) -> None:
    """显示构建计划 (不执行)

    TARGETS 为单元名或分组: @libraries @core @extensions @all
    """
    plan = _svc().pipeline.plan(targets, force=force)
    if as_json:
        click.echo(json.dumps(plan.to_dict(), indent=2, ensure_ascii=False))
        return
    for step in plan:
        mark = "跳过" if step.skip else "构建"
        click.echo(f"  {step.position + 1:3d}. [{mark}] {step.name} {step.unit.version}")
    click.echo(f"\n共 {len(plan)} 个单元: 构建 {len(plan.to_execute)}, 跳过 {len(plan.skipped)}")


@build_group.command(name="run")
@click.argument("targets", nargs=-1, required=True)
@click.option("--continue-on-error", is_flag=True, help="失败后继续构建无关单元")
@click.option("--strict", is_flag=True, help="配合 --continue-on-error：有失败时仍返回非零")
@click.option("--jobs", "-j", type=int, default=None, help="并行度 (默认取配置 max_workers)")
@click.option("--force", is_flag=True, help="忽略已有构建标记，全部重建")
@click.option("--no-package", is_flag=True, help="只构建不打包")
@click.pass_context
def build_run(
    ctx: click.Context,
    targets: tuple[str, ...],
    continue_on_error: bool,
    strict: bool,
    jobs: int | None,
    force: bool,
    no_package: bool,
) -> None:
    """执行构建

    TARGETS 为单元名或分组: @libraries @core @extensions @all
    """
    policy = FailurePolicy.CONTINUE if continue_on_error else None
    summary = _svc().pipeline.run(
        targets, policy=policy, max_workers=jobs, force=force, package=not no_package,
    )
    _print_summary(summary)
    code = summary.exit_code(strict)
    if code:
        ctx.exit(code)


def _print_summary(summary: RunSummary) -> None:
    for rec in summary.records:
        extra = f" ({rec.skip_reason})" if rec.status == BuildStatus.SKIPPED else ""
        if rec.status == BuildStatus.SUCCESS:
            extra = f" {rec.duration:.1f}s"
        click.echo(f"  {rec.status.value:8s} {rec.unit}{extra}")

    for rec in summary.records:
        if rec.status != BuildStatus.FAILED:
            continue
        click.echo(f"\n==== {rec.unit} 失败 ({rec.error_kind}) 日志: {rec.log_path or '-'} ====")
        click.echo(rec.error_summary)

    c = summary.counts()
    click.echo(
        f"\n成功={c['success']} 失败={c['failed']} 跳过={c['skipped']}"
        + (" (已取消)" if summary.cancelled else "")
    )


@build_group.command(name="report")
@click.option("--unit", default=None, help="按单元过滤")
@click.option("--limit", default=20, help="最大记录数")
@click.option("--run-id", default=None, help="显示指定运行的详细记录")
def build_report(unit: str | None, limit: int, run_id: str | None) -> None:
    """构建报告查询"""
    reports = _svc().reports
    if run_id:
        run = reports.get(run_id)
        if run is None:
            raise click.ClickException(f"运行记录不存在: {run_id}")
        click.echo(json.dumps(run, indent=2, ensure_ascii=False))
        return
    runs = reports.query(unit=unit, limit=limit)
    if not runs:
        click.echo("没有构建记录。")
        return
    for r in runs:
        s = r.get("summary", {})
        click.echo(
            f"  {r['run_id']}  {r['timestamp'][:19]}  PHP {r.get('php_version') or '-':8s}  "
            f"成功={s.get('success', 0)} 失败={s.get('failed', 0)} 跳过={s.get('skipped', 0)}"
        )
