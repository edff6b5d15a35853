"""phmbuild 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
业务异常 (PHMBuildError) 统一转换为 click 错误输出，退出码 1。
"""

import os
from pathlib import Path
from typing import Any

import click

from phmbuild import __version__
from phmbuild.core import config as cfgmod
from phmbuild.core.exceptions import PHMBuildError
from phmbuild.services.container import get_container, reset_container
from phmbuild.utils.logger import setup_logging


def _svc() -> Any:
    """获取全局服务容器的快捷方式"""
    return get_container()


class _Group(click.Group):
    """把 PHMBuildError 转成 ClickException"""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except PHMBuildError as e:
            raise click.ClickException(f"[{e.code}] {e}") from e


@click.group(cls=_Group)
@click.version_option(version=__version__)
@click.option("--config", "config_path", default="", envvar=cfgmod.CONFIG_ENV,
              help="配置文件路径 (默认 configs/default.yml)")
def main(config_path: str) -> None:
    """phmbuild - PHP 构建流水线"""
    setup_logging(
        level=os.getenv("PHMBUILD_LOG_LEVEL", "INFO"),
        json_output=os.getenv("PHMBUILD_LOG_JSON", "") == "1",
    )
    if config_path:
        cfgmod.init_config(config_path)
        reset_container()
    elif cfgmod._current is None and Path(cfgmod.DEFAULT_CONFIG_FILE).exists():
        cfgmod.init_config(cfgmod.DEFAULT_CONFIG_FILE)
        reset_container()


# 注册各领域子命令
from phmbuild.cli.cmd_units import register as _reg_units  # noqa: E402
from phmbuild.cli.cmd_build import register as _reg_build  # noqa: E402
from phmbuild.cli.cmd_markers import register as _reg_markers  # noqa: E402
from phmbuild.cli.cmd_package import register as _reg_package  # noqa: E402
from phmbuild.cli.cmd_index import register as _reg_index  # noqa: E402
from phmbuild.cli.cmd_misc import register as _reg_misc  # noqa: E402

_reg_units(main)
_reg_build(main)
_reg_markers(main)
_reg_package(main)
_reg_index(main)
_reg_misc(main)
