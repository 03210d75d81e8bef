"""addonkit 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

import functools
import os
from typing import Any, Callable

import click

from addonkit import __version__
from addonkit.core.exceptions import AddonKitError
from addonkit.utils.logger import setup_logging


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """把业务异常转换为 click 的友好错误输出"""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except AddonKitError as e:
            raise click.ClickException(f"[{e.code}] {e}") from e

    return wrapper


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, help="配置文件路径 (YAML)")
def main(config_path: str | None) -> None:
    """addonkit - 插件外部依赖拉取与同步"""
    setup_logging(
        level=os.getenv("ADDONKIT_LOG_LEVEL", "INFO"),
        json_output=os.getenv("ADDONKIT_LOG_JSON", "") == "1",
    )
    if config_path:
        from addonkit.core.config import init_config
        try:
            init_config(config_path)
        except AddonKitError as e:
            raise click.ClickException(f"[{e.code}] {e}") from e


# 注册各领域子命令
from addonkit.cli.cmd_externals import register as _reg_externals  # noqa: E402
from addonkit.cli.cmd_cache import register as _reg_cache  # noqa: E402

_reg_externals(main)
_reg_cache(main)
