"""外部命令调用

git/svn 驱动不直接碰 subprocess，而是通过 CommandExecutor 执行命令；
测试注入假执行器即可模拟任意输出与退出码。
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Protocol

from addonkit.core.exceptions import ExecutionError, ToolNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """一次命令调用的退出码与输出"""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stdout + stderr，错误特征匹配与异常消息都用它"""
        return f"{self.stdout}\n{self.stderr}".strip()


class CommandExecutor(Protocol):
    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        """执行命令；非零退出码不抛异常，由调用方检查 success"""
        ...


class LocalExecutor:
    """用 subprocess.run 在本机执行命令"""

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        logger.debug("执行: %s (cwd=%s)", " ".join(cmd), cwd or ".")
        # env 只做增量覆盖，保留 PATH/HOME 等
        full_env = {**os.environ, **env} if env else None
        try:
            proc = subprocess.run(
                cmd, cwd=cwd, env=full_env, timeout=timeout,
                capture_output=True, text=True, check=False,
            )
        except FileNotFoundError as e:
            raise ToolNotFoundError(f"命令不存在: {cmd[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise ExecutionError(f"命令超时 ({timeout}s): {' '.join(cmd)}") from e
        if proc.returncode != 0:
            logger.debug("退出码 %d: %s", proc.returncode, cmd[:2])
        return CommandResult(proc.returncode, proc.stdout, proc.stderr)


_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    """驱动未显式注入执行器时使用的默认实例"""
    return _executor


def set_executor(executor: CommandExecutor) -> None:
    global _executor  # noqa: PLW0603
    _executor = executor


def require_binary(name: str) -> str:
    """确认命令在 PATH 上，返回其完整路径

    Raises:
        ToolNotFoundError: 命令不存在
    """
    found = shutil.which(name)
    if not found:
        raise ToolNotFoundError(f"{name} 未安装或不在 PATH 中")
    return found
