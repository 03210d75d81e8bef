"""addonkit 日志配置

根日志器只配置一次（CLI 入口调用 setup_logging），输出到 stderr：
- 文本格式供本地阅读
- JSON 格式供 CI 收集，每行一条记录

多个依赖并发拉取时日志会交错，驱动与编排器通过 bind_logger
拿到带 [目标路径] 前缀的 logger。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping

TEXT_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class JSONFormatter(logging.Formatter):
    """每条记录输出一行 JSON

    字段: timestamp, level, logger, message, thread；
    依赖日志附带 dependency，异常附带 exception。
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }
        dependency = getattr(record, "dependency", "")
        if dependency:
            entry["dependency"] = dependency
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class DependencyLogAdapter(logging.LoggerAdapter):
    """消息加 [目标路径] 前缀，并把目标路径写入 record.dependency"""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any],
    ) -> tuple[Any, MutableMapping[str, Any]]:
        dest = (self.extra or {}).get("dependency", "")
        kwargs["extra"] = {"dependency": dest, **(kwargs.get("extra") or {})}
        return f"[{dest}] {msg}", kwargs


def _clear_handlers(root: logging.Logger) -> None:
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """配置根日志器；重复调用会替换之前的 handler

    无法识别的级别按 INFO 处理。
    """
    root = logging.getLogger()
    _clear_handlers(root)
    root.setLevel(_LEVELS.get(level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)


def bind_logger(logger: logging.Logger, dest_path: str) -> DependencyLogAdapter:
    """返回绑定了目标路径的 logger，例如 "[Libs/LibStub] 缓存有效" """
    return DependencyLogAdapter(logger, {"dependency": dest_path})


def reset_logging() -> None:
    """移除根日志器的全部 handler（测试用）"""
    _clear_handlers(logging.getLogger())
