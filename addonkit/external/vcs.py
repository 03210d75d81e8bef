"""检出驱动基类与按后端分派

每种托管后端一个驱动，统一提供:
- checkout(): 检出/更新到缓存槽位，返回 CheckoutResult
- discover_attribution_slug(): 机会式发现署名 slug

HG 与无法识别的后端没有驱动，create_driver 抛 UnsupportedBackendError，
由编排器转为警告。
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from addonkit.core.config import Config
    from addonkit.external.cache import CacheStore, StalenessMarker
    from addonkit.utils.shell import CommandExecutor

from addonkit.core.exceptions import UnsupportedBackendError
from addonkit.core.models import CheckoutResult, ExternalDependencySpec, VcsType
from addonkit.utils.logger import bind_logger

logger = logging.getLogger(__name__)

_BINARY_SNIFF_BYTES = 8192


class VcsDriver(ABC):
    """检出驱动基类"""

    label = "VCS"

    def __init__(
        self,
        spec: ExternalDependencySpec,
        cache: CacheStore,
        *,
        force: bool = False,
        executor: CommandExecutor | None = None,
        config: Config | None = None,
    ) -> None:
        if config is None:
            from addonkit.core.config import get_config
            config = get_config()
        if executor is None:
            from addonkit.utils.shell import get_executor
            executor = get_executor()
        self.spec = spec
        self.cache = cache
        self.force = force
        self.config = config
        self.executor = executor
        self.log = bind_logger(logger, spec.dest_path)

    @property
    def slot(self) -> Path:
        return self.spec.cache_slot

    @abstractmethod
    def checkout(self) -> CheckoutResult:
        """检出或更新依赖，失败抛 CheckoutError / ResolutionError"""

    def discover_attribution_slug(self, path: Path | None) -> str:
        """默认只使用 URL 或声明中已知的 slug"""
        return self.spec.attribution_slug

    def _is_fresh(self, marker: StalenessMarker) -> bool:
        """force 时无条件删除标记；否则按有效期判断"""
        if self.force:
            marker.delete()
            return False
        return not marker.is_stale()

    def _final_path(self) -> Path:
        """子路径未包含在 URL 中时，最终路径再嵌套一层"""
        if self.spec.subpath_in_url:
            return self.slot
        return self.slot / self.spec.subpath

    def _result(self, resolved: str, status: str) -> CheckoutResult:
        self.log.debug("%s: 检出完成 (%s): %s", self.label, status, resolved or "default")
        return CheckoutResult(
            dest_path=self.spec.dest_path,
            selector=resolved,
            path=self._final_path(),
            status=status,
            attribution_slug=self.spec.attribution_slug,
        )


def scan_for_slug(root: Path, marker: str, max_bytes: int = 1024 * 1024) -> str:
    """递归扫描文件内容，返回第一个 marker 之后的词

    跳过隐藏目录（.svn/.git）、二进制文件和超过 max_bytes 的文件。
    """
    if not marker or not root.is_dir():
        return ""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for name in sorted(filenames):
            if name.startswith("."):
                continue
            path = Path(dirpath) / name
            try:
                if path.stat().st_size > max_bytes:
                    continue
                data = path.read_bytes()
            except OSError as e:
                logger.debug("跳过无法读取的文件 %s: %s", path, e)
                continue
            if b"\0" in data[:_BINARY_SNIFF_BYTES]:
                continue
            text = data.decode("utf-8", errors="ignore")
            idx = text.find(marker)
            if idx < 0:
                continue
            tokens = text[idx + len(marker):].split(maxsplit=1)
            if tokens:
                return tokens[0]
    return ""


def create_driver(
    spec: ExternalDependencySpec,
    cache: CacheStore,
    *,
    force: bool = False,
    executor: CommandExecutor | None = None,
    config: Config | None = None,
) -> VcsDriver:
    """按后端类型构造驱动

    Raises:
        UnsupportedBackendError: HG 或未知后端
        ToolNotFoundError: 后端所需命令不存在
    """
    if spec.vcs is VcsType.GIT:
        from addonkit.external.git_driver import GitDriver
        return GitDriver(spec, cache, force=force, executor=executor, config=config)
    if spec.vcs is VcsType.SVN:
        from addonkit.external.svn_driver import SvnDriver
        return SvnDriver(spec, cache, force=force, executor=executor, config=config)
    if spec.vcs is VcsType.HG:
        raise UnsupportedBackendError(f"暂不支持 Mercurial 外部依赖: {spec.dest_path}")
    raise UnsupportedBackendError(
        f"未知的外部依赖类型 {spec.vcs.value}: {spec.dest_path}",
    )
