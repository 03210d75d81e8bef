"""外部依赖缓存管理

职责:
- 解析进程级缓存根目录（home 目录或 CI 临时目录）
- 计算每个依赖的缓存槽位路径
- 维护基于时间的新鲜度标记文件

缓存策略:
  - 槽位 = urlsafe(规范 URL + "_" + 选择器字面值) + 短摘要，跨构建复用
  - 标记文件记录最后一次成功检出/更新的时间，24 小时内视为新鲜
  - 标记文件损坏时自动删除并视为过期，不报错
  - 缓存只由显式 clear() 删除
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Mapping

if TYPE_CHECKING:
    from addonkit.core.config import Config

from addonkit.core.exceptions import ConfigError
from addonkit.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

MARKER_PREFIX = ".lastUpdated"
DEFAULT_VALIDITY = timedelta(hours=24)
SLOT_DIGEST_LEN = 10

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]")

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_ci(env: Mapping[str, str] | None = None) -> bool:
    """是否运行在 GitHub Actions 中"""
    env = os.environ if env is None else env
    return env.get("CI") == "true" and env.get("GITHUB_ACTIONS") == "true"


def resolve_cache_root(
    namespace: str = ".addonkit",
    env: Mapping[str, str] | None = None,
) -> Path:
    """解析缓存根目录: <home 或 RUNNER_TEMP>/<namespace>/.cache/externals"""
    env = os.environ if env is None else env
    if is_ci(env):
        runner_temp = env.get("RUNNER_TEMP", "")
        if not runner_temp:
            raise ConfigError("CI 环境下未设置 RUNNER_TEMP，无法确定缓存目录")
        base = Path(runner_temp)
    else:
        base = Path.home()
    return base / namespace / ".cache" / "externals"


def urlsafe(text: str) -> str:
    """将任意字符串转换为可作为目录名的形式"""
    return _UNSAFE_CHARS_RE.sub("_", text)


class StalenessMarker:
    """单个缓存槽位的新鲜度标记

    文件: <directory>/<prefix>[_<selector>]
    内容: 第一行 RFC 3339 时间戳，第二行（可选）解析后的选择器
    """

    def __init__(
        self,
        directory: Path,
        prefix: str = MARKER_PREFIX,
        selector: str = "",
        *,
        validity: timedelta = DEFAULT_VALIDITY,
        clock: Clock | None = None,
    ) -> None:
        self.directory = Path(directory)
        self.prefix = prefix
        self.selector = selector
        self.validity = validity
        self._clock = clock or _utcnow

    @property
    def path(self) -> Path:
        filename = self.prefix
        if self.selector:
            filename += "_" + urlsafe(self.selector)
        return self.directory / filename

    def write(self, resolved: str = "") -> None:
        """写入当前时间（及解析后的选择器）"""
        content = self._clock().isoformat(timespec="seconds")
        if resolved:
            content += "\n" + resolved
        atomic_write(self.path, content + "\n")

    def delete(self) -> None:
        """删除标记文件，文件不存在时忽略"""
        self.path.unlink(missing_ok=True)

    def _read_lines(self) -> list[str]:
        return self.path.read_text(encoding="utf-8").splitlines()

    def timestamp(self) -> datetime:
        """读取标记时间

        Raises:
            OSError: 文件不可读
            ValueError: 内容无法解析
        """
        lines = self._read_lines()
        if not lines:
            raise ValueError("标记文件为空")
        raw = lines[0].strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        ts = datetime.fromisoformat(raw)
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts

    def resolved_selector(self) -> str:
        """读取标记中记录的解析后选择器，没有则返回空字符串"""
        try:
            lines = self._read_lines()
        except OSError:
            return ""
        return lines[1].strip() if len(lines) > 1 else ""

    def is_stale(self) -> bool:
        """判断缓存是否过期

        不存在 -> 过期；不可读/无法解析 -> 删除并过期；
        超过有效期 -> 删除并过期；否则新鲜。
        """
        if not self.path.exists():
            return True
        try:
            ts = self.timestamp()
        except (OSError, ValueError) as e:
            logger.error("%s: 标记文件损坏，视为过期: %s", self.path.name, e)
            self._delete_quietly()
            return True

        if self._clock() - ts > self.validity:
            logger.debug("%s: 缓存已过期，需要更新", self.path.name)
            self._delete_quietly()
            return True

        logger.debug("%s: 缓存仍然有效", self.path.name)
        return False

    def _delete_quietly(self) -> None:
        try:
            self.delete()
        except OSError as e:
            logger.error("%s: 删除标记文件失败: %s", self.path.name, e)


class CacheStore:
    """外部依赖缓存仓库

    显式注入到规范化器与驱动中，测试可替换为临时目录。
    """

    def __init__(
        self,
        root: str | Path | None = None,
        *,
        namespace: str = ".addonkit",
        validity: timedelta = DEFAULT_VALIDITY,
        clock: Clock | None = None,
    ) -> None:
        self._root = Path(root) if root else None
        self.namespace = namespace
        self.validity = validity
        self.clock = clock or _utcnow

    @classmethod
    def from_config(cls, config: Config) -> CacheStore:
        return cls(
            root=config.cache_dir or None,
            namespace=config.tool_namespace,
            validity=timedelta(hours=config.cache_valid_hours),
        )

    @property
    def root(self) -> Path:
        if self._root is None:
            self._root = resolve_cache_root(self.namespace)
        return self._root

    def ensure(self) -> Path:
        """创建缓存根目录（幂等）"""
        if not self.root.exists():
            logger.info("创建缓存目录: %s", self.root)
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def slot_path(self, url: str, selector: str = "") -> Path:
        """计算依赖的缓存槽位路径

        目录名 = urlsafe(url_selector) + "-" + 原始字符串摘要前 10 位；
        urlsafe 有损（"/" 与 "_" 都变成 "_"），摘要保证不同输入不共用槽位。
        """
        raw = f"{url}_{selector}"
        digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:SLOT_DIGEST_LEN]
        return self.root / f"{urlsafe(raw)}-{digest}"

    def marker(
        self, slot: Path, selector: str = "", prefix: str = MARKER_PREFIX,
    ) -> StalenessMarker:
        return StalenessMarker(
            slot, prefix, selector, validity=self.validity, clock=self.clock,
        )

    def list_slots(self) -> list[dict[str, str]]:
        """列出缓存中的所有槽位"""
        result: list[dict[str, str]] = []
        if not self.root.exists():
            return result
        for slot in sorted(self.root.iterdir()):
            if not slot.is_dir():
                continue
            if (slot / ".git").exists():
                vcs = "git"
            elif (slot / ".svn").exists():
                vcs = "svn"
            else:
                vcs = "-"
            markers = sorted(p.name for p in slot.glob(MARKER_PREFIX + "*"))
            result.append({
                "name": slot.name,
                "type": vcs,
                "path": str(slot),
                "markers": ",".join(markers),
            })
        return result

    def clear(self) -> bool:
        """删除整个缓存目录，目录不存在时返回 False"""
        if not self.root.exists():
            return False
        logger.info("删除缓存目录: %s", self.root)
        shutil.rmtree(self.root)
        return True
