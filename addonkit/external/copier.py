"""缓存到打包目录的复制

职责:
- 清空并重建目标目录
- 读取依赖自带 pkgmeta 的 ignore 规则
- 跳过隐藏文件和被忽略的条目后递归复制
"""

from __future__ import annotations

import fnmatch
import logging
import os
import shutil
from pathlib import Path
from typing import Callable

from addonkit.core.exceptions import CopyError
from addonkit.core.models import CheckoutResult
from addonkit.external.pkgmeta import load_ignores

logger = logging.getLogger(__name__)


def is_ignored(rel_path: str, is_dir: bool, patterns: list[str]) -> bool:
    """按相对路径或文件名匹配 ignore 模式；目录可用 "dir/*" 形式整体忽略"""
    name = os.path.basename(rel_path)
    for raw in patterns:
        pattern = raw.strip().rstrip("/") if is_dir else raw.strip()
        if is_dir and pattern.endswith("/*"):
            pattern = pattern[:-2]
        if not pattern:
            continue
        if fnmatch.fnmatchcase(rel_path, pattern) or fnmatch.fnmatchcase(name, pattern):
            return True
    return False


def _ignore_filter(src_root: Path, patterns: list[str]) -> Callable[[str, list[str]], set[str]]:
    """生成 shutil.copytree 的 ignore 回调"""

    def _ignore(directory: str, names: list[str]) -> set[str]:
        rel_dir = os.path.relpath(directory, src_root)
        skipped: set[str] = set()
        for name in names:
            if name.startswith("."):
                skipped.add(name)
                continue
            rel = name if rel_dir == "." else os.path.join(rel_dir, name).replace(os.sep, "/")
            if is_ignored(rel, os.path.isdir(os.path.join(directory, name)), patterns):
                logger.debug("忽略: %s", rel)
                skipped.add(name)
        return skipped

    return _ignore


def copy_tree(src: Path, dest: Path, ignore: list[str] | None = None) -> Path:
    """清空 dest 后从 src 复制（src 自带的 pkgmeta ignore 规则一并生效）

    Raises:
        CopyError: src 不存在或复制失败
    """
    if dest.exists():
        shutil.rmtree(dest)
    dest.mkdir(parents=True, exist_ok=True)

    if not src.exists():
        raise CopyError(f"缓存路径不存在 ({dest}): {src}")

    patterns = list(ignore or []) + load_ignores(src)
    try:
        shutil.copytree(src, dest, ignore=_ignore_filter(src, patterns), dirs_exist_ok=True)
    except (OSError, shutil.Error) as e:
        raise CopyError(f"复制失败 {src} -> {dest}: {e}") from e
    logger.debug("已复制 %s -> %s", src.name, dest)
    return dest


def copy_to_package(result: CheckoutResult, package_dir: str | Path) -> Path:
    """把检出结果复制到打包目录下的目标路径"""
    if result.path is None:
        raise CopyError(f"{result.dest_path}: 检出结果没有磁盘路径")
    dest = Path(package_dir) / result.dest_path
    return copy_tree(result.path, dest)
