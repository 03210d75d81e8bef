"""pkgmeta 文件加载

只读取外部依赖相关的字段:
- externals: 目标路径 -> 依赖声明
- ignore: 打包时忽略的文件模式
- embedded-libraries: 手工维护的署名列表
- package-as: 打包目录名
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from addonkit.core.exceptions import ConfigError, PkgMetaNotFoundError
from addonkit.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

PKGMETA_FILENAMES = ("pkgmeta.yml", ".pkgmeta")


@dataclass
class PkgMeta:
    """pkgmeta 中与外部依赖相关的部分"""

    path: Path
    package_as: str = ""
    externals: dict[str, Any] = field(default_factory=dict)
    ignore: list[str] = field(default_factory=list)
    embedded_libraries: list[str] = field(default_factory=list)


def find_pkgmeta(directory: str | Path) -> Path:
    """在目录中查找 pkgmeta 文件（pkgmeta.yml 优先）

    Raises:
        PkgMetaNotFoundError: 两种文件都不存在
    """
    base = Path(directory)
    for name in PKGMETA_FILENAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    raise PkgMetaNotFoundError(f"未找到 pkgmeta.yml 或 .pkgmeta: {base}")


def _str_list(value: Any, key: str, path: Path) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{path}: {key} 必须是列表")
    return [str(v) for v in value if v is not None]


def load_pkgmeta(path: str | Path) -> PkgMeta:
    """加载 pkgmeta 文件；传入目录时自动查找"""
    p = Path(path)
    if p.is_dir():
        p = find_pkgmeta(p)
    elif not p.exists():
        raise PkgMetaNotFoundError(f"pkgmeta 文件不存在: {p}")

    try:
        data = load_yaml(p)
    except (yaml.YAMLError, ValueError) as e:
        raise ConfigError(f"{p}: 无法解析 pkgmeta: {e}") from e
    externals = data.get("externals") or {}
    if not isinstance(externals, dict):
        raise ConfigError(f"{p}: externals 必须是映射")

    meta = PkgMeta(
        path=p,
        package_as=str(data.get("package-as") or ""),
        externals=externals,
        ignore=_str_list(data.get("ignore"), "ignore", p),
        embedded_libraries=_str_list(data.get("embedded-libraries"), "embedded-libraries", p),
    )
    logger.debug("已加载 pkgmeta: %s (%d 个外部依赖)", p, len(meta.externals))
    return meta


def load_ignores(directory: str | Path) -> list[str]:
    """读取目录自带 pkgmeta 的 ignore 列表，没有 pkgmeta 时返回空列表"""
    try:
        return load_pkgmeta(find_pkgmeta(directory)).ignore
    except PkgMetaNotFoundError:
        logger.debug("%s 中没有 pkgmeta 文件", Path(directory).name)
        return []
