"""核心数据模型

外部依赖相关的数据类集中定义：
- VcsType / SelectorKind: 枚举
- CheckoutSelector: 检出选择器（分支/tag/commit/默认）
- ExternalDependencySpec: 单个依赖的规范化描述（构造后不可变）
- CheckoutResult: 单个依赖的检出结果
- FetchReport: 一次构建的拉取汇总
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class VcsType(Enum):
    """托管后端类型"""

    GIT = "git"        # 分布式
    SVN = "svn"        # 集中式
    HG = "hg"          # 遗留类型，已声明未实现
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> VcsType:
        """将声明中的 type 字段映射为枚举，无法识别时返回 UNKNOWN"""
        for member in cls:
            if member.value == (value or "").strip().lower():
                return member
        return cls.UNKNOWN


class SelectorKind(Enum):
    BRANCH = "branch"
    TAG = "tag"
    COMMIT = "commit"
    DEFAULT = "default"


LATEST_TAG = "latest"


@dataclass(frozen=True)
class CheckoutSelector:
    """检出选择器：决定物化依赖的哪个版本"""

    kind: SelectorKind = SelectorKind.DEFAULT
    value: str = ""

    @classmethod
    def branch(cls, name: str) -> CheckoutSelector:
        return cls(SelectorKind.BRANCH, name)

    @classmethod
    def tag(cls, name: str) -> CheckoutSelector:
        return cls(SelectorKind.TAG, name)

    @classmethod
    def commit(cls, rev: str) -> CheckoutSelector:
        return cls(SelectorKind.COMMIT, rev)

    @classmethod
    def default(cls) -> CheckoutSelector:
        return cls()

    @property
    def literal(self) -> str:
        """用于缓存目录与标记文件命名的原始字符串"""
        return "" if self.kind is SelectorKind.DEFAULT else self.value

    @property
    def is_latest(self) -> bool:
        return self.kind is SelectorKind.TAG and self.value in ("", LATEST_TAG)

    def __str__(self) -> str:
        if self.kind is SelectorKind.DEFAULT:
            return "default"
        return f"{self.kind.value}:{self.value}"


@dataclass(frozen=True)
class ExternalDependencySpec:
    """单个外部依赖的规范化描述

    同一 (url, selector.literal) 永远映射到同一个 cache_slot，
    与声明写法（字符串/结构化、镜像/规范 URL）无关。
    """

    dest_path: str
    url: str
    vcs: VcsType = VcsType.GIT
    selector: CheckoutSelector = field(default_factory=CheckoutSelector)
    subpath: str = ""
    attribution_slug: str = ""
    cache_slot: Path = Path()
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def subpath_in_url(self) -> bool:
        return not self.subpath or self.subpath in self.url

    def describe(self) -> dict[str, str]:
        """格式化用于列表展示"""
        info = {
            "dest": self.dest_path,
            "type": self.vcs.value,
            "url": self.url,
            "selector": str(self.selector),
        }
        if self.subpath:
            info["path"] = self.subpath
        if self.attribution_slug:
            info["slug"] = self.attribution_slug
        info["cache"] = str(self.cache_slot)
        return info


@dataclass
class CheckoutResult:
    """单个依赖的检出结果"""

    dest_path: str
    selector: str = ""          # 实际生效的选择器（latest/default 已解析）
    path: Path | None = None    # 最终磁盘路径（可能嵌套子路径）
    status: str = "pending"     # "updated", "cached", "skipped", "error"
    attribution_slug: str = ""
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status in ("updated", "cached")


@dataclass
class FetchReport:
    """一次构建的外部依赖拉取汇总"""

    results: dict[str, CheckoutResult] = field(default_factory=dict)
    errors: dict[str, Exception] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    attribution_slugs: list[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def first_error(self) -> Exception | None:
        return next(iter(self.errors.values()), None)

    def summary(self) -> dict[str, int]:
        statuses = [r.status for r in self.results.values()]
        return {
            "total": len(statuses),
            "updated": statuses.count("updated"),
            "cached": statuses.count("cached"),
            "skipped": statuses.count("skipped"),
            "errors": statuses.count("error"),
        }
