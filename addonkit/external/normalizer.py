"""外部依赖声明规范化

把一条原始声明（URL 字符串或结构化记录）解析成 ExternalDependencySpec：

  1. 判定托管后端（显式 type > 镜像主机表 > svn: 前缀 > 默认 git）
  2. 规范化镜像 URL（去掉 mainline 后缀、改写为 repos.<forge> 主机）
  3. 市场前缀 URL 提取署名 slug，并识别 trunk / tags/<name> 布局
  4. GitHub URL 中 owner/repo 之后的部分视为仓内子路径
  5. 由缓存根 + URL + 选择器字面值得到缓存槽位
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from addonkit.core.exceptions import DeclarationError
from addonkit.core.models import (
    LATEST_TAG,
    CheckoutSelector,
    ExternalDependencySpec,
    VcsType,
)
from addonkit.external.cache import CacheStore

logger = logging.getLogger(__name__)

PROTOCOL_SEPARATOR = "://"

# 镜像主机 -> (后端, 规范主机)
MIRROR_HOSTS: dict[str, tuple[VcsType, str]] = {
    "git.curseforge.com": (VcsType.GIT, "repos.curseforge.com"),
    "git.wowace.com": (VcsType.GIT, "repos.wowace.com"),
    "svn.curseforge.com": (VcsType.SVN, "repos.curseforge.com"),
    "svn.wowace.com": (VcsType.SVN, "repos.wowace.com"),
    "hg.curseforge.com": (VcsType.HG, "repos.curseforge.com"),
    "hg.wowace.com": (VcsType.HG, "repos.wowace.com"),
}

# 插件市场前缀：其后第一段为署名 slug
MARKETPLACE_PREFIXES = (
    "https://repos.curseforge.com/wow/",
    "https://repos.wowace.com/wow/",
)

GITHUB_HOST = "github.com"

_RECORD_KEYS = frozenset(
    ("type", "url", "tag", "branch", "commit", "path", "curse-slug"),
)


def _selector_from_record(record: Mapping[str, Any]) -> CheckoutSelector:
    """按 tag > branch > commit 的优先级构造选择器"""
    tag = str(record.get("tag") or "").strip()
    branch = str(record.get("branch") or "").strip()
    commit = str(record.get("commit") or "").strip()
    if tag:
        return CheckoutSelector.tag(tag)
    if branch:
        return CheckoutSelector.branch(branch)
    if commit:
        return CheckoutSelector.commit(commit)
    return CheckoutSelector.default()


def _strip_scheme(url: str) -> str:
    return url.split(PROTOCOL_SEPARATOR, 1)[-1]


def _canonicalize_mirror(url: str, host: str, vcs: VcsType, canonical_host: str) -> str:
    """镜像 URL -> https://repos.<forge>/... 形式"""
    if vcs is VcsType.GIT:
        url = url.removesuffix("/mainline.git").removesuffix(".git")
    else:
        url = url.replace("/mainline", "", 1)
    rest = _strip_scheme(url)
    rest = rest.replace(host, canonical_host, 1)
    url = "https://" + rest.rstrip("/")
    if vcs is VcsType.SVN:
        url = _ensure_svn_layout(url)
    return url


def _ensure_svn_layout(url: str) -> str:
    """市场 svn 地址止于项目根时补上 /trunk，保证重复规范化结果不变"""
    for prefix in MARKETPLACE_PREFIXES:
        if url.startswith(prefix):
            segments = url[len(prefix):].split("/")
            if len(segments) == 1:
                return url + "/trunk"
    return url


def _detect_backend(url: str) -> tuple[VcsType, str | None]:
    """按主机表判定后端，返回 (后端, 命中的镜像主机)"""
    for host, (vcs, _) in MIRROR_HOSTS.items():
        if host in url:
            return vcs, host
    if url.startswith("svn:"):
        return VcsType.SVN, None
    return VcsType.UNKNOWN, None


class _Draft:
    """规范化过程中的可变中间态"""

    def __init__(self, url: str, vcs: VcsType, selector: CheckoutSelector) -> None:
        self.url = url
        self.vcs = vcs
        self.selector = selector
        self.subpath = ""
        self.slug = ""

    def apply_marketplace(self) -> None:
        """识别市场 URL：提取 slug，区分 trunk / tags 布局"""
        for prefix in MARKETPLACE_PREFIXES:
            if not self.url.startswith(prefix):
                continue
            remaining = self.url[len(prefix):]
            parts = remaining.split("/", 1)
            self.slug = parts[0]
            if len(parts) < 2 or not parts[1]:
                return

            layout = parts[1].split("/", 1)
            root = layout[0]
            if root == "trunk":
                self.vcs = VcsType.SVN
                if len(layout) > 1:
                    self.subpath = layout[1].strip("/")
            elif root == "tags":
                self.vcs = VcsType.SVN
                tag_parts = layout[1].split("/", 1) if len(layout) > 1 else [""]
                tag = tag_parts[0] or LATEST_TAG
                rest = tag_parts[1].strip("/") if len(tag_parts) > 1 else ""
                self.selector = CheckoutSelector.tag(tag)
                self.subpath = rest
                self.url = f"{prefix}{self.slug}/trunk" + (f"/{rest}" if rest else "")
            return

    def apply_github_subpath(self) -> None:
        """GitHub URL 超出 owner/repo 的部分视为子路径"""
        if self.vcs is not VcsType.GIT or GITHUB_HOST not in self.url:
            return
        if PROTOCOL_SEPARATOR not in self.url:
            return
        scheme, rest = self.url.split(PROTOCOL_SEPARATOR, 1)
        segments = rest.split("/", 3)
        if len(segments) < 4 or not segments[3].strip("/"):
            return
        self.subpath = segments[3].strip("/")
        self.url = f"{scheme}{PROTOCOL_SEPARATOR}{'/'.join(segments[:3])}"


def parse_declaration(
    dest_path: str, raw: Any, cache: CacheStore,
) -> ExternalDependencySpec:
    """解析单条依赖声明

    Raises:
        DeclarationError: 声明既不是字符串也不是记录，或缺少 URL
    """
    if isinstance(raw, str):
        record: Mapping[str, Any] = {"url": raw}
    elif isinstance(raw, Mapping):
        record = raw
        unknown = set(record) - _RECORD_KEYS
        if unknown:
            logger.debug("%s: 忽略未知字段 %s", dest_path, sorted(unknown))
    else:
        raise DeclarationError(
            f"{dest_path}: 依赖声明格式无效 (类型: {type(raw).__name__})",
        )

    url = str(record.get("url") or "").strip()
    if not url:
        raise DeclarationError(f"{dest_path}: 依赖声明缺少 url")

    explicit = VcsType.parse(record.get("type")) if record.get("type") else VcsType.UNKNOWN
    detected, mirror_host = _detect_backend(url)
    if mirror_host is not None:
        vcs_for_mirror, canonical_host = MIRROR_HOSTS[mirror_host]
        url = _canonicalize_mirror(url, mirror_host, vcs_for_mirror, canonical_host)

    draft = _Draft(url.rstrip("/"), explicit, _selector_from_record(record))
    if draft.vcs is VcsType.UNKNOWN:
        draft.vcs = detected

    draft.apply_marketplace()
    if draft.vcs is VcsType.UNKNOWN:
        draft.vcs = VcsType.GIT
    draft.apply_github_subpath()

    explicit_path = str(record.get("path") or "").strip().strip("/")
    if explicit_path:
        draft.subpath = explicit_path

    slug = str(record.get("curse-slug") or "").strip() or draft.slug

    spec = ExternalDependencySpec(
        dest_path=dest_path,
        url=draft.url,
        vcs=draft.vcs,
        selector=draft.selector,
        subpath=draft.subpath,
        attribution_slug=slug,
        cache_slot=cache.slot_path(draft.url, draft.selector.literal),
        raw=raw,
    )
    logger.debug("%s: 规范化 -> %s", dest_path, spec.describe())
    return spec


def parse_declarations(
    declarations: Mapping[str, Any], cache: CacheStore,
) -> list[ExternalDependencySpec]:
    """按声明顺序解析全部依赖；目标路径重复时后者覆盖前者"""
    specs: dict[str, ExternalDependencySpec] = {}
    for dest_path, raw in declarations.items():
        dest = str(dest_path).strip("/")
        if dest in specs:
            logger.warning("目标路径重复，后声明覆盖前者: %s", dest)
        specs[dest] = parse_declaration(dest, raw, cache)
    return list(specs.values())
