"""分布式后端（git）检出驱动

流程:
  1. 标记文件 .lastUpdated[_<selector>] 新鲜时直接返回（缓存命中）
  2. 槽位无 .git 时 clone，否则 fetch --prune --tags
  3. 按选择器检出: 分支 / tag / 完整或缩写 commit / 远端默认分支
  4. 成功后写入标记（含解析后的选择器）
"""

from __future__ import annotations

import logging
import re
import shutil

from addonkit.core.exceptions import CheckoutError, ResolutionError
from addonkit.core.models import CheckoutResult, SelectorKind
from addonkit.external.vcs import VcsDriver
from addonkit.utils.shell import CommandResult

logger = logging.getLogger(__name__)

MIN_ABBREV_LEN = 7
_FULL_HASH_RE = re.compile(r"^[0-9a-fA-F]{40}$")
_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")

# 禁止交互式凭据提示，避免并发拉取时挂起
_GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}

_ORIGIN_HEAD = "refs/remotes/origin/HEAD"
_ORIGIN_PREFIX = "refs/remotes/origin/"


class GitDriver(VcsDriver):
    """git 检出驱动"""

    label = "GIT"

    def checkout(self) -> CheckoutResult:
        spec = self.spec
        marker = self.cache.marker(self.slot, spec.selector.literal)

        if self._is_fresh(marker):
            resolved = marker.resolved_selector() or spec.selector.literal
            self.log.info("GIT: 缓存有效，跳过更新: %s", self.slot.name)
            return self._result(resolved, "cached")

        self.cache.ensure()
        if (self.slot / ".git").exists():
            self.log.info("GIT: 更新缓存: %s", spec.url)
            self._git("fetch", "--prune", "--tags", "--force", "origin", what="fetch")
        else:
            self._clone()

        resolved = self._checkout_selector()
        marker.write(resolved)
        self.log.info("GIT: 检出成功: %s", resolved)
        return self._result(resolved, "updated")

    # ------------------------------------------------------------------
    # git 命令
    # ------------------------------------------------------------------

    def _run(self, *args: str, cwd: str | None = None) -> CommandResult:
        cmd = [self.config.git_binary, *args]
        return self.executor.execute(
            cmd, cwd=cwd if cwd is not None else str(self.slot), env=_GIT_ENV,
        )

    def _git(self, *args: str, what: str = "", cwd: str | None = None) -> CommandResult:
        """执行 git 命令，失败抛 CheckoutError"""
        r = self._run(*args, cwd=cwd)
        if not r.success:
            raise CheckoutError(
                f"{self.spec.dest_path}: git {what or args[0]} 失败 "
                f"(rc={r.returncode}): {r.output[:500]}",
                r.output,
            )
        return r

    def _ref_exists(self, ref: str) -> bool:
        r = self._run("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")
        return r.success

    def _clone(self) -> None:
        if self.slot.exists():
            # 槽位残缺（无 .git），整体重建
            self.log.warning("GIT: 缓存目录无效，重新克隆: %s", self.slot)
            shutil.rmtree(self.slot)
        self.slot.parent.mkdir(parents=True, exist_ok=True)
        self.log.info("GIT: 克隆 %s -> %s", self.spec.url, self.slot)
        self._git(
            "clone", "--quiet", self.spec.url, str(self.slot),
            what="clone", cwd=str(self.slot.parent),
        )

    # ------------------------------------------------------------------
    # 选择器解析
    # ------------------------------------------------------------------

    def _checkout_selector(self) -> str:
        selector = self.spec.selector
        if selector.kind is SelectorKind.BRANCH:
            return self._checkout_branch(selector.value)
        if selector.kind is SelectorKind.TAG:
            tag = self._latest_tag() if selector.is_latest else selector.value
            return self._checkout_tag(tag)
        if selector.kind is SelectorKind.COMMIT:
            return self._checkout_commit(selector.value)
        return self._checkout_branch(self._default_branch())

    def _checkout_branch(self, name: str) -> str:
        remote_ref = _ORIGIN_PREFIX + name
        if not self._ref_exists(remote_ref):
            raise ResolutionError(f"{self.spec.dest_path}: 分支不存在: {name}")
        self.log.debug("GIT: 检出分支 %s", name)
        self._git("checkout", "--quiet", "--force", "-B", name, remote_ref, what="checkout")
        return name

    def _checkout_tag(self, tag: str) -> str:
        ref = f"refs/tags/{tag}"
        if not self._ref_exists(ref):
            raise ResolutionError(f"{self.spec.dest_path}: tag 不存在: {tag}")
        self.log.debug("GIT: 检出 tag %s", tag)
        self._git("checkout", "--quiet", "--force", "--detach", ref, what="checkout")
        return tag

    def _checkout_commit(self, rev: str) -> str:
        if _FULL_HASH_RE.match(rev):
            full = rev.lower()
            if not self._ref_exists(full):
                raise ResolutionError(f"{self.spec.dest_path}: commit 不存在: {rev}")
        elif len(rev) >= MIN_ABBREV_LEN and _HEX_RE.match(rev):
            full = self._expand_abbrev(rev.lower())
        else:
            raise ResolutionError(f"{self.spec.dest_path}: 无效的 commit 或缩写: {rev}")
        self.log.debug("GIT: 检出 commit %s", full)
        self._git("checkout", "--quiet", "--force", "--detach", full, what="checkout")
        return full

    def _expand_abbrev(self, prefix: str) -> str:
        """线性扫描全部提交，返回第一个以 prefix 开头的完整哈希"""
        r = self._git("rev-list", "--all", what="rev-list")
        for line in r.stdout.splitlines():
            if line.startswith(prefix):
                return line.strip()
        raise ResolutionError(
            f"{self.spec.dest_path}: 找不到缩写哈希对应的 commit: {prefix}",
        )

    def _latest_tag(self) -> str:
        r = self._git(
            "for-each-ref", "--sort=-creatordate", "--count=1",
            "--format=%(refname:short)", "refs/tags", what="for-each-ref",
        )
        tag = r.stdout.strip()
        if not tag:
            raise ResolutionError(f"{self.spec.dest_path}: 仓库中没有任何 tag")
        return tag

    def _default_branch(self) -> str:
        """解析远端 HEAD 指向的默认分支"""
        r = self._run("symbolic-ref", "--quiet", _ORIGIN_HEAD)
        if not r.success:
            self._run("remote", "set-head", "origin", "--auto")
            r = self._run("symbolic-ref", "--quiet", _ORIGIN_HEAD)
        target = r.stdout.strip() if r.success else ""
        if not target.startswith(_ORIGIN_PREFIX):
            raise ResolutionError(f"{self.spec.dest_path}: 无法确定默认分支")
        return target.removeprefix(_ORIGIN_PREFIX)
