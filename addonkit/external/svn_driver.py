"""集中式后端（svn）检出驱动

URL 约定:
  - 分支: <root>/branches/<name>[<tail>]
  - tag:  <root>/tags/<name>[<tail>]，latest 通过 svn log 查询最新 tag
  - commit: trunk URL + -r <rev>
  - 默认: trunk URL
其中 root 为 /trunk 之前的部分，tail 为 /trunk 之后的仓内路径。

瞬时错误按配置的输出特征重试（retry: 等待后重试；reset: 删除槽位后重新检出）。
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

if TYPE_CHECKING:
    from addonkit.core.config import Config
    from addonkit.core.models import ExternalDependencySpec
    from addonkit.external.cache import CacheStore
    from addonkit.utils.shell import CommandExecutor

from addonkit.core.config import SVN_ACTIONS
from addonkit.core.exceptions import CheckoutError, ResolutionError
from addonkit.core.models import CheckoutResult, SelectorKind
from addonkit.external.vcs import VcsDriver, scan_for_slug
from addonkit.utils.shell import CommandResult, require_binary

logger = logging.getLogger(__name__)

GET_TAG_PREFIX = ".lastUpdated_GetTag"
TRUNK = "trunk"

_LOG_TAG_RE = re.compile(r"^\s*A /tags/([^/\s]+)", re.MULTILINE)
# 只匹配完整的路径段 /trunk，不匹配 /trunkated 之类
_TRUNK_RE = re.compile(r"/" + TRUNK + r"(?=/|$)")


class SvnDriver(VcsDriver):
    """svn 检出驱动"""

    label = "SVN"

    def __init__(
        self,
        spec: ExternalDependencySpec,
        cache: CacheStore,
        *,
        force: bool = False,
        executor: CommandExecutor | None = None,
        config: Config | None = None,
    ) -> None:
        super().__init__(spec, cache, force=force, executor=executor, config=config)
        require_binary(self.config.svn_binary)

    def checkout(self) -> CheckoutResult:
        checkout_url, resolved, revision = self._plan()
        marker = self.cache.marker(self.slot, resolved)

        if self._is_fresh(marker):
            self.log.info("SVN: 缓存有效，跳过更新: %s", self.slot.name)
            result = self._result(resolved, "cached")
        else:
            self.cache.ensure()
            self._checkout_or_switch(checkout_url, revision)
            marker.write(resolved)
            self.log.info("SVN: 检出成功: %s", resolved)
            result = self._result(resolved, "updated")

        self._warn_if_subpath_outside_url()
        result.attribution_slug = self.discover_attribution_slug(result.path)
        return result

    def discover_attribution_slug(self, path: Path | None) -> str:
        """URL 无法提供 slug 时扫描检出内容（缓存命中也执行）"""
        if self.spec.attribution_slug:
            return self.spec.attribution_slug
        if path is None:
            return ""
        slug = scan_for_slug(path, self.config.slug_marker, self.config.slug_scan_max_bytes)
        if slug:
            self.log.info("SVN: 从文件内容发现署名 slug: %s", slug)
        return slug

    # ------------------------------------------------------------------
    # URL 规划
    # ------------------------------------------------------------------

    def _split_trunk(self) -> tuple[str, str]:
        url = self.spec.url
        m = _TRUNK_RE.search(url)
        if not m:
            return url, ""
        return url[:m.start()], url[m.end():]

    def _plan(self) -> tuple[str, str, str]:
        """返回 (检出 URL, 解析后的选择器, 版本号)"""
        selector = self.spec.selector
        root, tail = self._split_trunk()
        if selector.kind is SelectorKind.BRANCH:
            return f"{root}/branches/{selector.value}{tail}", selector.value, ""
        if selector.kind is SelectorKind.TAG:
            tag = self._latest_tag(root) if selector.is_latest else selector.value
            return f"{root}/tags/{tag}{tail}", tag, ""
        if selector.kind is SelectorKind.COMMIT:
            return self.spec.url, selector.value, selector.value
        return self.spec.url, TRUNK, ""

    def _latest_tag(self, root: str) -> str:
        """查询最新 tag，结果以独立标记缓存 24 小时"""
        matches = sorted(self.slot.glob(GET_TAG_PREFIX + "_*"))
        if len(matches) > 1:
            self.log.debug("SVN: 发现多个 tag 查询标记，全部清理")
            for match in matches:
                match.unlink(missing_ok=True)
            matches = []

        if matches:
            cached_tag = matches[0].name[len(GET_TAG_PREFIX) + 1:]
            marker = self.cache.marker(self.slot, cached_tag, GET_TAG_PREFIX)
            if self.force:
                marker.delete()
            elif not marker.is_stale():
                tag = marker.resolved_selector() or cached_tag
                self.log.debug("SVN: 使用缓存的最新 tag: %s", tag)
                return tag

        tags_url = f"{root}/tags"
        self.log.info("SVN: 查询最新 tag: %s", tags_url)
        r = self._run_with_retry(
            lambda: ([self.config.svn_binary, "log", "--non-interactive",
                      "--verbose", "--limit", "1", tags_url], None),
            what="log",
            allow_reset=False,
        )
        m = _LOG_TAG_RE.search(r.stdout)
        if not m:
            raise ResolutionError(f"{self.spec.dest_path}: 无法从 svn log 输出解析最新 tag")
        tag = m.group(1)

        self.slot.mkdir(parents=True, exist_ok=True)
        self.cache.marker(self.slot, tag, GET_TAG_PREFIX).write(tag)
        return tag

    # ------------------------------------------------------------------
    # 检出 / 更新
    # ------------------------------------------------------------------

    def _checkout_or_switch(self, url: str, revision: str) -> None:
        rev_args = ["-r", revision] if revision else []
        svn = self.config.svn_binary

        def build() -> tuple[list[str], str | None]:
            if (self.slot / ".svn").exists():
                self.log.info("SVN: 更新缓存: %s", url)
                return [svn, "switch", "--non-interactive", *rev_args, url], str(self.slot)
            self.log.info("SVN: 检出 %s -> %s", url, self.slot)
            return [svn, "checkout", "--non-interactive", *rev_args, url, str(self.slot)], None

        self._run_with_retry(build, what="checkout")

    def _classify(self, output: str) -> str | None:
        """按配置的输出特征判断失败类型，未识别返回 None"""
        for signature, action in self.config.svn_retry_signatures.items():
            if signature and signature in output and action in SVN_ACTIONS:
                return action
        return None

    def _run_with_retry(
        self,
        build: Callable[[], tuple[list[str], str | None]],
        *,
        what: str,
        allow_reset: bool = True,
    ) -> CommandResult:
        """执行 svn 命令；输出命中重试特征时按 retry / reset 重试

        次数用尽或遇到未识别的错误时抛 CheckoutError。
        """
        attempts = max(1, self.config.svn_max_attempts)
        made = 0

        def run_once() -> CommandResult:
            nonlocal made
            made += 1
            cmd, cwd = build()
            return self.executor.execute(cmd, cwd=cwd)

        def should_retry(r: CommandResult) -> bool:
            return not r.success and self._classify(r.output) is not None

        def before_sleep(state: RetryCallState) -> None:
            r = state.outcome.result()
            if self._classify(r.output) == "reset" and allow_reset:
                self.log.warning(
                    "SVN: %s 失败 (%d/%d)，删除缓存目录后重试: %s",
                    what, state.attempt_number, attempts, self.slot,
                )
                shutil.rmtree(self.slot, ignore_errors=True)
            else:
                self.log.warning(
                    "SVN: %s 失败 (%d/%d)，稍后重试", what, state.attempt_number, attempts,
                )

        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(self.config.svn_retry_delay),
            retry=retry_if_result(should_retry),
            before_sleep=before_sleep,
            # 次数用尽时返回最后一次结果，由下面统一转为 CheckoutError
            retry_error_callback=lambda state: state.outcome.result(),
            reraise=True,
        )
        r = retrying(run_once)
        if not r.success:
            raise CheckoutError(
                f"{self.spec.dest_path}: svn {what} 失败 "
                f"(rc={r.returncode}, 共 {made} 次): "
                f"{r.output[:500]}",
                r.output,
            )
        return r

    def _warn_if_subpath_outside_url(self) -> None:
        spec = self.spec
        if spec.subpath_in_url:
            return
        self.log.warning(
            "SVN: 路径 %s 不在 URL %s 中，使用更具体的 URL 检出通常更快",
            spec.subpath, spec.url,
        )
        if _TRUNK_RE.search(spec.url):
            self.log.warning(
                "示例:\n    # .pkgmeta\n    externals:\n      %s: %s/%s",
                spec.dest_path, spec.url, spec.subpath,
            )
