"""svn 检出驱动测试（注入假执行器）"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from addonkit.core.config import Config
from addonkit.core.exceptions import CheckoutError, ResolutionError, ToolNotFoundError
from addonkit.external.cache import CacheStore
from addonkit.external.normalizer import parse_declaration
from addonkit.external.svn_driver import SvnDriver
from addonkit.utils.shell import CommandResult

ACE3 = "https://repos.wowace.com/wow/ace3"

LOG_OUTPUT = """\
------------------------------------------------------------------------
r120 | packager | 2024-04-01 10:00:00 +0000 (Mon, 01 Apr 2024) | 1 line
Changed paths:
   A /tags/Release-r120 (from /trunk:119)

Tagging as Release-r120
------------------------------------------------------------------------
"""


class FakeSvn:
    """模拟 svn 命令：checkout/switch 时在目标目录生成文件"""

    def __init__(
        self,
        failures: list[str | None] | None = None,
        log_output: str = LOG_OUTPUT,
        files: dict[str, str] | None = None,
    ) -> None:
        self.calls: list[tuple[list[str], str | None]] = []
        self.failures = list(failures or [])
        self.log_output = log_output
        self.files = files if files is not None else {"Lib.lua": "-- lib"}

    def execute(self, cmd, *, cwd=None, env=None, timeout=None):  # type: ignore[no-untyped-def]
        self.calls.append((list(cmd), cwd))
        if self.failures:
            err = self.failures.pop(0)
            if err:
                return CommandResult(1, "", err)
        action = cmd[1]
        if action == "log":
            return CommandResult(0, self.log_output, "")
        target = Path(cmd[-1]) if action == "checkout" else Path(cwd)
        (target / ".svn").mkdir(parents=True, exist_ok=True)
        for name, content in self.files.items():
            path = target / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        return CommandResult(0, "", "")

    @property
    def actions(self) -> list[str]:
        return [cmd[1] for cmd, _ in self.calls]

    def urls(self, action: str) -> list[str]:
        urls = []
        for cmd, _ in self.calls:
            if cmd[1] != action:
                continue
            urls.append(cmd[-2] if action == "checkout" else cmd[-1])
        return urls


@pytest.fixture(autouse=True)
def _svn_installed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("addonkit.external.svn_driver.require_binary", lambda name: name)


@pytest.fixture()
def cache(tmp_path: Path) -> CacheStore:
    return CacheStore(tmp_path / "cache")


def _driver(
    raw: str | dict,
    cache: CacheStore,
    fake: FakeSvn,
    *,
    force: bool = False,
    **cfg: object,
) -> SvnDriver:
    spec = parse_declaration("Libs/Lib", raw, cache)
    config = Config(svn_retry_delay=0, **cfg)  # type: ignore[arg-type]
    return SvnDriver(spec, cache, force=force, executor=fake, config=config)


class TestPlan:
    def test_trunk(self, cache: CacheStore) -> None:
        fake = FakeSvn()
        result = _driver(f"{ACE3}/trunk", cache, fake).checkout()
        assert result.status == "updated"
        assert result.selector == "trunk"
        assert fake.urls("checkout") == [f"{ACE3}/trunk"]
        assert "--non-interactive" in fake.calls[0][0]
        assert (result.path / "Lib.lua").exists()
        assert (result.path / ".lastUpdated_trunk").exists()
        assert result.attribution_slug == "ace3"

    def test_branch(self, cache: CacheStore) -> None:
        fake = FakeSvn()
        result = _driver({"url": f"{ACE3}/trunk/AceGUI-3.0", "branch": "wip"}, cache, fake).checkout()
        assert fake.urls("checkout") == [f"{ACE3}/branches/wip/AceGUI-3.0"]
        assert result.selector == "wip"

    def test_tag_from_url(self, cache: CacheStore) -> None:
        fake = FakeSvn()
        result = _driver(f"{ACE3}/tags/Release-r1/AceAddon-3.0", cache, fake).checkout()
        assert fake.urls("checkout") == [f"{ACE3}/tags/Release-r1/AceAddon-3.0"]
        assert result.selector == "Release-r1"
        assert result.path == cache.slot_path(f"{ACE3}/trunk/AceAddon-3.0", "Release-r1")

    def test_trunk_matched_as_whole_segment(self, cache: CacheStore) -> None:
        fake = FakeSvn()
        _driver({"url": "svn://example.com/trunkated/trunk/Lib", "branch": "wip"}, cache, fake).checkout()
        assert fake.urls("checkout") == ["svn://example.com/trunkated/branches/wip/Lib"]

    def test_no_trunk_segment(self, cache: CacheStore) -> None:
        fake = FakeSvn()
        _driver({"url": "svn://example.com/repo/trunkated", "tag": "v1"}, cache, fake).checkout()
        assert fake.urls("checkout") == ["svn://example.com/repo/trunkated/tags/v1"]

    def test_commit_uses_revision(self, cache: CacheStore) -> None:
        fake = FakeSvn()
        result = _driver({"url": "svn://example.com/repo/trunk", "commit": "42"}, cache, fake).checkout()
        cmd = fake.calls[0][0]
        assert cmd[cmd.index("-r") + 1] == "42"
        assert fake.urls("checkout") == ["svn://example.com/repo/trunk"]
        assert result.selector == "42"


class TestLatestTag:
    def test_resolved_from_log(self, cache: CacheStore) -> None:
        fake = FakeSvn()
        driver = _driver(f"{ACE3}/tags", cache, fake)
        result = driver.checkout()
        assert fake.actions == ["log", "checkout"]
        log_cmd = fake.calls[0][0]
        assert log_cmd[-1] == f"{ACE3}/tags"
        assert "--limit" in log_cmd
        assert result.selector == "Release-r120"
        assert fake.urls("checkout") == [f"{ACE3}/tags/Release-r120"]
        assert (driver.slot / ".lastUpdated_GetTag_Release-r120").exists()

    def test_tag_lookup_cached(self, cache: CacheStore) -> None:
        fake = FakeSvn()
        _driver(f"{ACE3}/tags", cache, fake).checkout()
        fake2 = FakeSvn()
        result = _driver(f"{ACE3}/tags", cache, fake2).checkout()
        assert fake2.calls == []
        assert result.status == "cached"
        assert result.selector == "Release-r120"

    def test_force_requeries(self, cache: CacheStore) -> None:
        _driver(f"{ACE3}/tags", cache, FakeSvn()).checkout()
        fake = FakeSvn(log_output=LOG_OUTPUT.replace("r120", "r121"))
        driver = _driver(f"{ACE3}/tags", cache, fake, force=True)
        result = driver.checkout()
        assert fake.actions == ["log", "switch"]
        assert result.selector == "Release-r121"
        assert fake.urls("switch") == [f"{ACE3}/tags/Release-r121"]
        assert not (driver.slot / ".lastUpdated_GetTag_Release-r120").exists()

    def test_multiple_lookup_markers_cleared(self, cache: CacheStore) -> None:
        fake = FakeSvn()
        driver = _driver(f"{ACE3}/tags", cache, fake)
        driver.slot.mkdir(parents=True)
        (driver.slot / ".lastUpdated_GetTag_a").write_text("x", encoding="utf-8")
        (driver.slot / ".lastUpdated_GetTag_b").write_text("x", encoding="utf-8")
        driver.checkout()
        assert fake.actions[0] == "log"
        assert not (driver.slot / ".lastUpdated_GetTag_a").exists()

    def test_unparsable_log(self, cache: CacheStore) -> None:
        fake = FakeSvn(log_output="nothing useful\n")
        with pytest.raises(ResolutionError, match="最新 tag"):
            _driver(f"{ACE3}/tags", cache, fake).checkout()


class TestCacheAndUpdate:
    def test_second_checkout_cached(self, cache: CacheStore) -> None:
        _driver(f"{ACE3}/trunk", cache, FakeSvn()).checkout()
        fake = FakeSvn()
        result = _driver(f"{ACE3}/trunk", cache, fake).checkout()
        assert result.status == "cached"
        assert fake.calls == []

    def test_force_switches_existing_working_copy(self, cache: CacheStore) -> None:
        _driver(f"{ACE3}/trunk", cache, FakeSvn()).checkout()
        fake = FakeSvn()
        driver = _driver(f"{ACE3}/trunk", cache, fake, force=True)
        result = driver.checkout()
        assert result.status == "updated"
        assert fake.actions == ["switch"]
        assert fake.calls[0][1] == str(driver.slot)


class TestRetryPolicy:
    def test_transient_error_retried(self, cache: CacheStore) -> None:
        fake = FakeSvn(failures=["svn: E175002: Unexpected server error"])
        result = _driver(f"{ACE3}/trunk", cache, fake).checkout()
        assert result.success
        assert fake.actions == ["checkout", "checkout"]

    def test_reset_removes_slot(self, cache: CacheStore) -> None:
        fake = FakeSvn(failures=["svn: E000039: Directory not empty"])
        driver = _driver(f"{ACE3}/trunk", cache, fake)
        driver.slot.mkdir(parents=True)
        (driver.slot / "junk.txt").write_text("x", encoding="utf-8")
        result = driver.checkout()
        assert result.success
        assert not (driver.slot / "junk.txt").exists()
        assert fake.actions == ["checkout", "checkout"]

    def test_unknown_error_not_retried(self, cache: CacheStore) -> None:
        fake = FakeSvn(failures=["svn: E170000: URL doesn't exist"])
        with pytest.raises(CheckoutError, match="E170000") as exc_info:
            _driver(f"{ACE3}/trunk", cache, fake).checkout()
        assert len(fake.calls) == 1
        assert "E170000" in exc_info.value.output

    def test_attempts_exhausted(self, cache: CacheStore) -> None:
        fake = FakeSvn(failures=["svn: E175012: timeout"] * 10)
        with pytest.raises(CheckoutError):
            _driver(f"{ACE3}/trunk", cache, fake, svn_max_attempts=3).checkout()
        assert len(fake.calls) == 3

    def test_single_attempt_not_retried(self, cache: CacheStore) -> None:
        fake = FakeSvn(failures=["svn: E175002: Unexpected server error"])
        with pytest.raises(CheckoutError, match="共 1 次"):
            _driver(f"{ACE3}/trunk", cache, fake, svn_max_attempts=1).checkout()
        assert len(fake.calls) == 1

    def test_waits_configured_delay(
        self, cache: CacheStore, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture,
    ) -> None:
        delays: list[float] = []
        monkeypatch.setattr("tenacity.nap.time.sleep", delays.append)
        fake = FakeSvn(failures=["svn: E175002: boom", "svn: E170013: unreachable"])
        spec = parse_declaration("Libs/Lib", f"{ACE3}/trunk", cache)
        driver = SvnDriver(spec, cache, executor=fake, config=Config(svn_retry_delay=0.25))
        with caplog.at_level(logging.WARNING):
            result = driver.checkout()
        assert result.success
        assert delays == [0.25, 0.25]
        assert "(1/5)" in caplog.text
        assert "(2/5)" in caplog.text

    def test_custom_signatures(self, cache: CacheStore) -> None:
        fake = FakeSvn(failures=["flaky proxy"])
        result = _driver(
            f"{ACE3}/trunk", cache, fake, svn_retry_signatures={"flaky": "retry"},
        ).checkout()
        assert result.success
        assert len(fake.calls) == 2

    def test_log_retried_without_reset(self, cache: CacheStore) -> None:
        fake = FakeSvn(failures=["svn: E175002: boom"])
        result = _driver(f"{ACE3}/tags", cache, fake).checkout()
        assert fake.actions == ["log", "log", "checkout"]
        assert result.selector == "Release-r120"


class TestAttributionSlug:
    def test_slug_found_in_contents(self, cache: CacheStore) -> None:
        fake = FakeSvn(files={"Lib.toc": "## Title: Lib\n## X-Curse-Project-Slug: my-lib\n"})
        result = _driver("svn://example.com/repo/trunk", cache, fake).checkout()
        assert result.attribution_slug == "my-lib"

    def test_slug_scanned_on_cache_hit(self, cache: CacheStore) -> None:
        fake = FakeSvn(files={"Lib.toc": "## X-Curse-Project-Slug: my-lib\n"})
        _driver("svn://example.com/repo/trunk", cache, fake).checkout()
        result = _driver("svn://example.com/repo/trunk", cache, FakeSvn()).checkout()
        assert result.status == "cached"
        assert result.attribution_slug == "my-lib"

    def test_declared_slug_wins(self, cache: CacheStore) -> None:
        fake = FakeSvn(files={"Lib.toc": "## X-Curse-Project-Slug: my-lib\n"})
        result = _driver(
            {"url": "svn://example.com/repo/trunk", "curse-slug": "declared"}, cache, fake,
        ).checkout()
        assert result.attribution_slug == "declared"

    def test_no_slug(self, cache: CacheStore) -> None:
        result = _driver("svn://example.com/repo/trunk", cache, FakeSvn()).checkout()
        assert result.attribution_slug == ""


class TestEnvironment:
    def test_missing_svn_binary(self, cache: CacheStore, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.undo()
        monkeypatch.setattr("addonkit.utils.shell.shutil.which", lambda name: None)
        with pytest.raises(ToolNotFoundError, match="svn"):
            _driver(f"{ACE3}/trunk", cache, FakeSvn())

    def test_subpath_outside_url_warns(self, cache: CacheStore, caplog: pytest.LogCaptureFixture) -> None:
        fake = FakeSvn(files={"AceGUI-3.0/AceGUI.lua": "-- gui"})
        driver = _driver({"url": f"{ACE3}/trunk", "path": "AceGUI-3.0"}, cache, fake)
        with caplog.at_level(logging.WARNING):
            result = driver.checkout()
        assert result.path == driver.slot / "AceGUI-3.0"
        assert (result.path / "AceGUI.lua").exists()
        assert "不在 URL" in caplog.text
        assert "示例" in caplog.text
