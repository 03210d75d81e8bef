"""配置加载与核心数据模型测试"""

from __future__ import annotations

from pathlib import Path

import pytest

import addonkit.core.config as cfgmod
from addonkit.core.config import DEFAULT_SVN_RETRY_SIGNATURES, Config
from addonkit.core.exceptions import (
    AddonKitError,
    CheckoutError,
    ConfigError,
    DeclarationError,
    DependencyError,
    PkgMetaNotFoundError,
    ResolutionError,
)
from addonkit.core.models import (
    CheckoutResult,
    CheckoutSelector,
    ExternalDependencySpec,
    FetchReport,
    SelectorKind,
    VcsType,
)


class TestConfig:
    def test_defaults(self) -> None:
        cfg = Config()
        assert cfg.cache_valid_hours == 24
        assert cfg.max_workers == 8
        assert cfg.svn_max_attempts == 5
        assert cfg.slug_marker == "X-Curse-Project-Slug:"
        assert cfg.svn_retry_signatures == DEFAULT_SVN_RETRY_SIGNATURES
        # 每个实例独立的字典
        cfg.svn_retry_signatures["X"] = "retry"
        assert "X" not in Config().svn_retry_signatures

    def test_missing_file_returns_default(self, tmp_path: Path) -> None:
        cfg = Config.from_file(str(tmp_path / "nope.yml"))
        assert cfg == Config()

    def test_from_file_known_and_extra(self, tmp_path: Path) -> None:
        p = tmp_path / "addonkit.yml"
        p.write_text(
            "max_workers: 2\n"
            "cache_dir: /tmp/x\n"
            "svn_retry_signatures:\n  E999: reset\n"
            "custom_key: 1\n",
            encoding="utf-8",
        )
        cfg = Config.from_file(str(p))
        assert cfg.max_workers == 2
        assert cfg.cache_dir == "/tmp/x"
        assert cfg.svn_retry_signatures == {"E999": "reset"}
        assert cfg.extra == {"custom_key": 1}
        assert cfg.to_dict()["max_workers"] == 2

    @pytest.mark.parametrize("kwargs", [
        {"max_workers": 0},
        {"svn_max_attempts": 0},
        {"cache_valid_hours": -1},
        {"svn_retry_signatures": {"E1": "explode"}},
    ])
    def test_validate_rejects(self, kwargs: dict) -> None:
        with pytest.raises(ConfigError):
            Config(**kwargs).validate()

    @pytest.mark.parametrize("content", [
        "max_workers: 0\n",
        "max_workers: many\n",
        "svn_retry_signatures:\n  E1: ignore\n",
    ])
    def test_from_file_invalid(self, tmp_path: Path, content: str) -> None:
        p = tmp_path / "addonkit.yml"
        p.write_text(content, encoding="utf-8")
        with pytest.raises(ConfigError):
            Config.from_file(str(p))

    def test_init_and_get_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cfgmod, "_current", None)
        assert cfgmod.get_config() is cfgmod.get_config()

        p = tmp_path / "addonkit.yml"
        p.write_text("svn_max_attempts: 3\n", encoding="utf-8")
        cfg = cfgmod.init_config(str(p))
        assert cfg.svn_max_attempts == 3
        assert cfgmod.get_config() is cfg


class TestExceptions:
    def test_codes_and_hierarchy(self) -> None:
        assert issubclass(ResolutionError, CheckoutError)
        assert issubclass(DeclarationError, ValueError)
        assert issubclass(PkgMetaNotFoundError, FileNotFoundError)
        assert ResolutionError("x").code == "RESOLUTION_ERROR"
        assert AddonKitError("x").code == "UNKNOWN"

    def test_checkout_error_keeps_output(self) -> None:
        e = CheckoutError("boom", "svn: E175002")
        assert e.output == "svn: E175002"
        assert str(e) == "boom"

    def test_dependency_error_carries_errors(self) -> None:
        inner = CheckoutError("x")
        e = DependencyError("failed", errors={"Libs/A": inner})
        assert e.errors == {"Libs/A": inner}
        assert e.report is None
        assert DependencyError("y").errors == {}


class TestVcsType:
    @pytest.mark.parametrize("raw,expected", [
        ("git", VcsType.GIT),
        ("SVN", VcsType.SVN),
        (" hg ", VcsType.HG),
        ("cvs", VcsType.UNKNOWN),
        (None, VcsType.UNKNOWN),
    ])
    def test_parse(self, raw: str | None, expected: VcsType) -> None:
        assert VcsType.parse(raw) is expected


class TestCheckoutSelector:
    def test_literal(self) -> None:
        assert CheckoutSelector.default().literal == ""
        assert CheckoutSelector.branch("dev").literal == "dev"
        assert CheckoutSelector.tag("v1.0").literal == "v1.0"
        assert CheckoutSelector.commit("abc1234").literal == "abc1234"

    def test_is_latest(self) -> None:
        assert CheckoutSelector.tag("latest").is_latest
        assert not CheckoutSelector.tag("v1").is_latest
        assert not CheckoutSelector.branch("latest").is_latest

    def test_str(self) -> None:
        assert str(CheckoutSelector.default()) == "default"
        assert str(CheckoutSelector.branch("main")) == "branch:main"

    def test_frozen_and_equal(self) -> None:
        a = CheckoutSelector(SelectorKind.TAG, "v1")
        assert a == CheckoutSelector.tag("v1")
        with pytest.raises(AttributeError):
            a.value = "v2"  # type: ignore[misc]


class TestSpecAndReport:
    def test_subpath_in_url(self) -> None:
        spec = ExternalDependencySpec("Libs/A", "https://x/y/trunk/LibA", subpath="LibA")
        assert spec.subpath_in_url
        spec2 = ExternalDependencySpec("Libs/A", "https://x/y/trunk", subpath="LibA")
        assert not spec2.subpath_in_url
        assert ExternalDependencySpec("Libs/A", "https://x/y").subpath_in_url

    def test_describe(self) -> None:
        spec = ExternalDependencySpec(
            "Libs/A", "https://x/y", attribution_slug="liba", subpath="sub",
        )
        info = spec.describe()
        assert info["dest"] == "Libs/A"
        assert info["type"] == "git"
        assert info["selector"] == "default"
        assert info["path"] == "sub"
        assert info["slug"] == "liba"

    def test_result_success(self) -> None:
        assert CheckoutResult("a", status="updated").success
        assert CheckoutResult("a", status="cached").success
        assert not CheckoutResult("a", status="skipped").success
        assert not CheckoutResult("a", status="error").success

    def test_report_summary_and_first_error(self) -> None:
        report = FetchReport()
        assert report.first_error is None
        report.results = {
            "a": CheckoutResult("a", status="updated"),
            "b": CheckoutResult("b", status="error"),
            "c": CheckoutResult("c", status="cached"),
        }
        first = CheckoutError("b failed")
        report.errors = {"b": first, "c2": CheckoutError("later")}
        assert report.first_error is first
        assert report.summary() == {
            "total": 3, "updated": 1, "cached": 1, "skipped": 0, "errors": 1,
        }
