"""上游版本检查单元测试（网络请求全部打桩）"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from phmbuild.core.exceptions import FetchError
from phmbuild.core.registry import UnitRegistry
from phmbuild.services import updates
from phmbuild.services.updates import (
    UpdateChecker,
    decide,
    extension_version,
    latest_php_versions,
    packagist_version,
    pecl_version,
    tracked_extensions,
)

PHP_WATCH = {
    "data": {
        "8.4.2": {"isSecure": True},
        "8.4.10": {"isSecure": True},
        "8.3.15": {"isSecure": True},
        "8.2.0": {"isSecure": False},
        "8.5.0": "bogus",
    }
}

PECL_XML = """<?xml version="1.0"?>
<a><r><v>3.5.0alpha1</v><s>alpha</s></r><r><v>3.4.1</v><s>stable</s></r><r><v>3.4.0</v></r></a>
"""


def _packagist(package: str, versions: list[str]) -> dict[str, Any]:
    return {"packages": {package: [{"version": v} for v in versions]}}


class TestUpstreamQueries:
    def test_latest_php_versions(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(updates, "fetch_json", lambda url: PHP_WATCH)
        assert latest_php_versions() == {"8.4": "8.4.10", "8.3": "8.3.15"}

    def test_latest_php_without_wrapper(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(updates, "fetch_json", lambda url: {"8.5.1": {"isSecure": True}})
        assert latest_php_versions() == {"8.5": "8.5.1"}

    def test_latest_php_bad_payload(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(updates, "fetch_json", lambda url: ["nope"])
        with pytest.raises(FetchError):
            latest_php_versions()

    def test_packagist_skips_unstable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        data = _packagist("phpredis/phpredis", ["dev-develop", "6.2.0RC1", "v6.1.0", "6.0.2"])
        monkeypatch.setattr(updates, "fetch_json", lambda url: data)
        assert packagist_version("phpredis/phpredis") == "6.1.0"

    def test_packagist_missing_package(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(updates, "fetch_json", lambda url: {"packages": {}})
        assert packagist_version("a/b") == ""

    def test_pecl_first_stable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        urls: list[str] = []

        def fake_text(url: str) -> str:
            urls.append(url)
            return PECL_XML

        monkeypatch.setattr(updates, "fetch_text", fake_text)
        assert pecl_version("xdebug") == "3.4.1"
        assert urls == ["https://pecl.php.net/rest/r/xdebug/allreleases.xml"]

    def test_extension_version_falls_back_to_pecl(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fail(url: str) -> Any:
            raise FetchError("HTTP 404")

        monkeypatch.setattr(updates, "fetch_json", fail)
        monkeypatch.setattr(updates, "fetch_text", lambda url: PECL_XML)
        assert extension_version("xdebug", packagist="xdebug/xdebug") == "3.4.1"

    def test_extension_version_all_fail(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fail(url: str) -> Any:
            raise FetchError("down")

        monkeypatch.setattr(updates, "fetch_text", fail)
        assert extension_version("xdebug", pecl="xdebug") == ""


class TestDecide:
    CURRENT = {"php": {"8.3": "8.3.15", "8.4": "8.4.9"}, "extensions": {"redis": "6.1.0"}}

    def test_only_changed_php(self) -> None:
        plan = decide(self.CURRENT, {"8.3": "8.3.15", "8.4": "8.4.10"}, {"redis": "6.1.0"})
        assert plan.php_versions == ["8.4.10"]
        assert plan.php_changed == ["8.4.10"]
        assert plan.ext_changed == []
        assert plan.has_builds

    def test_extension_change_rebuilds_all(self) -> None:
        plan = decide(self.CURRENT, {"8.3": "8.3.15", "8.4": "8.4.9"}, {"redis": "6.2.0"})
        assert plan.php_versions == ["8.3.15", "8.4.9"]
        assert plan.ext_changed == ["redis"]

    def test_force(self) -> None:
        plan = decide(self.CURRENT, {"8.3": "8.3.15", "8.4": "8.4.9"}, {"redis": "6.1.0"}, force=True)
        assert plan.php_versions == ["8.3.15", "8.4.9"]
        assert plan.forced

    def test_nothing_changed(self) -> None:
        plan = decide(self.CURRENT, {"8.3": "8.3.15", "8.4": "8.4.9"}, {"redis": "6.1.0"})
        assert plan.php_versions == []
        assert plan.to_outputs() == [
            "php_versions=[]",
            'ext_versions={"redis": "6.1.0"}',
            "has_builds=false",
        ]

    def test_minors_sorted_numerically(self) -> None:
        plan = decide({}, {"8.10": "8.10.0", "8.4": "8.4.1"}, {})
        assert plan.php_versions == ["8.4.1", "8.10.0"]


class TestUpdateChecker:
    def test_tracked_extensions(self, registry: UnitRegistry) -> None:
        names = [u.name for u in tracked_extensions(registry.all())]
        assert names == ["ext:igbinary", "ext:redis", "ext:xdebug"]

    def test_check_and_record(self, tmp_path: Path, registry: UnitRegistry,
                              monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_json(url: str) -> Any:
            if url == updates.PHP_WATCH_URL:
                return PHP_WATCH
            if "igbinary" in url:
                return _packagist("igbinary/igbinary", ["3.2.16"])
            return _packagist("phpredis/phpredis", ["6.1.0"])

        monkeypatch.setattr(updates, "fetch_json", fake_json)
        monkeypatch.setattr(updates, "fetch_text", lambda url: PECL_XML)

        versions = tmp_path / "versions.json"
        checker = UpdateChecker(versions, registry.all())
        plan = checker.check()
        assert plan.php_versions == ["8.3.15", "8.4.10"]
        assert plan.ext_versions == {"igbinary": "3.2.16", "redis": "6.1.0", "xdebug": "3.4.1"}

        checker.record(plan)
        data = json.loads(versions.read_text(encoding="utf-8"))
        assert data == {
            "extensions": {"igbinary": "3.2.16", "redis": "6.1.0", "xdebug": "3.4.1"},
            "php": {"8.3": "8.3.15", "8.4": "8.4.10"},
        }
        assert checker.check().has_builds is False

    def test_php_fetch_failure_keeps_current(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        versions = tmp_path / "versions.json"
        versions.write_text(json.dumps({"php": {"8.4": "8.4.1"}, "extensions": {}}), encoding="utf-8")

        def fail(url: str) -> Any:
            raise FetchError("down")

        monkeypatch.setattr(updates, "fetch_json", fail)
        plan = UpdateChecker(versions, []).check()
        assert plan.latest_php == {"8.4": "8.4.1"}
        assert plan.php_versions == []
