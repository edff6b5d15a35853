"""构建标记存储单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from phmbuild.core.markers import MarkerStore
from phmbuild.core.models import BuildUnit, UnitKind


class TestMarkerStore:
    def test_mark_and_check(self, tmp_path: Path) -> None:
        store = MarkerStore(tmp_path / "state")
        assert store.is_built("zlib", "1.3.1") is False
        store.mark_built("zlib", "1.3.1", duration=1.25)
        assert store.is_built("zlib", "1.3.1") is True
        assert store.get("zlib")["duration"] == 1.25

    def test_version_mismatch_not_built(self, tmp_path: Path) -> None:
        store = MarkerStore(tmp_path / "state")
        store.mark_built("zlib", "1.3.0")
        assert store.is_built("zlib", "1.3.1") is False

    def test_colon_names_are_safe(self, tmp_path: Path) -> None:
        store = MarkerStore(tmp_path / "state")
        path = store.mark_built("php-core:cli", "8.4.0")
        assert path.name == "php-core_3acli.yml"
        assert path.parent == tmp_path / "state"

    @pytest.mark.parametrize(("a", "b"), [
        ("a:b", "a__b"),
        ("a:b", "a_3ab"),
        ("ext:x y", "ext:x_y"),
    ])
    def test_distinct_names_never_share_a_file(self, tmp_path: Path, a: str, b: str) -> None:
        store = MarkerStore(tmp_path / "state")
        assert store.path(a) != store.path(b)
        store.mark_built(a, "1.0")
        assert store.is_built(b, "1.0") is False
        store.mark_built(b, "2.0")
        assert store.get(a)["version"] == "1.0"
        assert store.clear(b) == 1
        assert store.is_built(a, "1.0") is True

    def test_legacy_marker(self, tmp_path: Path) -> None:
        legacy = tmp_path / "deps"
        legacy.mkdir()
        (legacy / ".built-openssl").write_text("3.2.3\n", encoding="utf-8")
        store = MarkerStore(tmp_path / "state", legacy_dir=legacy)
        assert store.is_built("openssl", "3.2.3") is True
        assert store.is_built("openssl", "3.2.4") is False

    def test_built_names(self, tmp_path: Path) -> None:
        store = MarkerStore(tmp_path / "state")
        store.mark_built("zlib", "1.3.1")
        units = [
            BuildUnit(name="zlib", kind=UnitKind.LIBRARY, version="1.3.1"),
            BuildUnit(name="openssl", kind=UnitKind.LIBRARY, version="3.2.3"),
        ]
        assert store.built_names(units) == {"zlib"}

    def test_statuses_and_clear(self, tmp_path: Path) -> None:
        store = MarkerStore(tmp_path / "state")
        assert store.statuses() == []
        store.mark_built("zlib", "1.3.1")
        store.mark_built("openssl", "3.2.3")
        assert {m["unit"] for m in store.statuses()} == {"zlib", "openssl"}

        assert store.clear("zlib") == 1
        assert store.clear("zlib") == 0
        assert store.clear() == 1
        assert store.statuses() == []
