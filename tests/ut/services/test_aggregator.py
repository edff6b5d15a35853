"""索引聚合单元测试"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from phmbuild.core.exceptions import MalformedManifestError
from phmbuild.core.models import Dependency, IndexEntry, Package
from phmbuild.services.index.aggregator import (
    IndexAggregator,
    build_index,
    deduplicate,
    default_timestamp,
    render_index,
    write_index,
)

STAMP = "2025-01-01T00:00:00Z"


def _pkg(name: str, version: str, platform: str = "darwin-arm64", revision: int = 1,
         url: str = "") -> Package:
    return Package(
        name=name, version=version, platform=platform, revision=revision,
        depends=(Dependency.parse("php8.4-common (>= 8.4.0)"),),
        url=url or f"https://dl/{name}_{version}-{revision}",
        sha256="0" * 64, archive_size=10,
    )


class _ListSource:
    """内存来源；值为异常时 load 抛出"""

    def __init__(self, items: list) -> None:
        self._items = items

    def items(self) -> list:
        return list(range(len(self._items)))

    def describe(self, item: int) -> str:
        return f"item{item}"

    def load(self, item: int) -> Package:
        value = self._items[item]
        if isinstance(value, Exception):
            raise value
        return value


class TestDeduplicate:
    def test_latest_version_wins(self) -> None:
        entries = deduplicate([
            _pkg("php8.4-redis", "6.0.2"),
            _pkg("php8.4-redis", "6.1.0"),
            _pkg("php8.4-redis", "6.0.10"),
        ])
        assert [(e.name, e.version) for e in entries] == [("php8.4-redis", "6.1.0")]

    def test_release_beats_release_candidate(self) -> None:
        entries = deduplicate([
            _pkg("php8.5-cli", "8.5.0RC1", platform="linux-x86_64"),
            _pkg("php8.5-cli", "8.5.2", platform="linux-x86_64"),
        ])
        assert [e.version for e in entries] == ["8.5.2"]

    def test_patch_level_versions(self) -> None:
        entries = deduplicate([
            _pkg("php8.4-imagick", "7.1.1-41"),
            _pkg("php8.4-imagick", "7.1.2"),
            _pkg("php8.4-imagick", "7.1.1-9"),
        ])
        assert [e.version for e in entries] == ["7.1.2"]

    def test_revision_breaks_tie(self) -> None:
        entries = deduplicate([_pkg("zlib", "1.3.1", revision=2), _pkg("zlib", "1.3.1", revision=1)])
        assert entries[0].revision == 2

    def test_platforms_kept_apart(self) -> None:
        entries = deduplicate([_pkg("zlib", "1.3.1"), _pkg("zlib", "1.3.1", platform="linux-amd64")])
        assert [(e.platform, e.name) for e in entries] == [
            ("darwin-arm64", "zlib"), ("linux-amd64", "zlib"),
        ]

    def test_order_independent(self) -> None:
        a = _pkg("zlib", "1.3.1", url="https://a")
        b = _pkg("zlib", "1.3.1", url="https://b")
        assert deduplicate([a, b]) == deduplicate([b, a])

    def test_accepts_index_entries(self) -> None:
        entry = IndexEntry(platform="darwin-arm64", name="zlib", version="1.3.1")
        assert deduplicate([entry]) == [entry]


class TestBuildIndex:
    def test_grouped_and_sorted(self) -> None:
        entries = deduplicate([
            _pkg("zlib", "1.3.1", platform="linux-amd64"),
            _pkg("php8.4", "8.4.0"),
            _pkg("curl", "8.10.1"),
        ])
        doc = build_index(entries, STAMP)
        assert doc["version"] == 1
        assert doc["generated"] == STAMP
        assert list(doc["platforms"]) == ["darwin-arm64", "linux-amd64"]
        names = [p["name"] for p in doc["platforms"]["darwin-arm64"]["packages"]]
        assert names == ["curl", "php8.4"]
        assert doc["platforms"]["darwin-arm64"]["packages"][0]["depends"] == ["php8.4-common (>= 8.4.0)"]

    def test_render_deterministic(self) -> None:
        entries = deduplicate([_pkg("curl", "8.10.1"), _pkg("zlib", "1.3.1")])
        text = render_index(build_index(entries, STAMP))
        assert text == render_index(build_index(list(reversed(entries)), STAMP))
        assert text.endswith("}\n")
        assert json.loads(text)["generated"] == STAMP
        assert '\n  "generated"' in text

    def test_source_date_epoch(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SOURCE_DATE_EPOCH", "1735689600")
        assert default_timestamp() == STAMP
        assert build_index([])["generated"] == STAMP


class TestWriteIndex:
    def test_unchanged_content(self, tmp_path: Path) -> None:
        out = tmp_path / "index.json"
        doc = build_index(deduplicate([_pkg("zlib", "1.3.1")]), STAMP)
        assert write_index(doc, out) is True
        assert write_index(doc, out) is False

    def test_previous_generated_kept(self, tmp_path: Path) -> None:
        out = tmp_path / "index.json"
        entries = deduplicate([_pkg("zlib", "1.3.1")])
        write_index(build_index(entries, STAMP), out)
        changed = write_index(build_index(entries, "2026-06-01T00:00:00Z"), out)
        assert changed is False
        assert json.loads(out.read_text(encoding="utf-8"))["generated"] == STAMP

    def test_explicit_generated_wins(self, tmp_path: Path) -> None:
        out = tmp_path / "index.json"
        entries = deduplicate([_pkg("zlib", "1.3.1")])
        write_index(build_index(entries, STAMP), out)
        later = "2026-06-01T00:00:00Z"
        assert write_index(build_index(entries, later), out, keep_generated=False) is True
        assert json.loads(out.read_text(encoding="utf-8"))["generated"] == later

    def test_content_change_updates_generated(self, tmp_path: Path) -> None:
        out = tmp_path / "index.json"
        write_index(build_index(deduplicate([_pkg("zlib", "1.3.1")]), STAMP), out)
        later = "2026-06-01T00:00:00Z"
        write_index(build_index(deduplicate([_pkg("zlib", "1.3.2")]), later), out)
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["generated"] == later
        assert data["platforms"]["darwin-arm64"]["packages"][0]["version"] == "1.3.2"

    def test_corrupt_previous_overwritten(self, tmp_path: Path) -> None:
        out = tmp_path / "index.json"
        out.write_text("{not json", encoding="utf-8")
        assert write_index(build_index([], STAMP), out) is True
        assert json.loads(out.read_text(encoding="utf-8"))["platforms"] == {}


class TestIndexAggregator:
    def test_generate_skips_invalid(self, tmp_path: Path) -> None:
        source = _ListSource([
            _pkg("zlib", "1.3.1"),
            MalformedManifestError("broken.tar.zst", "坏了"),
            _pkg("zlib", "1.3.2"),
        ])
        agg = IndexAggregator()
        doc = agg.generate([source], tmp_path / "index.json", generated_at=STAMP)
        packages = doc["platforms"]["darwin-arm64"]["packages"]
        assert [(p["name"], p["version"]) for p in packages] == [("zlib", "1.3.2")]
        assert agg.skipped == [{"package": "item1", "reason": str(source._items[1])}]
        assert (tmp_path / "index.json").is_file()

    def test_multiple_sources_merged(self) -> None:
        agg = IndexAggregator()
        doc = agg.generate([
            _ListSource([_pkg("zlib", "1.3.1")]),
            _ListSource([_pkg("curl", "8.10.1", platform="linux-amd64")]),
        ], generated_at=STAMP)
        assert sorted(doc["platforms"]) == ["darwin-arm64", "linux-amd64"]

    def test_other_errors_propagate(self) -> None:
        agg = IndexAggregator()
        with pytest.raises(OSError):
            agg.generate([_ListSource([OSError("disk")])])
