"""tar.zst 归档读写单元测试"""

from __future__ import annotations

import os
from pathlib import Path

import pytest
import zstandard as zstd

from phmbuild.core.exceptions import MalformedManifestError, PackagingError
from phmbuild.services.package import archive
from phmbuild.services.package.archive import (
    build_archive,
    list_members,
    read_manifest_bytes,
    read_sidecar,
    sha256_bytes,
    sha256_file,
)


@pytest.fixture()
def staging(tmp_path: Path) -> Path:
    root = tmp_path / "stage"
    (root / "bin").mkdir(parents=True)
    (root / "etc").mkdir()
    php = root / "bin" / "php"
    php.write_bytes(b"\x7fELF")
    php.chmod(0o755)
    (root / "etc" / "php.ini").write_text("memory_limit=128M\n", encoding="utf-8")
    return root


class TestBuildArchive:
    def test_layout(self, tmp_path: Path, staging: Path) -> None:
        data = build_archive(b'{"name": "x"}\n', staging, ["etc/php.ini", "bin/php"])
        path = tmp_path / "out.tar.zst"
        path.write_bytes(data)
        assert list_members(path) == [
            "pkginfo.json", "files", "files/bin", "files/bin/php", "files/etc", "files/etc/php.ini",
        ]
        assert read_manifest_bytes(path) == b'{"name": "x"}\n'

    def test_deterministic(self, staging: Path) -> None:
        a = build_archive(b"{}", staging, ["bin/php", "etc/php.ini"])
        os.utime(staging / "bin" / "php", (1, 1))
        b = build_archive(b"{}", staging, ["etc/php.ini", "bin/php"])
        assert sha256_bytes(a) == sha256_bytes(b)

    def test_symlink_preserved(self, tmp_path: Path, staging: Path) -> None:
        (staging / "bin" / "php8").symlink_to("php")
        path = tmp_path / "out.tar.zst"
        path.write_bytes(build_archive(b"{}", staging, ["bin/php", "bin/php8"]))
        assert "files/bin/php8" in list_members(path)

    def test_empty_file_list(self, tmp_path: Path, staging: Path) -> None:
        path = tmp_path / "meta.tar.zst"
        path.write_bytes(build_archive(b"{}", staging, []))
        assert list_members(path) == ["pkginfo.json", "files"]

    def test_compressor_error_is_packaging_error(self, staging: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        class _Failing:
            def __init__(self, level: int) -> None:
                pass

            def compress(self, data: bytes) -> bytes:
                raise zstd.ZstdError("cannot compress")

        monkeypatch.setattr(archive.zstd, "ZstdCompressor", _Failing)
        with pytest.raises(PackagingError, match="cannot compress"):
            build_archive(b"{}", staging, ["bin/php"])


class TestReadErrors:
    def test_corrupt_archive(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.tar.zst"
        path.write_bytes(b"not zstd at all")
        with pytest.raises(MalformedManifestError, match="无法读取归档"):
            read_manifest_bytes(path)

    def test_missing_manifest(self, tmp_path: Path) -> None:
        import io
        import tarfile

        import zstandard as zstd

        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tar:
            info = tarfile.TarInfo("other.txt")
            info.size = 1
            tar.addfile(info, io.BytesIO(b"x"))
        path = tmp_path / "nomani.tar.zst"
        path.write_bytes(zstd.ZstdCompressor().compress(buf.getvalue()))
        with pytest.raises(MalformedManifestError, match="pkginfo.json"):
            read_manifest_bytes(path)


class TestChecksums:
    def test_sha256_file_matches_bytes(self, tmp_path: Path) -> None:
        f = tmp_path / "a.bin"
        f.write_bytes(b"abc")
        assert sha256_file(f) == sha256_bytes(b"abc")

    def test_read_sidecar(self, tmp_path: Path) -> None:
        f = tmp_path / "a.sha256"
        f.write_text("ABCDEF  a.tar.zst\n", encoding="utf-8")
        assert read_sidecar(f) == "abcdef"
        assert read_sidecar(tmp_path / "missing.sha256") == ""
