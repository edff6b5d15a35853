"""tar.zst 归档读写

归档布局:
    pkginfo.json
    files/<相对路径>...

写出的 tar 流是确定性的：成员按路径排序，mtime / uid / gid 归零，
属主名清空，权限只保留可执行位区分 (0755 / 0644)。
"""

from __future__ import annotations

import hashlib
import io
import logging
import os
import stat
import tarfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

import zstandard as zstd

from phmbuild.core.exceptions import MalformedManifestError, PackagingError
from phmbuild.core.manifest import MANIFEST_NAME

logger = logging.getLogger(__name__)

FILES_PREFIX = "files"
DEFAULT_LEVEL = 3
_CHUNK = 1024 * 1024


def _normalized(info: tarfile.TarInfo, mode: int) -> tarfile.TarInfo:
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    info.mode = mode
    return info


def _add_dir(tar: tarfile.TarFile, arcname: str) -> None:
    info = tarfile.TarInfo(arcname)
    info.type = tarfile.DIRTYPE
    tar.addfile(_normalized(info, 0o755))


def _add_bytes(tar: tarfile.TarFile, arcname: str, data: bytes) -> None:
    info = tarfile.TarInfo(arcname)
    info.size = len(data)
    tar.addfile(_normalized(info, 0o644), io.BytesIO(data))


def _add_path(tar: tarfile.TarFile, arcname: str, path: Path) -> None:
    st = path.lstat()
    info = tarfile.TarInfo(arcname)
    if stat.S_ISLNK(st.st_mode):
        info.type = tarfile.SYMTYPE
        info.linkname = os.readlink(path)
        tar.addfile(_normalized(info, 0o777))
        return
    if not stat.S_ISREG(st.st_mode):
        raise PackagingError(f"不支持的文件类型: {path}")
    info.size = st.st_size
    mode = 0o755 if st.st_mode & stat.S_IXUSR else 0o644
    with open(path, "rb") as f:
        tar.addfile(_normalized(info, mode), f)


def _parent_dirs(rel_paths: Iterable[str]) -> set[str]:
    dirs: set[str] = set()
    for rel in rel_paths:
        parts = rel.split("/")[:-1]
        for i in range(1, len(parts) + 1):
            dirs.add("/".join(parts[:i]))
    return dirs


def build_archive(
    manifest: bytes,
    staging_root: Path,
    files: Iterable[str],
    *,
    level: int = DEFAULT_LEVEL,
) -> bytes:
    """生成压缩后的归档字节

    Args:
        manifest: pkginfo.json 内容
        staging_root: 暂存根目录
        files: 相对 staging_root 的 POSIX 路径
        level: zstd 压缩级别
    """
    rel_files = sorted(set(files))
    entries = sorted(
        [(d, None) for d in _parent_dirs(rel_files)]
        + [(f, staging_root / f) for f in rel_files]
    )

    buf = io.BytesIO()
    try:
        with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
            _add_bytes(tar, MANIFEST_NAME, manifest)
            _add_dir(tar, FILES_PREFIX)
            for rel, path in entries:
                arcname = f"{FILES_PREFIX}/{rel}"
                if path is None:
                    _add_dir(tar, arcname)
                else:
                    _add_path(tar, arcname, path)
        return zstd.ZstdCompressor(level=level).compress(buf.getvalue())
    except (tarfile.TarError, zstd.ZstdError) as e:
        raise PackagingError(f"归档生成失败: {e}") from e


@contextmanager
def _open_tar(path: Path) -> Iterator[tarfile.TarFile]:
    with open(path, "rb") as fh, zstd.ZstdDecompressor().stream_reader(fh) as reader:
        with tarfile.open(fileobj=reader, mode="r|") as tar:
            yield tar


def read_manifest_bytes(path: str | Path) -> bytes:
    """从归档中读出 pkginfo.json

    Raises:
        MalformedManifestError: 归档损坏或不含 pkginfo.json
    """
    p = Path(path)
    try:
        with _open_tar(p) as tar:
            for member in tar:
                if member.name.lstrip("./") == MANIFEST_NAME and member.isfile():
                    f = tar.extractfile(member)
                    if f is None:
                        break
                    return f.read()
    except (zstd.ZstdError, tarfile.TarError, OSError, EOFError) as e:
        raise MalformedManifestError(str(p), f"无法读取归档: {e}") from e
    raise MalformedManifestError(str(p), f"归档中缺少 {MANIFEST_NAME}")


def list_members(path: str | Path) -> list[str]:
    """列出归档成员名（按归档内顺序）"""
    p = Path(path)
    try:
        with _open_tar(p) as tar:
            return [m.name for m in tar]
    except (zstd.ZstdError, tarfile.TarError, OSError, EOFError) as e:
        raise MalformedManifestError(str(p), f"无法读取归档: {e}") from e


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: str | Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


def read_sidecar(path: str | Path) -> str:
    """读取 .sha256 旁路文件中的摘要（兼容 `<hex>  <file>` 格式），不存在返回空串"""
    p = Path(path)
    if not p.is_file():
        return ""
    text = p.read_text(encoding="utf-8").strip()
    return text.split()[0].lower() if text else ""
