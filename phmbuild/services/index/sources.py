"""索引包来源

LocalDirectorySource  扫描本地 dist 目录中的 *.tar.zst，读取内嵌 pkginfo.json
ReleaseAssetSource    列出 GitHub Release 资产，按文件名反解析包标识

两者都实现 items() / load(item)，load 失败抛 MalformedManifestError，
由 IndexAggregator 逐包捕获后跳过。
"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Protocol

from phmbuild.core.exceptions import FetchError, MalformedManifestError, ValidationError
from phmbuild.core.manifest import parse_manifest
from phmbuild.core.models import Package
from phmbuild.core.naming import (
    ARCHIVE_EXT,
    SIDECAR_EXT,
    download_url,
    parse_filename,
    php_minor_from_name,
    sidecar_name,
)
from phmbuild.services.package.archive import read_manifest_bytes, read_sidecar, sha256_file
from phmbuild.utils.net import download_file, fetch_json, fetch_text

logger = logging.getLogger(__name__)


class PackageSource(Protocol):
    """索引包来源协议"""

    def items(self) -> list[Any]:
        ...

    def load(self, item: Any) -> Package:
        ...

    def describe(self, item: Any) -> str:
        ...


# =========================================================================
# 本地目录
# =========================================================================


class LocalDirectorySource:
    """本地 dist 目录"""

    def __init__(self, dist_dir: str | Path, base_url: str = "", release_tag: str = "") -> None:
        self.dist_dir = Path(dist_dir)
        self.base_url = base_url
        self.release_tag = release_tag

    def items(self) -> list[Path]:
        if not self.dist_dir.is_dir():
            logger.warning("包目录不存在: %s", self.dist_dir)
            return []
        return sorted(p for p in self.dist_dir.rglob(f"*{ARCHIVE_EXT}") if p.is_file())

    def describe(self, item: Path) -> str:
        return item.name

    def load(self, item: Path) -> Package:
        pkg = parse_manifest(read_manifest_bytes(item), str(item))
        digest = read_sidecar(item.parent / sidecar_name(item.name)) or sha256_file(item)
        return pkg.with_archive(
            sha256=digest,
            archive_size=item.stat().st_size,
            filename=item.name,
            url=download_url(self.base_url, self.release_tag, item.name),
        )


# =========================================================================
# GitHub Release 资产
# =========================================================================


@dataclass(frozen=True)
class ReleaseAsset:
    name: str
    url: str
    size: int
    tag: str
    sidecar_url: str = ""


class ReleaseAssetSource:
    """GitHub Release 资产

    tag 为空时遍历仓库全部 Release。
    download_dir 设置时下载归档读取完整清单，否则只按文件名反解析包标识。
    """

    PER_PAGE = 100

    def __init__(
        self,
        repo: str,
        *,
        tag: str | None = None,
        api_url: str = "https://api.github.com",
        token: str = "",
        known_extensions: Iterable[str] = (),
        download_dir: str | Path | None = None,
    ) -> None:
        if not repo or "/" not in repo:
            raise ValidationError(f"Release 仓库格式应为 <owner>/<repo>: {repo!r}")
        self.repo = repo
        self.tag = tag
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.known_extensions = tuple(known_extensions)
        self.download_dir = Path(download_dir) if download_dir else None

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def releases(self) -> list[dict[str, Any]]:
        if self.tag:
            url = f"{self.api_url}/repos/{self.repo}/releases/tags/{self.tag}"
            return [fetch_json(url, headers=self._headers())]
        result: list[dict[str, Any]] = []
        page = 1
        while True:
            url = f"{self.api_url}/repos/{self.repo}/releases?per_page={self.PER_PAGE}&page={page}"
            batch = fetch_json(url, headers=self._headers())
            if not isinstance(batch, list) or not batch:
                break
            result.extend(batch)
            if len(batch) < self.PER_PAGE:
                break
            page += 1
        return result

    def items(self) -> list[ReleaseAsset]:
        assets: list[ReleaseAsset] = []
        for release in self.releases():
            tag = str(release.get("tag_name", ""))
            by_name = {a.get("name", ""): a for a in release.get("assets") or []}
            for name, asset in sorted(by_name.items()):
                if not name.endswith(ARCHIVE_EXT):
                    continue
                sidecar = by_name.get(name + SIDECAR_EXT) or {}
                assets.append(ReleaseAsset(
                    name=name,
                    url=str(asset.get("browser_download_url", "")),
                    size=int(asset.get("size", 0) or 0),
                    tag=tag,
                    sidecar_url=str(sidecar.get("browser_download_url", "")),
                ))
        logger.info("Release 资产: %d 个归档 (%s)", len(assets), self.repo)
        return assets

    def describe(self, item: ReleaseAsset) -> str:
        return f"{item.tag}/{item.name}"

    def load(self, item: ReleaseAsset) -> Package:
        if self.download_dir is not None:
            return self._load_downloaded(item)
        try:
            ref = parse_filename(item.name, self.known_extensions)
        except ValidationError as e:
            raise MalformedManifestError(item.name, str(e)) from e
        if not item.sidecar_url:
            raise MalformedManifestError(item.name, f"缺少 {SIDECAR_EXT} 旁路文件")
        digest = self._fetch_sidecar(item)
        pkg = Package(
            name=ref.name,
            version=ref.version,
            platform=ref.platform,
            revision=ref.revision,
            php_version=php_minor_from_name(ref.name),
        )
        return pkg.with_archive(
            sha256=digest, archive_size=item.size, filename=item.name, url=item.url,
        )

    def _fetch_sidecar(self, item: ReleaseAsset) -> str:
        try:
            text = fetch_text(item.sidecar_url, headers=self._headers()).strip()
        except FetchError as e:
            raise MalformedManifestError(item.name, f"无法读取校验文件: {e}") from e
        if not text:
            raise MalformedManifestError(item.name, "校验文件为空")
        return text.split()[0].lower()

    def _load_downloaded(self, item: ReleaseAsset) -> Package:
        assert self.download_dir is not None
        self.download_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=self.download_dir) as tmp:
            local = Path(tmp) / item.name
            try:
                download_file(item.url, local, headers=self._headers())
            except FetchError as e:
                raise MalformedManifestError(item.name, f"下载失败: {e}") from e
            pkg = parse_manifest(read_manifest_bytes(local), item.name)
            digest = self._fetch_sidecar(item) if item.sidecar_url else sha256_file(local)
            size = local.stat().st_size
        return pkg.with_archive(sha256=digest, archive_size=size, filename=item.name, url=item.url)
