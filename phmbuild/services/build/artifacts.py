"""构建产物收集

构建完成后从暂存目录取出单元要打包的文件。
ArtifactSource 协议可替换（测试、远程构建机）。

暂存目录约定:
    <staging_dir>/<unit.staging>/...        核心 / 依赖库 按目标路径布置
    <staging_dir>/ext-<name>/<name>.so      扩展只产出 .so，打包时再布置 conf.d
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Protocol

from phmbuild.core.exceptions import PackagingError
from phmbuild.core.models import BuildUnit, UnitKind
from phmbuild.services.package.builder import StagedArtifacts, stage_extension

logger = logging.getLogger(__name__)


class ArtifactSource(Protocol):
    """构建后暂存文件来源"""

    def collect(self, unit: BuildUnit) -> StagedArtifacts:
        ...


class StagingDirSource:
    """本地暂存目录（默认实现）"""

    def __init__(self, staging_dir: str | Path, php_version: str) -> None:
        self.staging_dir = Path(staging_dir)
        self.php_version = php_version

    def root_for(self, unit: BuildUnit) -> Path:
        return self.staging_dir / (unit.staging or unit.name.replace(":", "-"))

    def collect(self, unit: BuildUnit) -> StagedArtifacts:
        root = self.root_for(unit)
        if unit.meta:
            return StagedArtifacts(root=root)
        if unit.kind == UnitKind.EXTENSION and unit.extension is not None:
            return self._collect_extension(unit, root)
        if not root.is_dir():
            raise PackagingError(f"暂存目录不存在: {root}")
        if unit.artifacts:
            paths = [root / a for a in unit.artifacts]
        else:
            paths = [root]
        return StagedArtifacts(root=root, paths=paths)

    def _collect_extension(self, unit: BuildUnit, root: Path) -> StagedArtifacts:
        ext = unit.extension
        assert ext is not None
        so_file = root / f"{ext.name}.so"
        if not so_file.is_file():
            found = sorted(root.rglob(f"{ext.name}.so")) if root.is_dir() else []
            if not found:
                raise PackagingError(f"未找到扩展产物: {ext.name}.so ({root})")
            so_file = found[0]

        pkg_root = root.parent / f"{root.name}.pkg"
        if pkg_root.exists():
            shutil.rmtree(pkg_root)
        paths = stage_extension(so_file, pkg_root, ext, self.php_version)
        logger.debug("扩展已布置: %s -> %s", so_file, pkg_root)
        return StagedArtifacts(root=pkg_root, paths=paths)
