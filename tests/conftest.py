"""共享测试夹具: 小型构建单元目录、假工具链"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Callable

import pytest

from phmbuild.core.registry import UnitRegistry
from phmbuild.utils.shell import CommandResult


def make_catalog() -> dict[str, Any]:
    return {
        "defaults": {"extension_build_cmd": "build-ext {ext} {version} {php_version} {options}"},
        "libraries": {
            "zlib": {"version": "1.3.1", "build_cmd": "make zlib"},
            "openssl": {"version": "3.2.3", "build_cmd": "make openssl", "depends_on": ["zlib"]},
            "curl": {"version": "8.10.1", "build_cmd": "make curl", "depends_on": ["openssl", "zlib"]},
        },
        "core": {
            "common": {
                "build_cmd": "make php {php_version}",
                "description": "PHP {php_version} common files",
                "depends_on": ["curl"],
                "artifacts": ["opt/php/{php_minor}/etc"],
            },
            "cli": {
                "description": "PHP {php_version} CLI interpreter",
                "depends_on": ["php-core:common"],
                "package_depends": ["php{php_minor}-common"],
                "artifacts": ["opt/php/{php_minor}/bin/php"],
            },
        },
        "meta": {
            "php": {
                "package_name": "php{php_minor}",
                "depends_on": ["php-core:cli", "php-core:common"],
                "package_depends": [
                    "php{php_minor}-cli (>= {php_version})",
                    "php{php_minor}-common (>= {php_version})",
                ],
                "provides": ["php"],
            },
        },
        "builtin_extensions": [{"calendar": "Calendar functions"}, "ftp"],
        "extensions": {
            "igbinary": {"version": "3.2.16", "packagist": "igbinary/igbinary",
                         "depends_on": ["php-core:common"]},
            "redis": {
                "version": "6.1.0",
                "packagist": "phpredis/phpredis",
                "depends_on": ["php-core:common", "ext:igbinary"],
                "options": ["--enable-redis-igbinary"],
            },
            "xdebug": {"version": "3.4.0", "pecl": "xdebug", "zend_extension": True,
                       "depends_on": ["php-core:common"]},
            "relay": {"version": "0.9.1", "special_build": True,
                      "depends_on": ["php-core:common"]},
            "opcache": {"version": "{php_version}", "zend_extension": True, "priority": 10,
                        "skip_for": ["8.5"], "depends_on": ["php-core:common"]},
        },
    }


@pytest.fixture()
def catalog() -> dict[str, Any]:
    return make_catalog()


@pytest.fixture()
def registry(catalog: dict[str, Any]) -> UnitRegistry:
    reg = UnitRegistry.from_dict(catalog, php_version="8.4.0", platform="darwin-arm64")
    reg.validate()
    return reg


class FakeToolchain:
    """记录调用的假工具链；fail 中的单元返回非零退出码"""

    def __init__(self, fail: set[str] | None = None,
                 on_run: Callable[[str, dict[str, str]], None] | None = None) -> None:
        self.fail = set(fail or ())
        self.on_run = on_run
        self.calls: list[str] = []
        self.terminated = False
        self._lock = threading.Lock()

    def run(self, command: str, *, cwd: str, env: dict[str, str],
            log_path: str, timeout: int | None = None) -> CommandResult:
        unit = env["PHM_UNIT"]
        with self._lock:
            self.calls.append(unit)
        with open(log_path, "a", encoding="utf-8") as fh:
            fh.write(f"$ {command}\n")
            for i in range(5):
                fh.write(f"{unit} line {i}\n")
        if unit in self.fail:
            return CommandResult(returncode=2)
        if self.on_run is not None:
            self.on_run(unit, env)
        return CommandResult(returncode=0)

    def terminate_all(self) -> None:
        self.terminated = True


@pytest.fixture()
def toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture()
def catalog_file(tmp_path: Path, catalog: dict[str, Any]) -> Path:
    from phmbuild.utils.yaml_io import save_yaml
    path = tmp_path / "units.yml"
    save_yaml(path, catalog)
    return path
