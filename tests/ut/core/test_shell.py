"""本地工具链单元测试"""

from __future__ import annotations

import os
from pathlib import Path

from phmbuild.utils.shell import RC_NOT_FOUND, LocalToolchain, get_toolchain, set_toolchain


class TestLocalToolchain:
    def test_success_writes_log(self, tmp_path: Path) -> None:
        log = tmp_path / "logs" / "u.log"
        r = LocalToolchain().run("echo hello", cwd=str(tmp_path), env=dict(os.environ), log_path=str(log))
        assert r.success
        text = log.read_text(encoding="utf-8")
        assert "$ echo hello" in text
        assert "hello" in text.splitlines()[-1]

    def test_failure_returncode(self, tmp_path: Path) -> None:
        r = LocalToolchain().run("false", cwd=str(tmp_path), env=dict(os.environ),
                                 log_path=str(tmp_path / "u.log"))
        assert not r.success
        assert r.returncode == 1

    def test_env_passed(self, tmp_path: Path) -> None:
        log = tmp_path / "u.log"
        env = {**os.environ, "MY_TEST_VAR": "42"}
        LocalToolchain().run("env", cwd=str(tmp_path), env=env, log_path=str(log))
        assert "MY_TEST_VAR=42" in log.read_text(encoding="utf-8")

    def test_command_not_found(self, tmp_path: Path) -> None:
        r = LocalToolchain().run("no-such-command-xyz", cwd=str(tmp_path), env=dict(os.environ),
                                 log_path=str(tmp_path / "u.log"))
        assert r.returncode == RC_NOT_FOUND

    def test_timeout(self, tmp_path: Path) -> None:
        tc = LocalToolchain()
        r = tc.run("sleep 5", cwd=str(tmp_path), env=dict(os.environ),
                   log_path=str(tmp_path / "u.log"), timeout=1)
        assert r.timed_out
        assert not r.success
        assert tc.running == 0


class TestDefaultToolchain:
    def test_set_and_get(self) -> None:
        original = get_toolchain()
        replacement = LocalToolchain()
        try:
            set_toolchain(replacement)
            assert get_toolchain() is replacement
        finally:
            set_toolchain(original)
