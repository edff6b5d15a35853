"""外部工具链调用 — 统一子进程执行

configure / make / cmake / pie 等真实编译步骤都在进程外完成，
此处只负责启动命令、把输出流式写入单元日志、等待退出码。
通过 ToolchainHook 协议抽象，测试时可注入假实现而无需 patch subprocess。
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

# 命令不存在 / 无法启动时使用的退出码
RC_NOT_FOUND = 127


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0


# =========================================================================
# 工具链协议
# =========================================================================

class ToolchainHook(Protocol):
    """外部构建步骤钩子

    接收命令、工作目录和完整环境变量表，输出写入 log_path，返回退出码。
    """

    def run(
        self,
        command: str,
        *,
        cwd: str,
        env: dict[str, str],
        log_path: str,
        timeout: int | None = None,
    ) -> CommandResult:
        ...

    def terminate_all(self) -> None:
        """终止所有仍在运行的进程（取消宽限期结束时调用）"""
        ...


# =========================================================================
# 默认实现: 本地子进程
# =========================================================================

class LocalToolchain:
    """本地子进程工具链（默认实现）

    每个命令在独立进程组中运行，terminate_all 可一次性结束其所有子进程。
    """

    def __init__(self) -> None:
        self._procs: dict[int, subprocess.Popen] = {}
        self._lock = threading.Lock()

    def run(
        self,
        command: str,
        *,
        cwd: str,
        env: dict[str, str],
        log_path: str,
        timeout: int | None = None,
    ) -> CommandResult:
        log = Path(log_path)
        log.parent.mkdir(parents=True, exist_ok=True)
        with open(log, "a", encoding="utf-8") as fh:
            fh.write(f"$ {command}\n")
            fh.flush()
            try:
                proc = subprocess.Popen(
                    shlex.split(command), cwd=cwd, env=env,
                    stdout=fh, stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
            except OSError as e:
                fh.write(f"无法启动命令: {e}\n")
                logger.error("无法启动命令: %s (%s)", command, e)
                return CommandResult(returncode=RC_NOT_FOUND, stderr=str(e))

            with self._lock:
                self._procs[proc.pid] = proc
            try:
                rc = proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.error("命令超时 (%ss)，终止: %s", timeout, command)
                self._kill(proc, signal.SIGKILL)
                rc = proc.wait()
                fh.write(f"\n命令超时 ({timeout} 秒)，已终止\n")
                return CommandResult(returncode=rc, timed_out=True)
            finally:
                with self._lock:
                    self._procs.pop(proc.pid, None)
        return CommandResult(returncode=rc)

    def terminate_all(self) -> None:
        with self._lock:
            procs = list(self._procs.values())
        for proc in procs:
            logger.warning("终止进程: pid=%d", proc.pid)
            self._kill(proc, signal.SIGTERM)

    @staticmethod
    def _kill(proc: subprocess.Popen, sig: int) -> None:
        try:
            os.killpg(proc.pid, sig)
        except (ProcessLookupError, PermissionError):
            # 进程组已退出
            pass

    @property
    def running(self) -> int:
        with self._lock:
            return len(self._procs)


# =========================================================================
# 全局默认工具链（可替换）
# =========================================================================

_default_toolchain: ToolchainHook = LocalToolchain()


def get_toolchain() -> ToolchainHook:
    """获取全局默认工具链"""
    return _default_toolchain


def set_toolchain(toolchain: ToolchainHook) -> None:
    """替换全局默认工具链（测试或远程构建机场景）"""
    global _default_toolchain  # noqa: PLW0603
    _default_toolchain = toolchain
