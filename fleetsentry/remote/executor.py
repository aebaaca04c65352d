"""
远程命令执行器。

统一"在某主机上、以某超时执行某命令"的契约：本机通过 bash 执行，远程主机通过系统 OpenSSH
客户端执行。连接不复用，每次调用独立创建子进程，并在所有退出路径（成功、命令失败、超时、取消）
上回收，超时覆盖 连接 + 执行 + 读取输出 全过程。

失败按原因区分：HostConnectionError / CommandFailure / ExecutionTimeout。
"""
from __future__ import annotations

import asyncio
import logging
import os
import shlex
import signal
import time
from typing import Optional

from fleetsentry.core.config import settings
from fleetsentry.core.exceptions import CommandFailure, ExecutionTimeout, HostConnectionError
from fleetsentry.schemas.host import HostTarget

logger = logging.getLogger(__name__)

# OpenSSH 自身错误（连接失败、认证失败等）的退出码
SSH_ERROR_EXIT = 255


class RemoteExecutor:
    """在本机或 SSH 主机上执行命令，返回 stdout。"""

    def __init__(
        self,
        ssh_binary: Optional[str] = None,
        connect_timeout: Optional[int] = None,
        shell: str = "/bin/bash",
    ) -> None:
        self.ssh_binary = ssh_binary or settings.ssh_binary
        self.connect_timeout = connect_timeout or settings.ssh_connect_timeout
        self.shell = shell

    async def execute(
        self,
        host: HostTarget,
        command: str,
        timeout_ms: int,
        env: Optional[dict[str, str]] = None,
    ) -> str:
        """执行命令并返回 stdout。

        Args:
            host: 目标主机。
            command: shell 命令文本。
            timeout_ms: 整体时间预算（毫秒）。
            env: 仅对本次调用生效的环境变量（密钥等），不记录日志。

        Raises:
            HostConnectionError: 无法启动进程、私钥不可读或 SSH 连接失败。
            CommandFailure: 命令非零退出。
            ExecutionTimeout: 超出时间预算。
        """
        start = time.monotonic()
        if host.is_local:
            proc, stdin_data = await self._spawn_local(host, command, env)
        else:
            proc, stdin_data = await self._spawn_ssh(host, command, env)

        remaining = max(timeout_ms / 1000 - (time.monotonic() - start), 0.001)
        timed_out = False
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(stdin_data), timeout=remaining
            )
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning("Command timed out after %dms on %s", timeout_ms, host.label())
            raise ExecutionTimeout(
                f"Timeout after {timeout_ms}ms on {host.name}", host=host.name, timeout_ms=timeout_ms
            ) from None
        finally:
            await _dispose(proc, kill_group=timed_out)

        stdout = stdout_bytes.decode(errors="replace")
        stderr = stderr_bytes.decode(errors="replace").strip()
        if stderr:
            logger.debug("stderr from %s: %s", host.name, stderr[:1000])

        code = proc.returncode
        if code == 0:
            return stdout
        if not host.is_local and code == SSH_ERROR_EXIT:
            raise HostConnectionError(
                f"SSH connection to {host.label()} failed: {stderr[:500] or 'exit 255'}",
                host=host.name,
                detail=stderr or None,
            )
        message = f"Command failed on {host.name} (exit {code})"
        if stderr:
            message += f": {stderr[:500]}"
        raise CommandFailure(
            message,
            host=host.name,
            exit_code=code if code is not None else -1,
            stderr=stderr,
        )

    async def _spawn_local(self, host: HostTarget, command: str, env: Optional[dict]):
        child_env = {**os.environ, **env} if env else None
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                executable=self.shell,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=child_env,
                start_new_session=True,
            )
        except OSError as e:
            raise HostConnectionError(f"Local exec failed on {host.name}: {e}", host=host.name) from e
        return proc, None

    async def _spawn_ssh(self, host: HostTarget, command: str, env: Optional[dict]):
        if not host.address:
            raise HostConnectionError(f"Host {host.name} has no SSH address", host=host.name)

        argv = [
            self.ssh_binary,
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-p", str(host.ssh_port or 22),
        ]
        # 未配置私钥时交给 ssh-agent / 默认身份认证
        if host.ssh_key_path:
            if not os.access(host.ssh_key_path, os.R_OK):
                raise HostConnectionError(
                    f"Cannot read SSH key {host.ssh_key_path} for {host.name}", host=host.name
                )
            argv += ["-i", host.ssh_key_path]
        destination = f"{host.ssh_user}@{host.address}" if host.ssh_user else host.address

        # 密钥经 stdin 以 export 语句送入远程会话，不出现在命令行参数中
        if env:
            exports = "".join(f"export {k}={shlex.quote(v)}\n" for k, v in env.items())
            argv += [destination, "bash -s"]
            stdin_data = (exports + command + "\n").encode()
        else:
            argv += [destination, command]
            stdin_data = None

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise HostConnectionError(f"Cannot start ssh for {host.label()}: {e}", host=host.name) from e
        return proc, stdin_data


async def _dispose(proc: asyncio.subprocess.Process, kill_group: bool = False) -> None:
    """确保子进程及其进程组（bash 派生的命令、SSH 连接）已结束并被回收。

    子进程以独立会话启动，进程组 ID 即其 pid；只杀 bash 时，仍持有 stdout 的孙进程会让回收一直阻塞。
    超时时即使 bash 已退出也要清理进程组。
    """
    if proc.returncode is None or kill_group:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
    await proc.wait()
