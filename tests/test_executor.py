"""RemoteExecutor 测试：本机命令直接走 bash，SSH 路径用临时脚本冒充 ssh 客户端。"""
import os
import stat
import time

import pytest

from fleetsentry.core.exceptions import CommandFailure, ExecutionTimeout, HostConnectionError
from fleetsentry.remote.executor import RemoteExecutor
from fleetsentry.schemas.host import HostTarget

LOCAL = HostTarget(id=1, name="local", kind="local")


def fake_ssh(tmp_path, body: str) -> str:
    """写一个可执行脚本代替 ssh 二进制。"""
    path = tmp_path / "ssh"
    path.write_text("#!/bin/bash\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return str(path)


def remote(**kwargs) -> HostTarget:
    data = {"id": 2, "name": "db-01", "kind": "remote", "address": "10.0.0.12", "ssh_user": "ops"}
    data.update(kwargs)
    return HostTarget(**data)


class TestLocalExecution:
    @pytest.mark.asyncio
    async def test_returns_stdout(self):
        out = await RemoteExecutor().execute(LOCAL, "echo hello; echo world", 5000)
        assert out == "hello\nworld\n"

    @pytest.mark.asyncio
    async def test_runs_through_bash(self):
        out = await RemoteExecutor().execute(LOCAL, "echo $(( 6 * 7 ))", 5000)
        assert out.strip() == "42"

    @pytest.mark.asyncio
    async def test_stderr_not_mixed_into_stdout(self):
        out = await RemoteExecutor().execute(LOCAL, "echo out; echo err >&2", 5000)
        assert out == "out\n"

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_command_failure(self):
        with pytest.raises(CommandFailure) as exc_info:
            await RemoteExecutor().execute(LOCAL, "echo boom >&2; exit 3", 5000)
        assert exc_info.value.exit_code == 3
        assert exc_info.value.stderr == "boom"
        assert "exit 3" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        start = time.monotonic()
        with pytest.raises(ExecutionTimeout) as exc_info:
            await RemoteExecutor().execute(LOCAL, "sleep 10", 300)
        assert time.monotonic() - start < 5
        assert exc_info.value.timeout_ms == 300

    @pytest.mark.asyncio
    async def test_timeout_kills_compound_command_children(self):
        """bash 派生的子进程持有 stdout 时，超时仍按预算返回。"""
        start = time.monotonic()
        with pytest.raises(ExecutionTimeout):
            await RemoteExecutor().execute(LOCAL, "sleep 4; echo done", 500)
        assert time.monotonic() - start < 2

    @pytest.mark.asyncio
    async def test_timeout_kills_pipeline(self):
        start = time.monotonic()
        with pytest.raises(ExecutionTimeout):
            await RemoteExecutor().execute(LOCAL, "(sleep 4; echo late) | cat", 500)
        assert time.monotonic() - start < 2

    @pytest.mark.asyncio
    async def test_env_is_scoped_to_one_call(self):
        executor = RemoteExecutor()
        out = await executor.execute(LOCAL, 'echo "$FLEET_TEST_SECRET"', 5000, env={"FLEET_TEST_SECRET": "s3cret"})
        assert out.strip() == "s3cret"
        out = await executor.execute(LOCAL, 'echo "${FLEET_TEST_SECRET:-unset}"', 5000)
        assert out.strip() == "unset"
        assert "FLEET_TEST_SECRET" not in os.environ

    @pytest.mark.asyncio
    async def test_missing_shell_is_connection_error(self):
        executor = RemoteExecutor(shell="/nonexistent/bash")
        with pytest.raises(HostConnectionError):
            await executor.execute(LOCAL, "true", 5000)


class TestSSHExecution:
    @pytest.mark.asyncio
    async def test_builds_batch_mode_command_line(self, tmp_path):
        ssh = fake_ssh(tmp_path, 'printf "%s\\n" "$@"')
        out = await RemoteExecutor(ssh_binary=ssh, connect_timeout=7).execute(remote(ssh_port=2222), "uptime", 5000)
        args = out.splitlines()
        assert args[:6] == ["-o", "BatchMode=yes", "-o", "ConnectTimeout=7", "-p", "2222"]
        assert args[-2:] == ["ops@10.0.0.12", "uptime"]
        assert "-i" not in args

    @pytest.mark.asyncio
    async def test_key_path_passed_when_readable(self, tmp_path):
        key = tmp_path / "id_ed25519"
        key.write_text("key")
        ssh = fake_ssh(tmp_path, 'printf "%s\\n" "$@"')
        out = await RemoteExecutor(ssh_binary=ssh).execute(remote(ssh_key_path=str(key)), "true", 5000)
        args = out.splitlines()
        assert args[args.index("-i") + 1] == str(key)

    @pytest.mark.asyncio
    async def test_unreadable_key_is_connection_error(self, tmp_path):
        ssh = fake_ssh(tmp_path, "exit 0")
        host = remote(ssh_key_path=str(tmp_path / "missing_key"))
        with pytest.raises(HostConnectionError):
            await RemoteExecutor(ssh_binary=ssh).execute(host, "true", 5000)

    @pytest.mark.asyncio
    async def test_missing_address_is_connection_error(self, tmp_path):
        ssh = fake_ssh(tmp_path, "exit 0")
        with pytest.raises(HostConnectionError):
            await RemoteExecutor(ssh_binary=ssh).execute(remote(address=None), "true", 5000)

    @pytest.mark.asyncio
    async def test_missing_ssh_binary_is_connection_error(self, tmp_path):
        executor = RemoteExecutor(ssh_binary=str(tmp_path / "no-ssh-here"))
        with pytest.raises(HostConnectionError):
            await executor.execute(remote(), "true", 5000)

    @pytest.mark.asyncio
    async def test_exit_255_is_connection_error(self, tmp_path):
        ssh = fake_ssh(tmp_path, 'echo "ssh: connect to host 10.0.0.12 port 22: Connection refused" >&2; exit 255')
        with pytest.raises(HostConnectionError) as exc_info:
            await RemoteExecutor(ssh_binary=ssh).execute(remote(), "true", 5000)
        assert "Connection refused" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_remote_command_failure(self, tmp_path):
        ssh = fake_ssh(tmp_path, "echo 'No such container: web' >&2; exit 1")
        with pytest.raises(CommandFailure) as exc_info:
            await RemoteExecutor(ssh_binary=ssh).execute(remote(), "docker start web", 5000)
        assert exc_info.value.exit_code == 1
        assert exc_info.value.host == "db-01"

    @pytest.mark.asyncio
    async def test_remote_timeout(self, tmp_path):
        ssh = fake_ssh(tmp_path, "exec sleep 10")
        with pytest.raises(ExecutionTimeout):
            await RemoteExecutor(ssh_binary=ssh).execute(remote(), "true", 300)

    @pytest.mark.asyncio
    async def test_remote_timeout_kills_ssh_children(self, tmp_path):
        ssh = fake_ssh(tmp_path, "sleep 4; echo late")
        start = time.monotonic()
        with pytest.raises(ExecutionTimeout):
            await RemoteExecutor(ssh_binary=ssh).execute(remote(), "true", 500)
        assert time.monotonic() - start < 2

    @pytest.mark.asyncio
    async def test_secrets_sent_on_stdin_not_argv(self, tmp_path):
        ssh = fake_ssh(tmp_path, 'echo "ARGS: $*"; cat')
        out = await RemoteExecutor(ssh_binary=ssh).execute(
            remote(), "restic snapshots --json", 5000, env={"RESTIC_PASSWORD": "hunter2"}
        )
        args_line, *stdin_lines = out.splitlines()
        assert "hunter2" not in args_line
        assert args_line.endswith("bash -s")
        assert "export RESTIC_PASSWORD=hunter2" in stdin_lines
        assert stdin_lines[-1] == "restic snapshots --json"
