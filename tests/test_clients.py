"""Tests for the SSH executor and SFTP transfer."""

import socket
import threading
from unittest.mock import MagicMock

import paramiko
import pytest

from shipctl.clients.ssh import SSHExecutor
from shipctl.clients.transfer import SFTPTransfer
from shipctl.core.exceptions import (
    CommandTimeout,
    RemoteCommandError,
    RemoteConnectionError,
    TransferError,
)
from shipctl.deploy.models import SSHAuth


def make_channel(stdout: bytes = b"", stderr: bytes = b"", exit_code: int = 0):
    stdin = MagicMock()
    out = MagicMock()
    out.read.return_value = stdout
    out.channel.recv_exit_status.return_value = exit_code
    err = MagicMock()
    err.read.return_value = stderr
    return stdin, out, err


@pytest.fixture
def ssh_client():
    client = MagicMock()
    client.exec_command.return_value = make_channel(b"ok\n")
    return client


@pytest.fixture
def executor(ssh_client):
    return SSHExecutor(client_factory=lambda: ssh_client)


class TestSSHExecutor:
    """Tests for SSHExecutor."""

    def test_execute_success(self, executor, ssh_client, target):
        result = executor.execute(target, "echo ok", timeout=30)

        assert result.ok
        assert result.stdout == "ok\n"
        assert result.lines == ["ok"]
        ssh_client.exec_command.assert_called_once_with("echo ok", timeout=30)

    def test_connect_arguments(self, ssh_client, target):
        from dataclasses import replace

        keyed = replace(target, auth=SSHAuth(key_file="/home/deploy/.ssh/id_ed25519"))
        SSHExecutor(client_factory=lambda: ssh_client).execute(keyed, "true")

        kwargs = ssh_client.connect.call_args.kwargs
        assert kwargs["hostname"] == "app01.example.com"
        assert kwargs["port"] == 22
        assert kwargs["username"] == "deploy"
        assert kwargs["key_filename"] == "/home/deploy/.ssh/id_ed25519"
        assert kwargs["look_for_keys"] is False
        assert kwargs["timeout"] == 10

    def test_strict_host_key_checking(self, executor, ssh_client, target):
        executor.execute(target, "true")

        policy = ssh_client.set_missing_host_key_policy.call_args.args[0]
        assert isinstance(policy, paramiko.RejectPolicy)
        ssh_client.load_system_host_keys.assert_called_once()

    def test_auto_add_when_not_strict(self, ssh_client, target):
        from dataclasses import replace

        lax = replace(target, strict_host_key_checking=False)
        SSHExecutor(client_factory=lambda: ssh_client).execute(lax, "true")

        policy = ssh_client.set_missing_host_key_policy.call_args.args[0]
        assert isinstance(policy, paramiko.AutoAddPolicy)

    def test_session_reused(self, target):
        clients = []

        def factory():
            client = MagicMock()
            client.exec_command.return_value = make_channel()
            clients.append(client)
            return client

        executor = SSHExecutor(client_factory=factory)
        executor.execute(target, "true")
        executor.execute(target, "true")

        assert len(clients) == 1
        assert clients[0].connect.call_count == 1

    def test_nonzero_exit_raises_when_checked(self, executor, ssh_client, target):
        ssh_client.exec_command.return_value = make_channel(stderr=b"mkdir: Permission denied\n", exit_code=1)

        with pytest.raises(RemoteCommandError) as exc_info:
            executor.execute(target, "mkdir -p /opt/demo")

        assert exc_info.value.exit_code == 1
        assert exc_info.value.stderr == "mkdir: Permission denied\n"
        assert "Permission denied" in exc_info.value.message

    def test_nonzero_exit_returned_when_unchecked(self, executor, ssh_client, target):
        ssh_client.exec_command.return_value = make_channel(exit_code=1)

        result = executor.execute(target, "test -f /opt/demo/demo.jar", check=False)

        assert not result.ok
        assert result.exit_code == 1

    def test_authentication_failure(self, executor, ssh_client, target):
        ssh_client.connect.side_effect = paramiko.AuthenticationException("denied")

        with pytest.raises(RemoteConnectionError) as exc_info:
            executor.execute(target, "true")

        assert "Authentication failed" in exc_info.value.message
        assert exc_info.value.host == "app01.example.com"
        ssh_client.close.assert_called_once()

    def test_host_key_mismatch(self, executor, ssh_client, target):
        key = MagicMock()
        key.get_base64.return_value = "AAAA"
        ssh_client.connect.side_effect = paramiko.BadHostKeyException("app01.example.com", key, key)

        with pytest.raises(RemoteConnectionError) as exc_info:
            executor.execute(target, "true")

        assert "Host key mismatch" in exc_info.value.message

    def test_unreachable_host(self, executor, ssh_client, target):
        ssh_client.connect.side_effect = OSError("No route to host")

        with pytest.raises(RemoteConnectionError) as exc_info:
            executor.execute(target, "true")

        assert "No route to host" in exc_info.value.message

    def test_failed_connect_not_cached(self, executor, ssh_client, target):
        ssh_client.connect.side_effect = [OSError("refused"), None]

        with pytest.raises(RemoteConnectionError):
            executor.execute(target, "true")
        executor.execute(target, "true")

        assert ssh_client.connect.call_count == 2

    def test_command_timeout(self, executor, ssh_client, target):
        _, out, err = make_channel()
        out.read.side_effect = socket.timeout()
        ssh_client.exec_command.return_value = (MagicMock(), out, err)

        with pytest.raises(CommandTimeout) as exc_info:
            executor.execute(target, "sleep 100", timeout=5)

        assert exc_info.value.timeout_seconds == 5

    def test_stderr_read_alongside_stdout(self, executor, ssh_client, target):
        noisy = b"WARN starting\n" * 20000
        stdin, out, err = make_channel(b"ok\n", noisy)
        readers = []
        err.read.side_effect = lambda: readers.append(threading.get_ident()) or noisy
        ssh_client.exec_command.return_value = (stdin, out, err)

        result = executor.execute(target, "java -version", timeout=30)

        assert result.stdout == "ok\n"
        assert result.stderr == noisy.decode()
        assert readers and readers[0] != threading.get_ident()
        err.read.assert_called_once()

    def test_stderr_timeout(self, executor, ssh_client, target):
        stdin, out, err = make_channel(b"partial")
        err.read.side_effect = socket.timeout()
        ssh_client.exec_command.return_value = (stdin, out, err)

        with pytest.raises(CommandTimeout):
            executor.execute(target, "sleep 100", timeout=5)

    def test_channel_failure(self, executor, ssh_client, target):
        ssh_client.exec_command.side_effect = paramiko.SSHException("channel closed")

        with pytest.raises(RemoteConnectionError):
            executor.execute(target, "true")

    def test_close(self, executor, ssh_client, target):
        executor.execute(target, "true")
        executor.close()

        ssh_client.close.assert_called_once()

    def test_context_manager(self, ssh_client, target):
        with SSHExecutor(client_factory=lambda: ssh_client) as executor:
            executor.execute(target, "true")

        ssh_client.close.assert_called_once()


class TestSFTPTransfer:
    """Tests for SFTPTransfer."""

    @pytest.fixture
    def sftp(self, ssh_client):
        sftp = MagicMock()
        ssh_client.open_sftp.return_value = sftp
        return sftp

    def test_upload_via_temp_name(self, executor, sftp, target, artifact):
        remote_path = SFTPTransfer(executor).upload(target, artifact)

        assert remote_path == "/opt/demo/demo.jar"
        sftp.put.assert_called_once_with(artifact.local_path, "/opt/demo/.demo.jar.part", confirm=True)
        sftp.posix_rename.assert_called_once_with("/opt/demo/.demo.jar.part", "/opt/demo/demo.jar")
        sftp.close.assert_called_once()

    def test_failed_put_removes_temp(self, executor, sftp, target, artifact):
        sftp.put.side_effect = OSError("No space left on device")

        with pytest.raises(TransferError) as exc_info:
            SFTPTransfer(executor).upload(target, artifact)

        assert exc_info.value.remote_path == "/opt/demo/demo.jar"
        assert "No space left" in exc_info.value.message
        sftp.remove.assert_called_once_with("/opt/demo/.demo.jar.part")
        sftp.posix_rename.assert_not_called()
        sftp.close.assert_called_once()

    def test_failed_rename(self, executor, sftp, target, artifact):
        sftp.posix_rename.side_effect = IOError("Permission denied")

        with pytest.raises(TransferError):
            SFTPTransfer(executor).upload(target, artifact)

        sftp.remove.assert_called_once_with("/opt/demo/.demo.jar.part")

    def test_sftp_unavailable(self, executor, ssh_client, target, artifact):
        ssh_client.open_sftp.side_effect = paramiko.SSHException("subsystem request failed")

        with pytest.raises(TransferError):
            SFTPTransfer(executor).upload(target, artifact)
