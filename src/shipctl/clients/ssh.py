"""SSH command execution using paramiko."""

import concurrent.futures
import socket
from typing import Any, Callable

import paramiko

from shipctl.clients.base import CommandExecutor, CommandResult
from shipctl.core.exceptions import CommandTimeout, RemoteCommandError, RemoteConnectionError
from shipctl.core.logging import StructuredLogger
from shipctl.deploy.models import DeploymentTarget

logger = StructuredLogger(__name__)


class SSHExecutor(CommandExecutor):
    """Runs commands over SSH, keeping one session per target."""

    def __init__(self, client_factory: Callable[[], Any] = paramiko.SSHClient):
        self._client_factory = client_factory
        self._clients: dict[tuple[str, int, str], Any] = {}

    def __enter__(self) -> "SSHExecutor":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def connect(self, target: DeploymentTarget) -> Any:
        """Get or open the SSH session for ``target``.

        Raises:
            RemoteConnectionError: On auth failure, host key mismatch or
                an unreachable host
        """
        key = (target.host, target.port, target.user)
        client = self._clients.get(key)
        if client is not None:
            return client

        client = self._client_factory()
        client.load_system_host_keys()
        if target.strict_host_key_checking:
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        auth = target.auth
        logger.debug("Connecting", host=target.user_host)
        try:
            client.connect(
                hostname=target.host,
                port=target.port,
                username=target.user,
                key_filename=auth.key_file,
                password=auth.password,
                passphrase=auth.passphrase,
                timeout=target.connect_timeout,
                banner_timeout=target.connect_timeout,
                auth_timeout=target.connect_timeout,
                look_for_keys=auth.key_file is None and auth.password is None,
            )
        except paramiko.AuthenticationException as e:
            client.close()
            raise RemoteConnectionError(
                f"Authentication failed for {target.user_host}: {e}", host=target.host
            )
        except paramiko.BadHostKeyException as e:
            client.close()
            raise RemoteConnectionError(
                f"Host key mismatch for {target.host}: {e}", host=target.host
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise RemoteConnectionError(
                f"Cannot connect to {target.user_host}: {e}", host=target.host
            )

        self._clients[key] = client
        logger.debug("Connected", host=target.user_host)
        return client

    def execute(
        self,
        target: DeploymentTarget,
        command: str,
        check: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        client = self.connect(target)
        logger.debug("Running remote command", host=target.host, command=command)

        try:
            stdin, stdout, stderr = client.exec_command(command, timeout=timeout)
            stdin.close()
            # the remote writer blocks once either stream window fills, so read both at once
            with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
                err_future = pool.submit(stderr.read)
                out = stdout.read().decode("utf-8", errors="replace")
                err = err_future.result().decode("utf-8", errors="replace")
            exit_code = stdout.channel.recv_exit_status()
        except socket.timeout:
            raise CommandTimeout(
                f"Remote command timed out after {timeout}s: {command}",
                timeout_seconds=timeout,
                command=command,
            )
        except paramiko.SSHException as e:
            raise RemoteConnectionError(
                f"SSH channel to {target.host} failed: {e}", host=target.host
            )

        result = CommandResult(command=command, exit_code=exit_code, stdout=out, stderr=err)
        logger.debug("Remote command finished", host=target.host, exit_code=exit_code)

        if check and not result.ok:
            raise RemoteCommandError(
                f"Command failed with exit code {exit_code} on {target.host}: {command}"
                + (f": {err.strip()}" if err.strip() else ""),
                command=command,
                exit_code=exit_code,
                stdout=out,
                stderr=err,
            )
        return result

    def close(self) -> None:
        for client in self._clients.values():
            client.close()
        self._clients.clear()
