"""Pytest fixtures for shipctl tests."""

import os
import posixpath
import re
import shlex
from datetime import datetime
from pathlib import Path
from typing import Generator

import pytest
from click.testing import CliRunner

from shipctl.clients.base import ArtifactTransfer, CommandExecutor, CommandResult
from shipctl.config import ShipCtlConfig, ProfileConfig, TargetConfig
from shipctl.core.context import ShipCtlContext
from shipctl.core.exceptions import RemoteCommandError, TransferError
from shipctl.core.output import OutputFormat
from shipctl.deploy.models import Artifact, DeploymentTarget, DeployPolicy
from shipctl.deploy.orchestrator import DeploymentOrchestrator


DEPLOY_DIR = "/opt/demo"
FIXED_NOW = datetime(2026, 10, 18, 12, 30, 45)
FIXED_STAMP = "20261018123045"


class FakeRemoteHost(CommandExecutor):
    """In-memory stand-in for a Linux host.

    Interprets the commands built by ``shipctl.deploy.commands``: a flat
    file map, a directory set, a process table and listening ports.
    """

    def __init__(
        self,
        listen_after: int | None = 0,
        startup_log: list[str] | None = None,
        missing_tools: set[str] | None = None,
        hide_owners: bool = False,
    ):
        self.missing_tools = missing_tools or set()
        self.hide_owners = hide_owners
        self.files: dict[str, str] = {}
        self.dirs: set[str] = {"/", "/opt"}
        self.processes: dict[int, dict] = {}
        self.listening: dict[int, int] = {}
        self.commands: list[str] = []
        self.ops: list[tuple] = []
        self.listen_after = listen_after
        self.startup_log = startup_log or ["Starting demo", "Started demo in 3.2 seconds"]
        self._next_pid = 4000
        self._pending_port: int | None = None
        self._pending_pid: int | None = None
        self._polls_left = 0

    # Seeding helpers

    def add_file(self, path: str, content: str = "") -> None:
        self.dirs.add(posixpath.dirname(path))
        self.files[path] = content

    def add_process(
        self,
        cmdline: str,
        port: int | None = None,
        stubborn: bool = False,
        pid: int | None = None,
    ) -> int:
        pid = pid or self._new_pid()
        self.processes[pid] = {"cmdline": cmdline, "stubborn": stubborn, "alive": True}
        if port is not None:
            self.listening[port] = pid
        return pid

    def is_alive(self, pid: int) -> bool:
        return pid in self.processes and self.processes[pid]["alive"]

    def files_in(self, directory: str) -> list[str]:
        return sorted(
            posixpath.basename(p) for p in self.files if posixpath.dirname(p) == directory
        )

    # CommandExecutor

    def execute(
        self,
        target: DeploymentTarget,
        command: str,
        check: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        self.commands.append(command)
        if "nohup " in command:
            result = self._start(target, command)
        else:
            result = self._dispatch(target, command, shlex.split(command))

        if check and result.exit_code != 0:
            raise RemoteCommandError(
                f"Command failed with exit code {result.exit_code}: {command}",
                command=command,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result

    def _new_pid(self) -> int:
        self._next_pid += 1
        return self._next_pid

    def _result(self, command: str, exit_code: int = 0, stdout: str = "", stderr: str = "") -> CommandResult:
        return CommandResult(command=command, exit_code=exit_code, stdout=stdout, stderr=stderr)

    def _kill(self, pid: int) -> None:
        self.processes[pid]["alive"] = False
        self.listening = {port: p for port, p in self.listening.items() if p != pid}
        self.ops.append(("exited", pid))

    def _start(self, target: DeploymentTarget, command: str) -> CommandResult:
        log_file = shlex.split(re.search(r"> (\S+) 2>&1", command).group(1))[0]
        pid_file = shlex.split(re.search(r"echo \$! > (\S+)$", command).group(1))[0]
        jar = shlex.split(re.search(r"-jar (\S+)", command).group(1))[0]
        if posixpath.dirname(log_file) not in self.dirs:
            return self._result(command, 1, stderr="No such file or directory")

        pid = self.add_process(f"java -jar {jar}")
        self.files[log_file] = "\n".join(self.startup_log) + "\n"
        self.files[pid_file] = f"{pid}\n"
        self.ops.append(("started", pid, command))
        self._pending_port = target.listen_port
        self._pending_pid = pid
        self._polls_left = self.listen_after if self.listen_after is not None else -1
        return self._result(command)

    def _dispatch(self, target: DeploymentTarget, command: str, argv: list[str]) -> CommandResult:
        op = argv[0]

        if op in self.missing_tools:
            return self._result(command, 127, stderr=f"{op}: command not found")

        if op == "mkdir":
            for path in argv[2:]:
                parts = path.strip("/").split("/")
                for i in range(1, len(parts) + 1):
                    self.dirs.add("/" + "/".join(parts[:i]))
            return self._result(command)

        if op == "test":
            return self._result(command, 0 if argv[2] in self.files else 1)

        if op == "cp":
            src, dst = argv[2], argv[3]
            if src not in self.files or posixpath.dirname(dst) not in self.dirs:
                return self._result(command, 1, stderr="cp: cannot copy")
            self.files[dst] = self.files[src]
            self.ops.append(("copied", src, dst))
            return self._result(command)

        if op == "mv":
            src, dst = argv[2], argv[3]
            if src not in self.files:
                return self._result(command, 1, stderr="mv: cannot stat")
            self.files[dst] = self.files.pop(src)
            self.ops.append(("moved", src, dst))
            return self._result(command)

        if op == "rm":
            for path in argv[2:]:
                self.files.pop(path, None)
            return self._result(command)

        if op == "ls":
            directory = argv[2]
            if directory not in self.dirs:
                return self._result(command, 2, stderr="ls: cannot access")
            return self._result(command, stdout="".join(f"{n}\n" for n in self.files_in(directory)))

        if op == "lsof":
            port = int(re.search(r"TCP:(\d+)", command).group(1))
            pid = self.listening.get(port)
            if pid is None:
                return self._result(command, 1)
            return self._result(command, stdout=f"{pid}\n")

        if op == "cat":
            if argv[1] not in self.files:
                return self._result(command, 1, stderr="cat: no such file")
            return self._result(command, stdout=self.files[argv[1]])

        if op == "pgrep":
            pattern = re.compile(argv[2])
            pids = [
                pid for pid, proc in self.processes.items()
                if proc["alive"] and pattern.search(proc["cmdline"])
            ]
            if not pids:
                return self._result(command, 1)
            return self._result(command, stdout="".join(f"{p}\n" for p in pids))

        if op == "kill":
            signal, pid = argv[1], int(argv[2])
            if not self.is_alive(pid):
                return self._result(command, 1, stderr="No such process")
            if signal == "-0":
                return self._result(command)
            self.ops.append(("signal", signal, pid))
            if signal == "-KILL" or not self.processes[pid]["stubborn"]:
                self._kill(pid)
            return self._result(command)

        if op == "ss":
            port = target.listen_port
            if port not in self.listening and self._pending_port == port and self.is_alive(self._pending_pid):
                if self._polls_left == 0:
                    self.listening[port] = self._pending_pid
                elif self._polls_left > 0:
                    self._polls_left -= 1
            if port in self.listening:
                line = f"LISTEN 0 100 *:{port} *:*"
                if argv[1] == "-Hltnp" and not self.hide_owners:
                    line += f' users:(("java",pid={self.listening[port]},fd=12))'
                return self._result(command, stdout=line + "\n")
            return self._result(command)

        if op == "tail":
            lines, path = int(argv[2]), argv[3]
            if path not in self.files:
                return self._result(command, 1, stderr="tail: cannot open")
            content = self.files[path].splitlines()
            return self._result(command, stdout="".join(f"{line}\n" for line in content[-lines:]))

        return self._result(command, 127, stderr=f"{op}: command not found")


class FakeTransfer(ArtifactTransfer):
    """Writes the artifact's bytes into a FakeRemoteHost."""

    def __init__(self, host: FakeRemoteHost):
        self.host = host
        self.uploads: list[str] = []

    def upload(self, target: DeploymentTarget, artifact: Artifact) -> str:
        remote_path = target.remote_path(artifact.remote_file_name)
        if target.deploy_dir not in self.host.dirs:
            raise TransferError(f"No such directory: {target.deploy_dir}", remote_path=remote_path)
        self.host.files[remote_path] = Path(artifact.local_path).read_text()
        self.host.ops.append(("uploaded", remote_path))
        self.uploads.append(remote_path)
        return remote_path


class FakeSleep:
    """Records sleep calls instead of sleeping."""

    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Click CLI runner."""
    return CliRunner()


@pytest.fixture
def target() -> DeploymentTarget:
    """Target for demo.jar on port 8070."""
    return DeploymentTarget(
        host="app01.example.com",
        user="deploy",
        deploy_dir=DEPLOY_DIR,
        backup_dir=f"{DEPLOY_DIR}/backup",
        log_file=f"{DEPLOY_DIR}/demo.jar.log",
        pid_file=f"{DEPLOY_DIR}/demo.jar.pid",
        listen_port=8070,
    )


@pytest.fixture
def artifact(tmp_path: Path) -> Artifact:
    """A locally built demo.jar."""
    jar = tmp_path / "demo.jar"
    jar.write_text("demo-v2")
    return Artifact.from_path(jar)


@pytest.fixture
def remote_host() -> FakeRemoteHost:
    return FakeRemoteHost()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def make_orchestrator(fake_sleep: FakeSleep):
    """Build an orchestrator over a fake host with a fixed clock."""

    def _make(host: FakeRemoteHost, now: datetime = FIXED_NOW, **policy) -> DeploymentOrchestrator:
        return DeploymentOrchestrator(
            executor=host,
            transfer=FakeTransfer(host),
            policy=DeployPolicy(**policy),
            clock=lambda: now,
            sleep=fake_sleep,
        )

    return _make


@pytest.fixture
def mock_config() -> ShipCtlConfig:
    """Create a mock configuration."""
    return ShipCtlConfig(
        profiles={
            "default": ProfileConfig(
                target=TargetConfig(
                    host="app01.example.com",
                    user="deploy",
                    deploy_dir=DEPLOY_DIR,
                    listen_port=8070,
                ),
            )
        }
    )


@pytest.fixture
def mock_context(mock_config: ShipCtlConfig) -> ShipCtlContext:
    """Create a mock ShipCtl context."""
    return ShipCtlContext(
        config=mock_config,
        profile="default",
        output_format=OutputFormat.TABLE,
        verbose=0,
        quiet=False,
        dry_run=False,
        color=False,
    )


@pytest.fixture(autouse=True)
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables before each test."""
    env_vars = [
        "SHIPCTL_PROFILE",
        "SHIPCTL_CONFIG",
        "SHIPCTL_TARGET_HOST",
        "SHIPCTL_TARGET_PORT",
        "SHIPCTL_TARGET_USER",
        "SHIPCTL_SSH_KEY_FILE",
        "SHIPCTL_SSH_PASSWORD",
        "SHIPCTL_SSH_PASSPHRASE",
        "SHIPCTL_LISTEN_PORT",
        "SHIPCTL_DEPLOY_DIR",
    ]

    original = {k: os.environ.get(k) for k in env_vars}

    for k in env_vars:
        os.environ.pop(k, None)

    yield

    for k, v in original.items():
        if v is not None:
            os.environ[k] = v
        else:
            os.environ.pop(k, None)


@pytest.fixture
def temp_config_file(tmp_path):
    """Create a temporary config file."""
    config_content = f"""
version: "1"
global:
  output_format: table
  confirm_destructive: false
profiles:
  default:
    target:
      host: app01.example.com
      user: deploy
      deploy_dir: {DEPLOY_DIR}
      listen_port: 8070
  staging:
    target:
      host: staging01.example.com
      user: deploy
      deploy_dir: /srv/demo
      listen_port: 9090
      password: from_env
"""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(config_content)
    return str(config_file)
