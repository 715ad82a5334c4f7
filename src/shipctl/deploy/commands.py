"""Shell commands run on the target host.

Every path and user-supplied value is quoted with ``shlex.quote``; each
builder returns a single command line for the executor.
"""

import shlex

from shipctl.deploy.models import RuntimeOptions


def q(value: str) -> str:
    return shlex.quote(str(value))


def make_dirs(*paths: str) -> str:
    return "mkdir -p " + " ".join(q(p) for p in paths)


def file_exists(path: str) -> str:
    """Exit 0 if ``path`` is a regular file."""
    return f"test -f {q(path)}"


def copy_file(src: str, dst: str) -> str:
    return f"cp -p {q(src)} {q(dst)}"


def move_file(src: str, dst: str) -> str:
    return f"mv -f {q(src)} {q(dst)}"


def remove_files(*paths: str) -> str:
    return "rm -f " + " ".join(q(p) for p in paths)


def list_dir(path: str) -> str:
    """One entry per line; exits non-zero if the directory is missing."""
    return f"ls -1 {q(path)}"


def pids_on_port(port: int) -> str:
    """PIDs of processes listening on ``port``; exit 1 when there are none."""
    return f"lsof -t -iTCP:{int(port)} -sTCP:LISTEN"


def port_owners(port: int) -> str:
    """Listening sockets on ``port`` with their owners as ``pid=N``.

    Owners of sockets belonging to other users are omitted unless run as root.
    """
    return f"ss -Hltnp 'sport = :{int(port)}'"


def read_pid_file(path: str) -> str:
    return f"cat {q(path)}"


def pids_by_name(name: str) -> str:
    """PIDs whose command line mentions ``name``; exit 1 when there are none.

    The first character is bracketed so the pattern does not match the
    remote shell that runs pgrep.
    """
    pattern = f"[{name[0]}]" + name[1:].replace(".", "\\.")
    return f"pgrep -f {q(pattern)}"


def signal_process(pid: int, signal: str) -> str:
    return f"kill -{signal} {int(pid)}"


def process_alive(pid: int) -> str:
    """Exit 0 while ``pid`` exists."""
    return f"kill -0 {int(pid)}"


def port_listening(port: int) -> str:
    """Listening sockets on ``port``, one per line; empty output means none."""
    port = int(port)
    return (
        f"ss -Hltn 'sport = :{port}' 2>/dev/null "
        f"|| netstat -ltn 2>/dev/null | grep -E ':{port}[[:space:]]'"
    )


def tail_file(path: str, lines: int) -> str:
    return f"tail -n {int(lines)} {q(path)}"


def java_command(artifact_path: str, runtime: RuntimeOptions) -> list[str]:
    """Argument vector that launches the artifact with the fixed runtime options."""
    argv = [runtime.java_bin]
    if runtime.min_heap:
        argv.append(f"-Xms{runtime.min_heap}")
    if runtime.max_heap:
        argv.append(f"-Xmx{runtime.max_heap}")
    if runtime.gc:
        argv.append(f"-XX:+Use{runtime.gc}")
    argv.extend(runtime.jvm_options)
    argv.extend(["-jar", artifact_path])
    if runtime.active_profile:
        argv.append(f"--spring.profiles.active={runtime.active_profile}")
    argv.extend(runtime.app_args)
    return argv


def start_detached(
    workdir: str,
    argv: list[str],
    log_file: str,
    pid_file: str,
) -> str:
    """Launch ``argv`` in the background and record its PID."""
    command = " ".join(q(a) for a in argv)
    return (
        f"cd {q(workdir)} || exit 1; "
        f"nohup {command} > {q(log_file)} 2>&1 < /dev/null & "
        f"echo $! > {q(pid_file)}"
    )
