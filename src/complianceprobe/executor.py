"""Run generated commands under the host's native shell."""

from __future__ import annotations

import logging
import os
import re
import signal
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass
from typing import IO

from complianceprobe.errors import ExecutionError, RunCancelled

_ANSI_RE = re.compile(
    r"[\x1b\x9b][\[\]()#;?]*(?:(?:(?:(?:;[-a-zA-Z\d\/#&.:=?%@~_]+)*"
    r"|[a-zA-Z\d]+(?:;[-a-zA-Z\d\/#&.:=?%@~_]+)*)?\x07)"
    r"|(?:(?:\d{1,4}(?:;\d{0,4})*)?[\dA-PR-TZcf-ntqry=><~]))"
)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

# Polling interval while waiting on a child, bounds cancellation latency.
_POLL_SECONDS = 0.1

DEFAULT_SHELLS = {
    "linux": "bash",
    "mac": "bash",
    "windows": "powershell",
}

COMMAND_ENV = {
    "TERM": "dumb",
    "NO_COLOR": "1",
    "LANG": "en_US.UTF-8",
}


@dataclass
class ExecutionResult:
    stdout: str
    stderr: str
    exit_code: int
    duration_seconds: float
    timed_out: bool = False


@dataclass(frozen=True)
class ShellSpec:
    """How to invoke one shell on a script file."""

    program: str
    args: tuple[str, ...]
    suffix: str
    prelude: str = ""


SHELLS: dict[str, ShellSpec] = {
    "bash": ShellSpec("bash", (), ".sh", "#!/bin/bash\nset -o pipefail\n"),
    "sh": ShellSpec("sh", (), ".sh", "#!/bin/sh\n"),
    "powershell": ShellSpec(
        "powershell",
        ("-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-File"),
        ".ps1",
    ),
    "pwsh": ShellSpec(
        "pwsh",
        ("-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-File"),
        ".ps1",
    ),
    "cmd": ShellSpec("cmd", ("/d", "/c"), ".cmd", "@echo off\r\n"),
}


def resolve_shell(os_tag: str, shell: str | None = None) -> str:
    if shell:
        return shell
    try:
        return DEFAULT_SHELLS[os_tag]
    except KeyError:
        raise ExecutionError(f"No default shell for operating system {os_tag!r}")


def shell_command(os_tag: str, script_path: str, shell: str | None = None) -> list[str]:
    """Argument vector running ``script_path`` with the shell for ``os_tag``."""
    spec = SHELLS.get(resolve_shell(os_tag, shell))
    if spec is None:
        raise ValueError(f"Shell {shell!r} does not run script files")
    return [spec.program, *spec.args, script_path]


def cleanup_output(text: str) -> str:
    """Strip ANSI escape sequences and stray control characters, then trim."""
    text = _ANSI_RE.sub("", text)
    text = _CONTROL_RE.sub("", text)
    return text.strip()


def _kill_tree(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    if os.name == "nt":
        subprocess.run(
            ["taskkill", "/F", "/T", "/PID", str(proc.pid)],
            capture_output=True,
            check=False,
        )
    else:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
    if proc.poll() is None:
        proc.kill()


class ProcessExecutor:
    """Executes commands for one host, one at a time.

    The shell is a policy of the executor: bash on linux/mac, PowerShell on
    windows, unless ``shell`` names another entry of :data:`SHELLS` (or any
    program accepting ``-c <command>``).
    """

    def __init__(
        self,
        os_tag: str,
        shell: str | None = None,
        extra_env: dict[str, str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.os_tag = os_tag
        self.shell = resolve_shell(os_tag, shell)
        self.extra_env = dict(extra_env or {})
        self.logger = logger or logging.getLogger(__name__)

    def _environment(self) -> dict[str, str]:
        env = dict(os.environ)
        env.update(COMMAND_ENV)
        env.update(self.extra_env)
        return env

    def execute(
        self,
        command: str,
        timeout: float | None,
        cancel_event: threading.Event | None = None,
        shell: str | None = None,
    ) -> ExecutionResult:
        """Run ``command`` and capture stdout/stderr separately.

        ``shell`` overrides the executor's shell for this command only.

        A non-zero exit code is returned as-is. On timeout the process tree is
        killed and the partial output is returned with ``timed_out=True``.

        Raises:
            ExecutionError: the shell could not be launched.
            RunCancelled: ``cancel_event`` was set while the command ran.
        """
        shell = shell or self.shell
        spec = SHELLS.get(shell)
        script_path: str | None = None
        if spec is None:
            argv = [shell, "-c", command]
        else:
            fd, script_path = tempfile.mkstemp(prefix="cp_", suffix=spec.suffix)
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(f"{spec.prelude}{command}\n")
            argv = shell_command(self.os_tag, script_path, shell)

        self.logger.debug(f"> {command}")
        try:
            return self._run(argv, timeout, cancel_event)
        finally:
            if script_path is not None:
                try:
                    os.remove(script_path)
                except OSError:
                    self.logger.debug(f"Could not remove temporary script {script_path}")

    def _run(
        self,
        argv: list[str],
        timeout: float | None,
        cancel_event: threading.Event | None,
    ) -> ExecutionResult:
        popen_kwargs: dict = {}
        if os.name == "nt":
            popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            popen_kwargs["start_new_session"] = True

        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._environment(),
                **popen_kwargs,
            )
        except OSError as e:
            raise ExecutionError(f"Failed to launch {argv[0]!r}: {e}") from e

        def _read(stream: IO[bytes], chunks: list[bytes], prefix: str) -> None:
            for line in iter(stream.readline, b""):
                chunks.append(line)
                self.logger.debug("[%s] %s", prefix, line.decode("utf-8", errors="replace").rstrip())
            stream.close()

        stdout_chunks: list[bytes] = []
        stderr_chunks: list[bytes] = []
        t_out = threading.Thread(target=_read, args=(proc.stdout, stdout_chunks, "stdout"), daemon=True)
        t_err = threading.Thread(target=_read, args=(proc.stderr, stderr_chunks, "stderr"), daemon=True)
        t_out.start()
        t_err.start()

        deadline = None if timeout is None else start + timeout
        timed_out = False
        cancelled = False
        try:
            while True:
                try:
                    proc.wait(timeout=_POLL_SECONDS)
                    break
                except subprocess.TimeoutExpired:
                    pass
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
                if deadline is not None and time.monotonic() >= deadline:
                    timed_out = True
                    break
        except BaseException:
            # KeyboardInterrupt from the operator: never leave the child behind
            _kill_tree(proc)
            proc.wait()
            raise

        if timed_out or cancelled:
            _kill_tree(proc)
            proc.wait()

        # Grandchildren outside the process group may keep the pipes open.
        t_out.join(timeout=5)
        t_err.join(timeout=5)
        duration = time.monotonic() - start

        if cancelled:
            raise RunCancelled("Command cancelled")
        if timed_out:
            self.logger.warning(f"Command timed out after {timeout}s")

        return ExecutionResult(
            stdout=cleanup_output(b"".join(stdout_chunks).decode("utf-8", errors="replace")),
            stderr=cleanup_output(b"".join(stderr_chunks).decode("utf-8", errors="replace")),
            exit_code=proc.returncode,
            duration_seconds=duration,
            timed_out=timed_out,
        )
