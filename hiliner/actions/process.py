"""Subprocess lifecycle for shell and external commands."""

import asyncio
import locale
import os
import shlex
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import structlog

from ..utils.logging import sanitize_command


logger = structlog.get_logger(__name__)

DEFAULT_KILL_GRACE_PERIOD = 2.0
TIMEOUT_EXIT_CODE = 124
EXIT_POLL_INTERVAL = 0.05

_SHELLS: Dict[str, List[str]] = {
    "bash": ["bash", "-c"],
    "sh": ["sh", "-c"],
    "zsh": ["zsh", "-c"],
    "fish": ["fish", "-c"],
    "cmd": ["cmd", "/c"],
    "powershell": ["powershell", "-Command"],
}


@dataclass
class CommandResult:
    """Outcome of one spawned process."""

    argv: List[str]
    exit_code: Optional[int]
    stdout: str
    stderr: str
    timed_out: bool = False
    killed: bool = False
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


def resolve_shell(shell: Optional[str] = None, os_name: Optional[str] = None) -> List[str]:
    """Return the argv prefix used to run a command string.

    Args:
        shell: Configured shell name, or None for the platform default
        os_name: Override of ``os.name`` for tests

    Returns:
        Executable and flag, e.g. ``["sh", "-c"]``
    """
    if shell:
        prefix = _SHELLS.get(shell.strip().lower())
        if prefix is not None:
            return list(prefix)
        logger.warning("Unknown shell configured, using platform default", shell=shell)

    platform_name = os.name if os_name is None else os_name
    return list(_SHELLS["cmd"] if platform_name == "nt" else _SHELLS["sh"])


def build_shell_command(command: str, args: Sequence[str], shell: Optional[str] = None) -> str:
    """Join a program and its arguments into one shell-safe command string.

    Each argument is quoted on its own, so substituted values containing
    spaces or shell metacharacters are never re-split.
    """
    prefix = resolve_shell(shell)
    if prefix[0] in ("cmd", "powershell"):
        return subprocess.list2cmdline([command, *args])
    return shlex.join([command, *args])


async def _drain(stream: Optional[asyncio.StreamReader], chunks: List[bytes]) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            return
        chunks.append(chunk)


def _signal_process(process: asyncio.subprocess.Process, sig: int) -> None:
    """Signal the whole process group so shell children go down too."""
    try:
        if os.name != "nt":
            os.killpg(process.pid, sig)
        elif sig == signal.SIGTERM:
            process.terminate()
        else:
            process.kill()
    except ProcessLookupError:
        pass


async def _wait_for_exit(process: asyncio.subprocess.Process) -> int:
    """Return once the process has exited, even if its pipes are still open.

    ``Process.wait()`` also waits for stdout and stderr to close, which a
    backgrounded grandchild can hold open indefinitely.
    """
    while process.returncode is None:
        await asyncio.sleep(EXIT_POLL_INTERVAL)
    return process.returncode


async def _terminate(process: asyncio.subprocess.Process, grace_period: float) -> bool:
    """Send SIGTERM, then SIGKILL after the grace period.

    Returns:
        True when the forced kill was needed
    """
    _signal_process(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(_wait_for_exit(process), timeout=grace_period)
        return False
    except asyncio.TimeoutError:
        pass

    logger.warning(
        "Process ignored termination, killing",
        pid=process.pid,
        grace_period=grace_period,
    )
    _signal_process(process, getattr(signal, "SIGKILL", signal.SIGTERM))
    try:
        await asyncio.wait_for(_wait_for_exit(process), timeout=grace_period)
    except asyncio.TimeoutError:
        logger.error("Killed process was not reaped in time", pid=process.pid)
    return True


async def run_command(
    argv: Sequence[str],
    *,
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[str] = None,
    timeout: Optional[float] = None,
    kill_grace_period: float = DEFAULT_KILL_GRACE_PERIOD,
    input_data: Optional[bytes] = None,
) -> CommandResult:
    """Spawn a process and collect its output.

    Args:
        argv: Program and arguments
        env: Complete environment for the child (None inherits ours)
        cwd: Working directory
        timeout: Seconds before graceful termination starts (None waits forever)
        kill_grace_period: Seconds between SIGTERM and SIGKILL
        input_data: Bytes written to stdin before it is closed

    Returns:
        CommandResult; a timed-out process is always reported as failed
    """
    argv = list(argv)
    started = time.monotonic()

    logger.debug(
        "Spawning process",
        command=sanitize_command(" ".join(argv)),
        cwd=cwd,
        timeout=timeout,
    )

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if input_data is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            cwd=cwd,
            start_new_session=os.name != "nt",
        )
    except OSError as e:
        logger.error("Failed to spawn process", program=argv[0], error=str(e))
        return CommandResult(
            argv=argv,
            exit_code=None,
            stdout="",
            stderr=str(e),
            duration_seconds=time.monotonic() - started,
        )

    stdout_chunks: List[bytes] = []
    stderr_chunks: List[bytes] = []
    readers = asyncio.ensure_future(
        asyncio.gather(
            _drain(process.stdout, stdout_chunks),
            _drain(process.stderr, stderr_chunks),
        )
    )

    if input_data is not None and process.stdin is not None:
        try:
            process.stdin.write(input_data)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Process closed stdin early", pid=process.pid)
        finally:
            process.stdin.close()

    timed_out = False
    killed = False
    try:
        await asyncio.wait_for(_wait_for_exit(process), timeout=timeout)
    except asyncio.TimeoutError:
        timed_out = True
        logger.warning("Process timed out", pid=process.pid, timeout=timeout)
        killed = await _terminate(process, kill_grace_period)

    # Pipes may be held open by escaped grandchildren; stop reading after the grace period
    try:
        await asyncio.wait_for(asyncio.shield(readers), timeout=kill_grace_period)
    except asyncio.TimeoutError:
        readers.cancel()
        logger.warning("Abandoned output pipes still held open", pid=process.pid)

    result = CommandResult(
        argv=argv,
        exit_code=process.returncode,
        stdout=decode_output(b"".join(stdout_chunks)).rstrip("\r\n"),
        stderr=decode_output(b"".join(stderr_chunks)).rstrip("\r\n"),
        timed_out=timed_out,
        killed=killed,
        duration_seconds=time.monotonic() - started,
    )

    logger.debug(
        "Process finished",
        exit_code=result.exit_code,
        timed_out=result.timed_out,
        killed=result.killed,
        duration_seconds=round(result.duration_seconds, 4),
        stdout_length=len(result.stdout),
        stderr_length=len(result.stderr),
    )
    return result


def decode_output(payload: bytes) -> str:
    if not payload:
        return ""
    for encoding in ("utf-8", locale.getpreferredencoding(False)):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")
