"""
rlmloop.shell

Bounded subprocess execution: concurrent stdout/stderr capture, wall-clock
timeout, forced termination of the whole process group on expiry.
"""
from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, IO, List, Optional

from .time_utils import elapsed_ms

TIMEOUT_ERROR = "execution timeout"
READ_CHUNK_BYTES = 8192


@dataclass
class CommandResult:
    ok: bool
    stdout: str
    stderr: str
    exit_code: Optional[int]
    elapsed_ms: int
    timed_out: bool = False


def run_command(
    cmd: List[str],
    cwd: Optional[str | Path] = None,
    timeout_sec: float = 30,
    env: Optional[Dict[str, str]] = None,
    reader_grace_sec: float = 1.0,
) -> CommandResult:
    """
    Run ``cmd`` and wait at most ``timeout_sec`` for it to exit.

    Spawn failures are reported as a failed result, never raised. Background
    processes still holding the output pipes once the grace period ends are
    killed with the rest of the session.
    """
    started = time.monotonic()
    merged_env = os.environ.copy()
    if env:
        merged_env.update(env)
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=str(cwd) if cwd is not None else None,
            env=merged_env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
    except (OSError, ValueError) as exc:
        return CommandResult(
            ok=False,
            stdout="",
            stderr=str(exc),
            exit_code=None,
            elapsed_ms=elapsed_ms(started),
        )

    stdout_parts: List[bytes] = []
    stderr_parts: List[bytes] = []
    readers = [
        threading.Thread(target=_drain, args=(proc.stdout, stdout_parts), daemon=True),
        threading.Thread(target=_drain, args=(proc.stderr, stderr_parts), daemon=True),
    ]
    for reader in readers:
        reader.start()

    timed_out = False
    try:
        proc.wait(timeout=timeout_sec)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill_process_tree(proc)
    except KeyboardInterrupt:
        _kill_process_tree(proc)
        raise

    elapsed = elapsed_ms(started)
    for reader in readers:
        reader.join(timeout=reader_grace_sec)
    if any(reader.is_alive() for reader in readers):
        _kill_session(proc.pid)
        for reader in readers:
            reader.join(timeout=reader_grace_sec)

    stdout = _decode(stdout_parts)
    if timed_out:
        return CommandResult(
            ok=False,
            stdout=stdout,
            stderr=TIMEOUT_ERROR,
            exit_code=None,
            elapsed_ms=elapsed,
            timed_out=True,
        )

    exit_code = int(proc.returncode) if proc.returncode is not None else 1
    return CommandResult(
        ok=exit_code == 0,
        stdout=stdout,
        stderr=_decode(stderr_parts),
        exit_code=exit_code,
        elapsed_ms=elapsed,
    )


def run_shell(
    command: str,
    cwd: Optional[str | Path] = None,
    timeout_sec: float = 30,
    env: Optional[Dict[str, str]] = None,
    bash_bin: str = "bash",
    reader_grace_sec: float = 1.0,
) -> CommandResult:
    return run_command(
        [bash_bin, "-c", command],
        cwd=cwd,
        timeout_sec=timeout_sec,
        env=env,
        reader_grace_sec=reader_grace_sec,
    )


def _drain(stream: Optional[IO[bytes]], sink: List[bytes]) -> None:
    # os.read returns whatever is buffered instead of waiting for a full chunk.
    if stream is None:
        return
    try:
        fd = stream.fileno()
        while True:
            chunk = os.read(fd, READ_CHUNK_BYTES)
            if not chunk:
                break
            sink.append(chunk)
    except (OSError, ValueError):
        # Pipe closed underneath the reader after a forced kill.
        return
    finally:
        try:
            stream.close()
        except OSError:
            pass


def _decode(parts: List[bytes]) -> str:
    return b"".join(parts).decode("utf-8", errors="replace")


def _kill_session(pgid: int) -> None:
    try:
        os.killpg(pgid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


def _kill_process_tree(proc: subprocess.Popen[bytes]) -> None:
    if proc.poll() is not None:
        return
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass
    except OSError:
        proc.kill()
    try:
        proc.wait(timeout=2)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()
