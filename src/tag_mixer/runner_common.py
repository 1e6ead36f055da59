"""Subprocess plumbing for agent CLIs that stream JSON lines on stdout."""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import threading
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from tag_mixer.schemas import AgentEvent

logger = logging.getLogger(__name__)

_TERMINATE_GRACE_SECONDS = 3.0
_READER_JOIN_SECONDS = 5.0


def resolve_binary(name: str) -> str:
    """Return the PATH location of *name* (``~`` and env vars expanded), or *name* itself."""
    expanded = os.path.expandvars(os.path.expanduser(name.strip()))
    return shutil.which(expanded) or expanded


def _process_isolation_kwargs() -> dict[str, object]:
    """Start the child in its own process group.

    A timeout then takes down everything the agent spawned (dev servers,
    sub-agents) along with it.
    """
    if os.name == "nt":
        return {"creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)}
    return {"start_new_session": True}


@dataclass(slots=True)
class StreamExecutionResult:
    """What an agent subprocess printed, and how it ended."""

    events: list[AgentEvent]
    raw_lines: list[str]
    stderr_lines: list[str]
    exit_code: int
    timed_out: bool

    @property
    def stderr_text(self) -> str:
        return "\n".join(self.stderr_lines).strip()


def execute_streaming_json_command(
    *,
    cmd: list[str],
    cwd: Path,
    env: dict[str, str],
    timeout_seconds: int,
    parse_stdout_line: Callable[[str], AgentEvent | None],
    process_name: str,
    stdin_text: str | None = None,
) -> StreamExecutionResult:
    """Run *cmd*, parse each stdout line, and stop it at a wall-clock deadline.

    ``timeout_seconds <= 0`` means no deadline. On timeout the process group
    is terminated and whatever was printed up to that point is returned with
    ``timed_out=True``. Spawn failures (``OSError``) propagate.
    """
    proc = subprocess.Popen(
        cmd,
        cwd=cwd,
        env=env,
        stdin=subprocess.PIPE if stdin_text is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
        **_process_isolation_kwargs(),
    )

    events: list[AgentEvent] = []
    raw_lines: list[str] = []
    stderr_lines: list[str] = []

    def read_stdout(stream: IO[str]) -> None:
        for line in stream:
            line = line.rstrip("\r\n")
            if not line:
                continue
            raw_lines.append(line)
            try:
                event = parse_stdout_line(line)
            except Exception:
                logger.warning("Could not parse a %s output line; kept as raw text", process_name)
                continue
            if event is not None:
                events.append(event)

    def read_stderr(stream: IO[str]) -> None:
        for line in stream:
            stderr_lines.append(line.rstrip("\r\n"))

    workers = [
        threading.Thread(target=read_stdout, args=(proc.stdout,), daemon=True),
        threading.Thread(target=read_stderr, args=(proc.stderr,), daemon=True),
    ]
    if stdin_text is not None:
        workers.append(
            threading.Thread(target=_feed_stdin, args=(proc.stdin, stdin_text, process_name), daemon=True)
        )
    for worker in workers:
        worker.start()

    timed_out = False
    try:
        proc.wait(timeout=timeout_seconds if timeout_seconds > 0 else None)
    except subprocess.TimeoutExpired:
        timed_out = True
        logger.warning("%s hit its %ss wall-clock limit; stopping it", process_name, timeout_seconds)
        _stop_process_group(proc, process_name)
    finally:
        for worker in workers:
            worker.join(timeout=_READER_JOIN_SECONDS)
        if not any(worker.is_alive() for worker in workers):
            for stream in (proc.stdin, proc.stdout, proc.stderr):
                if stream is not None:
                    with suppress(OSError):
                        stream.close()

    return StreamExecutionResult(
        events=events,
        raw_lines=raw_lines,
        stderr_lines=stderr_lines,
        exit_code=proc.returncode if proc.returncode is not None else -1,
        timed_out=timed_out,
    )


def _feed_stdin(stream: IO[str], text: str, process_name: str) -> None:
    try:
        stream.write(text if text.endswith("\n") else text + "\n")
    except OSError:
        logger.debug("%s exited before reading its prompt from stdin", process_name)
    finally:
        with suppress(OSError):
            stream.close()


def _stop_process_group(proc: subprocess.Popen[str], process_name: str) -> None:
    """Terminate the child's group, then kill it if it is still around after a grace period."""
    for sig_name, fallback in (("SIGTERM", proc.terminate), ("SIGKILL", proc.kill)):
        if os.name == "nt":
            with suppress(OSError):
                fallback()
        else:
            with suppress(OSError):
                os.killpg(proc.pid, getattr(signal, sig_name))
        try:
            proc.wait(timeout=_TERMINATE_GRACE_SECONDS)
            return
        except subprocess.TimeoutExpired:
            continue
    logger.warning("%s survived SIGKILL; leaving it behind", process_name)
