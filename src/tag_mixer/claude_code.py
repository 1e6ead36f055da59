"""Claude Code CLI runner (``claude -p --output-format stream-json``)."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from pathlib import Path
from typing import Any

from tag_mixer.agent_runner import DEFAULT_TIMEOUT_SECONDS, DEFAULT_TURN_BUDGET, AgentRunner
from tag_mixer.runner_common import (
    StreamExecutionResult,
    execute_streaming_json_command,
    resolve_binary,
)
from tag_mixer.schemas import AgentEvent, AgentResult, EventKind

logger = logging.getLogger(__name__)

# Longer prompts go through stdin (``-p -``) to stay under argv limits.
PROMPT_ARG_LIMIT = 60_000


class ClaudeCodeRunner(AgentRunner):
    """Run one prompt through ``claude -p`` inside the workspace.

    The CLI prints one JSON object per line (``system``, ``assistant``,
    ``result``). The ``result`` line carries the final message and whether
    the session ended in error; if it is missing, the last assistant text
    stands in for it.

    Parameters
    ----------
    claude_binary:
        Path or name of the Claude Code CLI binary.
    model:
        ``--model`` override; blank uses the CLI default.
    full_auto:
        Pass ``--dangerously-skip-permissions`` so the agent can write files
        and run commands without interactive approval.
    env_overrides:
        Extra environment variables for the child process.
    """

    name = "Claude Code"

    def __init__(
        self,
        claude_binary: str = "claude",
        model: str = "",
        *,
        full_auto: bool = False,
        env_overrides: dict[str, str] | None = None,
    ) -> None:
        self.claude_binary = claude_binary
        self.model = (model or "").strip()
        self.full_auto = full_auto
        self.env_overrides = dict(env_overrides or {})

    def invoke(
        self,
        instruction: str,
        working_dir: str | Path,
        *,
        turn_budget: int = DEFAULT_TURN_BUDGET,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> AgentResult:
        cwd = Path(working_dir).resolve()
        if not cwd.is_dir():
            return AgentResult(errors=[f"working directory does not exist: {cwd}"])

        via_stdin = len(instruction) >= PROMPT_ARG_LIMIT
        cmd = self.build_command("-" if via_stdin else instruction, turn_budget=turn_budget)
        logger.info(
            "Running Claude Code (cwd=%s, max_turns=%s, timeout=%ss, prompt_len=%s, prompt_sha256=%s)",
            cwd,
            turn_budget,
            timeout_seconds,
            len(instruction),
            hashlib.sha256(instruction.encode("utf-8")).hexdigest()[:16],
        )

        started = time.monotonic()
        try:
            execution = execute_streaming_json_command(
                cmd=cmd,
                cwd=cwd,
                env={**os.environ, **self.env_overrides},
                timeout_seconds=timeout_seconds,
                parse_stdout_line=parse_stream_line,
                process_name="Claude Code",
                stdin_text=instruction if via_stdin else None,
            )
        except OSError as exc:
            return AgentResult(errors=[f"Failed to execute claude: {exc}"])

        result = summarize_stream(execution, timeout_seconds)
        logger.info(
            "Claude Code finished in %.1fs (exit=%s, success=%s)",
            time.monotonic() - started,
            result.exit_code,
            result.success,
        )
        return result

    def build_command(self, prompt: str, *, turn_budget: int) -> list[str]:
        cmd = [
            resolve_binary(self.claude_binary),
            "-p",
            prompt,
            "--output-format",
            "stream-json",
            "--verbose",
        ]
        if turn_budget > 0:
            cmd += ["--max-turns", str(turn_budget)]
        if self.full_auto:
            cmd.append("--dangerously-skip-permissions")
        if self.model:
            cmd += ["--model", self.model]
        return cmd


# ---------------------------------------------------------------------------
# Stream parsing
# ---------------------------------------------------------------------------


def parse_stream_line(line: str) -> AgentEvent | None:
    """Turn one stdout line into an event; non-JSON and bookkeeping lines yield ``None``."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Non-JSON line from claude: %s", line[:200])
        return None
    if not isinstance(data, dict):
        return None

    etype = data.get("type")
    if etype == "result":
        text = data.get("result")
        return AgentEvent(kind=EventKind.RESULT, raw=data, text=text if isinstance(text, str) else None)
    if etype == "assistant":
        return AgentEvent(kind=EventKind.AGENT_MESSAGE, raw=data, text=_assistant_text(data))
    if etype == "error" or (etype is None and "error" in data):
        return AgentEvent(kind=EventKind.ERROR, raw=data, text=_error_text(data))
    return None


def _assistant_text(data: dict[str, Any]) -> str | None:
    message = data.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if isinstance(content, str):
        return content or None
    if not isinstance(content, list):
        return None
    texts = [
        block.get("text", "")
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "\n".join(texts).strip() or None


def _error_text(data: dict[str, Any]) -> str:
    err = data.get("error")
    if isinstance(err, dict):
        err = err.get("message")
    if isinstance(err, str) and err.strip():
        return err.strip()
    message = data.get("message")
    return message if isinstance(message, str) else json.dumps(data)


def summarize_stream(execution: StreamExecutionResult, timeout_seconds: int) -> AgentResult:
    """Fold a finished (or timed-out) stream into an :class:`AgentResult`."""
    final_text = ""
    last_assistant = ""
    result_event: AgentEvent | None = None
    errors: list[str] = []

    for event in execution.events:
        if event.kind is EventKind.ERROR:
            errors.append(event.text or "")
        elif event.kind is EventKind.RESULT:
            result_event = event
            final_text = event.text or final_text
        elif event.kind is EventKind.AGENT_MESSAGE and event.text:
            last_assistant = event.text

    output = final_text or last_assistant or _last_plain_line(execution.raw_lines)
    stderr = execution.stderr_text

    if execution.timed_out:
        return AgentResult(
            success=False,
            exit_code=execution.exit_code,
            output=output,
            timed_out=True,
            errors=[f"Claude Code process timed out after {timeout_seconds}s", *([stderr] if stderr else [])],
        )

    ended_in_error = bool(result_event and result_event.raw.get("is_error"))
    success = execution.exit_code == 0 and not ended_in_error
    if not success:
        if stderr:
            errors.append(stderr)
        if not any(errors):
            subtype = result_event.raw.get("subtype") if result_event else None
            errors = [
                subtype
                or output[:500]
                or f"Claude Code exited with status {execution.exit_code} and printed no error"
            ]

    return AgentResult(
        success=success,
        exit_code=execution.exit_code,
        output=output,
        errors=[e for e in errors if e],
    )


def _last_plain_line(raw_lines: list[str]) -> str:
    """Fallback for CLIs that print plain text instead of stream-json."""
    for line in reversed(raw_lines):
        try:
            json.loads(line)
        except json.JSONDecodeError:
            return line
    return ""
