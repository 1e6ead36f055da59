"""Bounded refinement loop for the final (implementation) phase.

The loop is described by a state file at ``<workspace>/.claude/ralph-loop.local.md``:
YAML front matter followed by the instruction text. Agent-side stop hooks
read it to decide whether to re-run the session.

Two strategies are available:

* :class:`InternalRefinementLoop` (default): the pipeline re-invokes the
  agent itself, one bounded call per iteration, until its final
  message contains ``<promise>MARKER</promise>`` or the iteration budget is
  spent.
* :class:`CooperativeRefinementLoop`: a single long agent call; iteration is
  left to the agent-side hook, which reads and updates the state file.

Either way, the state file never outlives :meth:`RefinementLoop.run`.
"""

from __future__ import annotations

import abc
import logging
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from tag_mixer.agent_runner import AgentRunner
from tag_mixer.file_io import atomic_write_text, read_text_lenient
from tag_mixer.pipeline.phases import (
    DEFAULT_COMPLETION_MARKER,
    DEFAULT_ITERATION_TIMEOUT_SECONDS,
    DEFAULT_MAX_ITERATIONS,
    PipelineConfig,
)
from tag_mixer.schemas import AgentResult, RefinementLoopState

logger = logging.getLogger(__name__)

LOOP_STATE_RELPATH = Path(".claude") / "ralph-loop.local.md"

_PROMISE_RE = re.compile(r"<promise>(.*?)</promise>", re.DOTALL)
_FRONT_MATTER_DELIM = "---"


def loop_state_path(workspace: str | Path) -> Path:
    return Path(workspace) / LOOP_STATE_RELPATH


# ---------------------------------------------------------------------------
# State file I/O
# ---------------------------------------------------------------------------


def render_loop_state(state: RefinementLoopState, instruction: str) -> str:
    """Render the state file: YAML front matter, a blank line, then the instruction."""
    front = {
        "active": state.active,
        "iteration": state.iteration,
        "max_iterations": state.max_iterations,
        "completion_promise": state.completion_marker,
        "started_at": state.started_at,
    }
    body = yaml.safe_dump(front, sort_keys=False, default_flow_style=False, allow_unicode=True)
    return f"{_FRONT_MATTER_DELIM}\n{body}{_FRONT_MATTER_DELIM}\n\n{instruction}"


def write_loop_state(workspace: str | Path, state: RefinementLoopState, instruction: str) -> Path:
    path = loop_state_path(workspace)
    atomic_write_text(path, render_loop_state(state, instruction))
    return path


def parse_loop_state(text: str) -> RefinementLoopState | None:
    """Parse the front matter of a state file, or return ``None`` if malformed."""
    lines = text.splitlines()
    if not lines or lines[0].strip() != _FRONT_MATTER_DELIM:
        return None
    try:
        end = next(i for i, line in enumerate(lines[1:], start=1) if line.strip() == _FRONT_MATTER_DELIM)
    except StopIteration:
        return None
    try:
        front: Any = yaml.safe_load("\n".join(lines[1:end])) or {}
    except yaml.YAMLError as exc:
        logger.debug("Unparseable loop state front matter: %s", exc)
        return None
    if not isinstance(front, dict):
        return None
    data = dict(front)
    if "completion_promise" in data:
        data["completion_marker"] = data.pop("completion_promise")
    started = data.get("started_at")
    if started is not None and not isinstance(started, str):
        # Unquoted timestamps load as datetime objects.
        data["started_at"] = started.isoformat() if hasattr(started, "isoformat") else str(started)
    try:
        return RefinementLoopState.model_validate(data)
    except ValidationError as exc:
        logger.debug("Invalid loop state front matter: %s", exc)
        return None


def read_loop_state(workspace: str | Path) -> RefinementLoopState | None:
    path = loop_state_path(workspace)
    if not path.is_file():
        return None
    return parse_loop_state(read_text_lenient(path))


def clear_loop_state(workspace: str | Path) -> bool:
    """Delete the state file. Returns True when a file was removed."""
    path = loop_state_path(workspace)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


# ---------------------------------------------------------------------------
# Loop strategies
# ---------------------------------------------------------------------------


class RefinementLoop(abc.ABC):
    """Common configuration for the final-phase loop strategies."""

    def __init__(
        self,
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        iteration_timeout_seconds: int = DEFAULT_ITERATION_TIMEOUT_SECONDS,
        completion_marker: str = DEFAULT_COMPLETION_MARKER,
        require_completion_marker: bool = False,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self.max_iterations = max_iterations
        self.iteration_timeout_seconds = iteration_timeout_seconds
        self.completion_marker = completion_marker
        self.require_completion_marker = require_completion_marker

    def marker_seen(self, result: AgentResult) -> bool:
        """True when the final message carries exactly ``<promise>MARKER</promise>``."""
        return any(
            promised.strip() == self.completion_marker
            for promised in _PROMISE_RE.findall(result.output)
        )

    def initial_state(self) -> RefinementLoopState:
        return RefinementLoopState(
            active=True,
            iteration=1,
            max_iterations=self.max_iterations,
            completion_marker=self.completion_marker,
        )

    @abc.abstractmethod
    def run(
        self,
        workspace: str | Path,
        instruction: str,
        runner: AgentRunner,
        turn_budget: int,
    ) -> AgentResult:
        """Drive the agent to completion and return the final result."""


class CooperativeRefinementLoop(RefinementLoop):
    """One long agent call; the agent-side stop hook does the iterating."""

    def begin(self, workspace: str | Path, instruction: str) -> Path:
        path = write_loop_state(workspace, self.initial_state(), instruction)
        logger.info(
            "Refinement loop state written (max %s iterations, marker %r)",
            self.max_iterations,
            self.completion_marker,
        )
        return path

    def end(self, workspace: str | Path) -> int | None:
        """Remove the state file and return the last iteration it recorded."""
        state = read_loop_state(workspace)
        iteration = state.iteration if state else None
        if clear_loop_state(workspace):
            logger.info("Refinement loop state cleaned up (last iteration: %s)", iteration or "?")
        return iteration

    def run(
        self,
        workspace: str | Path,
        instruction: str,
        runner: AgentRunner,
        turn_budget: int,
    ) -> AgentResult:
        self.begin(workspace, instruction)
        try:
            return runner.invoke(
                instruction,
                workspace,
                turn_budget=turn_budget,
                timeout_seconds=self.iteration_timeout_seconds * self.max_iterations,
            )
        finally:
            self.end(workspace)


class InternalRefinementLoop(RefinementLoop):
    """Re-invoke the agent until it reports completion or the budget is spent."""

    def run(
        self,
        workspace: str | Path,
        instruction: str,
        runner: AgentRunner,
        turn_budget: int,
    ) -> AgentResult:
        state = self.initial_state()
        result = AgentResult(success=False, errors=["refinement loop did not run"])
        try:
            for iteration in range(1, self.max_iterations + 1):
                state.iteration = iteration
                write_loop_state(workspace, state, instruction)
                logger.info("Refinement iteration %s/%s", iteration, self.max_iterations)

                result = runner.invoke(
                    instruction,
                    workspace,
                    turn_budget=turn_budget,
                    timeout_seconds=self.iteration_timeout_seconds,
                )
                if not result.success:
                    logger.warning("Refinement iteration %s failed: %s", iteration, result.error)
                    return result
                if self.marker_seen(result):
                    logger.info("Completion marker seen after %s iteration(s)", iteration)
                    return result

            logger.warning(
                "Refinement budget of %s iteration(s) spent without the completion marker",
                self.max_iterations,
            )
            if self.require_completion_marker:
                return result.model_copy(
                    update={
                        "success": False,
                        "errors": [
                            f"completion marker not observed after {self.max_iterations} iteration(s)"
                        ],
                    }
                )
            return result
        finally:
            clear_loop_state(workspace)


def build_refinement_loop(config: PipelineConfig) -> RefinementLoop:
    """Return the loop strategy selected by ``config.refinement_mode``."""
    cls: type[RefinementLoop] = (
        CooperativeRefinementLoop
        if config.refinement_mode == "cooperative"
        else InternalRefinementLoop
    )
    return cls(
        max_iterations=config.implement_max_iterations,
        iteration_timeout_seconds=config.iteration_timeout_seconds,
        completion_marker=config.completion_marker,
        require_completion_marker=config.require_completion_marker,
    )
