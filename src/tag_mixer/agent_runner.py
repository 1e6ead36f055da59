"""Abstract base class for coding-agent runners.

The orchestrator only depends on this interface, so tests (and future
agents) can substitute any implementation of :meth:`AgentRunner.invoke`.
"""

from __future__ import annotations

import abc
from pathlib import Path

from tag_mixer.schemas import AgentResult

DEFAULT_TURN_BUDGET = 30
DEFAULT_TIMEOUT_SECONDS = 10 * 60


class AgentRunner(abc.ABC):
    """Common interface for coding-agent CLI wrappers."""

    #: Human-readable name used in log lines.
    name: str = "base"

    @abc.abstractmethod
    def invoke(
        self,
        instruction: str,
        working_dir: str | Path,
        *,
        turn_budget: int = DEFAULT_TURN_BUDGET,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> AgentResult:
        """Run one instruction against the agent and return structured results.

        Parameters
        ----------
        instruction:
            Opaque natural-language prompt.
        working_dir:
            Directory the agent process runs in (the run workspace).
        turn_budget:
            Maximum agent turns for this invocation.
        timeout_seconds:
            Wall-clock limit. Exceeding it is reported as an ordinary
            failure, never raised.
        """
