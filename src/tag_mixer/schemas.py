"""Pydantic models for structured data shared across the pipeline."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from tag_mixer.file_io import atomic_write_text

META_FILENAME = "meta.json"


def utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Agent invocation results
# ---------------------------------------------------------------------------

class EventKind(str, Enum):
    """Known event types emitted by ``claude -p --output-format stream-json``."""

    AGENT_MESSAGE = "assistant"
    RESULT = "result"
    ERROR = "error"
    UNKNOWN = "unknown"


class AgentEvent(BaseModel):
    """A single parsed JSONL event from an agent run."""

    kind: EventKind = EventKind.UNKNOWN
    raw: dict[str, Any] = Field(default_factory=dict)
    text: str | None = None


class AgentResult(BaseModel):
    """Aggregated result of a single agent invocation.

    Process-level problems (missing binary, non-zero exit, timeout) are
    reported as ``success=False`` with a readable entry in ``errors``;
    whatever output was captured before the failure is kept in ``output``.
    """

    success: bool = False
    exit_code: int = -1
    output: str = ""
    errors: list[str] = Field(default_factory=list)
    timed_out: bool = False

    @property
    def error(self) -> str | None:
        """Human-readable error text, or ``None`` when nothing was reported."""
        joined = "\n".join(e for e in self.errors if e).strip()
        return joined or None


# ---------------------------------------------------------------------------
# Side-effect outcomes
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    """How far a failure propagates.

    Agent failures are the only fatal kind and travel as a failed
    :class:`AgentResult`; side effects report ``WARNING``, which the layer
    that produced it logs and absorbs.
    """

    OK = "ok"
    WARNING = "warning"


class PublishOutcome(BaseModel):
    """Result of a best-effort repository side effect."""

    ok: bool = True
    severity: Severity = Severity.OK
    skipped: bool = False
    detail: str = ""
    url: str | None = None

    @classmethod
    def failed(cls, detail: str) -> PublishOutcome:
        return cls(ok=False, severity=Severity.WARNING, detail=detail)


# ---------------------------------------------------------------------------
# Run metadata (meta.json)
# ---------------------------------------------------------------------------

class PhaseRecord(BaseModel):
    """Checkpoint for one pipeline phase."""

    name: str
    completed: bool = False
    error: str | None = None


class RunMetadata(BaseModel):
    """Durable per-run state written to ``<workspace>/meta.json``."""

    run_date: str
    selected_inputs: list[str] = Field(default_factory=list)
    started_at: str = Field(default_factory=utc_now_iso)
    completed_at: str | None = None
    repository_url: str | None = None
    phases: dict[str, PhaseRecord] = Field(default_factory=dict)
    success: bool = False

    @classmethod
    def start(cls, run_date: str, selected_inputs: list[str], phase_names: list[str]) -> RunMetadata:
        """Create metadata with every phase pending."""
        return cls(
            run_date=run_date,
            selected_inputs=list(selected_inputs),
            phases={name: PhaseRecord(name=name) for name in phase_names},
        )

    def save(self, workspace: str | Path) -> Path:
        """Persist to disk atomically and return the file path."""
        path = Path(workspace) / META_FILENAME
        atomic_write_text(path, self.model_dump_json(indent=2))
        return path


# ---------------------------------------------------------------------------
# Refinement loop descriptor
# ---------------------------------------------------------------------------

class RefinementLoopState(BaseModel):
    """Bounded convergence loop descriptor for the final phase."""

    active: bool = True
    iteration: int = Field(default=1, ge=1)
    max_iterations: int = Field(default=10, ge=1)
    completion_marker: str = ""
    started_at: str = Field(default_factory=utc_now_iso)
