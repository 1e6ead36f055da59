"""Pipeline phase definitions and configuration.

Each phase in the generation pipeline has:
- A prompt template (loaded from the prompt catalog)
- A turn budget for the agent invocation
- The artifacts it is expected to leave in the workspace
- The commit message used when publishing is enabled
"""

from __future__ import annotations

import os
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from tag_mixer.tags import TagSelection

RefinementMode = Literal["internal", "cooperative"]

DEFAULT_COMPLETION_MARKER = "IMPLEMENTATION COMPLETE"
DEFAULT_PHASE_TIMEOUT_SECONDS = 10 * 60
DEFAULT_ITERATION_TIMEOUT_SECONDS = 15 * 60
DEFAULT_MAX_ITERATIONS = 10


class PipelinePhase(str, Enum):
    """The phases of the generation pipeline, in execution order."""

    CREATIVE_DIRECTOR = "creativeDirector"
    DESIGN_LEAD_GUIDES = "designLeadGuides"
    CD_REVIEW = "cdReview"
    DESIGN_LEAD_DISPATCH = "designLeadDispatch"
    DL_REVIEW = "dlReview"
    IMPLEMENT = "implement"


class PhaseSpec(BaseModel):
    """Static description of one phase."""

    phase: PipelinePhase
    number: int
    title: str
    turn_budget: int
    commit_message: str
    artifacts: list[str] = Field(default_factory=list)
    refinement: bool = False


PHASE_SPECS: dict[PipelinePhase, PhaseSpec] = {
    PipelinePhase.CREATIVE_DIRECTOR: PhaseSpec(
        phase=PipelinePhase.CREATIVE_DIRECTOR,
        number=1,
        title="Creative Director",
        turn_budget=15,
        commit_message="feat: Phase 1 - game proposal & pipeline assets",
        artifacts=["proposal.md"],
    ),
    PipelinePhase.DESIGN_LEAD_GUIDES: PhaseSpec(
        phase=PipelinePhase.DESIGN_LEAD_GUIDES,
        number=2,
        title="Design Lead guides",
        turn_budget=20,
        commit_message="docs: Phase 2 - design guides",
        artifacts=["specs/design-plan.md", "specs/guide-*.md"],
    ),
    PipelinePhase.CD_REVIEW: PhaseSpec(
        phase=PipelinePhase.CD_REVIEW,
        number=3,
        title="Creative Director guide review",
        turn_budget=15,
        commit_message="docs: Phase 3 - guide review & revisions",
        artifacts=["specs/review-guides.md"],
    ),
    PipelinePhase.DESIGN_LEAD_DISPATCH: PhaseSpec(
        phase=PipelinePhase.DESIGN_LEAD_DISPATCH,
        number=4,
        title="Design Lead dispatch",
        turn_budget=30,
        commit_message="docs: Phase 4 - detailed specs",
        artifacts=["specs/spec-*.md"],
    ),
    PipelinePhase.DL_REVIEW: PhaseSpec(
        phase=PipelinePhase.DL_REVIEW,
        number=5,
        title="Design Lead spec review",
        turn_budget=20,
        commit_message="docs: Phase 5 - spec review & revisions",
        artifacts=["specs/review-specs.md"],
    ),
    PipelinePhase.IMPLEMENT: PhaseSpec(
        phase=PipelinePhase.IMPLEMENT,
        number=6,
        title="Implementer",
        turn_budget=50,
        commit_message="feat: Phase 6 - game implementation",
        artifacts=["package.json", "index.html", "src/main.ts"],
        refinement=True,
    ),
}

DEFAULT_PHASE_ORDER: list[PipelinePhase] = list(PHASE_SPECS)


def _env_default(name: str, fallback: str) -> str:
    return os.getenv(name, "").strip() or fallback


class PipelineConfig(BaseModel):
    """Full configuration for one pipeline run.

    Path and binary defaults can be overridden through ``TAG_MIXER_*``
    environment variables (the CLI loads ``.env`` before building this).
    """

    # Tag selection
    min_tags: int = 2
    max_tags: int = 5
    tags: list[str] = Field(default_factory=list)  # pre-selected; skips random selection

    # Publishing (git init + gh repo create + per-phase commits + final push)
    publish: bool = True

    # Locations
    outputs_dir: str = Field(default_factory=lambda: _env_default("TAG_MIXER_OUTPUTS_DIR", "outputs"))
    assets_dir: str = Field(default_factory=lambda: _env_default("TAG_MIXER_ASSETS_DIR", ".claude"))

    # Agent
    claude_binary: str = Field(default_factory=lambda: _env_default("TAG_MIXER_CLAUDE_BIN", "claude"))
    model: str = Field(default_factory=lambda: os.getenv("TAG_MIXER_MODEL", "").strip())
    full_auto: bool = False
    phase_timeout_seconds: int = DEFAULT_PHASE_TIMEOUT_SECONDS

    # Final-phase refinement loop
    refinement_mode: RefinementMode = "internal"
    implement_max_iterations: int = DEFAULT_MAX_ITERATIONS
    iteration_timeout_seconds: int = DEFAULT_ITERATION_TIMEOUT_SECONDS
    completion_marker: str = DEFAULT_COMPLETION_MARKER
    require_completion_marker: bool = False

    @model_validator(mode="after")
    def _validate_bounds(self) -> PipelineConfig:
        if self.min_tags < 1:
            raise ValueError("min_tags must be >= 1")
        if self.min_tags > self.max_tags:
            raise ValueError("min_tags must be <= max_tags")
        if self.implement_max_iterations < 1:
            raise ValueError("implement_max_iterations must be >= 1")
        if not self.completion_marker.strip():
            raise ValueError("completion_marker must be non-empty")
        self.tags = [t.strip() for t in self.tags if t and t.strip()]
        return self


class PhaseResult(BaseModel):
    """Outcome of one phase, as reported to callers."""

    success: bool
    error: str | None = None


class PipelineResult(BaseModel):
    """Outcome of a pipeline run.

    ``phases`` only contains phases that were attempted; a halted run leaves
    the later ones absent.
    """

    success: bool = False
    date: str = ""
    tags: TagSelection = Field(default_factory=TagSelection)
    output_dir: str = ""
    phases: dict[str, PhaseResult] = Field(default_factory=dict)
    repo_url: str | None = None
    error: str | None = None

    def to_summary(self) -> dict:
        """Return the JSON-friendly summary used by the CLI and the status API."""
        return {
            "success": self.success,
            "date": self.date,
            "tags": self.tags.tag_names,
            "outputDir": self.output_dir,
            "phases": {
                key: phase.model_dump(exclude_none=True) for key, phase in self.phases.items()
            },
            "repoUrl": self.repo_url,
            "error": self.error,
        }
